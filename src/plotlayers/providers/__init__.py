"""Layer providers, one per upstream geospatial source."""
