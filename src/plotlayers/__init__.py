"""plotlayers: land-use enrichment from public geospatial services."""

__version__ = "1.0.0"
