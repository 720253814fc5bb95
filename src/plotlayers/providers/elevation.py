"""Terrain elevation from the Open-Elevation API (SRTM)."""

import httpx

from plotlayers.config import settings
from plotlayers.core.errors import ProviderSchemaMismatch
from plotlayers.core.types import LayerQuery
from plotlayers.providers.base import LayerProvider


class ElevationProvider(LayerProvider):
    layer_id = "elevation"
    layer_name = "Elevation"
    category = "elevation"

    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        resp = await client.get(
            settings.open_elevation_url,
            params={"locations": f"{query.point.lat},{query.point.lng}"},
        )
        resp.raise_for_status()
        body = resp.json()

        results = body.get("results") if isinstance(body, dict) else None
        if not results:
            return None
        if not isinstance(results, list) or not isinstance(results[0], dict):
            raise ProviderSchemaMismatch("'results' is not a list of objects")
        elevation = results[0].get("elevation")
        if elevation is None:
            return None
        if not isinstance(elevation, (int, float)):
            raise ProviderSchemaMismatch(f"elevation is {type(elevation).__name__}, expected a number")
        return {"elevation_m": elevation, "source": "SRTM/Open-Elevation"}
