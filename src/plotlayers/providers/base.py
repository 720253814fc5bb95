"""Layer provider contract and the shared OGC API / WMS query helpers.

A provider implements `_fetch()` and returns the layer payload dict, or
None when the upstream has nothing at the location. `query()` wraps it with
a deadline and converts every upstream failure into a found=False result,
so one broken service can never fail a whole enrichment.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod

import httpx

from plotlayers.config import settings
from plotlayers.core.errors import ProviderSchemaMismatch, ProviderUnavailable
from plotlayers.core.types import BoundingBox, LayerQuery, LayerResult
from plotlayers.observability.tracing import start_span

logger = logging.getLogger(__name__)

WMS_TILE_SIZE = 256


class LayerProvider(ABC):
    """One upstream source answering for one layer."""

    layer_id: str
    layer_name: str
    category: str = "other"
    supports_bbox: bool = False
    timeout: float | None = None

    @property
    def deadline(self) -> float:
        return self.timeout if self.timeout is not None else settings.provider_timeout_seconds

    @abstractmethod
    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        """Return the layer payload, or None when nothing is at this location."""

    async def query(self, query: LayerQuery, client: httpx.AsyncClient) -> LayerResult:
        """Run the provider under its deadline. Never raises."""
        with start_span(name=f"provider_{self.layer_id}", span_type="RETRIEVER") as span:
            span.set_inputs({
                "layer_id": self.layer_id,
                "lat": query.point.lat,
                "lng": query.point.lng,
                "area_m2": query.area_m2,
            })
            t0 = time.monotonic()
            result = await self._run(query, client)
            duration_ms = round((time.monotonic() - t0) * 1000)
            span.set_outputs({"found": result.found, "error": result.error, "duration_ms": duration_ms})

        logger.info(
            "Layer %s: found=%s%s", self.layer_id, result.found,
            f" error={result.error}" if result.error else "",
            extra={"layer_id": self.layer_id, "duration_ms": duration_ms},
        )
        return result

    async def _run(self, query: LayerQuery, client: httpx.AsyncClient) -> LayerResult:
        try:
            data = await asyncio.wait_for(self._fetch(query, client), timeout=self.deadline)
        except asyncio.TimeoutError:
            return self.failure(f"timed out after {self.deadline:g}s")
        except httpx.HTTPStatusError as e:
            return self.failure(f"HTTP {e.response.status_code} from {e.request.url.host}")
        except httpx.HTTPError as e:
            return self.failure(f"{type(e).__name__}: {e}" if str(e) else type(e).__name__)
        except (ProviderUnavailable, ProviderSchemaMismatch) as e:
            return self.failure(str(e))
        except (ValueError, KeyError, TypeError, IndexError, AttributeError) as e:
            logger.warning("Layer %s returned an unexpected payload: %s", self.layer_id, e)
            return self.failure(f"unexpected payload: {e}")

        if data is None:
            return LayerResult.miss(self.layer_id, self.layer_name)
        return LayerResult.hit(self.layer_id, self.layer_name, data)

    def failure(self, error: str) -> LayerResult:
        return LayerResult.failure(self.layer_id, self.layer_name, error)


# ---------------------------------------------------------------------------
# Upstream helpers
# ---------------------------------------------------------------------------

def json_body(resp: httpx.Response) -> dict:
    """Decoded JSON object, or ProviderSchemaMismatch for anything else."""
    try:
        body = resp.json()
    except ValueError as e:
        raise ProviderSchemaMismatch(f"non-JSON response from {resp.request.url.host}") from e
    if not isinstance(body, dict):
        raise ProviderSchemaMismatch(f"expected a JSON object from {resp.request.url.host}")
    return body


def _features(body: dict) -> list[dict]:
    features = body.get("features")
    if features is None:
        return []
    if not isinstance(features, list):
        raise ProviderSchemaMismatch("'features' is not a list")
    return [f for f in features if isinstance(f, dict)]


async def fetch_ogc_items(
    client: httpx.AsyncClient,
    collection: str,
    bbox: BoundingBox,
    limit: int,
) -> list[dict]:
    """GET {DGT_OGC_BASE}/collections/{collection}/items filtered by bbox."""
    url = f"{settings.dgt_ogc_base.rstrip('/')}/collections/{collection}/items"
    resp = await client.get(
        url,
        params={"bbox": bbox.as_param(), "f": "json", "limit": limit},
        headers={"Accept": "application/geo+json, application/json"},
    )
    resp.raise_for_status()
    return _features(json_body(resp))


async def fetch_wms_feature_info(
    client: httpx.AsyncClient,
    url: str,
    layer: str,
    bbox: BoundingBox,
    info_format: str = "application/json",
) -> httpx.Response:
    """WMS 1.1.1 GetFeatureInfo for the centre pixel of a 256x256 tile over `bbox`."""
    params = {
        "SERVICE": "WMS",
        "VERSION": "1.1.1",
        "REQUEST": "GetFeatureInfo",
        "LAYERS": layer,
        "QUERY_LAYERS": layer,
        "INFO_FORMAT": info_format,
        "SRS": "EPSG:4326",
        "BBOX": bbox.as_param(),
        "WIDTH": str(WMS_TILE_SIZE),
        "HEIGHT": str(WMS_TILE_SIZE),
        "X": str(WMS_TILE_SIZE // 2),
        "Y": str(WMS_TILE_SIZE // 2),
    }
    resp = await client.get(url, params=params)
    resp.raise_for_status()
    return resp


async def fetch_wms_features(
    client: httpx.AsyncClient,
    url: str,
    layer: str,
    bbox: BoundingBox,
) -> list[dict]:
    resp = await fetch_wms_feature_info(client, url, layer, bbox)
    return _features(json_body(resp))


def first_present(props: dict, *keys: str):
    """Value of the first key holding something truthy, else None."""
    for key in keys:
        val = props.get(key)
        if val not in (None, ""):
            return val
    return None
