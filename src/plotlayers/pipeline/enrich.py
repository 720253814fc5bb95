"""Enrichment orchestrator: the fan-out/fan-in engine behind /layer-info.

Flow:
  1. Resolve geometry (polygon → centroid, bbox, area; area → bbox)
  2. Resolve country (reverse geocode when the caller did not give one)
  3. Select providers for the country (plus the global ones)
  4. Query every provider concurrently on one shared HTTP client
  5. Classify layers into run / skipped / failed and build the response

A slow or broken provider only ever affects its own layer entry.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone

import httpx

from plotlayers.config import settings
from plotlayers.core.errors import ValidationError
from plotlayers.core.types import (
    BoundingBox,
    Coordinate,
    EnrichmentRequest,
    EnrichmentResponse,
    LayerQuery,
    LayerResult,
)
from plotlayers.geometry import (
    bbox_for_area,
    bbox_of_ring,
    distinct_vertex_count,
    open_ring,
    polygon_area_m2,
    polygon_centroid,
)
from plotlayers.observability.tracing import start_span, trace
from plotlayers.pipeline.router import ProviderRouter, get_router
from plotlayers.providers.base import LayerProvider
from plotlayers.retrieval.geocode import reverse_geocode

logger = logging.getLogger(__name__)


def build_http_client() -> httpx.AsyncClient:
    """One client per enrichment, shared by all providers of that request."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(connect=10.0, read=settings.provider_timeout_seconds, write=10.0, pool=5.0),
        headers={"User-Agent": settings.user_agent, "Accept": "application/json"},
        verify=settings.upstream_verify_ssl,
        follow_redirects=True,
    )


def resolve_geometry(
    request: EnrichmentRequest,
) -> tuple[Coordinate, BoundingBox | None, float | None]:
    """Return (coordinate, bounding_box, area_m2) for the request.

    Raises:
        ValidationError: no usable polygon or coordinate.
    """
    if request.polygon is not None:
        if distinct_vertex_count(request.polygon) < 3:
            raise ValidationError("Invalid polygon. Provide a valid GeoJSON Polygon with at least 3 vertices.")
        centroid = polygon_centroid(request.polygon)
        area = round(polygon_area_m2(request.polygon, centroid.lat))
        return centroid, bbox_of_ring(open_ring(request.polygon)), area

    coordinate = request.coordinate
    if coordinate is None or not coordinate.is_valid():
        raise ValidationError("Invalid coordinates. Provide lat and lng as numbers.")

    if request.area_m2 is not None:
        if request.area_m2 <= 0:
            raise ValidationError("Invalid area. Provide a positive number in square meters.")
        return coordinate, bbox_for_area(coordinate.lat, coordinate.lng, request.area_m2), request.area_m2

    return coordinate, None, None


async def resolve_country(coordinate: Coordinate, client: httpx.AsyncClient) -> str | None:
    """ISO country code via reverse geocoding. Failures degrade to None."""
    try:
        result = await reverse_geocode(coordinate.lat, coordinate.lng, client=client)
    except Exception as e:
        logger.warning("Country resolution failed, running global layers only: %s", e)
        return None
    return result.get("country_code") if result else None


async def _dispatch(
    providers: list[LayerProvider],
    query: LayerQuery,
    client: httpx.AsyncClient,
) -> list[LayerResult]:
    outcomes = await asyncio.gather(
        *(provider.query(query, client) for provider in providers),
        return_exceptions=True,
    )
    layers: list[LayerResult] = []
    for provider, outcome in zip(providers, outcomes):
        if isinstance(outcome, BaseException):
            logger.error(
                "Provider %s raised unexpectedly: %s", provider.layer_id, outcome,
                exc_info=outcome, extra={"layer_id": provider.layer_id},
            )
            outcome = provider.failure(f"{type(outcome).__name__}: {outcome}")
        layers.append(outcome)
    return layers


def classify_layers(layers: list[LayerResult]) -> tuple[list[str], list[str]]:
    """Split dispatched layer ids into (run, failed)."""
    run = [layer.layer_id for layer in layers if layer.error is None]
    failed = [layer.layer_id for layer in layers if layer.error is not None]
    return run, failed


@trace(name="enrich_location", span_type="CHAIN")
async def enrich(
    request: EnrichmentRequest,
    router: ProviderRouter | None = None,
    client: httpx.AsyncClient | None = None,
) -> EnrichmentResponse:
    """Query every applicable layer for a point or polygon and merge the results.

    Raises:
        ValidationError: the request itself is malformed. Provider problems
        never raise; they appear as found=False layer entries.
    """
    router = router or get_router()
    t0 = time.monotonic()

    coordinate, bbox, area_m2 = resolve_geometry(request)
    country = request.country.upper() if request.country else None

    own_client = client is None
    if own_client:
        client = build_http_client()
    try:
        if country is None:
            with start_span(name="resolve_country", span_type="TOOL") as span:
                span.set_inputs({"lat": coordinate.lat, "lng": coordinate.lng})
                country = await resolve_country(coordinate, client)
                span.set_outputs({"country": country})

        providers = router.select(country)
        logger.info(
            "Enriching %.6f,%.6f with %d layers", coordinate.lat, coordinate.lng, len(providers),
            extra={"country": country, "step": "dispatch"},
        )

        query = LayerQuery(point=coordinate, bbox=bbox, area_m2=area_m2)
        layers = await _dispatch(providers, query, client)
    finally:
        if own_client:
            await client.aclose()

    run, failed = classify_layers(layers)
    duration_ms = round((time.monotonic() - t0) * 1000)
    logger.info(
        "Enrichment complete: %d found, %d failed", sum(1 for layer in layers if layer.found), len(failed),
        extra={"country": country, "step": "complete", "duration_ms": duration_ms},
    )

    return EnrichmentResponse(
        coordinate=coordinate,
        country=country,
        timestamp=datetime.now(timezone.utc),
        layers=layers,
        bounding_box=bbox,
        area_m2=area_m2,
        polygon=request.polygon,
        enrichments_run=run,
        enrichments_skipped=router.skipped(country),
        enrichments_failed=failed,
    )
