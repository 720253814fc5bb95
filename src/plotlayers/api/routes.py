"""API route handlers for plotlayers.

GET  /layer-info: point (or point + area) lookup
POST /layer-info: polygon lookup
POST /api/v1/enrich: point lookup with optional country resolution and persistence
GET  /api/v1/municipalities/{id}/zoning-rules: permanently cached LLM-extracted rules
POST /api/v1/municipalities/{id}/zoning-rules/invalidate: source document changed
"""

import json
import logging
import math

from fastapi import APIRouter, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from plotlayers.api.schemas import EnrichRequest, ErrorResponse, LayerInfoResponse, ZoningRulesResponse
from plotlayers.core.errors import ProviderUnavailable, ValidationError
from plotlayers.core.types import Coordinate, EnrichmentRequest, EnrichmentResponse, response_to_dict
from plotlayers.geometry import distinct_vertex_count
from plotlayers.pipeline.enrich import enrich
from plotlayers.pipeline.router import SUPPORTED_COUNTRIES
from plotlayers.retrieval.llm import extract_general_zoning_rules
from plotlayers.storage.cache import ResultCache, SqlZoningRulesStore
from plotlayers.storage.db import get_session, upsert_enrichment

logger = logging.getLogger(__name__)

router = APIRouter(tags=["layers"])
api_router = APIRouter(prefix="/api/v1", tags=["enrichment"])

CACHE_HEADERS = {"Cache-Control": "public, max-age=300"}

INVALID_COORDINATES = "Invalid coordinates. Provide lat and lng as numbers."
INVALID_COUNTRY = f"Invalid country. Use {' or '.join(SUPPORTED_COUNTRIES)}."
INVALID_AREA = "Invalid area. Provide a positive number in square meters."
INVALID_JSON = "Invalid JSON body"
INVALID_POLYGON = "Invalid polygon. Provide a valid GeoJSON Polygon with at least 3 vertices."


def _parse_number(raw: str | None) -> float | None:
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_country(raw: str | None) -> str:
    if raw is not None and not isinstance(raw, str):
        raise HTTPException(status_code=400, detail=INVALID_COUNTRY)
    country = (raw or "PT").strip().upper()
    if country not in SUPPORTED_COUNTRIES:
        raise HTTPException(status_code=400, detail=INVALID_COUNTRY)
    return country


def validate_polygon(polygon) -> dict:
    """A GeoJSON Polygon whose outer ring has at least 3 distinct numeric vertices."""
    if not isinstance(polygon, dict) or polygon.get("type") != "Polygon":
        raise HTTPException(status_code=400, detail=INVALID_POLYGON)
    coordinates = polygon.get("coordinates")
    if not isinstance(coordinates, list) or not coordinates or not isinstance(coordinates[0], list):
        raise HTTPException(status_code=400, detail=INVALID_POLYGON)
    if len(coordinates[0]) < 4 or distinct_vertex_count(polygon) < 3:
        raise HTTPException(status_code=400, detail=INVALID_POLYGON)
    return polygon


async def _run_enrichment(request: EnrichmentRequest) -> EnrichmentResponse:
    try:
        return await enrich(request)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("Layer query failed")
        raise HTTPException(status_code=500, detail="Failed to query layers")


@router.get(
    "/layer-info",
    response_model=LayerInfoResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def layer_info(
    lat: str | None = Query(default=None),
    lng: str | None = Query(default=None),
    country: str | None = Query(default=None),
    area: str | None = Query(default=None, description="Area in square meters around the point"),
):
    """Query every applicable layer at a point, optionally scoped to an area."""
    lat_value, lng_value = _parse_number(lat), _parse_number(lng)
    if lat_value is None or lng_value is None:
        raise HTTPException(status_code=400, detail=INVALID_COORDINATES)
    coordinate = Coordinate(lat=lat_value, lng=lng_value)
    if not coordinate.is_valid():
        raise HTTPException(status_code=400, detail=INVALID_COORDINATES)

    country_code = parse_country(country)

    area_m2 = None
    if area is not None:
        area_m2 = _parse_number(area)
        if area_m2 is None or area_m2 <= 0:
            raise HTTPException(status_code=400, detail=INVALID_AREA)

    response = await _run_enrichment(
        EnrichmentRequest(coordinate=coordinate, country=country_code, area_m2=area_m2)
    )
    return JSONResponse(response_to_dict(response), headers=CACHE_HEADERS)


@router.post(
    "/layer-info",
    response_model=LayerInfoResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def layer_info_polygon(request: Request):
    """Query every applicable layer for a GeoJSON polygon; centroid and area are derived."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail=INVALID_JSON)
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail=INVALID_JSON)

    polygon = validate_polygon(body.get("polygon"))
    country_code = parse_country(body.get("country"))

    response = await _run_enrichment(EnrichmentRequest(polygon=polygon, country=country_code))
    return JSONResponse(response_to_dict(response), headers=CACHE_HEADERS)


@api_router.post("/enrich", responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
async def enrich_location(request: EnrichRequest):
    """Enrich a coordinate; the country is reverse geocoded when not given."""
    country = request.country.upper() if request.country else None
    response = await _run_enrichment(
        EnrichmentRequest(
            coordinate=Coordinate(lat=request.lat, lng=request.lng),
            country=country,
            area_m2=request.area_m2,
        )
    )
    body = response_to_dict(response)

    if request.plot_id:
        session = None
        try:
            session = await get_session()
            await upsert_enrichment(session, request.plot_id, response)
            body["persisted"] = True
        except Exception as e:
            logger.error("Failed to persist enrichment for plot %s: %s", request.plot_id, e)
            body["persisted"] = False
        finally:
            if session:
                await session.close()

    return body


def zoning_rules_cache(session) -> ResultCache:
    return ResultCache(SqlZoningRulesStore(session), extract_general_zoning_rules)


@api_router.get(
    "/municipalities/{municipality_id}/zoning-rules",
    response_model=ZoningRulesResponse,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def get_zoning_rules(municipality_id: int):
    """General zoning rules for a municipality, extracted once from its planning document."""
    session = await get_session()
    try:
        cached = await zoning_rules_cache(session).get_or_compute(str(municipality_id))
    except ProviderUnavailable as e:
        raise HTTPException(status_code=502, detail=str(e))
    finally:
        await session.close()

    if cached is None:
        raise HTTPException(status_code=404, detail=f"No planning document for municipality {municipality_id}")
    return ZoningRulesResponse(
        municipality_id=municipality_id,
        cached=cached.hit,
        cached_at=cached.cached_at,
        rules=cached.artifact,
    )


@api_router.post(
    "/municipalities/{municipality_id}/zoning-rules/invalidate",
    status_code=204,
    responses={404: {"model": ErrorResponse}},
)
async def invalidate_zoning_rules(municipality_id: int):
    """Mark the cached rules stale after the municipality's planning document changed."""
    session = await get_session()
    try:
        invalidated = await zoning_rules_cache(session).invalidate(str(municipality_id))
    finally:
        await session.close()

    if not invalidated:
        raise HTTPException(status_code=404, detail=f"No planning document for municipality {municipality_id}")
    return Response(status_code=204)
