"""Cadastral parcel layers: Portugal (DGT OGC API) and Spain (Catastro WMS)."""

import logging
import re

import httpx

from plotlayers.config import settings
from plotlayers.core.types import BoundingBox, LayerQuery
from plotlayers.geometry import (
    bbox_around_point,
    haversine_m,
    point_in_feature,
    ring_vertex_average,
)
from plotlayers.providers.base import LayerProvider, fetch_ogc_items, fetch_wms_feature_info

logger = logging.getLogger(__name__)

PT_CADASTRE_COLLECTION = "cadastro"
PT_CADASTRE_LIMIT = 20

ES_BBOX_DELTA_DEG = 0.001
ES_REFERENCE_RE = re.compile(r"Referencia catastral[:\s]+([A-Z0-9]+)", re.IGNORECASE)
ES_AREA_RE = re.compile(r"Superficie[:\s]+([\d.,]+)", re.IGNORECASE)


def select_parcel(features: list[dict], lng: float, lat: float) -> tuple[dict | None, bool, float | None]:
    """Pick the parcel containing the point, else the one whose centroid is nearest.

    Returns (feature, contains_point, distance_m).
    """
    best = None
    best_distance = None
    for feature in features:
        if point_in_feature(lng, lat, feature.get("geometry")):
            return feature, True, 0.0
        centre = ring_vertex_average(feature.get("geometry"))
        if centre is None:
            continue
        distance = haversine_m(lat, lng, centre[1], centre[0])
        if best_distance is None or distance < best_distance:
            best, best_distance = feature, distance
    return best, False, best_distance


class PortugalCadastreProvider(LayerProvider):
    """Cadastro Predial parcels within ~100 m of the point."""

    layer_id = "pt-cadastro"
    layer_name = "Cadastro Predial"
    category = "cadastre"

    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        lat, lng = query.point.lat, query.point.lng
        bbox = bbox_around_point(lng, lat, 100)
        features = await fetch_ogc_items(client, PT_CADASTRE_COLLECTION, bbox, limit=PT_CADASTRE_LIMIT)
        if not features:
            return None

        feature, contains, distance = select_parcel(features, lng, lat)
        if feature is None:
            logger.info("No usable cadastral parcel near %.6f,%.6f", lat, lng)
            return None

        props = feature.get("properties") or {}
        centre = ring_vertex_average(feature.get("geometry"))
        return {
            "parcel_reference": props.get("nationalcadastralreference"),
            "inspire_id": props.get("inspireid"),
            "label": props.get("label"),
            "area_m2": props.get("areavalue"),
            "municipality_code": props.get("administrativeunit"),
            "valid_from": props.get("beginlifespanversion"),
            "geometry": feature.get("geometry"),
            "centroid": list(centre) if centre else None,
            "contains_point": contains,
            "distance_meters": round(distance) if distance is not None else None,
            "source": "DGT Cadastro Predial (OGC API)",
        }


def _parse_spanish_number(raw: str) -> float | None:
    """'1.234,5' -> 1234.5; '850' -> 850.0."""
    if "," in raw:
        raw = raw.replace(".", "").replace(",", ".")
    try:
        return float(raw)
    except ValueError:
        return None


def parse_catastro_text(text: str) -> dict | None:
    """Parse the Catastro plain-text GetFeatureInfo reply. None when no parcel is there."""
    if "error" in text.lower() or "Parcela" not in text:
        return None

    ref_match = ES_REFERENCE_RE.search(text)
    area_match = ES_AREA_RE.search(text)

    return {
        "parcel_reference": ref_match.group(1) if ref_match else None,
        "area_m2": _parse_spanish_number(area_match.group(1)) if area_match else None,
        "raw_response": text[:500],
        "source": "Dirección General del Catastro (WMS)",
    }


class SpainCadastreProvider(LayerProvider):
    """Spanish Catastro parcel under the point."""

    layer_id = "es-cadastro"
    layer_name = "Catastro"
    category = "cadastre"
    timeout = 10.0

    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        lat, lng = query.point.lat, query.point.lng
        bbox = BoundingBox(
            min_lng=lng - ES_BBOX_DELTA_DEG,
            min_lat=lat - ES_BBOX_DELTA_DEG,
            max_lng=lng + ES_BBOX_DELTA_DEG,
            max_lat=lat + ES_BBOX_DELTA_DEG,
        )
        resp = await fetch_wms_feature_info(
            client, settings.spain_catastro_wms_url, "Catastro", bbox, info_format="text/plain",
        )
        return parse_catastro_text(resp.text)
