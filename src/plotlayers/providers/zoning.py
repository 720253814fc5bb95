"""CRUS zoning classification for Portuguese municipalities.

Four stages, each of which can end the lookup with found=False:
municipality under the point → CRUS collection for it → best zoning
feature near the point → label from the first populated candidate field.
"""

import logging

import httpx

from plotlayers.core.types import LabelMatch, LayerQuery
from plotlayers.geometry import bbox_around_point, point_in_feature
from plotlayers.providers.base import LayerProvider, fetch_ogc_items
from plotlayers.providers.resolver import CollectionResolver, get_resolver

logger = logging.getLogger(__name__)

MUNICIPALITY_COLLECTION = "municipios"
MUNICIPALITY_BUFFER_M = 200
MUNICIPALITY_LIMIT = 5
FEATURE_BUFFER_M = 100
FEATURE_LIMIT = 20

MUNICIPALITY_NAME_KEYS = ("municipio", "MUNICIPIO", "NOME", "nome")

# Field names differ between dataset vintages; earlier entries win
LABEL_CANDIDATES = (
    "Designacao",
    "designacao",
    "Categoria_",
    "categoria",
    "Classe_202",
    "classe_202",
    "classe",
    "classe_solo",
    "qualificacao",
    "uso",
    "uso_solo",
    "categoria_",
    "classe1",
    "desc_class",
)

POLYGON_TYPES = ("Polygon", "MultiPolygon")


def municipality_name(props: dict) -> str | None:
    for key in MUNICIPALITY_NAME_KEYS:
        val = props.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return None


def pick_containing_or_first(features: list[dict], lng: float, lat: float) -> dict | None:
    if not features:
        return None
    for feature in features:
        if point_in_feature(lng, lat, feature.get("geometry")):
            return feature
    return features[0]


def pick_best_zoning_feature(features: list[dict], lng: float, lat: float) -> dict | None:
    """Polygon containing the point → first polygon → first feature."""
    if not features:
        return None
    polygons = [f for f in features if (f.get("geometry") or {}).get("type") in POLYGON_TYPES]
    for feature in polygons:
        if point_in_feature(lng, lat, feature.get("geometry")):
            return feature
    if polygons:
        return polygons[0]
    return features[0]


def extract_label(props: dict, candidates: tuple[str, ...] = LABEL_CANDIDATES) -> LabelMatch | None:
    for key in candidates:
        val = props.get(key)
        if isinstance(val, str) and val.strip():
            return LabelMatch(value=val.strip(), picked_field=key)
    return None


async def municipality_at(client: httpx.AsyncClient, lng: float, lat: float) -> dict | None:
    """Properties of the CAOP municipality containing the point, else the nearest one returned."""
    bbox = bbox_around_point(lng, lat, MUNICIPALITY_BUFFER_M)
    features = await fetch_ogc_items(client, MUNICIPALITY_COLLECTION, bbox, limit=MUNICIPALITY_LIMIT)
    feature = pick_containing_or_first(features, lng, lat)
    if feature is None:
        return None
    return feature.get("properties") or {}


class CRUSZoningProvider(LayerProvider):
    layer_id = "pt-crus"
    layer_name = "CRUS Zoning"
    category = "zoning"
    timeout = 30.0

    def __init__(self, resolver: CollectionResolver | None = None):
        self._resolver = resolver

    @property
    def resolver(self) -> CollectionResolver:
        return self._resolver or get_resolver()

    async def find_municipality(self, client: httpx.AsyncClient, lng: float, lat: float) -> str | None:
        props = await municipality_at(client, lng, lat)
        if props is None:
            return None
        return municipality_name(props)

    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        lat, lng = query.point.lat, query.point.lng

        municipality = await self.find_municipality(client, lng, lat)
        if not municipality:
            logger.info("No municipality found at %.6f,%.6f", lat, lng)
            return None

        collection_id = await self.resolver.resolve(municipality, client)
        if not collection_id:
            return None

        bbox = bbox_around_point(lng, lat, FEATURE_BUFFER_M)
        features = await fetch_ogc_items(client, collection_id, bbox, limit=FEATURE_LIMIT)
        feature = pick_best_zoning_feature(features, lng, lat)
        if feature is None:
            return None

        props = feature.get("properties") or {}
        label = extract_label(props)
        if label is None:
            logger.info(
                "CRUS feature in %s has no label field", collection_id,
                extra={"municipality": municipality},
            )
            return None

        return {
            "label": label.value,
            "picked_field": label.picked_field,
            "municipality": municipality,
            "collection_id": collection_id,
            "feature_id": feature.get("id"),
            "feature_count": len(features),
            "properties": props,
            "source": "DGT CRUS (OGC API)",
        }
