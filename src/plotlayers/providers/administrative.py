"""Administrative boundary layers.

The global layer answers anywhere via Nominatim. The Portuguese layers come
from DGT: districts through the CAOP WMS, municipalities, parishes and NUTS
III regions through the OGC API collections.
"""

import logging
from typing import Callable

import httpx

from plotlayers.config import settings
from plotlayers.core.types import LayerQuery
from plotlayers.geometry import bbox_around_point, buffer_meters
from plotlayers.providers.base import LayerProvider, fetch_ogc_items, fetch_wms_features, first_present
from plotlayers.retrieval.geocode import reverse_geocode

logger = logging.getLogger(__name__)


class AdministrativeBoundaryProvider(LayerProvider):
    """Municipality/district/country for any point on earth."""

    layer_id = "admin-boundary"
    layer_name = "Administrative Boundary"
    category = "administrative"

    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        result = await reverse_geocode(query.point.lat, query.point.lng, client=client)
        if not result or not (result.get("municipality") or result.get("country_code")):
            return None
        return {**result, "source": "OpenStreetMap Nominatim"}


class OGCCollectionProvider(LayerProvider):
    """A DGT OGC API collection queried with a bbox around the point.

    Point queries return the first feature's mapped properties. Area queries
    fetch up to 100 features and, when several match, return them all.
    """

    category = "administrative"
    supports_bbox = True

    def __init__(
        self,
        layer_id: str,
        layer_name: str,
        collection: str,
        mapper: Callable[[dict], dict] | None = None,
    ):
        self.layer_id = layer_id
        self.layer_name = layer_name
        self.collection = collection
        self.mapper = mapper

    def _map(self, props: dict) -> dict:
        return self.mapper(props) if self.mapper else dict(props)

    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        is_area = bool(query.area_m2)
        bbox = bbox_around_point(query.point.lng, query.point.lat, buffer_meters(query.area_m2))
        features = await fetch_ogc_items(client, self.collection, bbox, limit=100 if is_area else 1)
        if not features:
            return None

        if is_area and len(features) > 1:
            return {
                "count": len(features),
                "features": [self._map(f.get("properties") or {}) for f in features],
            }
        return self._map(features[0].get("properties") or {})


def _municipality_props(props: dict) -> dict:
    return {
        "municipio": props.get("municipio"),
        "distrito": props.get("distrito_ilha"),
        "nuts1": props.get("nuts1"),
        "nuts2": props.get("nuts2"),
        "nuts3": props.get("nuts3"),
        "area_ha": props.get("area_ha"),
        "n_freguesias": props.get("n_freguesias"),
    }


def _parish_props(props: dict) -> dict:
    return {
        "freguesia": props.get("freguesia"),
        "municipio": props.get("municipio"),
        "distrito": props.get("distrito_ilha"),
        "area_ha": props.get("area_ha"),
    }


def _nuts3_props(props: dict) -> dict:
    return {
        "nuts3": props.get("nuts3"),
        "nuts2": props.get("nuts2"),
        "nuts1": props.get("nuts1"),
    }


def municipality_provider() -> OGCCollectionProvider:
    return OGCCollectionProvider("pt-municipio", "Município (CAOP)", "municipios", _municipality_props)


def parish_provider() -> OGCCollectionProvider:
    return OGCCollectionProvider("pt-freguesia", "Freguesia", "freguesias", _parish_props)


def nuts3_provider() -> OGCCollectionProvider:
    return OGCCollectionProvider("pt-nuts3", "NUTS III", "nuts3", _nuts3_props)


class DistrictProvider(LayerProvider):
    """Portuguese district from the CAOP WMS."""

    layer_id = "pt-distrito"
    layer_name = "Distrito"
    category = "administrative"
    supports_bbox = True

    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        bbox = bbox_around_point(query.point.lng, query.point.lat, buffer_meters(query.area_m2))
        url = f"{settings.dgt_wms_base.rstrip('/')}/caop_continente/wms"
        features = await fetch_wms_features(client, url, "cont_distritos", bbox)
        if not features:
            return None
        props = features[0].get("properties") or {}
        return {
            "distrito": first_present(props, "Distrito", "distrito", "DISTRITO"),
            "source": "CAOP WMS",
        }
