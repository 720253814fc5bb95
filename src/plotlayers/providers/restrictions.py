"""Municipal land restrictions for Portugal: REN and RAN.

Neither reserve has a national query service. Each municipality that
publishes them does so on its own ArcGIS server, recorded against the
municipality in the database. A lookup therefore runs in three steps:
CAOP municipality under the point → stored municipality record →
ArcGIS `identify` on that municipality's service.
"""

import json
import logging
from typing import Awaitable, Callable

import httpx
from sqlalchemy.exc import SQLAlchemyError

from plotlayers.core.errors import ProviderSchemaMismatch, ProviderUnavailable
from plotlayers.core.types import LayerQuery, MunicipalityRecord
from plotlayers.providers.base import LayerProvider, first_present, json_body
from plotlayers.providers.zoning import municipality_at, municipality_name

logger = logging.getLogger(__name__)

IDENTIFY_DELTA_DEG = 0.0005  # ~50 m
IDENTIFY_LAYERS = "all:0,1,2,3,4,5,6,7,8,9,10"
CAOP_CODE_KEYS = ("dtmn", "DTMN", "dicofre", "DICOFRE")

MunicipalityLookup = Callable[[str | None, str | None], Awaitable[MunicipalityRecord | None]]


async def lookup_municipality(name: str | None, caop_id: str | None) -> MunicipalityRecord | None:
    """Stored record for a Portuguese municipality, by name then CAOP code."""
    # storage.db imports the router, which imports this module
    from plotlayers.storage.db import find_portugal_municipality, get_session

    session = await get_session()
    try:
        return await find_portugal_municipality(session, name, caop_id)
    except (SQLAlchemyError, OSError) as e:
        raise ProviderUnavailable(f"municipality database unavailable: {type(e).__name__}") from e
    finally:
        await session.close()


async def find_municipality_record(
    client: httpx.AsyncClient,
    lookup: MunicipalityLookup,
    lng: float,
    lat: float,
) -> MunicipalityRecord | None:
    props = await municipality_at(client, lng, lat)
    if props is None:
        return None
    name = municipality_name(props)
    caop_id = first_present(props, *CAOP_CODE_KEYS)
    if not name and not caop_id:
        return None
    return await lookup(name, str(caop_id) if caop_id is not None else None)


async def identify(client: httpx.AsyncClient, service_url: str, lng: float, lat: float) -> dict | None:
    """First feature an ArcGIS MapServer reports around the point, across layers 0-10."""
    d = IDENTIFY_DELTA_DEG
    extent = f"{lng - d},{lat - d},{lng + d},{lat + d}"
    geometry = {
        "xmin": lng - d,
        "ymin": lat - d,
        "xmax": lng + d,
        "ymax": lat + d,
        "spatialReference": {"wkid": 4326},
    }
    resp = await client.get(
        f"{service_url.rstrip('/')}/identify",
        params={
            "f": "json",
            "geometry": json.dumps(geometry),
            "geometryType": "esriGeometryEnvelope",
            "sr": "4326",
            "layers": IDENTIFY_LAYERS,
            "tolerance": "5",
            "mapExtent": extent,
            "imageDisplay": "256,256,96",
            "returnGeometry": "false",
            "returnFieldName": "true",
            "returnUnformattedValues": "true",
        },
    )
    resp.raise_for_status()
    body = json_body(resp)

    # ArcGIS reports failures in a 200 body
    if isinstance(body.get("error"), dict):
        raise ProviderUnavailable(f"ArcGIS error: {body['error'].get('message', 'unknown')}")

    results = body.get("results") or []
    if not isinstance(results, list):
        raise ProviderSchemaMismatch("'results' is not a list")
    results = [r for r in results if isinstance(r, dict)]
    if not results:
        return None
    return results[0]


class _MunicipalityAwareProvider(LayerProvider):
    def __init__(self, lookup: MunicipalityLookup | None = None):
        self._lookup = lookup

    @property
    def lookup(self) -> MunicipalityLookup:
        return self._lookup or lookup_municipality


class MunicipalityRecordProvider(_MunicipalityAwareProvider):
    """Which municipal GIS services exist for the municipality under the point."""

    layer_id = "pt-municipality-db"
    layer_name = "Município (Database)"
    category = "administrative"

    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        record = await find_municipality_record(client, self.lookup, query.point.lng, query.point.lat)
        if record is None:
            return None
        return {
            "name": record.name,
            "caop_id": record.caop_id,
            "has_ren_service": bool(record.ren_service_url),
            "has_ran_service": bool(record.ran_service_url),
            "gis_verified": record.gis_verified,
        }


class MunicipalRestrictionProvider(_MunicipalityAwareProvider):
    """REN or RAN from the municipality's own ArcGIS service.

    A missing municipality record, an unverified record or a record without
    the service URL all end as found=False with the reason as the error.
    """

    category = "zoning"

    def __init__(
        self,
        layer_id: str,
        layer_name: str,
        reserve: str,
        service_field: str,
        lookup: MunicipalityLookup | None = None,
    ):
        super().__init__(lookup)
        self.layer_id = layer_id
        self.layer_name = layer_name
        self.reserve = reserve
        self.service_field = service_field

    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        lat, lng = query.point.lat, query.point.lng
        record = await find_municipality_record(client, self.lookup, lng, lat)
        if record is None:
            raise ProviderUnavailable("Municipality not identified")

        service_url = getattr(record, self.service_field)
        if not record.gis_verified or not service_url:
            raise ProviderUnavailable(f"No {self.reserve} service available for {record.name}")

        result = await identify(client, service_url, lng, lat)
        if result is None:
            logger.info(
                "No %s feature at %.6f,%.6f", self.reserve, lat, lng,
                extra={"municipality": record.name},
            )
            return None

        return {
            "source_layer": result.get("layerName"),
            "attributes": result.get("attributes") or {},
            "municipality": record.name,
            "service_url": service_url,
            "source": f"{self.reserve} - {record.name}",
        }


def ren_provider(lookup: MunicipalityLookup | None = None) -> MunicipalRestrictionProvider:
    return MunicipalRestrictionProvider("pt-ren", "Reserva Ecológica Nacional", "REN", "ren_service_url", lookup)


def ran_provider(lookup: MunicipalityLookup | None = None) -> MunicipalRestrictionProvider:
    return MunicipalRestrictionProvider("pt-ran", "Reserva Agrícola Nacional", "RAN", "ran_service_url", lookup)
