"""Distance to the nearest coast, beach, airport, town, transport stop and shops.

A single Overpass query collects every candidate within 10 km; elements are
bucketed by their OSM tags and the nearest vertex of each bucket is reported.
Overpass mirrors are tried in order until one answers.
"""

import logging

import httpx

from plotlayers.config import settings
from plotlayers.core.errors import ProviderSchemaMismatch
from plotlayers.core.types import LayerQuery
from plotlayers.geometry import haversine_m
from plotlayers.providers.base import LayerProvider, json_body

logger = logging.getLogger(__name__)

SEARCH_RADIUS_M = 10000

CATEGORIES = (
    "coastline",
    "beach",
    "airport",
    "nearest_main_town",
    "public_transport",
    "supermarket",
    "convenience_store",
    "restaurant_or_fastfood",
    "cafe",
)


def build_overpass_query(lat: float, lng: float, radius: int = SEARCH_RADIUS_M) -> str:
    around = f"(around:{radius},{lat},{lng})"
    return f"""
[out:json][timeout:60];
(
  way{around}["natural"="coastline"];
  way{around}["natural"="beach"];
  node{around}["natural"="beach"];
  way{around}["aeroway"~"^(aerodrome|terminal)$"];
  node{around}["aeroway"~"^(aerodrome|terminal)$"];
  node{around}["place"~"^(town|city)$"];
  node{around}["highway"="bus_stop"];
  node{around}["public_transport"="platform"]["bus"="yes"];
  node{around}["public_transport"="platform"]["train"="yes"];
  node{around}["railway"="station"];
  node{around}["amenity"="bus_station"];
  node{around}["shop"="supermarket"];
  way{around}["shop"="supermarket"];
  node{around}["shop"="convenience"];
  way{around}["shop"="convenience"];
  node{around}["amenity"~"^(restaurant|fast_food)$"];
  way{around}["amenity"~"^(restaurant|fast_food)$"];
  node{around}["amenity"="cafe"];
  way{around}["amenity"="cafe"];
);
out geom;
"""


def categorize_element(tags: dict) -> str | None:
    """Bucket an OSM element by its tags. First matching rule wins."""
    if tags.get("natural") == "coastline":
        return "coastline"
    if tags.get("natural") == "beach":
        return "beach"
    if tags.get("aeroway"):
        return "airport"
    if tags.get("place") in ("town", "city"):
        return "nearest_main_town"
    if (
        tags.get("highway") == "bus_stop"
        or tags.get("railway") == "station"
        or tags.get("amenity") == "bus_station"
        or tags.get("public_transport")
    ):
        return "public_transport"
    if tags.get("shop") == "supermarket":
        return "supermarket"
    if tags.get("shop") == "convenience":
        return "convenience_store"
    if tags.get("amenity") in ("restaurant", "fast_food"):
        return "restaurant_or_fastfood"
    if tags.get("amenity") == "cafe":
        return "cafe"
    return None


def feature_type(tags: dict) -> str:
    """Human-readable OSM feature type for the nearest-point summary."""
    for key in ("natural", "aeroway", "place", "shop"):
        if tags.get(key):
            return tags[key]
    if tags.get("highway") == "bus_stop":
        return "bus_stop"
    if tags.get("railway") == "station":
        return "train_station"
    if tags.get("amenity"):
        return tags["amenity"]
    if tags.get("public_transport"):
        return "train_platform" if tags.get("train") == "yes" else "bus_stop"
    return "unknown"


def _element_points(element: dict) -> list[tuple[float, float]]:
    if element.get("type") == "node" and "lat" in element and "lon" in element:
        return [(element["lat"], element["lon"])]
    if element.get("type") == "way":
        points = element.get("geometry") or []
        return [(p["lat"], p["lon"]) for p in points if isinstance(p, dict) and "lat" in p and "lon" in p]
    return []


def nearest_by_category(elements: list[dict], lat: float, lng: float) -> dict:
    """Distance in metres to the nearest element of each category (None when absent)."""
    summary: dict = {name: {"distance_m": None} for name in CATEGORIES}

    for element in elements:
        tags = element.get("tags")
        if not isinstance(tags, dict):
            continue
        category = categorize_element(tags)
        if category is None:
            continue
        for p_lat, p_lng in _element_points(element):
            distance = haversine_m(lat, lng, p_lat, p_lng)
            current = summary[category]["distance_m"]
            if current is None or distance < current:
                summary[category] = {
                    "distance_m": round(distance),
                    "nearest_point": {
                        "lat": p_lat,
                        "lon": p_lng,
                        "name": tags.get("name"),
                        "type": feature_type(tags),
                    },
                }
    return summary


class AmenitiesProvider(LayerProvider):
    layer_id = "amenities"
    layer_name = "Nearby Amenities"
    category = "amenities"
    timeout = 30.0

    async def _query_overpass(self, client: httpx.AsyncClient, query: str) -> dict:
        last_error: Exception | None = None
        for endpoint in settings.overpass_endpoints:
            try:
                resp = await client.post(endpoint, data={"data": query})
                resp.raise_for_status()
                return json_body(resp)
            except httpx.HTTPError as e:
                logger.warning("Overpass mirror %s failed: %s", endpoint, e)
                last_error = e
        if last_error is None:
            raise ValueError("no Overpass endpoints configured")
        raise last_error

    async def _fetch(self, query: LayerQuery, client: httpx.AsyncClient) -> dict | None:
        lat, lng = query.point.lat, query.point.lng
        body = await self._query_overpass(client, build_overpass_query(lat, lng))
        elements = body.get("elements") or []
        if not isinstance(elements, list):
            raise ProviderSchemaMismatch("'elements' is not a list")
        elements = [e for e in elements if isinstance(e, dict)]
        if not elements:
            return None

        summary = nearest_by_category(elements, lat, lng)
        summary["radius_m"] = SEARCH_RADIUS_M
        summary["source"] = "OpenStreetMap Overpass"
        return summary
