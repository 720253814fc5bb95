"""Geometry kernel: degree/metre conversion, bounding boxes, polygon centroid and area.

Everything here works in WGS84 degrees with a flat-earth approximation of
111,320 m per degree, which is accurate enough for parcel-sized shapes.
Functions never raise on malformed polygons; they return best-effort values
from whatever numeric vertices are present.
"""

import logging
import math

from shapely.geometry import Point, shape

from plotlayers.core.types import BoundingBox, Coordinate

logger = logging.getLogger(__name__)

METERS_PER_DEGREE = 111320.0
EARTH_RADIUS_M = 6371000.0


def meters_to_degrees(lat: float, meters: float) -> tuple[float, float]:
    """Convert a distance in metres to (d_lat, d_lng) degrees at latitude `lat`.

    d_lng diverges near the poles; callers must not pass |lat| close to 90.
    """
    d_lat = meters / METERS_PER_DEGREE
    d_lng = meters / (METERS_PER_DEGREE * math.cos(math.radians(lat)))
    return d_lat, d_lng


def bbox_around_point(lng: float, lat: float, meters: float) -> BoundingBox:
    """Symmetric box of half-width `meters` centred on the point."""
    d_lat, d_lng = meters_to_degrees(lat, meters)
    return BoundingBox(
        min_lng=lng - d_lng,
        min_lat=lat - d_lat,
        max_lng=lng + d_lng,
        max_lat=lat + d_lat,
    )


def bbox_for_area(lat: float, lng: float, area_m2: float) -> BoundingBox:
    """Square box of `area_m2` centred on the point."""
    return bbox_around_point(lng, lat, math.sqrt(area_m2) / 2)


def buffer_meters(area_m2: float | None, default: float = 100.0) -> float:
    """Half-width used by area-aware providers: half the square's side, else `default`."""
    if area_m2 and area_m2 > 0:
        return math.sqrt(area_m2) / 2
    return default


def _numeric_pair(vertex) -> tuple[float, float] | None:
    try:
        x, y = vertex[0], vertex[1]
    except (TypeError, IndexError, KeyError):
        return None
    if isinstance(x, bool) or isinstance(y, bool):
        return None
    if not isinstance(x, (int, float)) or not isinstance(y, (int, float)):
        return None
    if math.isnan(x) or math.isnan(y):
        return None
    return float(x), float(y)


def open_ring(polygon: dict | None) -> list[tuple[float, float]]:
    """Outer ring as (lng, lat) pairs, closing duplicate and non-numeric vertices removed."""
    try:
        raw = polygon["coordinates"][0]
    except (TypeError, KeyError, IndexError):
        return []
    if not isinstance(raw, (list, tuple)):
        return []

    ring = [p for p in (_numeric_pair(v) for v in raw) if p is not None]
    if len(ring) > 1 and ring[0] == ring[-1]:
        ring = ring[:-1]
    return ring


def distinct_vertex_count(polygon: dict | None) -> int:
    return len(set(open_ring(polygon)))


def bbox_of_ring(ring: list[tuple[float, float]]) -> BoundingBox | None:
    """Bounding box from vertex extrema."""
    if not ring:
        return None
    lngs = [p[0] for p in ring]
    lats = [p[1] for p in ring]
    return BoundingBox(min_lng=min(lngs), min_lat=min(lats), max_lng=max(lngs), max_lat=max(lats))


def polygon_centroid(polygon: dict | None) -> Coordinate | None:
    """Vertex-average centroid of the outer ring.

    Not area-weighted: for a strongly non-convex parcel the result can fall
    outside the shape.
    """
    ring = open_ring(polygon)
    if not ring:
        return None
    lng = sum(p[0] for p in ring) / len(ring)
    lat = sum(p[1] for p in ring) / len(ring)
    return Coordinate(lat=lat, lng=lng)


def polygon_area_m2(polygon: dict | None, center_lat: float) -> float:
    """Approximate area in m²: Shoelace in degree space scaled at `center_lat`."""
    ring = open_ring(polygon)
    n = len(ring)
    if n < 3:
        return 0.0

    twice_area = 0.0
    for i in range(n):
        x1, y1 = ring[i]
        x2, y2 = ring[(i + 1) % n]
        twice_area += x1 * y2 - x2 * y1

    area_deg = abs(twice_area) / 2
    return area_deg * METERS_PER_DEGREE * (METERS_PER_DEGREE * math.cos(math.radians(center_lat)))


def point_in_feature(lng: float, lat: float, geometry: dict | None) -> bool:
    """True when the GeoJSON geometry covers the point. Geometry errors count as False."""
    if not geometry:
        return False
    try:
        return bool(shape(geometry).covers(Point(lng, lat)))
    except Exception as e:
        logger.debug("Point-in-polygon failed for %s: %s", geometry.get("type"), e)
        return False


def ring_vertex_average(geometry: dict | None) -> tuple[float, float] | None:
    """(lng, lat) vertex average of a Polygon or the first part of a MultiPolygon."""
    if not geometry:
        return None
    gtype = geometry.get("type")
    coords = geometry.get("coordinates")
    if gtype == "MultiPolygon" and coords:
        return ring_vertex_average({"type": "Polygon", "coordinates": coords[0]})
    if gtype != "Polygon":
        return None
    centroid = polygon_centroid(geometry)
    return (centroid.lng, centroid.lat) if centroid else None


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in metres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
