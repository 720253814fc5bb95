"""Nominatim reverse geocoding: coordinate to municipality, district and country.

Used by the orchestrator when a request carries no country, and by the
global administrative-boundary layer. Results are cached in memory for an
hour, keyed by the coordinate rounded to ~1 m.
"""

import hashlib
import logging
import time

import httpx

from plotlayers.config import settings
from plotlayers.observability.tracing import trace

logger = logging.getLogger(__name__)

# In-memory reverse geocode cache: 1hr TTL, SHA256 key
_reverse_cache: dict[str, tuple[dict | None, float]] = {}
REVERSE_CACHE_TTL = 3600


def _cache_key(lat: float, lng: float) -> str:
    normalized = f"{lat:.5f},{lng:.5f}"
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]


def clear_cache() -> None:
    _reverse_cache.clear()


def parse_reverse_result(data: dict) -> dict | None:
    """Pull municipality, district and ISO country code out of a Nominatim reply."""
    address = data.get("address")
    if not isinstance(address, dict):
        return None

    municipality = (
        address.get("city") or address.get("town") or address.get("village")
        or address.get("municipality") or address.get("county")
    )
    district = address.get("state") or address.get("county")
    country_code = (address.get("country_code") or "").upper() or None

    return {
        "municipality": municipality,
        "district": district,
        "country": address.get("country"),
        "country_code": country_code,
        "display_name": data.get("display_name"),
    }


@trace(name="reverse_geocode", span_type="TOOL")
async def reverse_geocode(lat: float, lng: float, client: httpx.AsyncClient | None = None) -> dict | None:
    """Reverse geocode a coordinate.

    Returns:
        Dict with keys: municipality, district, country, country_code, display_name
        or None when Nominatim has no address for the location.

    Raises:
        httpx.HTTPError on transport or HTTP failures; callers decide whether
        that is fatal.
    """
    key = _cache_key(lat, lng)
    if key in _reverse_cache:
        cached_result, cached_time = _reverse_cache[key]
        if time.monotonic() - cached_time < REVERSE_CACHE_TTL:
            logger.info("Reverse geocode cache hit for %.5f,%.5f", lat, lng)
            return cached_result

    params = {
        "format": "json",
        "lat": lat,
        "lon": lng,
        "addressdetails": 1,
        "zoom": 10,
    }
    headers = {"User-Agent": settings.user_agent, "Accept-Language": "en"}

    if client is None:
        async with httpx.AsyncClient(timeout=15.0) as own_client:
            resp = await own_client.get(settings.nominatim_url, params=params, headers=headers)
    else:
        resp = await client.get(settings.nominatim_url, params=params, headers=headers)
    resp.raise_for_status()

    result = parse_reverse_result(resp.json())
    if result is None:
        logger.warning("No reverse geocoding result for %.5f,%.5f", lat, lng)
    else:
        logger.info(
            "Reverse geocoded %.5f,%.5f -> %s (%s)", lat, lng,
            result["municipality"], result["country_code"],
            extra={"municipality": result["municipality"], "country": result["country_code"]},
        )

    _reverse_cache[key] = (result, time.monotonic())
    return result
