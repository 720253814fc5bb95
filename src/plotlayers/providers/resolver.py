"""Municipality name → CRUS dataset id resolution against the DGT OGC catalog.

The catalog (`/collections`) is fetched once per resolver and reused; each
normalized municipality name is resolved once and the outcome, including
"no match", is remembered for the life of the process. Both caches are
plain dicts written once per key on the event loop, so a race only costs a
redundant lookup.
"""

import asyncio
import logging
import re
import unicodedata

import httpx

from plotlayers.config import settings
from plotlayers.core.errors import ProviderSchemaMismatch

logger = logging.getLogger(__name__)

CRUS_PREFIX = "crus_"
NATIONAL_FALLBACKS = ("crus_portugal", "crus_continente", "crus")

_MISS = object()


def normalize_municipality_name(name: str) -> str:
    """'Vila Nova de Gaia' -> 'vila_nova_de_gaia'; 'Águeda' -> 'agueda'."""
    decomposed = unicodedata.normalize("NFD", name)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r"[^a-z0-9]+", "_", stripped.lower()).strip("_")


def match_collection(normalized: str, collection_ids: list[str]) -> str | None:
    """Search the catalog in priority order.

    exact crus_<name> → crus_* containing <name> → national fallbacks → any crus_*.
    Ids are compared lower-cased; the catalog's own spelling is returned.
    """
    lowered = [(cid.lower(), cid) for cid in collection_ids]

    if normalized:
        exact = f"{CRUS_PREFIX}{normalized}"
        for low, cid in lowered:
            if low == exact:
                return cid
        for low, cid in lowered:
            if low.startswith(CRUS_PREFIX) and normalized in low:
                return cid

    for fallback in NATIONAL_FALLBACKS:
        for low, cid in lowered:
            if low == fallback:
                return cid

    for low, cid in lowered:
        if low.startswith(CRUS_PREFIX):
            return cid
    return None


class CollectionResolver:
    """Owns the catalog cache and the name → collection id memo."""

    def __init__(self):
        self._catalog: list[str] | None = None
        self._resolved: dict[str, str | None] = {}
        self._lock: asyncio.Lock | None = None
        self.catalog_fetches = 0

    def _get_lock(self) -> asyncio.Lock:
        """Lazy-init the asyncio lock (must be created within an event loop)."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def clear(self) -> None:
        self._catalog = None
        self._resolved.clear()
        self._lock = None
        self.catalog_fetches = 0

    async def list_collections(self, client: httpx.AsyncClient) -> list[str]:
        """Collection ids in the OGC catalog. Fetched at most once; failures are not cached."""
        if self._catalog is not None:
            return self._catalog

        async with self._get_lock():
            if self._catalog is not None:
                return self._catalog

            url = f"{settings.dgt_ogc_base.rstrip('/')}/collections"
            self.catalog_fetches += 1
            resp = await client.get(url, params={"f": "json"})
            resp.raise_for_status()
            body = resp.json()
            collections = body.get("collections") if isinstance(body, dict) else None
            if not isinstance(collections, list):
                raise ProviderSchemaMismatch("OGC catalog has no 'collections' list")

            self._catalog = [c["id"] for c in collections if isinstance(c, dict) and isinstance(c.get("id"), str)]
            logger.info("Loaded OGC catalog: %d collections", len(self._catalog))
            return self._catalog

    async def resolve(self, municipality: str, client: httpx.AsyncClient) -> str | None:
        """Dataset id for a municipality, or None when the catalog has nothing usable."""
        normalized = normalize_municipality_name(municipality)
        cached = self._resolved.get(normalized, _MISS) if normalized else _MISS
        if cached is not _MISS:
            return cached

        collection_ids = await self.list_collections(client)
        collection_id = match_collection(normalized, collection_ids)
        if normalized:
            self._resolved[normalized] = collection_id

        logger.info(
            "Resolved CRUS collection for %s: %s", municipality, collection_id,
            extra={"municipality": municipality},
        )
        return collection_id


_resolver: CollectionResolver | None = None


def get_resolver() -> CollectionResolver:
    global _resolver
    if _resolver is None:
        _resolver = CollectionResolver()
    return _resolver


def clear_cache() -> None:
    """Forget the catalog and every resolved name. Useful for tests and forced refresh."""
    if _resolver is not None:
        _resolver.clear()
