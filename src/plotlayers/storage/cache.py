"""Permanent read-through cache for expensive derived artifacts.

The artifact (LLM-extracted general zoning rules) depends only on the
municipality's planning document, so it never expires. It is recomputed
only after invalidate(), i.e. when the source document changed. Concurrent
recomputations of the same entity are last-write-wins.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from plotlayers.core.types import CachedArtifact
from plotlayers.observability.tracing import start_span
from plotlayers.storage.models import Regulation

logger = logging.getLogger(__name__)


class ArtifactStore(Protocol):
    """Durable storage behind a ResultCache."""

    async def read(self, entity_id: str) -> CachedArtifact | None:
        """The stored artifact, or None when missing or marked stale."""

    async def load_source(self, entity_id: str) -> str | None:
        """The source document the artifact is derived from."""

    async def write(self, entity_id: str, artifact: dict, cached_at: datetime) -> None:
        ...

    async def mark_stale(self, entity_id: str) -> bool:
        """Flag the artifact for recomputation. False when the entity is unknown."""


class ResultCache:
    def __init__(self, store: ArtifactStore, compute: Callable[[str], Awaitable[dict]]):
        self.store = store
        self.compute = compute

    async def get_or_compute(self, entity_id: str) -> CachedArtifact | None:
        """Cached artifact if present, otherwise recompute from the source and store it.

        Returns None when the entity has no source document to derive from.
        """
        with start_span(name="result_cache", span_type="RETRIEVER") as span:
            span.set_inputs({"entity_id": entity_id})

            cached = await self.store.read(entity_id)
            if cached is not None:
                logger.info("Result cache hit for %s", entity_id)
                span.set_outputs({"hit": True})
                cached.hit = True
                return cached

            source = await self.store.load_source(entity_id)
            if not source:
                logger.info("No source document for %s, nothing to derive", entity_id)
                span.set_outputs({"hit": False, "source": False})
                return None

            logger.info("Result cache miss for %s, recomputing", entity_id)
            artifact = await self.compute(source)
            cached_at = datetime.now(timezone.utc)
            await self.store.write(entity_id, artifact, cached_at)
            span.set_outputs({"hit": False, "source": True})
            return CachedArtifact(source_entity_id=entity_id, artifact=artifact, cached_at=cached_at)

    async def invalidate(self, entity_id: str) -> bool:
        """Signal that the source document changed. The next read recomputes."""
        invalidated = await self.store.mark_stale(entity_id)
        if invalidated:
            logger.info("Invalidated cached artifact for %s", entity_id)
        return invalidated


class SqlZoningRulesStore:
    """Zoning rules cached on the municipality's regulations row."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _regulation(self, entity_id: str) -> Regulation | None:
        result = await self.session.execute(
            select(Regulation).where(Regulation.municipality_id == int(entity_id)).limit(1)
        )
        return result.scalars().first()

    async def read(self, entity_id: str) -> CachedArtifact | None:
        regulation = await self._regulation(entity_id)
        if regulation is None or regulation.cached_zoning_rules is None or regulation.zoning_rules_stale:
            return None
        return CachedArtifact(
            source_entity_id=entity_id,
            artifact=regulation.cached_zoning_rules,
            cached_at=regulation.zoning_rules_cached_at,
        )

    async def load_source(self, entity_id: str) -> str | None:
        regulation = await self._regulation(entity_id)
        return regulation.summary if regulation else None

    async def write(self, entity_id: str, artifact: dict, cached_at: datetime) -> None:
        await self.session.execute(
            update(Regulation)
            .where(Regulation.municipality_id == int(entity_id))
            .values(cached_zoning_rules=artifact, zoning_rules_cached_at=cached_at, zoning_rules_stale=False)
        )
        await self.session.commit()

    async def mark_stale(self, entity_id: str) -> bool:
        result = await self.session.execute(
            update(Regulation)
            .where(Regulation.municipality_id == int(entity_id))
            .values(zoning_rules_stale=True)
        )
        await self.session.commit()
        return result.rowcount > 0
