"""Async database engine, session factory and the enrichment upsert.

Provides a single engine per process with lazy initialization.
All consumers go through get_session() for connection management.
"""

import logging

from sqlalchemy import func, literal, select, update
from sqlalchemy.dialects.postgresql import JSONB, insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from plotlayers.config import settings
from plotlayers.core.types import EnrichmentResponse, MunicipalityRecord, MunicipalityTarget
from plotlayers.pipeline.router import categorize_layer
from plotlayers.storage.models import Base, EnrichedPlot, Municipality

logger = logging.getLogger(__name__)

_engine = None
_session_factory = None


def _get_engine():
    global _engine
    if _engine is None:
        kwargs: dict = {"echo": False}
        connect_args: dict = {"timeout": 10}  # 10s connection timeout for asyncpg
        if settings.database_require_ssl:
            import ssl

            connect_args["ssl"] = ssl.create_default_context()
        kwargs["connect_args"] = connect_args
        _engine = create_async_engine(
            settings.database_url,
            pool_pre_ping=True,
            pool_recycle=300,
            **kwargs,
        )
    return _engine


async def init_db() -> None:
    """Create all tables if they don't exist."""
    engine = _get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized")


async def get_session() -> AsyncSession:
    """Get an async database session."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(_get_engine(), expire_on_commit=False)
    return _session_factory()


# ---------------------------------------------------------------------------
# Enrichment persistence
# ---------------------------------------------------------------------------

def enrichment_payload(response: EnrichmentResponse) -> dict:
    """Found layers grouped as {category: {layer_id: data}}, ready for a JSONB merge."""
    payload: dict[str, dict] = {}
    for layer in response.layers:
        if not layer.found:
            continue
        payload.setdefault(categorize_layer(layer.layer_id), {})[layer.layer_id] = layer.data
    payload["enriched_at"] = response.timestamp.isoformat()
    return payload


async def upsert_enrichment(session: AsyncSession, plot_id: str, response: EnrichmentResponse) -> None:
    """Insert the plot or merge the new payload into its existing enrichment_data.

    Top-level keys in the new payload replace the stored ones; other keys
    are kept (enrichment_data || new).
    """
    payload = enrichment_payload(response)
    stmt = insert(EnrichedPlot).values(
        id=plot_id,
        latitude=response.coordinate.lat,
        longitude=response.coordinate.lng,
        country=response.country,
        enrichment_data=payload,
    )
    merged = func.coalesce(EnrichedPlot.enrichment_data, literal({}, JSONB)).op("||")(
        stmt.excluded.enrichment_data
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[EnrichedPlot.id],
        set_={
            "latitude": stmt.excluded.latitude,
            "longitude": stmt.excluded.longitude,
            "country": stmt.excluded.country,
            "enrichment_data": merged,
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)
    await session.commit()
    logger.info("Persisted enrichment for plot %s", plot_id, extra={"country": response.country})


# ---------------------------------------------------------------------------
# Municipality website sweep
# ---------------------------------------------------------------------------

async def fetch_website_targets(
    session: AsyncSession,
    limit: int,
    municipality_ids: list[int] | None = None,
    force_refresh: bool = False,
) -> list[MunicipalityTarget]:
    """Municipalities to search for: explicit ids, or those without a website yet."""
    stmt = select(Municipality.id, Municipality.name, Municipality.district, Municipality.country)
    if municipality_ids:
        stmt = stmt.where(Municipality.id.in_(municipality_ids))
    else:
        if not force_refresh:
            stmt = stmt.where(Municipality.website.is_(None))
        stmt = stmt.limit(limit)
    stmt = stmt.order_by(Municipality.name)

    result = await session.execute(stmt)
    return [
        MunicipalityTarget(id=row.id, name=row.name, district=row.district, country=row.country)
        for row in result.all()
    ]


async def save_municipality_website(
    session: AsyncSession,
    municipality_id: int,
    website: str,
    source_urls: list[str],
) -> None:
    await session.execute(
        update(Municipality)
        .where(Municipality.id == municipality_id)
        .values(website=website, website_source_urls=source_urls, website_updated_at=func.now())
    )
    await session.commit()


# ---------------------------------------------------------------------------
# Municipality GIS services
# ---------------------------------------------------------------------------

def _record(row: Municipality) -> MunicipalityRecord:
    return MunicipalityRecord(
        id=row.id,
        name=row.name,
        caop_id=row.caop_id,
        district=row.district,
        gis_verified=bool(row.gis_verified),
        ren_service_url=row.ren_service_url,
        ran_service_url=row.ran_service_url,
    )


async def find_portugal_municipality(
    session: AsyncSession,
    name: str | None = None,
    caop_id: str | None = None,
) -> MunicipalityRecord | None:
    """Look a Portuguese municipality up by name, falling back to its CAOP code.

    Names compare case-insensitively. A parish-level code (DDCCFF) is cut to
    its four-digit municipality prefix.
    """
    base = select(Municipality).where(Municipality.country == "PT").limit(1)
    if name:
        result = await session.execute(base.where(func.lower(Municipality.name) == name.strip().lower()))
        row = result.scalars().first()
        if row is not None:
            return _record(row)
    if caop_id:
        result = await session.execute(base.where(Municipality.caop_id == caop_id[:4]))
        row = result.scalars().first()
        if row is not None:
            return _record(row)
    return None
