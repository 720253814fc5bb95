"""SQLAlchemy ORM models for enrichment persistence and the derived-artifact cache."""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class Municipality(Base):
    """A municipality known to the platform.

    Carries its discovered official website and, for Portugal, the municipal
    ArcGIS services publishing its REN and RAN restrictions.
    """

    __tablename__ = "municipalities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, index=True)
    district = Column(String(200))
    country = Column(String(2), index=True)
    caop_id = Column(String(10), index=True)
    gis_verified = Column(Boolean, nullable=False, default=False, server_default="false")
    ren_service_url = Column(String(500))
    ran_service_url = Column(String(500))
    website = Column(String(500))
    website_source_urls = Column(JSONB)
    website_updated_at = Column(DateTime(timezone=True))


class Regulation(Base):
    """A municipality's planning document summary plus the zoning rules extracted from it.

    cached_zoning_rules is written once per document and only recomputed
    after zoning_rules_stale is set.
    """

    __tablename__ = "regulations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    municipality_id = Column(Integer, ForeignKey("municipalities.id"), nullable=False, unique=True)
    source_url = Column(String(1000))
    summary = Column(Text)
    cached_zoning_rules = Column(JSONB)
    zoning_rules_cached_at = Column(DateTime(timezone=True))
    zoning_rules_stale = Column(Boolean, nullable=False, default=False, server_default="false")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class EnrichedPlot(Base):
    """Layer payloads merged per plot, grouped by category then layer id."""

    __tablename__ = "enriched_plots"

    id = Column(String(100), primary_key=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    country = Column(String(2))
    enrichment_data = Column(JSONB, nullable=False, server_default="{}")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
