"""Pydantic request/response models for the plotlayers API.

The /layer-info wire shape is produced by core.types.response_to_dict; the
models here describe it for the OpenAPI docs and type the /api/v1 routes.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    detail: str


class CoordinateResponse(BaseModel):
    lat: float
    lng: float


class BoundingBoxResponse(BaseModel):
    minLng: float
    minLat: float
    maxLng: float
    maxLat: float


class LayerResultResponse(BaseModel):
    layerId: str
    layerName: str
    found: bool
    data: dict | None = None
    error: str | None = None


class LayerInfoResponse(BaseModel):
    coordinate: CoordinateResponse
    country: str | None
    timestamp: datetime
    layers: list[LayerResultResponse]
    boundingBox: BoundingBoxResponse | None = None
    areaM2: float | None = None
    polygon: dict | None = None
    enrichmentsRun: list[str] = []
    enrichmentsSkipped: list[str] = []
    enrichmentsFailed: list[str] = []


class EnrichRequest(BaseModel):
    """Request body for POST /api/v1/enrich."""

    lat: float = Field(..., ge=-90, le=90, examples=[38.7223])
    lng: float = Field(..., ge=-180, le=180, examples=[-9.1393])
    country: str | None = Field(
        default=None,
        description="ISO country code. Reverse geocoded from the coordinate when omitted.",
    )
    area_m2: float | None = Field(default=None, gt=0)
    plot_id: str | None = Field(
        default=None,
        max_length=100,
        description="When set, the found layers are merged into this plot's stored enrichment data.",
    )


class ZoningRulesResponse(BaseModel):
    municipality_id: int
    cached: bool
    cached_at: datetime | None
    rules: dict
