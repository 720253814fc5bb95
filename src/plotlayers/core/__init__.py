"""Core domain types and errors shared across all plotlayers modules."""

from plotlayers.core.errors import (
    FatalError,
    PlotLayersError,
    ProviderSchemaMismatch,
    ProviderUnavailable,
    RetryableTransient,
    ValidationError,
)
from plotlayers.core.types import (
    BoundingBox,
    Coordinate,
    EnrichmentRequest,
    EnrichmentResponse,
    LayerQuery,
    LayerResult,
)

__all__ = [
    "BoundingBox",
    "Coordinate",
    "EnrichmentRequest",
    "EnrichmentResponse",
    "FatalError",
    "LayerQuery",
    "LayerResult",
    "PlotLayersError",
    "ProviderSchemaMismatch",
    "ProviderUnavailable",
    "RetryableTransient",
    "ValidationError",
]
