"""Domain types for the plotlayers enrichment service.

All shared dataclasses live here to prevent circular imports. The HTTP
layer converts to and from these with its own Pydantic schemas.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A WGS84 point."""

    lat: float
    lng: float

    def is_valid(self) -> bool:
        return -90 <= self.lat <= 90 and -180 <= self.lng <= 180


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lon/lat rectangle."""

    min_lng: float
    min_lat: float
    max_lng: float
    max_lat: float

    def as_param(self) -> str:
        """Render as the minLng,minLat,maxLng,maxLat string OGC and WMS expect."""
        return f"{self.min_lng},{self.min_lat},{self.max_lng},{self.max_lat}"

    def to_dict(self) -> dict:
        return {
            "minLng": self.min_lng,
            "minLat": self.min_lat,
            "maxLng": self.max_lng,
            "maxLat": self.max_lat,
        }


# ---------------------------------------------------------------------------
# Layer queries and results
# ---------------------------------------------------------------------------

@dataclass
class LayerQuery:
    """What a provider is asked: a point, optionally scoped by an area box."""

    point: Coordinate
    bbox: BoundingBox | None = None
    area_m2: float | None = None


@dataclass
class LayerResult:
    """Outcome of one provider call. Holds data when found, else optionally an error."""

    layer_id: str
    layer_name: str
    found: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def hit(cls, layer_id: str, layer_name: str, data: dict[str, Any]) -> "LayerResult":
        return cls(layer_id=layer_id, layer_name=layer_name, found=True, data=data)

    @classmethod
    def miss(cls, layer_id: str, layer_name: str) -> "LayerResult":
        return cls(layer_id=layer_id, layer_name=layer_name, found=False)

    @classmethod
    def failure(cls, layer_id: str, layer_name: str, error: str) -> "LayerResult":
        return cls(layer_id=layer_id, layer_name=layer_name, found=False, error=error)

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "layerId": self.layer_id,
            "layerName": self.layer_name,
            "found": self.found,
        }
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class LabelMatch:
    """A label pulled from a feature plus the property key it came from."""

    value: str
    picked_field: str


# ---------------------------------------------------------------------------
# Enrichment request / response
# ---------------------------------------------------------------------------

@dataclass
class EnrichmentRequest:
    """Input to the orchestrator. A polygon, when given, overrides coordinate and area."""

    coordinate: Coordinate | None = None
    polygon: dict | None = None
    country: str | None = None
    area_m2: float | None = None


@dataclass
class EnrichmentResponse:
    """Merged outcome of every provider dispatched for one request."""

    coordinate: Coordinate
    country: str | None
    timestamp: datetime
    layers: list[LayerResult] = field(default_factory=list)
    bounding_box: BoundingBox | None = None
    area_m2: float | None = None
    polygon: dict | None = None
    enrichments_run: list[str] = field(default_factory=list)
    enrichments_skipped: list[str] = field(default_factory=list)
    enrichments_failed: list[str] = field(default_factory=list)


def response_to_dict(response: EnrichmentResponse) -> dict:
    """Serialize a response to the wire shape; absent optionals are omitted."""
    out: dict[str, Any] = {
        "coordinate": {"lat": response.coordinate.lat, "lng": response.coordinate.lng},
        "country": response.country,
        "timestamp": response.timestamp.isoformat(),
        "layers": [layer.to_dict() for layer in response.layers],
        "enrichmentsRun": response.enrichments_run,
        "enrichmentsSkipped": response.enrichments_skipped,
        "enrichmentsFailed": response.enrichments_failed,
    }
    if response.bounding_box is not None:
        out["boundingBox"] = response.bounding_box.to_dict()
    if response.area_m2 is not None:
        out["areaM2"] = response.area_m2
    if response.polygon is not None:
        out["polygon"] = response.polygon
    return out


# ---------------------------------------------------------------------------
# Result cache
# ---------------------------------------------------------------------------

@dataclass
class CachedArtifact:
    """A permanently cached derived artifact for one source entity."""

    source_entity_id: str
    artifact: dict
    cached_at: datetime
    hit: bool = False


# ---------------------------------------------------------------------------
# Batch pool
# ---------------------------------------------------------------------------

@dataclass
class BatchItemOutcome:
    """What happened to one work item."""

    index: int
    item: Any
    status: str  # succeeded, failed
    attempts: int
    result: Any = None
    error: str | None = None


@dataclass
class BatchReport:
    """All outcomes of a batch run, ordered by item index."""

    outcomes: list[BatchItemOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "succeeded")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")


@dataclass
class MunicipalityTarget:
    """A municipality awaiting website discovery."""

    id: int
    name: str
    district: str | None = None
    country: str | None = None


@dataclass
class MunicipalityRecord:
    """Stored municipality details needed to query its own GIS services."""

    id: int
    name: str
    caop_id: str | None = None
    district: str | None = None
    gis_verified: bool = False
    ren_service_url: str | None = None
    ran_service_url: str | None = None
