"""Domain vocabulary and strict schemas for route weather predictions.

This module defines the stable contract between the routing, weather, cache,
analysis and presentation layers: enums, thresholds, options and the immutable
pydantic models that flow through a prediction run. No fetching or scoring
logic lives here, only shape and invariant checks.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Iterable, Tuple, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator


class _StrictBaseModel(BaseModel):
    """Base model with strict extra handling."""

    model_config = ConfigDict(extra="forbid")


class _FrozenModel(BaseModel):
    """Immutable value object; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class ConditionCode(str, Enum):
    """Coarse weather condition, independent of the provider's code table."""
    CLEAR = "clear"
    CLOUDS = "clouds"
    FOG = "fog"
    DRIZZLE = "drizzle"
    RAIN = "rain"
    FREEZING_RAIN = "freezing_rain"
    SNOW = "snow"
    THUNDERSTORM = "thunderstorm"
    UNKNOWN = "unknown"


class RiskLevel(str, Enum):
    """Discrete risk band for a forecast sample or route segment."""
    LOW = "low"
    MODERATE = "moderate"
    SEVERE = "severe"

    @property
    def rank(self) -> int:
        """Numeric ordering: low < moderate < severe."""
        return _RISK_RANK[self]

    @classmethod
    def highest(cls, levels: Iterable["RiskLevel"]) -> "RiskLevel":
        """Return the most severe level, or LOW for an empty iterable."""
        return max(levels, key=lambda level: level.rank, default=cls.LOW)


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MODERATE: 1, RiskLevel.SEVERE: 2}


class PredictorState(str, Enum):
    """Lifecycle states of a single prediction run."""
    IDLE = "idle"
    RESOLVING = "resolving"
    SAMPLING = "sampling"
    ANNOTATING = "annotating"
    READY = "ready"
    ERROR = "error"
    CANCELLED = "cancelled"


class Coordinate(_FrozenModel):
    """WGS84 latitude/longitude pair."""
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)

    def as_tuple(self) -> Tuple[float, float]:
        """Return (latitude, longitude)."""
        return self.latitude, self.longitude


class RoutePoint(_FrozenModel):
    """A point on a route with cumulative distance and estimated arrival."""
    coordinate: Coordinate
    distance_m: float = Field(ge=0.0)
    eta: AwareDatetime


class Route(_FrozenModel):
    """Ordered sequence of route points plus totals.

    Invariants: the first point sits at distance zero, distance strictly
    increases, ETAs never decrease, and the totals match the last point.
    """
    points: Tuple[RoutePoint, ...] = Field(min_length=2)
    total_distance_m: float = Field(gt=0.0)
    total_duration_s: float = Field(ge=0.0)
    source: str = "unknown"
    estimated: bool = False

    @model_validator(mode="after")
    def _check_monotonic(self) -> "Route":
        """Reject routes that go backwards in distance or time."""
        first, last = self.points[0], self.points[-1]
        if first.distance_m != 0.0:
            raise ValueError("route must start at distance 0")
        for idx, (prev, cur) in enumerate(zip(self.points, self.points[1:]), start=1):
            if cur.distance_m <= prev.distance_m:
                raise ValueError(f"distance must strictly increase (point {idx})")
            if cur.eta < prev.eta:
                raise ValueError(f"eta must not decrease (point {idx})")
        if abs(last.distance_m - self.total_distance_m) > 1e-6:
            raise ValueError("total_distance_m does not match the last point")
        duration = (last.eta - first.eta).total_seconds()
        if abs(duration - self.total_duration_s) > 1e-3:
            raise ValueError("total_duration_s does not match the point ETAs")
        return self

    @classmethod
    def from_points(cls, points: Iterable[RoutePoint], *, source: str = "unknown",
                    estimated: bool = False) -> "Route":
        """Build a route and derive its totals from the points."""
        pts = tuple(points)
        if len(pts) < 2:
            raise ValueError("a route needs at least two points")
        return cls(
            points=pts,
            total_distance_m=pts[-1].distance_m,
            total_duration_s=(pts[-1].eta - pts[0].eta).total_seconds(),
            source=source,
            estimated=estimated,
        )

    @property
    def departure(self) -> datetime:
        """ETA of the first point."""
        return self.points[0].eta

    @property
    def arrival(self) -> datetime:
        """ETA of the last point."""
        return self.points[-1].eta


class ForecastSample(_FrozenModel):
    """Normalized weather metrics for one coordinate at one instant."""
    coordinate: Coordinate
    timestamp: AwareDatetime
    temperature_c: float | None = None
    precipitation_probability: float | None = Field(default=None, ge=0.0, le=100.0)
    precipitation_mm: float | None = Field(default=None, ge=0.0)
    wind_speed_ms: float | None = Field(default=None, ge=0.0)
    wind_gusts_ms: float | None = Field(default=None, ge=0.0)
    condition: ConditionCode = ConditionCode.UNKNOWN
    source: str | None = None


class RiskThresholds(_FrozenModel):
    """Cutoffs for the risk bands; a value equal to a cutoff is in the higher band."""
    moderate_precipitation_probability: float = Field(default=40.0, ge=0.0, le=100.0)
    severe_precipitation_probability: float = Field(default=70.0, ge=0.0, le=100.0)
    moderate_wind_speed_ms: float = Field(default=10.8, ge=0.0)
    severe_wind_speed_ms: float = Field(default=17.2, ge=0.0)
    moderate_conditions: Tuple[ConditionCode, ...] = (ConditionCode.SNOW, ConditionCode.FOG)
    severe_conditions: Tuple[ConditionCode, ...] = (ConditionCode.THUNDERSTORM, ConditionCode.FREEZING_RAIN)

    @model_validator(mode="after")
    def _check_ordering(self) -> "RiskThresholds":
        """Moderate cutoffs may not exceed severe cutoffs."""
        if self.moderate_precipitation_probability > self.severe_precipitation_probability:
            raise ValueError("moderate precipitation cutoff exceeds severe cutoff")
        if self.moderate_wind_speed_ms > self.severe_wind_speed_ms:
            raise ValueError("moderate wind cutoff exceeds severe cutoff")
        return self


class PredictorOptions(_FrozenModel):
    """Validated knobs for a prediction run; unknown keys are rejected."""
    sample_interval_meters: float = Field(default=5000.0, gt=0.0)
    sample_interval_seconds: float | None = Field(default=None, gt=0.0)
    risk_thresholds: RiskThresholds = Field(default_factory=RiskThresholds)
    cache_ttl_seconds: int = Field(default=1800, gt=0)
    max_concurrent_fetches: int = Field(default=4, ge=1, le=64)


class RiskSegment(_FrozenModel):
    """Contiguous run of samples sharing one risk level."""
    risk: RiskLevel
    start_index: int = Field(ge=0)
    end_index: int = Field(ge=0)  # inclusive
    samples: Tuple[ForecastSample, ...] = Field(min_length=1)
    start_time: AwareDatetime
    end_time: AwareDatetime
    start_distance_m: float | None = None
    end_distance_m: float | None = None
    reasons: Tuple[str, ...] = ()

    @property
    def sample_count(self) -> int:
        """Number of samples in the segment."""
        return self.end_index - self.start_index + 1


class RouteSummary(_FrozenModel):
    """Route-level aggregation of the risk segments."""
    overall_risk: RiskLevel = RiskLevel.LOW
    segment_count: int = 0
    moderate_distance_m: float = 0.0
    severe_distance_m: float = 0.0
    warnings: Tuple[str, ...] = ()


class RoutePrediction(_FrozenModel):
    """Read-only snapshot handed to the UI for one completed run."""
    request_id: str
    route: Route
    samples: Tuple[ForecastSample, ...]
    segments: Tuple[RiskSegment, ...]
    summary: RouteSummary
    generated_at: AwareDatetime


Endpoint = Union[Coordinate, str]


class RouteRequest(_StrictBaseModel):
    """Origin/destination (coordinates or place names) and departure time."""
    origin: Endpoint
    destination: Endpoint
    departure_time: AwareDatetime | None = None
