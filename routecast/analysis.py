"""Deterministic risk classification and segmentation.

Each forecast sample is classified into a RiskLevel against RiskThresholds;
consecutive samples with the same level are merged into RiskSegments, and the
segments roll up into a RouteSummary with human-readable warnings. No network
or cache access happens here.
"""

from __future__ import annotations

from typing import List, Sequence

from routecast.domain import (
    ConditionCode,
    ForecastSample,
    RiskLevel,
    RiskSegment,
    RiskThresholds,
    RouteSummary,
)

DEFAULT_THRESHOLDS = RiskThresholds()

FREEZING_TEMPERATURE_C = 0.0
EXTREME_HEAT_C = 30.0
_WET_CONDITIONS = (ConditionCode.DRIZZLE, ConditionCode.RAIN, ConditionCode.FREEZING_RAIN)


def _at_or_above(value: float | None, cutoff: float) -> bool:
    """Inclusive-high comparison; a missing metric never trips a band."""
    return value is not None and value >= cutoff


def risk_reasons(sample: ForecastSample, thresholds: RiskThresholds = DEFAULT_THRESHOLDS) -> List[str]:
    """Explain which metrics put a sample above the low band."""
    reasons: list[str] = []
    precip = sample.precipitation_probability
    wind = sample.wind_speed_ms

    if _at_or_above(precip, thresholds.severe_precipitation_probability):
        reasons.append(f"Precipitation {precip:.0f}% at or above {thresholds.severe_precipitation_probability:.0f}%")
    elif _at_or_above(precip, thresholds.moderate_precipitation_probability):
        reasons.append(f"Precipitation {precip:.0f}% at or above {thresholds.moderate_precipitation_probability:.0f}%")

    if _at_or_above(wind, thresholds.severe_wind_speed_ms):
        reasons.append(f"Wind {wind:.1f} m/s at or above {thresholds.severe_wind_speed_ms:.1f} m/s")
    elif _at_or_above(wind, thresholds.moderate_wind_speed_ms):
        reasons.append(f"Wind {wind:.1f} m/s at or above {thresholds.moderate_wind_speed_ms:.1f} m/s")

    if sample.condition in thresholds.severe_conditions or sample.condition in thresholds.moderate_conditions:
        reasons.append(f"Conditions: {sample.condition.value.replace('_', ' ')}")
    return reasons


def classify(sample: ForecastSample, thresholds: RiskThresholds = DEFAULT_THRESHOLDS) -> RiskLevel:
    """Classify a sample; a value exactly on a cutoff lands in the higher band."""
    if (
        _at_or_above(sample.precipitation_probability, thresholds.severe_precipitation_probability)
        or _at_or_above(sample.wind_speed_ms, thresholds.severe_wind_speed_ms)
        or sample.condition in thresholds.severe_conditions
    ):
        return RiskLevel.SEVERE
    if (
        _at_or_above(sample.precipitation_probability, thresholds.moderate_precipitation_probability)
        or _at_or_above(sample.wind_speed_ms, thresholds.moderate_wind_speed_ms)
        or sample.condition in thresholds.moderate_conditions
    ):
        return RiskLevel.MODERATE
    return RiskLevel.LOW


def _segment_bounds(distances: Sequence[float], start: int, end: int) -> tuple[float, float]:
    """Distance span owned by samples[start..end]: halfway to each neighbouring sample."""
    lo = distances[start] if start == 0 else (distances[start - 1] + distances[start]) / 2
    hi = distances[end] if end == len(distances) - 1 else (distances[end] + distances[end + 1]) / 2
    return lo, hi


def summarize(
    samples: Sequence[ForecastSample],
    distances: Sequence[float] | None = None,
    *,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> List[RiskSegment]:
    """Group samples (in route order) into maximal runs of equal risk.

    `distances`, when given, holds each sample's distance along the route and
    fills in the segments' start/end distances.
    """
    if distances is not None and len(distances) != len(samples):
        raise ValueError("distances must align with samples")
    if not samples:
        return []

    levels = [classify(sample, thresholds) for sample in samples]
    segments: list[RiskSegment] = []
    start = 0
    for idx in range(1, len(samples) + 1):
        if idx < len(samples) and levels[idx] == levels[start]:
            continue
        end = idx - 1
        run = tuple(samples[start:idx])
        reasons: list[str] = []
        for sample in run:
            for reason in risk_reasons(sample, thresholds):
                if reason not in reasons:
                    reasons.append(reason)
        span = _segment_bounds(distances, start, end) if distances is not None else (None, None)
        segments.append(
            RiskSegment(
                risk=levels[start],
                start_index=start,
                end_index=end,
                samples=run,
                start_time=run[0].timestamp,
                end_time=run[-1].timestamp,
                start_distance_m=span[0],
                end_distance_m=span[1],
                reasons=tuple(reasons),
            )
        )
        start = idx
    return segments


def _route_warnings(samples: Sequence[ForecastSample], thresholds: RiskThresholds) -> List[str]:
    """Driver-facing warnings for conditions met anywhere on the route."""
    warnings: list[str] = []
    temps = [s.temperature_c for s in samples if s.temperature_c is not None]
    winds = [s.wind_speed_ms for s in samples if s.wind_speed_ms is not None]
    conditions = {s.condition for s in samples}

    if any(c == ConditionCode.THUNDERSTORM for c in conditions):
        warnings.append("Thunderstorms along the route; consider delaying departure")
    if any(c in _WET_CONDITIONS for c in conditions) or any(
        _at_or_above(s.precipitation_probability, thresholds.severe_precipitation_probability) for s in samples
    ):
        warnings.append("Rain expected; allow extra stopping distance")
    if ConditionCode.SNOW in conditions:
        warnings.append("Snow expected; check road conditions before leaving")
    if winds and max(winds) >= thresholds.moderate_wind_speed_ms:
        warnings.append(f"Strong wind up to {max(winds):.1f} m/s")
    if temps and min(temps) <= FREEZING_TEMPERATURE_C:
        warnings.append(f"Freezing temperatures down to {min(temps):.1f} C; watch for ice")
    if temps and max(temps) > EXTREME_HEAT_C:
        warnings.append(f"Extreme heat up to {max(temps):.1f} C")
    return warnings


def build_route_summary(
    segments: Sequence[RiskSegment],
    *,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> RouteSummary:
    """Roll segments up into the route-level summary shown to the driver."""
    moderate = severe = 0.0
    for segment in segments:
        if segment.start_distance_m is None or segment.end_distance_m is None:
            continue
        length = segment.end_distance_m - segment.start_distance_m
        if segment.risk == RiskLevel.SEVERE:
            severe += length
        elif segment.risk == RiskLevel.MODERATE:
            moderate += length

    samples = [sample for segment in segments for sample in segment.samples]
    return RouteSummary(
        overall_risk=RiskLevel.highest(segment.risk for segment in segments),
        segment_count=len(segments),
        moderate_distance_m=moderate,
        severe_distance_m=severe,
        warnings=tuple(_route_warnings(samples, thresholds)),
    )
