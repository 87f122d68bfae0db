"""Helpers for fetching hourly forecasts from the Open-Meteo API."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import List, Optional

import requests_cache

from routecast.config import settings
from routecast.domain import ConditionCode
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="open_meteo_client")

# HTTP-level cache only; retry/backoff is decided by WeatherService so that 429s
# can be surfaced instead of retried.
session = requests_cache.CachedSession(
    settings.http_cache_path,
    expire_after=settings.http_cache_seconds,
    allowable_codes=(200,),
)

HOURLY_VARS = [
    "temperature_2m",
    "precipitation_probability",
    "precipitation",
    "wind_speed_10m",
    "wind_gusts_10m",
    "weather_code",
]

EXPECTED_UNITS = {
    "temperature_2m": "°C",
    "precipitation_probability": "%",
    "precipitation": "mm",
    "wind_speed_10m": "m/s",
    "wind_gusts_10m": "m/s",
    "weather_code": "wmo code",
}

ALLOWED_UNIT_SYNONYMS = {
    "temperature_2m": {"°C", "C"},
    "precipitation_probability": {"%", "percent"},
    "precipitation": {"mm"},
    "wind_speed_10m": {"m/s", "ms"},
    "wind_gusts_10m": {"m/s", "ms"},
    "weather_code": {"wmo code", ""},
}

# WMO weather interpretation codes (WW) as documented by Open-Meteo.
_WMO_CONDITIONS = {
    0: ConditionCode.CLEAR,
    1: ConditionCode.CLEAR,
    2: ConditionCode.CLOUDS,
    3: ConditionCode.CLOUDS,
    45: ConditionCode.FOG,
    48: ConditionCode.FOG,
    51: ConditionCode.DRIZZLE,
    53: ConditionCode.DRIZZLE,
    55: ConditionCode.DRIZZLE,
    56: ConditionCode.FREEZING_RAIN,
    57: ConditionCode.FREEZING_RAIN,
    61: ConditionCode.RAIN,
    63: ConditionCode.RAIN,
    65: ConditionCode.RAIN,
    66: ConditionCode.FREEZING_RAIN,
    67: ConditionCode.FREEZING_RAIN,
    71: ConditionCode.SNOW,
    73: ConditionCode.SNOW,
    75: ConditionCode.SNOW,
    77: ConditionCode.SNOW,
    80: ConditionCode.RAIN,
    81: ConditionCode.RAIN,
    82: ConditionCode.RAIN,
    85: ConditionCode.SNOW,
    86: ConditionCode.SNOW,
    95: ConditionCode.THUNDERSTORM,
    96: ConditionCode.THUNDERSTORM,
    99: ConditionCode.THUNDERSTORM,
}


@dataclass
class WeatherHour:
    """Normalized hourly forecast row (metric units, UTC timestamps)."""
    time: dt.datetime  # timezone-aware, UTC
    temperature_c: Optional[float]
    precipitation_probability: Optional[float]
    precipitation_mm: Optional[float]
    wind_speed_ms: Optional[float]
    wind_gusts_ms: Optional[float]
    weather_code: Optional[int]


def condition_from_wmo(code: Optional[int]) -> ConditionCode:
    """Map a WMO weather code onto a ConditionCode."""
    if code is None:
        return ConditionCode.UNKNOWN
    try:
        return _WMO_CONDITIONS.get(int(code), ConditionCode.UNKNOWN)
    except (TypeError, ValueError):
        logger.debug("Unrecognized weather code; treating as unknown", extra={"weather_code": code})
        return ConditionCode.UNKNOWN


def _iso_to_utc(s: str) -> dt.datetime:
    """Interpret an Open-Meteo time string requested with timezone=UTC."""
    parsed = dt.datetime.fromisoformat(s)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)


def _hour_param(ts: dt.datetime) -> str:
    """Format a timestamp for the start_hour/end_hour query parameters."""
    return ts.astimezone(dt.timezone.utc).strftime("%Y-%m-%dT%H:00")


def _warn_on_unexpected_units(units: dict, *, context: str):
    """Log a warning if Open-Meteo returns units we did not request."""
    if not units:
        return
    for field, expected in EXPECTED_UNITS.items():
        actual = units.get(field)
        if actual is None or actual == expected:
            continue
        allowed = ALLOWED_UNIT_SYNONYMS.get(field, set())
        if actual not in allowed:
            logger.warning(
                "Unexpected Open-Meteo unit",
                extra={"context": context, "field": field, "unit": actual, "expected": expected},
            )


def fetch_forecast_hours(
    latitude: float,
    longitude: float,
    *,
    start: dt.datetime,
    end: dt.datetime,
    timeout: float = 10.0,
) -> List[WeatherHour]:
    """Fetch hourly forecasts covering [start, end] (hour-aligned, inclusive).

    HTTP errors propagate as `requests` exceptions; callers decide whether they
    are transient.
    """
    start_hour = start.astimezone(dt.timezone.utc).replace(minute=0, second=0, microsecond=0)
    end_hour = end.astimezone(dt.timezone.utc).replace(minute=0, second=0, microsecond=0)
    if end_hour < end.astimezone(dt.timezone.utc):
        end_hour += dt.timedelta(hours=1)

    params = {
        "latitude": latitude,
        "longitude": longitude,
        "hourly": ",".join(HOURLY_VARS),
        "timezone": "UTC",
        "temperature_unit": "celsius",
        "wind_speed_unit": "ms",
        "precipitation_unit": "mm",
        "start_hour": _hour_param(start_hour),
        "end_hour": _hour_param(end_hour),
    }

    logger.debug("Requesting Open-Meteo hourly forecast", extra={"params": params})
    resp = session.get(settings.open_meteo_url, params=params, timeout=timeout)
    resp.raise_for_status()
    data = resp.json()

    hourly = data["hourly"]
    _warn_on_unexpected_units(data.get("hourly_units") or {}, context="forecast_hourly")
    times = hourly["time"]
    temp = hourly.get("temperature_2m", [None] * len(times))
    precip_prob = hourly.get("precipitation_probability", [None] * len(times))
    precip = hourly.get("precipitation", [None] * len(times))
    wind_speed = hourly.get("wind_speed_10m", [None] * len(times))
    wind_gusts = hourly.get("wind_gusts_10m", [None] * len(times))
    codes = hourly.get("weather_code", [None] * len(times))

    out: List[WeatherHour] = []
    for i, t in enumerate(times):
        out.append(
            WeatherHour(
                time=_iso_to_utc(t),
                temperature_c=temp[i],
                precipitation_probability=precip_prob[i],
                precipitation_mm=precip[i],
                wind_speed_ms=wind_speed[i],
                wind_gusts_ms=wind_gusts[i],
                weather_code=codes[i],
            )
        )
    return out
