"""Point-in-time forecasts with bounded retries, backoff and a hard timeout."""
from __future__ import annotations

import datetime as dt
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, List, Optional

import requests

from routecast.data_sources.base import WeatherDataSource
from routecast.data_sources.open_meteo_client import WeatherHour, condition_from_wmo
from routecast.domain import Coordinate, ForecastSample
from routecast.errors import RateLimited, WeatherUnavailable
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="weather_service")


def _retry_after_seconds(resp) -> Optional[float]:
    """Extract a numeric Retry-After header, if present."""
    raw = getattr(resp, "headers", {}).get("Retry-After") if resp is not None else None
    if not raw:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _lerp(a: Optional[float], b: Optional[float], f: float) -> Optional[float]:
    """Linear interpolation that tolerates a missing endpoint."""
    if a is None:
        return b
    if b is None:
        return a
    return a + (b - a) * f


class _TransientFailure(Exception):
    """Internal marker for failures worth another attempt."""


class WeatherService:
    """Fetch and normalize forecasts for a coordinate and instant.

    Transient failures (timeouts, connection errors, HTTP 5xx) are retried up to
    `max_retries` times with exponential backoff. HTTP 429 raises RateLimited
    straight away. Each attempt is bounded by `timeout` seconds of wall time.
    """

    def __init__(
        self,
        data_source: WeatherDataSource,
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.data_source = data_source
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    @property
    def source_name(self) -> str:
        """Name of the backing data source."""
        return getattr(self.data_source, "name", "unknown")

    def get_forecast(self, coordinate: Coordinate, timestamp: dt.datetime) -> ForecastSample:
        """Return the forecast at `coordinate` for `timestamp`.

        Raises WeatherUnavailable once retries are exhausted (or for permanent
        failures) and RateLimited when the provider reports quota exhaustion.
        """
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=dt.timezone.utc)
        hours = self._fetch_with_retry(coordinate, timestamp)
        return self._interpolate(hours, coordinate, timestamp)

    def _start_call(self, coordinate: Coordinate, timestamp: dt.datetime) -> Future:
        """Run the provider call on its own daemon thread so the deadline starts now.

        A call that overruns is abandoned; its thread finishes in the background.
        """
        future: Future = Future()
        future.set_running_or_notify_cancel()

        def run() -> None:
            try:
                hours = self.data_source.fetch_hours(
                    coordinate.latitude,
                    coordinate.longitude,
                    start=timestamp,
                    end=timestamp,
                    timeout=self.timeout,
                )
            except Exception as exc:
                future.set_exception(exc)
            else:
                future.set_result(hours)

        threading.Thread(target=run, name="weather-call", daemon=True).start()
        return future

    def _call_once(self, coordinate: Coordinate, timestamp: dt.datetime) -> List[WeatherHour]:
        """One provider call, classified into transient vs permanent failures."""
        future = self._start_call(coordinate, timestamp)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout as exc:
            raise _TransientFailure(f"timed out after {self.timeout:.1f}s") from exc
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            if status == 429:
                raise RateLimited(retry_after=_retry_after_seconds(exc.response)) from exc
            if status is not None and status >= 500:
                raise _TransientFailure(f"HTTP {status}") from exc
            raise WeatherUnavailable(f"weather provider rejected request: HTTP {status}") from exc
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise _TransientFailure(str(exc)) from exc
        except (KeyError, ValueError, TypeError) as exc:
            raise WeatherUnavailable(f"malformed weather payload: {exc}") from exc
        except LookupError as exc:
            raise WeatherUnavailable(str(exc)) from exc
        except requests.RequestException as exc:
            raise WeatherUnavailable(f"weather request failed: {exc}") from exc

    def _fetch_with_retry(self, coordinate: Coordinate, timestamp: dt.datetime) -> List[WeatherHour]:
        """Call the provider, retrying transient failures with exponential backoff."""
        attempts = self.max_retries + 1
        last_error: Exception | None = None
        for attempt in range(attempts):
            try:
                return self._call_once(coordinate, timestamp)
            except _TransientFailure as exc:
                last_error = exc
                if attempt + 1 >= attempts:
                    break
                delay = self.backoff_seconds * (2 ** attempt)
                logger.warning(
                    "Transient weather failure; retrying",
                    extra={"attempt": attempt + 1, "max_attempts": attempts, "delay_s": delay, "error": str(exc)},
                )
                self.sleep(delay)

        logger.error(
            "Weather provider unavailable after retries",
            extra={"latitude": coordinate.latitude, "longitude": coordinate.longitude, "attempts": attempts},
        )
        raise WeatherUnavailable(f"weather provider unavailable after {attempts} attempts: {last_error}")

    def _interpolate(self, hours: List[WeatherHour], coordinate: Coordinate,
                     timestamp: dt.datetime) -> ForecastSample:
        """Interpolate hourly values to `timestamp`; condition comes from the nearest hour."""
        ts = timestamp.astimezone(dt.timezone.utc)
        ordered = sorted(hours, key=lambda h: h.time)
        before = next((h for h in reversed(ordered) if h.time <= ts), None)
        after = next((h for h in ordered if h.time >= ts), None)
        if before is None or after is None:
            raise WeatherUnavailable(f"no forecast covers {ts.isoformat()}")

        span = (after.time - before.time).total_seconds()
        f = 0.0 if span == 0 else (ts - before.time).total_seconds() / span
        nearest = before if f < 0.5 else after

        precip_prob = _lerp(before.precipitation_probability, after.precipitation_probability, f)
        return ForecastSample(
            coordinate=coordinate,
            timestamp=ts,
            temperature_c=_lerp(before.temperature_c, after.temperature_c, f),
            precipitation_probability=None if precip_prob is None else min(100.0, max(0.0, precip_prob)),
            precipitation_mm=_lerp(before.precipitation_mm, after.precipitation_mm, f),
            wind_speed_ms=_lerp(before.wind_speed_ms, after.wind_speed_ms, f),
            wind_gusts_ms=_lerp(before.wind_gusts_ms, after.wind_gusts_ms, f),
            condition=condition_from_wmo(nearest.weather_code),
            source=self.source_name,
        )
