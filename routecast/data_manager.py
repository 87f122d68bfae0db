"""Forecast cache keyed by (coordinate cell, time bucket).

The owner builds one instance and passes it to every predictor that should
share it; nothing here is module-global.

One fetch per key is ever in flight: the first caller owns a Future that every
concurrent caller for the same key waits on. The registry lock is held only to
look up or publish entries, never while the upstream call runs, so unrelated
keys do not serialize behind each other.
"""
from __future__ import annotations

import datetime as dt
import math
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from routecast.domain import Coordinate, ForecastSample, PredictorOptions
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="data_manager")

CacheKey = Tuple[int, int, int]
Fetcher = Callable[[Coordinate, dt.datetime], ForecastSample]


@dataclass(frozen=True)
class CacheEntry:
    """A cached sample and the monotonic times it was fetched and expires."""
    sample: ForecastSample
    fetched_at: float
    expires_at: float


class DataManager:
    """TTL cache with in-flight request coalescing and stale fallback."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 1800,
        cell_degrees: float = 0.02,
        bucket_seconds: int = 3600,
        stale_seconds: float = 6 * 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0 or cell_degrees <= 0 or bucket_seconds <= 0 or stale_seconds < 0:
            raise ValueError("cache ttl, cell size and bucket size must be positive")
        self.ttl = ttl_seconds
        self.cell_degrees = cell_degrees
        self.bucket_seconds = bucket_seconds
        self.stale_seconds = stale_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, Future] = {}
        self._lock = threading.Lock()
        self._counters = {"hits": 0, "misses": 0, "fetches": 0, "coalesced": 0, "stale_served": 0}
        self._sweeper: Optional[threading.Thread] = None
        self._sweeper_stop = threading.Event()

    @classmethod
    def from_options(
        cls,
        options: PredictorOptions,
        settings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> "DataManager":
        """Build a cache whose TTL comes from the predictor options; grid and staleness from settings."""
        return cls(
            ttl_seconds=options.cache_ttl_seconds,
            cell_degrees=settings.cache_cell_degrees,
            bucket_seconds=settings.cache_bucket_seconds,
            stale_seconds=settings.cache_stale_seconds,
            clock=clock,
        )

    def quantize(self, coordinate: Coordinate, timestamp: dt.datetime) -> Tuple[CacheKey, Coordinate, dt.datetime]:
        """Return the cache key plus the cell centre and bucket time it stands for.

        Coordinates snap to the grid cell containing them; timestamps round to
        the nearest bucket.
        """
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=dt.timezone.utc)
        lat_idx = math.floor(coordinate.latitude / self.cell_degrees)
        lon_idx = math.floor(coordinate.longitude / self.cell_degrees)
        bucket_idx = math.floor(timestamp.timestamp() / self.bucket_seconds + 0.5)

        centre = Coordinate(
            latitude=round(min(90.0, max(-90.0, (lat_idx + 0.5) * self.cell_degrees)), 6),
            longitude=round(min(180.0, max(-180.0, (lon_idx + 0.5) * self.cell_degrees)), 6),
        )
        bucket_time = dt.datetime.fromtimestamp(bucket_idx * self.bucket_seconds, tz=dt.timezone.utc)
        return (lat_idx, lon_idx, bucket_idx), centre, bucket_time

    def _retained(self, entry: CacheEntry, now: float) -> bool:
        """True while an entry may still be served as a stale fallback."""
        return now - entry.fetched_at <= self.ttl + self.stale_seconds

    def get_or_fetch(self, coordinate: Coordinate, timestamp: dt.datetime, fetcher: Fetcher) -> ForecastSample:
        """Return the cached sample for the key, fetching it at most once concurrently.

        An unexpired hit returns the identical cached object. On a miss the
        fetcher is called with the cell centre and bucket time. If the fetch
        fails and an expired entry is still retained, that entry is served;
        otherwise the failure propagates to every waiting caller.
        """
        key, centre, bucket_time = self.quantize(coordinate, timestamp)

        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None and now < entry.expires_at:
                self._counters["hits"] += 1
                return entry.sample
            if entry is not None and not self._retained(entry, now):
                del self._entries[key]
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future
                self._counters["misses"] += 1
                self._counters["fetches"] += 1
            else:
                self._counters["coalesced"] += 1

        if not owner:
            logger.debug("Waiting on in-flight fetch", extra={"key": key})
            return future.result()

        try:
            sample = fetcher(centre, bucket_time)
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(key, None)
                stale = self._entries.get(key) if isinstance(exc, Exception) else None
                if stale is not None:
                    self._counters["stale_served"] += 1
            if stale is None:
                future.set_exception(exc)
                raise
            logger.warning(
                "Refresh failed; serving stale forecast",
                extra={"key": key, "error": type(exc).__name__, "age_s": round(self._clock() - stale.fetched_at)},
            )
            future.set_result(stale.sample)
            return stale.sample

        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(sample=sample, fetched_at=now, expires_at=now + self.ttl)
            self._inflight.pop(key, None)
        future.set_result(sample)
        return sample

    def sweep(self) -> int:
        """Drop entries past their stale window; returns how many were removed."""
        with self._lock:
            now = self._clock()
            dead = [key for key, entry in self._entries.items() if not self._retained(entry, now)]
            for key in dead:
                del self._entries[key]
        if dead:
            logger.debug("Swept cache", extra={"removed": len(dead)})
        return len(dead)

    def _sweep_loop(self, interval: float) -> None:
        while not self._sweeper_stop.wait(interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Cache sweep failed")

    def start_sweeper(self, interval_seconds: float = 300.0) -> None:
        """Run sweep() every `interval_seconds` on a daemon thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._sweeper_stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, args=(interval_seconds,), name="forecast-cache-sweeper", daemon=True
        )
        self._sweeper.start()
        logger.info("Started cache sweeper", extra={"interval_s": interval_seconds})

    def stop_sweeper(self, timeout: float | None = 5.0) -> None:
        """Stop the background sweeper, if running."""
        self._sweeper_stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

    def stats(self) -> dict:
        """Counters plus current size and number of in-flight fetches."""
        with self._lock:
            return {**self._counters, "size": len(self._entries), "inflight": len(self._inflight)}

    def clear(self) -> None:
        """Drop every cached entry; in-flight fetches still complete normally."""
        with self._lock:
            self._entries.clear()
