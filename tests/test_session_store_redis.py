import datetime as dt
import json
import unittest
from unittest.mock import patch

from routecast.domain import (
    Coordinate,
    ForecastSample,
    RiskLevel,
    RiskSegment,
    Route,
    RoutePoint,
    RoutePrediction,
    RouteSummary,
)
from routecast.session_store.base import SessionRecord, SessionStatus
from routecast.session_store.redis import RedisSessionStore

T0 = dt.datetime(2025, 6, 1, 8, 0, tzinfo=dt.timezone.utc)


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.expires = {}

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.expires[key] = ttl

    def get(self, key):
        return self.store.get(key)

    def expire(self, key, ttl):
        self.expires[key] = ttl

    def delete(self, key):
        self.store.pop(key, None)
        self.expires.pop(key, None)

    def scan_iter(self, pattern):
        prefix = pattern.rstrip("*")
        return [k for k in list(self.store.keys()) if k.startswith(prefix)]


def _sample_prediction():
    start = Coordinate(latitude=50.0, longitude=14.0)
    end = Coordinate(latitude=50.1, longitude=14.0)
    route = Route.from_points(
        [
            RoutePoint(coordinate=start, distance_m=0.0, eta=T0),
            RoutePoint(coordinate=end, distance_m=11000.0, eta=T0 + dt.timedelta(minutes=12)),
        ],
        source="osrm",
    )
    samples = (
        ForecastSample(coordinate=start, timestamp=T0, temperature_c=14.5, precipitation_probability=80.0),
        ForecastSample(coordinate=end, timestamp=T0, temperature_c=14.0, precipitation_probability=75.0),
    )
    segment = RiskSegment(
        risk=RiskLevel.SEVERE,
        start_index=0,
        end_index=1,
        samples=samples,
        start_time=T0,
        end_time=T0,
        start_distance_m=0.0,
        end_distance_m=11000.0,
        reasons=("Precipitation 80% at or above 70%",),
    )
    return RoutePrediction(
        request_id="req-1",
        route=route,
        samples=samples,
        segments=(segment,),
        summary=RouteSummary(overall_risk=RiskLevel.SEVERE, segment_count=1, severe_distance_m=11000.0),
        generated_at=T0,
    )


class TestRedisSessionStore(unittest.TestCase):
    def test_create_get_save_delete_round_trip(self):
        client = FakeRedis()
        store = RedisSessionStore(client, ttl_seconds=10, prefix="session:")

        sid = store.create_session()
        key = f"session:{sid}"
        self.assertIn(key, client.store)
        self.assertEqual(store.get_session(sid).status, SessionStatus.IDLE)

        prediction = _sample_prediction()
        store.save_session(
            SessionRecord(session_id=sid, status=SessionStatus.READY, request_id="req-1", prediction=prediction)
        )
        fetched = store.get_session(sid)
        self.assertEqual(fetched.status, SessionStatus.READY)
        self.assertEqual(fetched.prediction, prediction)
        self.assertEqual(fetched.prediction.segments[0].risk, RiskLevel.SEVERE)
        # expire should have been refreshed
        self.assertEqual(client.expires[key], 10)

        store.delete_session(sid)
        self.assertIsNone(store.get_session(sid))

    def test_payload_is_json(self):
        client = FakeRedis()
        store = RedisSessionStore(client, ttl_seconds=10, prefix="session:")
        sid = store.create_session()
        payload = json.loads(client.store[f"session:{sid}"])
        self.assertEqual(payload["record"]["session_id"], sid)
        self.assertIn("created_at", payload)

    def test_save_for_missing_session_is_ignored(self):
        client = FakeRedis()
        store = RedisSessionStore(client, ttl_seconds=10, prefix="session:")
        store.save_session(SessionRecord(session_id="ghost", status=SessionStatus.FAILED))
        self.assertEqual(client.store, {})

    def test_clear_removes_prefixed_keys(self):
        client = FakeRedis()
        store = RedisSessionStore(client, ttl_seconds=10, prefix="session:")
        client.store["session:other"] = b"junk"
        client.store["unrelated"] = b"keep"

        store.create_session()
        store.clear()

        self.assertEqual(client.store, {"unrelated": b"keep"})

    def test_get_session_handles_corrupt_data(self):
        client = FakeRedis()
        store = RedisSessionStore(client, ttl_seconds=10, prefix="session:")
        client.store["session:bad"] = b"not-json"
        client.store["session:wrong-shape"] = json.dumps({"record": {"status": "bogus"}}).encode()
        self.assertIsNone(store.get_session("bad"))
        self.assertIsNone(store.get_session("wrong-shape"))

    def test_max_age_caps_refresh_and_expires(self):
        client = FakeRedis()
        store = RedisSessionStore(client, ttl_seconds=10, max_age_seconds=15, prefix="session:")

        with patch("routecast.session_store.redis.time.time") as mock_time:
            mock_time.return_value = 1000.0
            sid = store.create_session()
            key = f"session:{sid}"
            self.assertEqual(client.expires[key], 10)

            mock_time.return_value = 1005.0
            self.assertIsNotNone(store.get_session(sid))
            self.assertEqual(client.expires[key], 10)

            mock_time.return_value = 1014.0
            self.assertIsNotNone(store.get_session(sid))
            self.assertEqual(client.expires[key], 1)

            mock_time.return_value = 1016.0
            self.assertIsNone(store.get_session(sid))
            self.assertNotIn(key, client.store)


if __name__ == "__main__":
    unittest.main()
