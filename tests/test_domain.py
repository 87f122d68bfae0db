import datetime as dt
import unittest

from pydantic import ValidationError

from routecast.domain import (
    Coordinate,
    PredictorOptions,
    RiskLevel,
    RiskThresholds,
    Route,
    RoutePoint,
    RouteRequest,
)

T0 = dt.datetime(2025, 6, 1, 8, 0, tzinfo=dt.timezone.utc)


def _point(lat, lon, distance, minutes):
    return RoutePoint(
        coordinate=Coordinate(latitude=lat, longitude=lon),
        distance_m=distance,
        eta=T0 + dt.timedelta(minutes=minutes),
    )


class TestCoordinate(unittest.TestCase):
    def test_out_of_range_rejected(self):
        with self.assertRaises(ValidationError):
            Coordinate(latitude=91.0, longitude=0.0)
        with self.assertRaises(ValidationError):
            Coordinate(latitude=0.0, longitude=-180.5)

    def test_frozen(self):
        c = Coordinate(latitude=50.0, longitude=14.0)
        with self.assertRaises(ValidationError):
            c.latitude = 51.0


class TestRoute(unittest.TestCase):
    def test_from_points_derives_totals(self):
        route = Route.from_points([_point(50.0, 14.0, 0.0, 0), _point(50.1, 14.1, 12_000.0, 10)], source="test")
        self.assertEqual(route.total_distance_m, 12_000.0)
        self.assertEqual(route.total_duration_s, 600.0)
        self.assertEqual(route.departure, T0)
        self.assertEqual(route.arrival, T0 + dt.timedelta(minutes=10))

    def test_distance_must_strictly_increase(self):
        with self.assertRaises(ValidationError):
            Route.from_points([_point(50.0, 14.0, 0.0, 0), _point(50.0, 14.1, 0.0, 5)])

    def test_eta_must_not_decrease(self):
        with self.assertRaises(ValidationError):
            Route.from_points(
                [_point(50.0, 14.0, 0.0, 0), _point(50.0, 14.1, 100.0, 5), _point(50.0, 14.2, 200.0, 4)]
            )

    def test_equal_etas_allowed(self):
        route = Route.from_points([_point(50.0, 14.0, 0.0, 0), _point(50.0, 14.1, 100.0, 0)])
        self.assertEqual(route.total_duration_s, 0.0)

    def test_single_point_rejected(self):
        with self.assertRaises(ValueError):
            Route.from_points([_point(50.0, 14.0, 0.0, 0)])

    def test_mismatched_totals_rejected(self):
        with self.assertRaises(ValidationError):
            Route(
                points=(_point(50.0, 14.0, 0.0, 0), _point(50.0, 14.1, 100.0, 1)),
                total_distance_m=150.0,
                total_duration_s=60.0,
            )

    def test_json_round_trip(self):
        route = Route.from_points([_point(50.0, 14.0, 0.0, 0), _point(50.1, 14.1, 12_000.0, 10)])
        self.assertEqual(Route.model_validate_json(route.model_dump_json()), route)


class TestRiskLevel(unittest.TestCase):
    def test_ordering(self):
        self.assertLess(RiskLevel.LOW.rank, RiskLevel.MODERATE.rank)
        self.assertLess(RiskLevel.MODERATE.rank, RiskLevel.SEVERE.rank)

    def test_highest(self):
        self.assertEqual(RiskLevel.highest([RiskLevel.LOW, RiskLevel.SEVERE, RiskLevel.MODERATE]), RiskLevel.SEVERE)
        self.assertEqual(RiskLevel.highest([]), RiskLevel.LOW)


class TestOptions(unittest.TestCase):
    def test_unknown_option_rejected(self):
        with self.assertRaises(ValidationError):
            PredictorOptions(sample_interval_meters=1000, colour="blue")

    def test_out_of_range_rejected(self):
        with self.assertRaises(ValidationError):
            PredictorOptions(sample_interval_meters=0)
        with self.assertRaises(ValidationError):
            PredictorOptions(max_concurrent_fetches=100)

    def test_threshold_ordering_enforced(self):
        with self.assertRaises(ValidationError):
            RiskThresholds(moderate_precipitation_probability=80, severe_precipitation_probability=70)


class TestRouteRequest(unittest.TestCase):
    def test_accepts_place_names_and_coordinates(self):
        req = RouteRequest(origin="Praha", destination={"latitude": 49.19, "longitude": 16.61})
        self.assertEqual(req.origin, "Praha")
        self.assertIsInstance(req.destination, Coordinate)

    def test_naive_departure_rejected(self):
        with self.assertRaises(ValidationError):
            RouteRequest(origin="Praha", destination="Brno", departure_time=dt.datetime(2025, 6, 1, 8, 0))


if __name__ == "__main__":
    unittest.main()
