import datetime as dt
import unittest

from routecast.domain import Coordinate, Route, RoutePoint
from routecast.errors import OutOfRangeProgress, RouteUnavailable
from routecast.geo import haversine_m, interpolate
from routecast.map_service import MapService

T0 = dt.datetime(2025, 6, 1, 8, 0, tzinfo=dt.timezone.utc)
PRAHA = Coordinate(latitude=50.0755, longitude=14.4378)
BRNO = Coordinate(latitude=49.1951, longitude=16.6068)


def _route():
    return Route.from_points(
        [
            RoutePoint(coordinate=Coordinate(latitude=50.0, longitude=14.0), distance_m=0.0, eta=T0),
            RoutePoint(coordinate=Coordinate(latitude=50.0, longitude=14.2), distance_m=1000.0,
                       eta=T0 + dt.timedelta(seconds=100)),
            RoutePoint(coordinate=Coordinate(latitude=50.2, longitude=14.2), distance_m=3000.0,
                       eta=T0 + dt.timedelta(seconds=500)),
        ]
    )


class FakeRouting:
    def __init__(self, name="fake", route=None, error=None):
        self.name = name
        self.route = route
        self.error = error
        self.calls = []

    def fetch_route(self, origin, destination, *, departure_time):
        self.calls.append((origin, destination, departure_time))
        if self.error:
            raise self.error
        return self.route


class TestPointAtProgress(unittest.TestCase):
    def test_endpoints_are_route_points(self):
        route = _route()
        self.assertEqual(MapService.point_at_progress(route, 0.0), route.points[0])
        self.assertEqual(MapService.point_at_progress(route, 1.0), route.points[-1])

    def test_interpolates_position_and_time_within_segment(self):
        route = _route()
        mid = MapService.point_at_progress(route, distance_m=2000.0)
        self.assertAlmostEqual(mid.coordinate.latitude, 50.1)
        self.assertAlmostEqual(mid.coordinate.longitude, 14.2)
        self.assertEqual(mid.eta, T0 + dt.timedelta(seconds=300))
        self.assertEqual(mid.distance_m, 2000.0)

    def test_fraction_maps_to_distance(self):
        route = _route()
        p = MapService.point_at_progress(route, 0.5)
        self.assertEqual(p.distance_m, 1500.0)
        self.assertEqual(p.eta, T0 + dt.timedelta(seconds=200))

    def test_out_of_range_raises(self):
        route = _route()
        with self.assertRaises(OutOfRangeProgress):
            MapService.point_at_progress(route, 1.01)
        with self.assertRaises(OutOfRangeProgress):
            MapService.point_at_progress(route, distance_m=-1.0)
        with self.assertRaises(OutOfRangeProgress):
            MapService.point_at_progress(route, distance_m=3000.5)

    def test_requires_exactly_one_argument(self):
        with self.assertRaises(ValueError):
            MapService.point_at_progress(_route())
        with self.assertRaises(ValueError):
            MapService.point_at_progress(_route(), 0.5, distance_m=10.0)


class TestPointAtTime(unittest.TestCase):
    def test_interpolates_by_time(self):
        p = MapService.point_at_time(_route(), T0 + dt.timedelta(seconds=50))
        self.assertAlmostEqual(p.distance_m, 500.0)
        self.assertAlmostEqual(p.coordinate.longitude, 14.1)

    def test_outside_schedule_raises(self):
        with self.assertRaises(OutOfRangeProgress):
            MapService.point_at_time(_route(), T0 - dt.timedelta(seconds=1))


class TestResolveRoute(unittest.TestCase):
    def test_resolves_place_names_and_defaults_naive_departure_to_utc(self):
        primary = FakeRouting(route=_route())
        svc = MapService(primary, geocoder=lambda name: {"A": PRAHA, "B": BRNO}[name])
        route = svc.resolve_route("A", "B", dt.datetime(2025, 6, 1, 8, 0))
        self.assertIs(route, primary.route)
        origin, destination, departure = primary.calls[0]
        self.assertEqual((origin, destination), (PRAHA, BRNO))
        self.assertEqual(departure, T0)

    def test_unknown_place_is_route_unavailable(self):
        def geocoder(name):
            raise LookupError(f"Place not found: {name}")

        svc = MapService(FakeRouting(route=_route()), geocoder=geocoder)
        with self.assertRaises(RouteUnavailable):
            svc.resolve_route("Nowhere", BRNO)

    def test_identical_endpoints_rejected(self):
        svc = MapService(FakeRouting(route=_route()))
        with self.assertRaises(RouteUnavailable):
            svc.resolve_route(PRAHA, PRAHA, T0)

    def test_provider_failure_propagates_without_fallback(self):
        svc = MapService(FakeRouting(error=RouteUnavailable("down")))
        with self.assertRaises(RouteUnavailable):
            svc.resolve_route(PRAHA, BRNO, T0)

    def test_falls_back_to_estimate(self):
        estimated = _route().model_copy(update={"estimated": True})
        fallback = FakeRouting(name="straight_line", route=estimated)
        svc = MapService(FakeRouting(error=RouteUnavailable("down")), fallback=fallback)
        self.assertTrue(svc.resolve_route(PRAHA, BRNO, T0).estimated)
        self.assertEqual(len(fallback.calls), 1)

    def test_invalid_provider_route_becomes_route_unavailable(self):
        svc = MapService(FakeRouting(error=ValueError("distance must strictly increase")))
        with self.assertRaises(RouteUnavailable):
            svc.resolve_route(PRAHA, BRNO, T0)


class TestGeo(unittest.TestCase):
    def test_haversine_praha_brno(self):
        self.assertAlmostEqual(haversine_m(PRAHA, BRNO) / 1000, 185.0, delta=3.0)

    def test_interpolate_across_antimeridian(self):
        a = Coordinate(latitude=0.0, longitude=179.0)
        b = Coordinate(latitude=0.0, longitude=-179.0)
        mid = interpolate(a, b, 0.5)
        self.assertAlmostEqual(abs(mid.longitude), 180.0)


if __name__ == "__main__":
    unittest.main()
