import unittest

from fastapi.testclient import TestClient

from routecast.main import app


class TestMain(unittest.TestCase):
    def test_app_metadata(self):
        self.assertEqual(app.title, "RouteCast")

    def test_routes_mounted_under_v1(self):
        paths = set(app.openapi()["paths"])
        self.assertIn("/v1/routes/predict", paths)
        self.assertIn("/v1/sessions/{session_id}/prediction", paths)
        self.assertIn("/v1/health", paths)

    def test_lifespan_starts_and_stops_sweeper(self):
        import routecast.api as api_mod

        with TestClient(app) as client:
            self.assertIsNotNone(api_mod.DATA_MANAGER._sweeper)
            self.assertEqual(client.get("/v1/health").status_code, 200)
        self.assertIsNone(api_mod.DATA_MANAGER._sweeper)


if __name__ == "__main__":
    unittest.main()
