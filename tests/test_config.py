import os
import unittest

from pydantic import ValidationError

from routecast.config import Settings
from routecast.domain import PredictorOptions


class TestConfig(unittest.TestCase):
    def test_settings_defaults(self):
        previous = os.environ.pop("ROUTECAST_OSRM_BASE_URL", None)
        try:
            s = Settings()
            self.assertEqual(s.osrm_base_url, "https://router.project-osrm.org")
            self.assertEqual(s.weather_source, "open_meteo")
            self.assertEqual(s.cache_cell_degrees, 0.02)
            self.assertEqual(s.cache_bucket_seconds, 3600)
        finally:
            if previous is not None:
                os.environ["ROUTECAST_OSRM_BASE_URL"] = previous

    def test_settings_env_override_strips_trailing_slash(self):
        previous = os.environ.get("ROUTECAST_OSRM_BASE_URL")
        try:
            os.environ["ROUTECAST_OSRM_BASE_URL"] = "http://osrm.local:5000/"
            s = Settings()
            self.assertEqual(s.osrm_base_url, "http://osrm.local:5000")
        finally:
            if previous is None:
                os.environ.pop("ROUTECAST_OSRM_BASE_URL", None)
            else:
                os.environ["ROUTECAST_OSRM_BASE_URL"] = previous

    def test_retry_override(self):
        previous = os.environ.get("ROUTECAST_WEATHER_MAX_RETRIES")
        try:
            os.environ["ROUTECAST_WEATHER_MAX_RETRIES"] = "5"
            s = Settings()
            self.assertEqual(s.weather_max_retries, 5)
        finally:
            if previous is None:
                os.environ.pop("ROUTECAST_WEATHER_MAX_RETRIES", None)
            else:
                os.environ["ROUTECAST_WEATHER_MAX_RETRIES"] = previous

    def test_predictor_options_built_from_settings(self):
        s = Settings(sample_interval_meters=2500, max_concurrent_fetches=8)
        opts = s.predictor_options()
        self.assertIsInstance(opts, PredictorOptions)
        self.assertEqual(opts.sample_interval_meters, 2500)
        self.assertEqual(opts.max_concurrent_fetches, 8)

    def test_out_of_range_predictor_settings_rejected(self):
        s = Settings(max_concurrent_fetches=0)
        with self.assertRaises(ValidationError):
            s.predictor_options()

    def test_negative_retries_rejected(self):
        with self.assertRaises(ValidationError):
            Settings(weather_max_retries=-1)


if __name__ == "__main__":
    unittest.main()
