"""Application configuration pulled from environment variables via pydantic."""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from routecast.domain import PredictorOptions, RiskThresholds
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the RouteCast service."""
    model_config = SettingsConfigDict(env_prefix="ROUTECAST_", extra="ignore")

    # Providers
    weather_source: str = "open_meteo"  # options: open_meteo, database
    weather_database_url: str | None = None
    weather_table: str = "hourly_forecasts"
    routing_source: str = "osrm"  # options: osrm, straight_line
    allow_estimated_routes: bool = False
    open_meteo_url: str = "https://api.open-meteo.com/v1/forecast"
    geocoding_url: str = "https://geocoding-api.open-meteo.com/v1/search"
    osrm_base_url: str = "https://router.project-osrm.org"
    osrm_profile: str = "driving"
    straight_line_road_factor: float = Field(default=1.25, ge=1.0)
    straight_line_speed_kmh: float = Field(default=70.0, gt=0)
    http_cache_path: str = ".routecast_http_cache"
    http_cache_seconds: int = 600

    # Weather calls
    weather_timeout_seconds: float = Field(default=10.0, gt=0)
    weather_max_retries: int = Field(default=3, ge=0)
    weather_backoff_seconds: float = Field(default=0.5, ge=0)
    routing_timeout_seconds: float = Field(default=15.0, gt=0)

    # Cache quantization and retention
    cache_cell_degrees: float = Field(default=0.02, gt=0, le=1.0)
    cache_bucket_seconds: int = Field(default=3600, gt=0)
    cache_stale_seconds: int = Field(default=6 * 3600, ge=0)
    cache_sweep_interval_seconds: float = Field(default=300.0, gt=0)

    # Predictor options (see PredictorOptions for validation)
    sample_interval_meters: float = 5000.0
    sample_interval_seconds: float | None = None
    cache_ttl_seconds: int = 1800
    max_concurrent_fetches: int = 4
    risk_thresholds: RiskThresholds = Field(default_factory=RiskThresholds)

    # Sessions
    session_redis_url: str | None = None
    session_ttl_seconds: int = 3600

    @field_validator("osrm_base_url", "open_meteo_url", "geocoding_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    def predictor_options(self) -> PredictorOptions:
        """Build the validated options object the predictor consumes."""
        return PredictorOptions(
            sample_interval_meters=self.sample_interval_meters,
            sample_interval_seconds=self.sample_interval_seconds,
            risk_thresholds=self.risk_thresholds,
            cache_ttl_seconds=self.cache_ttl_seconds,
            max_concurrent_fetches=self.max_concurrent_fetches,
        )


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
