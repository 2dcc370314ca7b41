from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tripweather.errors import ConfigurationError

Provider = Literal["google", "open-meteo"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # App
    app_name: str = "tripweather"
    log_level: str = "INFO"
    site_url: str = Field(
        default="https://your-domain.convex.site",
        description="Origin allowed to call the proxy from a browser.",
    )

    # Provider
    weather_provider: Provider = "google"
    google_weather_api_key: Optional[str] = None
    google_weather_base_url: str = "https://weather.googleapis.com/v1"
    open_meteo_base_url: str = "https://api.open-meteo.com/v1"
    open_meteo_timezone: str = "Asia/Kuala_Lumpur"
    fetch_timeout_seconds: float = Field(default=10.0, gt=0)

    # Redis (optional shared cache; in-process TTL cache when unset)
    redis_url: Optional[str] = None

    # Cache tuning
    cache_ttl_forecast_seconds: int = Field(default=60 * 60, ge=1)
    cache_ttl_current_seconds: int = Field(default=10 * 60, ge=1)
    cache_ttl_alerts_seconds: int = Field(default=5 * 60, ge=1)
    cache_coord_round_decimals: int = Field(default=2, ge=0, le=6)

    # Client session behaviour
    default_forecast_days: int = Field(default=7, ge=1, le=16)
    auto_refresh_interval_seconds: float = Field(default=15 * 60, gt=0)
    location_debounce_seconds: float = Field(default=0.3, ge=0)

    def require_credentials(self) -> None:
        if self.weather_provider == "google" and not self.google_weather_api_key:
            raise ConfigurationError("GOOGLE_WEATHER_API_KEY is not configured")


settings = Settings()
