import logging
from typing import Any, List, Optional

from pydantic import TypeAdapter

from tripweather.models import (
    AlertsReport,
    CurrentConditions,
    DailyForecast,
    DataKind,
    PublicAlert,
    WeatherResult,
    validate_days,
    validate_location,
)
from tripweather.services.cache import build_cache
from tripweather.services.classifier import aggregate_alert
from tripweather.services.orchestrator import CancellationToken, FetchOrchestrator
from tripweather.services.providers import build_provider

logger = logging.getLogger("tripweather.weather")

_daily_adapter = TypeAdapter(List[DailyForecast])
_alerts_adapter = TypeAdapter(List[PublicAlert])


class WeatherService:
    """
    Current conditions, forecast and alerts for a location.

    Reads go through the cache first; misses are fetched by the
    orchestrator, cached (unless they are fallback data) and returned.
    Cached values are stored as plain JSON-able data so the in-process and
    Redis caches are interchangeable.
    """

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        cache,
        ttl_current_seconds: float = 600,
        ttl_forecast_seconds: float = 3600,
        ttl_alerts_seconds: float = 300,
        default_days: int = 7,
    ):
        self.orchestrator = orchestrator
        self.cache = cache
        self.ttl_current_seconds = ttl_current_seconds
        self.ttl_forecast_seconds = ttl_forecast_seconds
        self.ttl_alerts_seconds = ttl_alerts_seconds
        self.default_days = default_days

    async def get_current(
        self,
        location: Any,
        force_refresh: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> WeatherResult[Optional[CurrentConditions]]:
        loc = validate_location(location)
        key = self.orchestrator.key_for(DataKind.CURRENT, loc.lat, loc.lng)

        if not force_refresh:
            cached = self.cache.get(key)
            if cached.hit:
                logger.debug("Cache hit %s (age=%ss)", key, cached.age_seconds)
                return WeatherResult(data=CurrentConditions.model_validate(cached.value), cached=True)

        logger.debug("Cache miss %s (force_refresh=%s)", key, force_refresh)
        outcome = await self.orchestrator.fetch(DataKind.CURRENT, loc, token=token)
        if outcome.cancelled:
            return WeatherResult(data=None, cancelled=True)
        if outcome.fallback:
            return WeatherResult(data=outcome.data, fallback=True, error=str(outcome.error))

        self.cache.set(key, outcome.data.model_dump(mode="json"), self.ttl_current_seconds)
        return WeatherResult(data=outcome.data)

    async def get_forecast(
        self,
        location: Any,
        days: Optional[int] = None,
        force_refresh: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> WeatherResult[Optional[List[DailyForecast]]]:
        loc = validate_location(location)
        days = validate_days(self.default_days if days is None else days)
        params = {"days": days}
        key = self.orchestrator.key_for(DataKind.FORECAST, loc.lat, loc.lng, params)

        if not force_refresh:
            cached = self.cache.get(key)
            if cached.hit:
                logger.debug("Cache hit %s (age=%ss)", key, cached.age_seconds)
                return WeatherResult(data=_daily_adapter.validate_python(cached.value), cached=True)

        logger.debug("Cache miss %s (force_refresh=%s)", key, force_refresh)
        outcome = await self.orchestrator.fetch(DataKind.FORECAST, loc, params, token=token)
        if outcome.cancelled:
            return WeatherResult(data=None, cancelled=True)
        if outcome.fallback:
            return WeatherResult(data=outcome.data, fallback=True, error=str(outcome.error))

        self.cache.set(key, _daily_adapter.dump_python(outcome.data, mode="json"), self.ttl_forecast_seconds)
        return WeatherResult(data=outcome.data)

    async def get_alert(
        self,
        location: Any,
        force_refresh: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> WeatherResult[Optional[AlertsReport]]:
        """
        Provider public alerts plus the flash-flood alert for the forecast window.

        The two halves are cached separately (alerts and forecast TTLs).
        Only a failed alerts call makes the result a fallback; when just the
        forecast half fell back the real alerts are returned with no
        flash-flood alert and ``is_fallback`` set on the report.
        """
        loc = validate_location(location)
        key = self.orchestrator.key_for(DataKind.ALERTS, loc.lat, loc.lng)

        forecast = await self.get_forecast(loc, force_refresh=force_refresh, token=token)
        if forecast.cancelled:
            return WeatherResult(data=None, cancelled=True)
        flash_flood = None if forecast.fallback else aggregate_alert(forecast.data)

        if not force_refresh:
            cached = self.cache.get(key)
            if cached.hit:
                report = AlertsReport(
                    alerts=_alerts_adapter.validate_python(cached.value),
                    flash_flood_alert=flash_flood,
                    is_fallback=forecast.fallback,
                )
                return WeatherResult(data=report, cached=True, error=forecast.error)

        outcome = await self.orchestrator.fetch(DataKind.ALERTS, loc, token=token)
        if outcome.cancelled:
            return WeatherResult(data=None, cancelled=True)
        if outcome.fallback:
            report = AlertsReport(alerts=[], flash_flood_alert=flash_flood, is_fallback=True)
            return WeatherResult(data=report, fallback=True, error=str(outcome.error))

        self.cache.set(key, _alerts_adapter.dump_python(outcome.data, mode="json"), self.ttl_alerts_seconds)
        report = AlertsReport(alerts=outcome.data, flash_flood_alert=flash_flood, is_fallback=forecast.fallback)
        return WeatherResult(data=report, error=forecast.error)

    def invalidate(self, location: Any, days: Optional[int] = None) -> None:
        loc = validate_location(location)
        days = validate_days(self.default_days if days is None else days)
        self.cache.invalidate(self.orchestrator.key_for(DataKind.CURRENT, loc.lat, loc.lng))
        self.cache.invalidate(self.orchestrator.key_for(DataKind.FORECAST, loc.lat, loc.lng, {"days": days}))
        self.cache.invalidate(self.orchestrator.key_for(DataKind.ALERTS, loc.lat, loc.lng))

    async def close(self) -> None:
        await self.orchestrator.close()
        self.cache.close()


def build_weather_service(settings, transport=None) -> WeatherService:
    provider = build_provider(settings, transport=transport)
    orchestrator = FetchOrchestrator(
        provider,
        timeout_seconds=settings.fetch_timeout_seconds,
        coord_decimals=settings.cache_coord_round_decimals,
    )
    return WeatherService(
        orchestrator,
        build_cache(settings),
        ttl_current_seconds=settings.cache_ttl_current_seconds,
        ttl_forecast_seconds=settings.cache_ttl_forecast_seconds,
        ttl_alerts_seconds=settings.cache_ttl_alerts_seconds,
        default_days=settings.default_forecast_days,
    )
