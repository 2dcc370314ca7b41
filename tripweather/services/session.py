import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tripweather.models import (
    CurrentConditions,
    DailyForecast,
    FlashFloodAlert,
    Location,
    validate_location,
)
from tripweather.services.classifier import aggregate_alert
from tripweather.services.orchestrator import CancellationToken

logger = logging.getLogger("tripweather.session")

DEFAULT_LOCATION = Location(lat=3.1390, lng=101.6869, name="Kuala Lumpur")


class WeatherSession:
    """
    Weather state for one "current location", driven from a single event loop.

    Location changes are debounced, and each new load cancels the token of
    the previous one so a slow answer for an old location is never applied.
    With auto-refresh on, the active location is re-fetched on a fixed
    interval regardless of cache TTLs.
    """

    def __init__(
        self,
        service,
        location: Any = None,
        days: Optional[int] = None,
        debounce_seconds: float = 0.3,
        refresh_interval_seconds: float = 15 * 60,
        auto_refresh: bool = True,
    ):
        self.service = service
        self.location: Location = validate_location(location or DEFAULT_LOCATION)
        self.days = days
        self.debounce_seconds = debounce_seconds
        self.refresh_interval_seconds = refresh_interval_seconds
        self.auto_refresh = auto_refresh

        self.current: Optional[CurrentConditions] = None
        self.daily: List[DailyForecast] = []
        self.flash_flood_alert: Optional[FlashFloodAlert] = None
        self.is_loading = False
        self.is_fallback = False
        self.error: Optional[str] = None
        self.last_fetch: Optional[datetime] = None

        self._token: Optional[CancellationToken] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, service, settings, location: Any = None) -> "WeatherSession":
        return cls(
            service,
            location=location,
            days=settings.default_forecast_days,
            debounce_seconds=settings.location_debounce_seconds,
            refresh_interval_seconds=settings.auto_refresh_interval_seconds,
        )

    def set_location(self, location: Any) -> None:
        """Switch location; the fetch starts once the location stays put."""
        loc = validate_location(location)
        self.location = loc
        if self._token is not None:
            self._token.cancel()
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._debounced_load(loc))

    async def _debounced_load(self, loc: Location) -> None:
        await asyncio.sleep(self.debounce_seconds)
        await self.load(loc)

    async def load(self, location: Any = None, force_refresh: bool = False) -> bool:
        """
        Fetch current conditions and forecast, then apply them.

        Returns False when a newer load superseded this one before it
        finished; nothing is applied in that case.
        """
        loc = self.location if location is None else validate_location(location)
        token = CancellationToken()
        if self._token is not None:
            self._token.cancel()
        self._token = token
        self.is_loading = True

        current, forecast = await asyncio.gather(
            self.service.get_current(loc, force_refresh=force_refresh, token=token),
            self.service.get_forecast(loc, self.days, force_refresh=force_refresh, token=token),
        )
        if token.cancelled or current.cancelled or forecast.cancelled:
            logger.debug("Discarding superseded weather for (%.4f, %.4f)", loc.lat, loc.lng)
            return False

        self.current = current.data
        self.daily = forecast.data or []
        self.flash_flood_alert = None if forecast.fallback else aggregate_alert(self.daily)
        self.is_fallback = current.fallback or forecast.fallback
        self.error = current.error or forecast.error
        self.last_fetch = datetime.now(timezone.utc)
        self.is_loading = False
        if self._token is token:
            self._token = None
        logger.debug(
            "Weather for %s: %s, flash flood risk %s",
            loc.name or f"({loc.lat:.4f}, {loc.lng:.4f})",
            self.current.condition.value if self.current else None,
            self.flash_flood_alert.level.value if self.flash_flood_alert else "low",
        )
        return True

    async def refresh(self) -> bool:
        return await self.load(force_refresh=True)

    def start(self) -> None:
        """Kick off the first (debounced) load and the auto-refresh loop."""
        self.set_location(self.location)
        if self.auto_refresh and (self._refresh_task is None or self._refresh_task.done()):
            self._refresh_task = asyncio.create_task(self._auto_refresh_loop())

    async def _auto_refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval_seconds)
            await self.refresh()

    async def stop(self) -> None:
        if self._token is not None:
            self._token.cancel()
        tasks = [t for t in (self._debounce_task, self._refresh_task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._debounce_task = None
        self._refresh_task = None

    def snapshot(self) -> Dict[str, Any]:
        """State in the shape the UI layer reads."""
        return {
            "current": self.current.model_dump(by_alias=True, mode="json") if self.current else None,
            "daily": [d.model_dump(by_alias=True, mode="json") for d in self.daily],
            "flashFloodAlert": (
                self.flash_flood_alert.model_dump(by_alias=True, mode="json") if self.flash_flood_alert else None
            ),
            "isLoading": self.is_loading,
            "isFallback": self.is_fallback,
            "error": self.error,
            "lastFetch": self.last_fetch.isoformat() if self.last_fetch else None,
            "location": self.location.model_dump(),
        }
