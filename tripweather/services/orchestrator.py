import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from tripweather.errors import (
    ConfigurationError,
    RequestCancelled,
    UpstreamError,
    UpstreamTimeoutError,
    WeatherError,
)
from tripweather.models import DataKind, Location, validate_coordinates
from tripweather.services.cache import cache_key
from tripweather.services.fallback import FALLBACK_DAYS, fallback_current, fallback_forecast
from tripweather.services.normalize import normalize_alerts, normalize_current, normalize_forecast

logger = logging.getLogger("tripweather.orchestrator")

_ABANDONED = object()


class CancellationToken:
    """Cooperative cancel flag checked before a fetched result is applied."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class InFlightRequest:
    key: str
    task: asyncio.Task
    waiters: int = 0


@dataclass
class FetchOutcome:
    data: Any
    error: Optional[WeatherError] = None
    fallback: bool = False
    cancelled: bool = False


class FetchOrchestrator:
    """
    Single gateway for upstream weather calls.

    * every call is bounded by ``timeout_seconds``;
    * callers asking for the same (kind, rounded location, params) while a
      call is running join that call instead of starting another;
    * a caller whose token is cancelled stops waiting at once and gets a
      ``cancelled`` outcome; the upstream call is cancelled too once nobody
      else is waiting on it;
    * upstream failures come back as flagged fallback data, never raised.
    """

    def __init__(self, provider, timeout_seconds: float = 10.0, coord_decimals: int = 2):
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.coord_decimals = coord_decimals
        self._closed = False
        self._inflight: Dict[str, InFlightRequest] = {}
        self._lock = asyncio.Lock()

    def key_for(self, kind: DataKind, lat: float, lng: float, params: Optional[Dict[str, Any]] = None) -> str:
        extra = [f"{k}={v}" for k, v in sorted((params or {}).items())]
        return cache_key(kind.value, lat, lng, self.coord_decimals, *extra)

    def in_flight(self) -> int:
        return len(self._inflight)

    async def fetch(
        self,
        kind: DataKind,
        location: Location,
        params: Optional[Dict[str, Any]] = None,
        token: Optional[CancellationToken] = None,
    ) -> FetchOutcome:
        lat, lng = validate_coordinates(location.lat, location.lng)
        params = dict(params or {})
        key = self.key_for(kind, lat, lng, params)

        while True:
            if self._closed or (token is not None and token.cancelled):
                return FetchOutcome(data=None, cancelled=True)

            async with self._lock:
                request = self._inflight.get(key)
                if request is not None and request.task.cancelled():
                    request = None
                if request is None:
                    task = asyncio.create_task(self._call(kind, lat, lng, params))
                    request = InFlightRequest(key=key, task=task)
                    self._inflight[key] = request
                    task.add_done_callback(lambda t, r=request: self._forget(r))
                else:
                    logger.debug("Joining in-flight %s request %s", kind.value, key)
                request.waiters += 1

            try:
                data = await self._wait(request, token)
            except RequestCancelled:
                logger.debug("Discarded %s result for %s (cancelled)", kind.value, key)
                return FetchOutcome(data=None, cancelled=True)
            except (UpstreamError, ConfigurationError) as exc:
                logger.warning(
                    "Upstream %s fetch failed for (%.4f, %.4f) via %s: %s (status=%s); serving fallback",
                    kind.value,
                    lat,
                    lng,
                    getattr(self.provider, "name", "provider"),
                    exc,
                    getattr(exc, "status_code", None),
                )
                return FetchOutcome(data=self._fallback(kind, params), error=exc, fallback=True)
            finally:
                request.waiters -= 1
                if request.waiters <= 0 and not request.task.done():
                    logger.debug("Cancelling abandoned upstream %s call %s", kind.value, key)
                    self._abandon(request)

            if data is _ABANDONED:
                logger.debug("Shared %s call %s was cancelled; starting a new one", kind.value, key)
                continue
            return FetchOutcome(data=copy.deepcopy(data))

    async def _wait(self, request: InFlightRequest, token: Optional[CancellationToken]) -> Any:
        # asyncio.wait never cancels the shared task when this caller goes away.
        waitables = {request.task}
        cancel_waiter = None
        if token is not None:
            cancel_waiter = asyncio.ensure_future(token.wait())
            waitables.add(cancel_waiter)
        try:
            await asyncio.wait(waitables, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if token is not None and token.cancelled:
            raise RequestCancelled()
        if request.task.cancelled():
            return _ABANDONED
        return request.task.result()

    def _abandon(self, request: InFlightRequest) -> None:
        # Unlisted first so later callers start a fresh call instead of joining this one.
        if self._inflight.get(request.key) is request:
            del self._inflight[request.key]
        request.task.cancel()

    def _forget(self, request: InFlightRequest) -> None:
        if self._inflight.get(request.key) is request:
            del self._inflight[request.key]
        if not request.task.cancelled():
            # Mark the exception retrieved; waiters that left early never read it.
            request.task.exception()

    async def _call(self, kind: DataKind, lat: float, lng: float, params: Dict[str, Any]) -> Any:
        try:
            return await asyncio.wait_for(self._upstream(kind, lat, lng, params), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise UpstreamTimeoutError(self.timeout_seconds)
        except httpx.TimeoutException:
            raise UpstreamTimeoutError(self.timeout_seconds)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Weather API request failed: {exc}")

    async def _upstream(self, kind: DataKind, lat: float, lng: float, params: Dict[str, Any]) -> Any:
        if kind == DataKind.CURRENT:
            raw = await self.provider.fetch_current(lat, lng)
            return normalize_current(self.provider, raw)
        if kind == DataKind.FORECAST:
            points = await self.provider.fetch_forecast(lat, lng, params.get("days", FALLBACK_DAYS))
            return normalize_forecast(self.provider, points)
        if kind == DataKind.ALERTS:
            return normalize_alerts(await self.provider.fetch_alerts(lat, lng))
        raise ValueError(f"Unknown weather data kind: {kind!r}")

    @staticmethod
    def _fallback(kind: DataKind, params: Dict[str, Any]) -> Any:
        if kind == DataKind.CURRENT:
            return fallback_current()
        if kind == DataKind.FORECAST:
            return fallback_forecast(params.get("days", FALLBACK_DAYS))
        return []

    async def close(self) -> None:
        self._closed = True
        async with self._lock:
            pending = [r.task for r in self._inflight.values() if not r.task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self.provider.close()
