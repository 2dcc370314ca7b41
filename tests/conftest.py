"""
Shared fixtures. The upstream provider is always faked (either a FakeProvider
or httpx.MockTransport) so no network access is needed.
"""
import asyncio
import os

# Minimal env so pydantic-settings doesn't require a real .env file
os.environ.setdefault("GOOGLE_WEATHER_API_KEY", "test-key")
os.environ.setdefault("SITE_URL", "https://trip.example.com")

import pytest

from tripweather.models import RawCurrentConditions, RawForecastPoint, RawPublicAlert
from tripweather.services.cache import TTLCache
from tripweather.services.classifier import condition_from_code
from tripweather.services.orchestrator import FetchOrchestrator
from tripweather.services.weather import WeatherService


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def make_points(*days):
    """days: (date, precipitation_sum, precipitation_probability) tuples."""
    return [
        RawForecastPoint(
            date=d,
            temp_max=31.0,
            temp_min=24.0,
            precipitation_sum=s,
            precipitation_probability=p,
            weather_code=61 if s else 2,
            sunrise="07:05",
            sunset="19:20",
        )
        for d, s, p in days
    ]


DEFAULT_POINTS = make_points(("2026-10-19", 5.0, 20.0), ("2026-10-20", 0.0, 10.0))


class FakeProvider:
    """Provider double: records calls and can hold each location behind a gate."""

    name = "fake"

    def __init__(self):
        self.calls = []
        self.gates = {}
        self.forecasts = {}
        self.delay = 0.0
        self.error = None
        self.closed = False
        self.cancelled = 0

    def condition_for(self, code):
        return condition_from_code(code)

    def hold(self, lat, lng) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[(lat, lng)] = gate
        return gate

    async def _enter(self, kind, lat, lng):
        self.calls.append((kind, lat, lng))
        try:
            gate = self.gates.get((lat, lng))
            if gate is not None:
                await gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.error is not None:
            raise self.error

    async def fetch_forecast(self, lat, lng, days):
        await self._enter("forecast", lat, lng)
        return list(self.forecasts.get((lat, lng), DEFAULT_POINTS))[:days]

    async def fetch_current(self, lat, lng):
        await self._enter("current", lat, lng)
        return RawCurrentConditions(
            temperature=30.5, humidity=78.0, weather_code=3, precipitation=0.2, wind_speed=8.0
        )

    async def fetch_alerts(self, lat, lng):
        await self._enter("alerts", lat, lng)
        return [RawPublicAlert(severity="SEVERE", headline="Thunderstorm warning", effective_time="2026-10-19")]

    async def close(self):
        self.closed = True

    def count(self, kind):
        return sum(1 for c in self.calls if c[0] == kind)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def orchestrator(provider):
    return FetchOrchestrator(provider, timeout_seconds=2.0, coord_decimals=2)


@pytest.fixture
def service(orchestrator):
    return WeatherService(orchestrator, TTLCache())
