import asyncio

import httpx
import pytest

from tripweather.config import Settings
from tripweather.errors import UpstreamError, ValidationError
from tripweather.models import RiskLevel, WeatherCondition
from tripweather.services.cache import TTLCache
from tripweather.services.orchestrator import CancellationToken
from tripweather.services.weather import WeatherService, build_weather_service

from conftest import make_points

KL = (3.1390, 101.6869, "Kuala Lumpur")


# ---------------------------------------------------------------------------
# Cache behaviour
# ---------------------------------------------------------------------------

@pytest.mark.anyio
async def test_second_read_is_served_from_cache(service, provider):
    first = await service.get_forecast(KL)
    second = await service.get_forecast(KL)

    assert first.cached is False
    assert second.cached is True
    assert provider.count("forecast") == 1
    assert second.data == first.data


@pytest.mark.anyio
async def test_cached_days_keep_their_stored_risk(service, provider):
    provider.forecasts[(KL[0], KL[1])] = make_points(("2026-10-19", 60.0, 80.0))
    await service.get_forecast(KL)

    cached = await service.get_forecast(KL)
    assert cached.cached is True
    assert cached.data[0].flash_flood_risk == RiskLevel.HIGH


@pytest.mark.anyio
async def test_force_refresh_skips_the_cache(service, provider):
    await service.get_current(KL)
    refreshed = await service.get_current(KL, force_refresh=True)
    assert refreshed.cached is False
    assert provider.count("current") == 2


@pytest.mark.anyio
async def test_forecast_days_are_part_of_the_key(service, provider):
    await service.get_forecast(KL, days=7)
    await service.get_forecast(KL, days=3)
    assert provider.count("forecast") == 2


@pytest.mark.anyio
async def test_fallback_is_not_cached(service, provider):
    provider.error = UpstreamError("Weather API error (500): boom", status_code=500)
    failed = await service.get_forecast(KL)

    assert failed.fallback is True
    assert "500" in failed.error
    assert len(failed.data) == 7
    assert all(d.condition == WeatherCondition.PARTLY_CLOUDY for d in failed.data)

    provider.error = None
    recovered = await service.get_forecast(KL)
    assert recovered.fallback is False
    assert recovered.cached is False
    assert provider.count("forecast") == 2


@pytest.mark.anyio
async def test_invalidate_drops_all_kinds(service, provider):
    await service.get_current(KL)
    await service.get_forecast(KL)
    service.invalidate(KL)
    await service.get_current(KL)
    await service.get_forecast(KL)
    assert provider.count("current") == 2
    assert provider.count("forecast") == 2


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

@pytest.mark.anyio
@pytest.mark.parametrize("location", [(95, 0), (0, -200), (None, 10), ("abc", 1), {"lat": 1}])
async def test_invalid_locations_never_reach_cache_or_upstream(provider, orchestrator, location):
    class CountingCache(TTLCache):
        reads = 0

        def get(self, key):
            CountingCache.reads += 1
            return super().get(key)

    service = WeatherService(orchestrator, CountingCache())
    with pytest.raises(ValidationError):
        await service.get_forecast(location)
    with pytest.raises(ValidationError):
        await service.get_current(location)
    with pytest.raises(ValidationError):
        await service.get_alert(location)
    assert CountingCache.reads == 0
    assert provider.calls == []


@pytest.mark.anyio
@pytest.mark.parametrize("days", [0, 17, "x", 2.5, True])
async def test_invalid_days_are_rejected(service, provider, days):
    with pytest.raises(ValidationError):
        await service.get_forecast(KL, days=days)
    assert provider.calls == []


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

@pytest.mark.anyio
async def test_get_alert_combines_public_and_flash_flood_alerts(service, provider):
    provider.forecasts[(KL[0], KL[1])] = make_points(
        ("2026-10-19", 0.0, 10.0),
        ("2026-10-20", 35.0, 65.0),
    )
    result = await service.get_alert(KL)

    assert result.fallback is False
    assert result.data.alerts[0].level == RiskLevel.HIGH
    assert result.data.alerts[0].title == "Thunderstorm warning"
    assert result.data.flash_flood_alert.level == RiskLevel.MODERATE
    assert result.data.flash_flood_alert.affected_days == ["2026-10-20"]

    again = await service.get_alert(KL)
    assert again.cached is True
    assert provider.count("alerts") == 1
    assert provider.count("forecast") == 1


@pytest.mark.anyio
async def test_get_alert_degrades_when_upstream_fails(service, provider):
    provider.error = UpstreamError("Weather API error (503): unavailable", status_code=503)
    result = await service.get_alert(KL)
    assert result.fallback is True
    assert result.data.alerts == []
    assert result.data.flash_flood_alert is None
    assert result.data.is_fallback is True


@pytest.mark.anyio
async def test_get_alert_keeps_real_alerts_when_only_forecast_fails(service, provider):
    async def broken_forecast(lat, lng, days):
        provider.calls.append(("forecast", lat, lng))
        raise UpstreamError("Weather API error (502): bad gateway", status_code=502)

    provider.fetch_forecast = broken_forecast
    result = await service.get_alert(KL)

    assert result.fallback is False
    assert "502" in result.error
    assert result.data.alerts[0].title == "Thunderstorm warning"
    assert result.data.flash_flood_alert is None
    assert result.data.is_fallback is True

    again = await service.get_alert(KL)
    assert again.cached is True
    assert again.fallback is False
    assert again.data.is_fallback is True
    assert provider.count("alerts") == 1


@pytest.mark.anyio
async def test_cancelled_request_is_not_cached(service, provider):
    provider.hold(KL[0], KL[1])
    token = CancellationToken()
    task = asyncio.create_task(service.get_current(KL, token=token))
    for _ in range(10):
        await asyncio.sleep(0)
    token.cancel()
    result = await task

    assert result.cancelled is True
    assert result.data is None
    assert len(service.cache) == 0


@pytest.mark.anyio
async def test_uncancelled_read_after_a_cancelled_one_gets_data(service, provider):
    gate = provider.hold(KL[0], KL[1])
    token = CancellationToken()
    stale = asyncio.create_task(service.get_current(KL, token=token))
    for _ in range(10):
        await asyncio.sleep(0)
    token.cancel()
    assert (await stale).cancelled is True

    gate.set()
    result = await service.get_current(KL)

    assert result.cancelled is False
    assert result.fallback is False
    assert result.data.temperature == 30.5


# ---------------------------------------------------------------------------
# End to end over a mocked Google Weather API
# ---------------------------------------------------------------------------

def _google_transport(calls, forecast_status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        path = request.url.path
        if path.endswith("forecast/days:lookup"):
            if forecast_status != 200:
                return httpx.Response(forecast_status, text="upstream exploded")
            return httpx.Response(
                200,
                json={
                    "dailyForecasts": [
                        {
                            "date": "2026-10-19",
                            "temperature": {"high": {"value": 31}, "low": {"value": 24}},
                            "totalPrecipitation": {"value": 90},
                            "precipitationProbability": 90,
                            "weatherCode": 502,
                            "description": "Heavy intensity rain",
                            "sunrise": "07:05",
                            "sunset": "19:12",
                        }
                    ]
                },
            )
        if path.endswith("currentConditions:lookup"):
            return httpx.Response(
                200,
                json={"current": {"temperature": {"value": 29}, "humidity": 81, "weatherCode": 801}},
            )
        if path.endswith("publicAlerts:lookup"):
            return httpx.Response(200, json={"alerts": []})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def _settings(**overrides):
    values = {"google_weather_api_key": "test-key", "redis_url": None}
    values.update(overrides)
    return Settings(**values)


@pytest.mark.anyio
async def test_kuala_lumpur_severe_day_raises_a_severe_alert():
    calls = []
    service = build_weather_service(_settings(), transport=_google_transport(calls))
    try:
        forecast = await service.get_forecast(KL)
        assert forecast.fallback is False
        assert len(forecast.data) == 1
        day = forecast.data[0]
        assert day.flash_flood_risk == RiskLevel.SEVERE
        assert day.condition == WeatherCondition.HEAVY_RAIN
        assert day.day_of_week == "Mon"

        alert = await service.get_alert(KL)
        flash_flood = alert.data.flash_flood_alert
        assert flash_flood is not None
        assert flash_flood.level == RiskLevel.SEVERE
        assert "2026-10-19" in flash_flood.affected_days

        request = calls[0]
        assert request.url.params["key"] == "test-key"
        assert request.url.params["location.latitude"] == "3.139"
        assert request.url.params["days"] == "7"
    finally:
        await service.close()


@pytest.mark.anyio
async def test_upstream_500_yields_seven_day_fallback():
    service = build_weather_service(_settings(), transport=_google_transport([], forecast_status=500))
    try:
        result = await service.get_forecast(KL)
        assert result.fallback is True
        assert len(result.data) == 7
        assert {d.condition for d in result.data} == {WeatherCondition.PARTLY_CLOUDY}
    finally:
        await service.close()
