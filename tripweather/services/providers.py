from typing import Any, Callable, Dict, List, Optional

import httpx

from tripweather.errors import ConfigurationError, UpstreamError
from tripweather.models import (
    RawCurrentConditions,
    RawForecastPoint,
    RawPublicAlert,
    WeatherCondition,
)
from tripweather.services.classifier import condition_from_code, condition_from_google_code


def _num(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _value(obj: Any, *path: str) -> Any:
    for name in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(name)
    return obj


class WeatherProvider:
    """
    Transport to one upstream weather API.

    Subclasses turn provider payloads into the Raw* records; everything
    above this layer is provider-agnostic.
    """

    name = "base"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def condition_for(self, code: Any) -> WeatherCondition:
        raise NotImplementedError

    async def fetch_current(self, lat: float, lng: float) -> RawCurrentConditions:
        raise NotImplementedError

    async def fetch_forecast(self, lat: float, lng: float, days: int) -> List[RawForecastPoint]:
        raise NotImplementedError

    async def fetch_alerts(self, lat: float, lng: float) -> List[RawPublicAlert]:
        raise NotImplementedError

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}/{path}"
        r = await self._get_client().get(url, params=params)
        if r.status_code < 200 or r.status_code >= 300:
            raise UpstreamError(
                f"Weather API error ({r.status_code}): {r.text[:300]}",
                status_code=r.status_code,
            )
        try:
            return r.json()
        except ValueError:
            raise UpstreamError("Weather API returned a non-JSON body", status_code=r.status_code)


def _parse_payload(parse: Callable[[Any], Any], payload: Any, what: str) -> Any:
    try:
        return parse(payload)
    except (AttributeError, KeyError, TypeError, IndexError, ValueError) as exc:
        raise UpstreamError(f"Malformed {what} payload: {exc}")


class GoogleWeatherProvider(WeatherProvider):
    name = "google"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout_seconds, transport)
        self.api_key = api_key

    def condition_for(self, code: Any) -> WeatherCondition:
        return condition_from_google_code(code)

    def _params(self, lat: float, lng: float, **extra: Any) -> Dict[str, Any]:
        if not self.api_key:
            raise ConfigurationError("GOOGLE_WEATHER_API_KEY is not configured")
        params = {
            "key": self.api_key,
            "location.latitude": str(lat),
            "location.longitude": str(lng),
        }
        params.update({k: str(v) for k, v in extra.items()})
        return params

    async def fetch_forecast(self, lat: float, lng: float, days: int) -> List[RawForecastPoint]:
        payload = await self._get_json(
            "forecast/days:lookup",
            self._params(lat, lng, days=days, unitsSystem="METRIC"),
        )
        return _parse_payload(self._parse_forecast, payload, "forecast")

    async def fetch_current(self, lat: float, lng: float) -> RawCurrentConditions:
        payload = await self._get_json(
            "currentConditions:lookup",
            self._params(lat, lng, unitsSystem="METRIC"),
        )
        return _parse_payload(self._parse_current, payload, "current conditions")

    async def fetch_alerts(self, lat: float, lng: float) -> List[RawPublicAlert]:
        payload = await self._get_json("publicAlerts:lookup", self._params(lat, lng))
        return _parse_payload(self._parse_alerts, payload, "alerts")

    @staticmethod
    def _date(value: Any) -> str:
        if isinstance(value, dict):
            return f"{int(value['year']):04d}-{int(value['month']):02d}-{int(value['day']):02d}"
        if not isinstance(value, str) or not value:
            raise ValueError("forecast day without a date")
        return value

    def _parse_forecast(self, payload: Dict[str, Any]) -> List[RawForecastPoint]:
        days = payload.get("dailyForecasts")
        if days is None:
            return []
        points = []
        for day in days:
            points.append(
                RawForecastPoint(
                    date=self._date(day.get("date")),
                    temp_max=_num(_value(day, "temperature", "high", "value")),
                    temp_min=_num(_value(day, "temperature", "low", "value")),
                    precipitation_sum=_num(_value(day, "totalPrecipitation", "value")),
                    precipitation_probability=_num(day.get("precipitationProbability")),
                    weather_code=day.get("weatherCode"),
                    description=day.get("description"),
                    sunrise=day.get("sunrise"),
                    sunset=day.get("sunset"),
                )
            )
        return points

    def _parse_current(self, payload: Dict[str, Any]) -> RawCurrentConditions:
        current = payload["current"]
        if not isinstance(current, dict):
            raise ValueError("current conditions missing")
        return RawCurrentConditions(
            temperature=_num(_value(current, "temperature", "value")),
            humidity=_num(current.get("humidity")),
            weather_code=current.get("weatherCode"),
            precipitation=_num(_value(current, "precipitation", "value")),
            wind_speed=_num(_value(current, "windSpeed", "value")),
            description=current.get("description"),
        )

    def _parse_alerts(self, payload: Dict[str, Any]) -> List[RawPublicAlert]:
        return [
            RawPublicAlert(
                severity=alert.get("severity"),
                headline=alert.get("headline"),
                description=alert.get("description"),
                instruction=alert.get("instruction"),
                effective_time=alert.get("effectiveTime"),
            )
            for alert in payload.get("alerts") or []
        ]


class OpenMeteoProvider(WeatherProvider):
    """Open-Meteo needs no key and publishes no public alerts."""

    name = "open-meteo"

    CURRENT_FIELDS = "temperature_2m,relative_humidity_2m,weather_code,precipitation,wind_speed_10m"
    DAILY_FIELDS = (
        "weather_code,temperature_2m_max,temperature_2m_min,precipitation_sum,"
        "precipitation_probability_max,sunrise,sunset"
    )

    def __init__(
        self,
        base_url: str,
        timezone: str = "auto",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout_seconds, transport)
        self.timezone = timezone

    def condition_for(self, code: Any) -> WeatherCondition:
        return condition_from_code(code)

    async def fetch_current(self, lat: float, lng: float) -> RawCurrentConditions:
        payload = await self._get_json(
            "forecast",
            {"latitude": lat, "longitude": lng, "current": self.CURRENT_FIELDS, "timezone": self.timezone},
        )
        return _parse_payload(self._parse_current, payload, "current conditions")

    async def fetch_forecast(self, lat: float, lng: float, days: int) -> List[RawForecastPoint]:
        payload = await self._get_json(
            "forecast",
            {
                "latitude": lat,
                "longitude": lng,
                "daily": self.DAILY_FIELDS,
                "timezone": self.timezone,
                "forecast_days": days,
            },
        )
        return _parse_payload(self._parse_forecast, payload, "forecast")

    async def fetch_alerts(self, lat: float, lng: float) -> List[RawPublicAlert]:
        return []

    def _parse_current(self, payload: Dict[str, Any]) -> RawCurrentConditions:
        current = payload["current"]
        return RawCurrentConditions(
            temperature=_num(current["temperature_2m"]),
            humidity=_num(current.get("relative_humidity_2m")),
            weather_code=current.get("weather_code"),
            precipitation=_num(current.get("precipitation")),
            wind_speed=_num(current.get("wind_speed_10m")),
        )

    def _parse_forecast(self, payload: Dict[str, Any]) -> List[RawForecastPoint]:
        daily = payload["daily"]
        dates = daily["time"]

        def column(name: str) -> List[Any]:
            values = daily.get(name) or []
            return list(values) + [None] * (len(dates) - len(values))

        codes = column("weather_code")
        highs = column("temperature_2m_max")
        lows = column("temperature_2m_min")
        sums = column("precipitation_sum")
        probs = column("precipitation_probability_max")
        sunrises = column("sunrise")
        sunsets = column("sunset")
        return [
            RawForecastPoint(
                date=dates[i],
                temp_max=_num(highs[i]),
                temp_min=_num(lows[i]),
                precipitation_sum=_num(sums[i]),
                precipitation_probability=_num(probs[i]),
                weather_code=codes[i],
                sunrise=sunrises[i],
                sunset=sunsets[i],
            )
            for i in range(len(dates))
        ]


def build_provider(settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> WeatherProvider:
    if settings.weather_provider == "open-meteo":
        return OpenMeteoProvider(
            settings.open_meteo_base_url,
            timezone=settings.open_meteo_timezone,
            timeout_seconds=settings.fetch_timeout_seconds,
            transport=transport,
        )
    return GoogleWeatherProvider(
        settings.google_weather_base_url,
        settings.google_weather_api_key,
        timeout_seconds=settings.fetch_timeout_seconds,
        transport=transport,
    )
