from datetime import datetime, timezone
from typing import Iterable, List

from tripweather.models import (
    CurrentConditions,
    DailyForecast,
    PublicAlert,
    RawCurrentConditions,
    RawForecastPoint,
    RawPublicAlert,
)
from tripweather.services.classifier import (
    alert_level_from_severity,
    classify_flash_flood_risk,
    day_of_week,
    describe,
)


def normalize_current(provider, raw: RawCurrentConditions) -> CurrentConditions:
    condition = provider.condition_for(raw.weather_code)
    return CurrentConditions(
        temperature=raw.temperature,
        humidity=raw.humidity,
        condition=condition,
        weather_code=raw.weather_code,
        precipitation=raw.precipitation,
        wind_speed=raw.wind_speed,
        description=raw.description or describe(condition),
        updated_at=datetime.now(timezone.utc),
    )


def normalize_forecast(provider, points: Iterable[RawForecastPoint]) -> List[DailyForecast]:
    # Risk is classified here, once; cached days keep the stored level.
    daily = []
    for p in points:
        condition = provider.condition_for(p.weather_code)
        daily.append(
            DailyForecast(
                date=p.date,
                day_of_week=day_of_week(p.date),
                temp_max=p.temp_max,
                temp_min=p.temp_min,
                precipitation_sum=p.precipitation_sum,
                precipitation_probability=p.precipitation_probability,
                condition=condition,
                weather_code=p.weather_code,
                description=p.description or describe(condition),
                flash_flood_risk=classify_flash_flood_risk(p.precipitation_sum, p.precipitation_probability),
                sunrise=p.sunrise,
                sunset=p.sunset,
            )
        )
    return daily


def normalize_alerts(alerts: Iterable[RawPublicAlert]) -> List[PublicAlert]:
    return [
        PublicAlert(
            level=alert_level_from_severity(a.severity),
            title=a.headline or "Weather Alert",
            message=a.description or "",
            recommendation=a.instruction or "",
            affected_days=[a.effective_time] if a.effective_time else [],
        )
        for a in alerts
    ]
