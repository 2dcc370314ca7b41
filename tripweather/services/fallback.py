"""Degraded-service payloads handed out when the upstream call fails."""
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from tripweather.models import (
    CurrentConditions,
    DailyForecast,
    RiskLevel,
    WeatherCondition,
)
from tripweather.services.classifier import day_of_week

FALLBACK_DAYS = 7


def fallback_forecast(days: int = FALLBACK_DAYS, today: Optional[date] = None) -> List[DailyForecast]:
    start = today or datetime.now(timezone.utc).date()
    daily = []
    for i in range(days):
        day = (start + timedelta(days=i)).isoformat()
        daily.append(
            DailyForecast(
                date=day,
                day_of_week=day_of_week(day),
                temp_max=32,
                temp_min=24,
                precipitation_sum=0,
                precipitation_probability=30,
                condition=WeatherCondition.PARTLY_CLOUDY,
                description="Partly cloudy",
                flash_flood_risk=RiskLevel.LOW,
                sunrise="07:00",
                sunset="19:00",
                is_fallback=True,
            )
        )
    return daily


def fallback_current() -> CurrentConditions:
    return CurrentConditions(
        temperature=28,
        humidity=70,
        condition=WeatherCondition.PARTLY_CLOUDY,
        precipitation=0,
        wind_speed=10,
        description="Partly cloudy",
        updated_at=datetime.now(timezone.utc),
        is_fallback=True,
    )
