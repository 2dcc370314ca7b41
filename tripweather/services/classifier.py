"""
Weather condition mapping and flash-flood risk classification.

Everything here is pure: same inputs, same outputs, no I/O.
"""
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional

from tripweather.models import DailyForecast, FlashFloodAlert, RiskLevel, WeatherCondition

C = WeatherCondition

# WMO weather interpretation codes (Open-Meteo).
WEATHER_CODE_MAP: Dict[int, WeatherCondition] = {
    0: C.CLEAR,
    1: C.CLEAR,
    2: C.PARTLY_CLOUDY,
    3: C.CLOUDY,
    45: C.FOG,
    48: C.FOG,
    51: C.DRIZZLE,
    53: C.DRIZZLE,
    55: C.DRIZZLE,
    56: C.DRIZZLE,
    57: C.DRIZZLE,
    61: C.RAIN,
    63: C.RAIN,
    65: C.HEAVY_RAIN,
    66: C.RAIN,
    67: C.HEAVY_RAIN,
    71: C.SNOW,
    73: C.SNOW,
    75: C.SNOW,
    77: C.SNOW,
    80: C.RAIN,
    81: C.RAIN,
    82: C.HEAVY_RAIN,
    85: C.SNOW,
    86: C.SNOW,
    95: C.STORM,
    96: C.STORM,
    99: C.STORM,
}

WEATHER_DESCRIPTIONS: Dict[WeatherCondition, str] = {
    C.CLEAR: "Clear skies",
    C.PARTLY_CLOUDY: "Partly cloudy",
    C.CLOUDY: "Cloudy",
    C.FOG: "Foggy",
    C.DRIZZLE: "Light drizzle",
    C.RAIN: "Rainy",
    C.HEAVY_RAIN: "Heavy rain",
    C.STORM: "Thunderstorm",
    C.SNOW: "Snow",
}

DEFAULT_CONDITION = C.CLOUDY

# (min sum mm, min probability %, level); both bounds are strict.
FLASH_FLOOD_THRESHOLDS = (
    (80.0, 85.0, RiskLevel.SEVERE),
    (50.0, 75.0, RiskLevel.HIGH),
    (30.0, 60.0, RiskLevel.MODERATE),
)

ALERT_TITLES = {
    RiskLevel.MODERATE: "Rain Advisory",
    RiskLevel.HIGH: "Heavy Rain Warning",
    RiskLevel.SEVERE: "Flash Flood Warning",
}

ALERT_MESSAGES = {
    RiskLevel.MODERATE: "Light to moderate rain expected. Plan indoor backup activities.",
    RiskLevel.HIGH: "Heavy rainfall expected. Flash flooding possible in low-lying areas.",
    RiskLevel.SEVERE: "Severe weather alert. High risk of flash flooding and thunderstorms.",
}

RECOMMENDATIONS = {
    RiskLevel.LOW: "Great day for outdoor activities! Stay hydrated and bring sunscreen.",
    RiskLevel.MODERATE: "Rain expected. Carry an umbrella and plan indoor backup activities for the afternoon.",
    RiskLevel.HIGH: (
        "Heavy rain likely. Consider switching to Plan B with indoor activities. "
        "Avoid underpasses and low-lying areas."
    ),
    RiskLevel.SEVERE: (
        "Severe weather alert! Stay indoors. Avoid all outdoor activities, underpasses, "
        "and flooded roads. Monitor official MET Malaysia alerts."
    ),
}

PLAN_B_SUGGESTIONS = {
    RiskLevel.MODERATE: "Consider indoor alternatives like malls, Aquaria KLCC, or museum visits for afternoon activities.",
    RiskLevel.HIGH: "Strongly recommend Plan B (indoor): Suria KLCC, Pavilion KL, or indoor playgrounds for your toddler.",
    RiskLevel.SEVERE: "Use Plan B only: Stay at accommodations or nearby malls. Avoid travel until weather improves.",
}

ALERT_SEVERITY_MAP = {
    "MINOR": RiskLevel.LOW,
    "MODERATE": RiskLevel.MODERATE,
    "SEVERE": RiskLevel.HIGH,
    "EXTREME": RiskLevel.SEVERE,
}


def _as_int(code: Any) -> Optional[int]:
    if isinstance(code, bool):
        return None
    try:
        return int(code)
    except (TypeError, ValueError):
        return None


def condition_from_code(code: Any) -> WeatherCondition:
    """Map a WMO weather code to a condition; unknown codes read as cloudy."""
    value = _as_int(code)
    if value is None:
        return DEFAULT_CONDITION
    return WEATHER_CODE_MAP.get(value, DEFAULT_CONDITION)


def condition_from_google_code(code: Any) -> WeatherCondition:
    """Map the Google provider's numeric codes (grouped by hundreds)."""
    value = _as_int(code)
    if value is None:
        return DEFAULT_CONDITION
    if 200 <= value < 300:
        return C.STORM
    if 300 <= value < 400:
        return C.DRIZZLE
    if 500 <= value < 600:
        return C.HEAVY_RAIN if value >= 502 else C.RAIN
    if 600 <= value < 700:
        return C.SNOW
    if 700 <= value < 800:
        return C.FOG
    if value == 800:
        return C.CLEAR
    if value in (801, 802):
        return C.PARTLY_CLOUDY
    if 803 <= value < 900:
        return C.CLOUDY
    return DEFAULT_CONDITION


def describe(condition: WeatherCondition) -> str:
    return WEATHER_DESCRIPTIONS[condition]


def classify_flash_flood_risk(precipitation_sum: float, precipitation_probability: float) -> RiskLevel:
    """
    Classify one day's flash-flood risk.

    Magnitude and confidence must both clear a level's thresholds; a large
    sum with a low probability (or the reverse) stays at the lower level.
    Weather codes play no part.
    """
    for min_sum, min_probability, level in FLASH_FLOOD_THRESHOLDS:
        if precipitation_sum > min_sum and precipitation_probability > min_probability:
            return level
    return RiskLevel.LOW


def aggregate_alert(daily: Iterable[DailyForecast]) -> Optional[FlashFloodAlert]:
    """Fold a multi-day forecast into one alert, or None when every day is low."""
    level = RiskLevel.LOW
    affected_days = []
    for day in daily:
        if day.flash_flood_risk > RiskLevel.LOW:
            affected_days.append(day.date)
        level = max(level, day.flash_flood_risk)

    if level == RiskLevel.LOW:
        return None

    return FlashFloodAlert(
        level=level,
        title=ALERT_TITLES[level],
        message=ALERT_MESSAGES[level],
        recommendation=RECOMMENDATIONS[level],
        plan_b_suggestion=PLAN_B_SUGGESTIONS.get(level),
        affected_days=affected_days,
    )


def alert_level_from_severity(severity: Optional[str]) -> RiskLevel:
    if not severity:
        return RiskLevel.MODERATE
    return ALERT_SEVERITY_MAP.get(severity.upper(), RiskLevel.MODERATE)


def day_of_week(value: str) -> str:
    """Short weekday label ("Mon") for an ISO date or datetime string."""
    try:
        parsed = date.fromisoformat(value[:10])
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(value).date()
        except (TypeError, ValueError):
            return ""
    return parsed.strftime("%a")
