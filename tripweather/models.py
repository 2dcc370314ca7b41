import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tripweather.errors import ValidationError

T = TypeVar("T")

MIN_FORECAST_DAYS = 1
MAX_FORECAST_DAYS = 16


class DataKind(str, Enum):
    CURRENT = "current"
    FORECAST = "forecast"
    ALERTS = "alerts"


class WeatherCondition(str, Enum):
    CLEAR = "clear"
    PARTLY_CLOUDY = "partly-cloudy"
    CLOUDY = "cloudy"
    FOG = "fog"
    DRIZZLE = "drizzle"
    RAIN = "rain"
    HEAVY_RAIN = "heavy-rain"
    STORM = "storm"
    SNOW = "snow"


class RiskLevel(str, Enum):
    """Flash-flood risk, totally ordered low < moderate < high < severe."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    SEVERE = "severe"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MODERATE, RiskLevel.HIGH, RiskLevel.SEVERE]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Location(_CamelModel):
    lat: float
    lng: float
    name: Optional[str] = None


class CurrentConditions(_CamelModel):
    temperature: float
    humidity: float
    condition: WeatherCondition
    weather_code: Optional[int] = None
    precipitation: float = 0.0
    wind_speed: float = 0.0
    description: str = ""
    updated_at: datetime
    is_fallback: bool = False


class DailyForecast(_CamelModel):
    date: str
    day_of_week: str = ""
    temp_max: float
    temp_min: float
    precipitation_sum: float
    precipitation_probability: float
    condition: WeatherCondition
    weather_code: Optional[int] = None
    description: str = ""
    flash_flood_risk: RiskLevel = RiskLevel.LOW
    sunrise: Optional[str] = None
    sunset: Optional[str] = None
    is_fallback: bool = False


class FlashFloodAlert(_CamelModel):
    level: RiskLevel
    title: str
    message: str
    recommendation: str
    plan_b_suggestion: Optional[str] = None
    affected_days: List[str] = Field(default_factory=list)


class PublicAlert(_CamelModel):
    level: RiskLevel
    title: str
    message: str = ""
    recommendation: str = ""
    affected_days: List[str] = Field(default_factory=list)


class AlertsReport(_CamelModel):
    alerts: List[PublicAlert] = Field(default_factory=list)
    flash_flood_alert: Optional[FlashFloodAlert] = None
    is_fallback: bool = False


# Provider-neutral records produced by the upstream parsers.

@dataclass
class RawForecastPoint:
    date: str
    temp_max: float
    temp_min: float
    precipitation_sum: float
    precipitation_probability: float
    weather_code: Optional[int]
    description: Optional[str] = None
    sunrise: Optional[str] = None
    sunset: Optional[str] = None


@dataclass
class RawCurrentConditions:
    temperature: float
    humidity: float
    weather_code: Optional[int]
    precipitation: float = 0.0
    wind_speed: float = 0.0
    description: Optional[str] = None


@dataclass
class RawPublicAlert:
    severity: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    instruction: Optional[str] = None
    effective_time: Optional[str] = None


@dataclass
class WeatherResult(Generic[T]):
    """What every WeatherService operation hands back to its callers.

    ``fallback`` marks synthesized data; ``error`` carries the upstream
    failure that caused it so the UI can flag degraded mode.
    """

    data: T
    cached: bool = False
    fallback: bool = False
    error: Optional[str] = None
    cancelled: bool = False


def _coerce_number(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid coordinates: {name} must be a valid number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid coordinates: {name} must be a valid number")
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"Invalid coordinates: {name} must be a valid number")
    return number


def validate_coordinates(lat: Any, lng: Any) -> Tuple[float, float]:
    if lat is None or lng is None:
        raise ValidationError("Missing coordinates: lat and lng are required")

    lat_num = _coerce_number(lat, "lat")
    lng_num = _coerce_number(lng, "lng")

    if lat_num < -90 or lat_num > 90:
        raise ValidationError(f"Invalid latitude: {lat_num:g} (must be between -90 and 90)")
    if lng_num < -180 or lng_num > 180:
        raise ValidationError(f"Invalid longitude: {lng_num:g} (must be between -180 and 180)")
    return lat_num, lng_num


def validate_location(location: Any) -> Location:
    if isinstance(location, Location):
        lat, lng, name = location.lat, location.lng, location.name
    elif isinstance(location, dict):
        lat, lng, name = location.get("lat"), location.get("lng"), location.get("name")
    elif isinstance(location, (tuple, list)) and len(location) in (2, 3):
        lat, lng = location[0], location[1]
        name = location[2] if len(location) == 3 else None
    else:
        raise ValidationError("Missing coordinates: lat and lng are required")
    lat_num, lng_num = validate_coordinates(lat, lng)
    return Location(lat=lat_num, lng=lng_num, name=name)


def validate_days(days: Any) -> int:
    if days is None:
        raise ValidationError("Missing forecast days")
    if isinstance(days, bool):
        raise ValidationError("Invalid days: must be an integer")
    try:
        number = int(days)
    except (TypeError, ValueError):
        raise ValidationError("Invalid days: must be an integer")
    if number != days and not (isinstance(days, str) and days.strip().lstrip("-").isdigit()):
        raise ValidationError("Invalid days: must be an integer")
    if number < MIN_FORECAST_DAYS or number > MAX_FORECAST_DAYS:
        raise ValidationError(
            f"Invalid days: {number} (must be between {MIN_FORECAST_DAYS} and {MAX_FORECAST_DAYS})"
        )
    return number
