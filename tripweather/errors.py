from typing import Optional


class WeatherError(Exception):
    """Base class for everything the weather layer raises."""


class ValidationError(WeatherError):
    """Bad coordinates or parameters. Never retried, never cached."""


class ConfigurationError(WeatherError):
    """Provider credentials or settings are missing."""


class UpstreamError(WeatherError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class UpstreamTimeoutError(UpstreamError):
    def __init__(self, timeout_seconds: float):
        super().__init__(f"Weather API request timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class RequestCancelled(WeatherError):
    """The caller's token was cancelled before the result was applied."""
