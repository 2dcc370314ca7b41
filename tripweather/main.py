import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from tripweather.config import Settings
from tripweather.config import settings as default_settings
from tripweather.errors import ValidationError
from tripweather.models import Location, WeatherResult, validate_coordinates, validate_days
from tripweather.services.weather import WeatherService, build_weather_service

logger = logging.getLogger("tripweather.http")


def cors_headers(origin: str) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
    }


async def _read_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


async def _read_location(request: Request) -> tuple:
    body = await _read_body(request)
    lat, lng = validate_coordinates(body.get("lat"), body.get("lng"))
    return Location(lat=lat, lng=lng, name=body.get("name")), body


def _envelope(result: WeatherResult, dump: Callable[[Any], Any]) -> JSONResponse:
    if result.cancelled:
        # Only happens while the service is shutting down.
        return JSONResponse({"error": "Weather request was cancelled"}, status_code=503)
    payload = dump(result.data)
    if result.fallback:
        return JSONResponse(
            {"error": result.error or "Weather data unavailable", "fallback": payload},
            status_code=500,
        )
    return JSONResponse({"data": payload, "cached": result.cached})


def _dump(model) -> Any:
    return model.model_dump(by_alias=True, mode="json")


def create_app(settings: Optional[Settings] = None, service: Optional[WeatherService] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if service is None:
        # A server without provider credentials refuses to start.
        settings.require_credentials()
        service = build_weather_service(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await service.close()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.weather = service
    headers = cors_headers(settings.site_url)

    @app.middleware("http")
    async def cors_and_log(request: Request, call_next):
        start = time.perf_counter()
        if request.method == "OPTIONS":
            response = Response(status_code=204, headers=headers)
        else:
            response = await call_next(request)
            response.headers.update(headers)
        dur_ms = (time.perf_counter() - start) * 1000.0
        logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, dur_ms)
        return response

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.get("/health")
    def health():
        return {"status": "ok", "service": settings.app_name, "provider": settings.weather_provider}

    @app.get("/")
    def root():
        return JSONResponse({"service": settings.app_name, "docs": "/docs"})

    # ── Weather endpoints ───────────────────────────────────────────────────

    @app.post("/forecast")
    async def forecast(request: Request):
        location, body = await _read_location(request)
        days = validate_days(body.get("days", settings.default_forecast_days))
        result = await request.app.state.weather.get_forecast(location, days)
        return _envelope(result, lambda daily: [_dump(d) for d in daily])

    @app.post("/currentConditions")
    async def current_conditions(request: Request):
        location, _ = await _read_location(request)
        result = await request.app.state.weather.get_current(location)
        return _envelope(result, _dump)

    @app.post("/publicAlerts")
    async def public_alerts(request: Request):
        location, _ = await _read_location(request)
        result = await request.app.state.weather.get_alert(location)
        return _envelope(result, _dump)

    return app


app = create_app()
