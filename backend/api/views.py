"""REST API views for ride-or-drive advisories."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from django.conf import settings
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from rideordrive.category import (
    FORECAST_HOURS,
    categorize,
    categorize_with_forecast,
    condition_details,
    recommendation,
    visibility_text,
    weather_description,
    wind_direction_text,
)
from rideordrive.providers.base import ProviderError
from rideordrive.service_manager import ServiceManager
from rideordrive.services.weather import WeatherService, WeatherServiceError, summarize


logger = logging.getLogger(__name__)

MAX_FORECAST_HOURS = 48


def get_service_manager() -> ServiceManager:
    return ServiceManager.instance()


def parse_coordinates(latitude: Any, longitude: Any) -> Tuple[float, float]:
    """Validate raw coordinates; raises ``ValueError`` with a readable message."""
    if latitude is None or longitude is None:
        raise ValueError("lat and lon query parameters are required")
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        raise ValueError("lat and lon must be valid floating point numbers") from None
    if not -90.0 <= lat <= 90.0:
        raise ValueError("lat must be between -90 and 90")
    if not -180.0 <= lon <= 180.0:
        raise ValueError("lon must be between -180 and 180")
    return lat, lon


def build_advisory(
    service: WeatherService,
    latitude: float,
    longitude: float,
    hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Current weather, forecast and the riding verdict for one place.

    A failing forecast degrades the verdict to the current reading only;
    a failing current reading raises ``WeatherServiceError``.
    """
    hours = hours or getattr(settings, "ADVISORY_FORECAST_HOURS", FORECAST_HOURS)
    current = service.get_current(latitude, longitude)
    try:
        forecast = service.get_hourly(latitude, longitude, hours=hours)
    except ProviderError as exc:
        logger.warning("Forecast unavailable for %s,%s: %s", latitude, longitude, exc)
        forecast = []

    category = categorize_with_forecast(current, forecast) if forecast else categorize(current)
    return {
        "location": {"latitude": latitude, "longitude": longitude},
        "category": category.name.lower(),
        "title": category.title,
        "description": category.description,
        "color": category.color_hex,
        "recommendation": recommendation(category),
        "conditions": condition_details(current),
        "weather": weather_description(current.weather_code),
        "wind_direction": wind_direction_text(current.wind_direction_deg),
        "visibility": visibility_text(current.visibility_km),
        "forecast_hours_considered": min(len(forecast), FORECAST_HOURS),
        "current": current.as_dict(),
        "forecast": [point.as_dict() for point in forecast],
        "forecast_summary": summarize(forecast),
    }


class AdvisoryView(APIView):
    """Ride-or-drive verdict for the requested coordinates."""

    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):  # noqa: D401
        try:
            latitude, longitude = parse_coordinates(
                request.query_params.get("lat"), request.query_params.get("lon")
            )
            hours = self._parse_hours(request.query_params.get("hours"))
        except ValueError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        try:
            payload = build_advisory(get_service_manager().weather_service, latitude, longitude, hours)
        except WeatherServiceError:
            logger.error("All weather providers failed for %s,%s", latitude, longitude)
            return Response({"detail": "All weather providers failed"}, status=status.HTTP_502_BAD_GATEWAY)
        return Response(payload, status=status.HTTP_200_OK)

    @staticmethod
    def _parse_hours(value: Optional[str]) -> Optional[int]:
        if value in (None, ""):
            return None
        try:
            hours = int(value)
        except ValueError:
            raise ValueError("hours must be an integer") from None
        if not 1 <= hours <= MAX_FORECAST_HOURS:
            raise ValueError(f"hours must be between 1 and {MAX_FORECAST_HOURS}")
        return hours


class HealthView(APIView):
    """Provider, cache and request counters of this process."""

    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):  # noqa: D401
        manager = get_service_manager()
        payload = manager.health.snapshot()
        payload["weather_service"] = manager.weather_service.statistics()
        payload["status"] = "ok"
        return Response(payload, status=status.HTTP_200_OK)
