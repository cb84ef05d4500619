"""Management command printing the ride-or-drive advisory as JSON."""
from __future__ import annotations

import json
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from backend.api.views import MAX_FORECAST_HOURS, build_advisory, get_service_manager, parse_coordinates
from rideordrive.services.weather import WeatherServiceError


class Command(BaseCommand):
    help = "Print the ride-or-drive advisory for the provided coordinates"

    def add_arguments(self, parser) -> None:  # noqa: D401
        parser.add_argument("--lat", type=float, help="Latitude")
        parser.add_argument("--lon", type=float, help="Longitude")
        parser.add_argument("--hours", type=int, default=None, help="Forecast hours to fetch")

    def handle(self, *args: Any, **options: Any) -> None:  # noqa: D401
        latitude = options.get("lat")
        longitude = options.get("lon")
        hours = options.get("hours")

        if latitude is None or longitude is None:
            raise CommandError("--lat and --lon are required")
        try:
            latitude, longitude = parse_coordinates(latitude, longitude)
        except ValueError as exc:
            raise CommandError(str(exc)) from exc
        if hours is not None and not 1 <= hours <= MAX_FORECAST_HOURS:
            raise CommandError(f"--hours must be between 1 and {MAX_FORECAST_HOURS}")

        try:
            payload = build_advisory(get_service_manager().weather_service, latitude, longitude, hours)
        except WeatherServiceError as exc:
            raise CommandError("All weather providers failed") from exc

        self.stdout.write(json.dumps(payload, ensure_ascii=False))
