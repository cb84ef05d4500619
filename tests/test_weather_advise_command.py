from __future__ import annotations

import json
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from backend.api import views
from backend.api.management.commands import weather_advise
from rideordrive.config import Settings
from rideordrive.preferences import MEMORY_URL
from rideordrive.providers.openmeteo import OpenMeteoProvider
from rideordrive.service_manager import ServiceManager

METEO_URL = "https://meteo.test/v1/forecast"


@pytest.fixture()
def manager(monkeypatch) -> ServiceManager:
    manager = ServiceManager(
        Settings(database_url=MEMORY_URL, openweather_api_key=None),
        primary_provider=OpenMeteoProvider(base_url=METEO_URL),
    )
    monkeypatch.setattr(views, "get_service_manager", lambda: manager)
    monkeypatch.setattr(weather_advise, "get_service_manager", lambda: manager)
    return manager


def test_command_prints_advisory(manager, requests_mock) -> None:
    def respond(request, context):
        if "current" in request.qs:
            return {"current": {"time": "2024-05-01T12:00", "temperature_2m": 3.0, "wind_speed_10m": 5.0}}
        return {"hourly": {}}

    requests_mock.get(METEO_URL, json=respond)
    out = StringIO()

    call_command("weather_advise", "--lat", "59.9", "--lon", "10.7", stdout=out)

    payload = json.loads(out.getvalue())
    assert payload["category"] == "ok"
    assert payload["location"] == {"latitude": 59.9, "longitude": 10.7}
    assert payload["recommendation"]


def test_command_passes_forecast_hours(manager, requests_mock) -> None:
    requests_mock.get(METEO_URL, json={"current": {"temperature_2m": 20.0}, "hourly": {}})

    call_command("weather_advise", "--lat", "1", "--lon", "2", "--hours", "12", stdout=StringIO())

    hourly_request = next(req for req in requests_mock.request_history if "hourly" in req.qs)
    assert "temperature_2m" in hourly_request.qs["hourly"][0]
    assert manager.weather_service.statistics()["network_requests"] == 2


def test_command_requires_coordinates(manager) -> None:
    with pytest.raises(CommandError, match="--lat and --lon are required"):
        call_command("weather_advise", "--lat", "1", stdout=StringIO())


def test_command_rejects_out_of_range_values(manager) -> None:
    with pytest.raises(CommandError):
        call_command("weather_advise", "--lat", "95", "--lon", "2", stdout=StringIO())
    with pytest.raises(CommandError):
        call_command("weather_advise", "--lat", "1", "--lon", "2", "--hours", "100", stdout=StringIO())


def test_command_reports_provider_failure(manager, requests_mock) -> None:
    requests_mock.get(METEO_URL, status_code=503, text="down")

    with pytest.raises(CommandError, match="All weather providers failed"):
        call_command("weather_advise", "--lat", "1", "--lon", "2", stdout=StringIO())
