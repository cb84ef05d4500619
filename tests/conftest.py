from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List

import pytest

from rideordrive.entities import WeatherData
from rideordrive.preferences import MEMORY_URL, PreferencesStore
from rideordrive.service_manager import ServiceManager


class TimeController:
    def __init__(self) -> None:
        self.now = 0.0

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)

    def __call__(self) -> datetime:
        return self.now


class StubWeatherService:
    """Weather service double returning canned readings."""

    def __init__(self, current: WeatherData | None = None, forecast: List[WeatherData] | None = None) -> None:
        self.current = current
        self.forecast = list(forecast or [])
        self.error: Exception | None = None
        self.calls: List[tuple] = []

    def get_current(self, latitude: float, longitude: float, force_refresh: bool = False) -> WeatherData:
        self.calls.append(("current", latitude, longitude, force_refresh))
        if self.error is not None:
            raise self.error
        return self.current

    def get_hourly(self, latitude: float, longitude: float, hours: int = 24, force_refresh: bool = False):
        self.calls.append(("hourly", latitude, longitude, hours, force_refresh))
        if self.error is not None:
            raise self.error
        return self.forecast[:hours]


@pytest.fixture()
def time_controller() -> TimeController:
    return TimeController()


@pytest.fixture()
def fixed_clock() -> FixedClock:
    return FixedClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def make_weather() -> Callable[..., WeatherData]:
    def factory(**overrides) -> WeatherData:
        values = dict(
            temperature_c=20.0,
            wind_speed_kmh=10.0,
            wind_direction_deg=180.0,
            precipitation_mm=0.0,
            precipitation_probability=0.0,
            visibility_km=10.0,
            humidity_percent=50.0,
            weather_code=0,
            timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            source="test",
        )
        values.update(overrides)
        return WeatherData(**values)

    return factory


@pytest.fixture()
def stub_weather_service(make_weather) -> StubWeatherService:
    return StubWeatherService(current=make_weather(), forecast=[make_weather(source="hour")] * 8)


@pytest.fixture()
def preferences():
    store = PreferencesStore(MEMORY_URL)
    store.initialize()
    yield store
    store.close()


@pytest.fixture(autouse=True)
def _reset_service_manager():
    yield
    ServiceManager.reset_instance()
