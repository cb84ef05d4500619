from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import List

import pytest

from rideordrive.cache import WeatherCache
from rideordrive.entities import Coordinates, WeatherData
from rideordrive.health import HealthRegistry
from rideordrive.providers.base import ProviderError, QuotaExceeded
from rideordrive.providers.openmeteo import OpenMeteoProvider
from rideordrive.services.weather import WeatherService, WeatherServiceError, summarize


def make_point(source: str, temp: float = 15.0, wind: float = 10.0, rain: float = 0.0) -> WeatherData:
    return WeatherData(
        temperature_c=temp,
        wind_speed_kmh=wind,
        wind_direction_deg=0.0,
        precipitation_mm=rain,
        precipitation_probability=0.0,
        visibility_km=10.0,
        humidity_percent=50.0,
        weather_code=0,
        timestamp=datetime(2024, 5, 1, 12, tzinfo=timezone.utc),
        source=source,
    )


class _DummyProvider:
    def __init__(self, name: str = "dummy") -> None:
        self.name = name
        self.calls = 0

    def current(self, latitude: float, longitude: float) -> WeatherData:
        self.calls += 1
        return make_point(self.name)

    def hourly(self, latitude: float, longitude: float, hours: int = 24) -> List[WeatherData]:
        self.calls += 1
        return [make_point(self.name, temp=10.0 + idx) for idx in range(hours)]


class _FailingProvider:
    def __init__(self, name: str = "failing", error: Exception | None = None) -> None:
        self.name = name
        self.error = error or ProviderError("boom")
        self.calls = 0

    def current(self, latitude: float, longitude: float) -> WeatherData:
        self.calls += 1
        raise self.error

    def hourly(self, latitude: float, longitude: float, hours: int = 24) -> List[WeatherData]:
        self.calls += 1
        raise self.error


class _SlowProvider(_DummyProvider):
    def __init__(self) -> None:
        super().__init__("slow")
        self.started = threading.Event()
        self.release = threading.Event()

    def current(self, latitude: float, longitude: float) -> WeatherData:
        self.started.set()
        self.release.wait(timeout=5)
        return super().current(latitude, longitude)


def test_weather_service_caches_results(time_controller) -> None:
    provider = _DummyProvider()
    service = WeatherService(primary_provider=provider, cache=WeatherCache(time_func=time_controller))

    first = service.get_current(10.0, 20.0)
    second = service.get_current(10.0, 20.0)

    assert provider.calls == 1
    assert first is second
    stats = service.statistics()
    assert stats["total_requests"] == 2
    assert stats["cache_hits"] == 1
    assert stats["network_requests"] == 1
    assert stats["cache_hit_rate"] == "50.0%"


def test_current_cache_expires_after_ten_minutes(time_controller) -> None:
    provider = _DummyProvider()
    service = WeatherService(primary_provider=provider, cache=WeatherCache(time_func=time_controller))

    service.get_current(1.0, 2.0)
    time_controller.advance(600)
    service.get_current(1.0, 2.0)
    assert provider.calls == 1

    time_controller.advance(1)
    service.get_current(1.0, 2.0)
    assert provider.calls == 2


def test_forecast_cache_lasts_thirty_minutes(time_controller) -> None:
    provider = _DummyProvider()
    service = WeatherService(primary_provider=provider, cache=WeatherCache(time_func=time_controller))

    service.get_hourly(1.0, 2.0, hours=8)
    time_controller.advance(1500)
    service.get_hourly(1.0, 2.0, hours=8)
    assert provider.calls == 1

    service.get_hourly(1.0, 2.0, hours=24)
    assert provider.calls == 2


def test_force_refresh_bypasses_cache() -> None:
    provider = _DummyProvider()
    service = WeatherService(primary_provider=provider)

    service.get_current(1.0, 2.0)
    service.get_current(1.0, 2.0, force_refresh=True)

    assert provider.calls == 2


def test_weather_service_uses_fallback_provider() -> None:
    health = HealthRegistry()
    primary = _FailingProvider()
    fallback = _DummyProvider("fallback")
    service = WeatherService(primary_provider=primary, fallback_provider=fallback, health=health)

    result = service.get_current(0.0, 0.0)

    assert result.source == "fallback"
    assert primary.calls == 1
    snapshot = health.snapshot()
    assert snapshot["providers"]["errors"] == {"failing": 1}
    assert "fallback" in snapshot["providers"]["last_success"]


def test_quota_exceeded_falls_back() -> None:
    service = WeatherService(
        primary_provider=_FailingProvider(error=QuotaExceeded("quota")),
        fallback_provider=_DummyProvider("fallback"),
    )

    assert service.get_hourly(0.0, 0.0, hours=2)[0].source == "fallback"


def test_weather_service_raises_when_all_fail() -> None:
    service = WeatherService(primary_provider=_FailingProvider(), fallback_provider=_FailingProvider("other"))

    with pytest.raises(WeatherServiceError):
        service.get_current(0.0, 0.0)
    assert service.statistics()["failed_requests"] == 1


def test_failures_are_not_cached() -> None:
    provider = _FailingProvider()
    service = WeatherService(primary_provider=provider)

    for _ in range(2):
        with pytest.raises(WeatherServiceError):
            service.get_current(0.0, 0.0)

    assert provider.calls == 2


def test_concurrent_requests_share_one_fetch() -> None:
    provider = _SlowProvider()
    service = WeatherService(primary_provider=provider)
    results: List[WeatherData] = []

    def worker() -> None:
        results.append(service.get_current(5.0, 5.0))

    first = threading.Thread(target=worker)
    first.start()
    assert provider.started.wait(timeout=5)
    second = threading.Thread(target=worker)
    second.start()
    time.sleep(0.1)
    provider.release.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert provider.calls == 1
    assert len(results) == 2
    assert results[0] is results[1]
    assert service.statistics()["inflight_requests"] == 0


def test_get_many_skips_failing_locations() -> None:
    class _PickyProvider(_DummyProvider):
        def current(self, latitude: float, longitude: float) -> WeatherData:
            if latitude < 0:
                raise ProviderError("no coverage")
            return super().current(latitude, longitude)

    service = WeatherService(primary_provider=_PickyProvider())

    results = service.get_many([Coordinates(1.0, 1.0), Coordinates(-1.0, 1.0), Coordinates(2.0, 2.0)])

    assert len(results) == 2


def test_clear_cache_forces_new_fetch() -> None:
    provider = _DummyProvider()
    service = WeatherService(primary_provider=provider)

    service.get_current(1.0, 1.0)
    service.clear_cache()
    service.get_current(1.0, 1.0)

    assert provider.calls == 2


def test_service_with_http_provider(requests_mock) -> None:
    requests_mock.get(
        "https://meteo.test/v1/forecast",
        json={"current": {"time": "2024-05-01T12:00", "temperature_2m": 21.0, "visibility": 30000}},
    )
    health = HealthRegistry()
    service = WeatherService(
        primary_provider=OpenMeteoProvider(base_url="https://meteo.test/v1/forecast"), health=health
    )

    point = service.get_current(48.85, 2.35)
    service.get_current(48.85, 2.35)

    assert point.temperature_c == 21.0
    assert requests_mock.call_count == 1
    assert health.snapshot()["cache"]["hits"] == 1


def test_summarize_forecast() -> None:
    points = [make_point("a", temp=8.0, wind=12.0, rain=0.2), make_point("b", temp=14.0, wind=30.0, rain=1.1)]

    assert summarize(points) == {
        "min_temperature_c": 8.0,
        "max_temperature_c": 14.0,
        "max_wind_kmh": 30.0,
        "precipitation_mm": 1.3,
    }
    assert summarize([])["min_temperature_c"] is None
