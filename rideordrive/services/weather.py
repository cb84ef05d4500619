from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..cache import WeatherCache
from ..entities import Coordinates, WeatherData
from ..health import HealthRegistry
from ..providers.base import ProviderError, QuotaExceeded, WeatherProvider


class WeatherServiceError(ProviderError):
    """Raised when no provider can return weather data."""


class WeatherService:
    CURRENT_TTL = 10 * 60
    FORECAST_TTL = 30 * 60

    def __init__(
        self,
        *,
        primary_provider: WeatherProvider,
        fallback_provider: Optional[WeatherProvider] = None,
        cache: Optional[WeatherCache] = None,
        health: Optional[HealthRegistry] = None,
        current_ttl: Optional[float] = None,
        forecast_ttl: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.primary = primary_provider
        self.fallback = fallback_provider
        self.cache = cache or WeatherCache()
        self.health = health
        self.current_ttl = current_ttl if current_ttl is not None else self.CURRENT_TTL
        self.forecast_ttl = forecast_ttl if forecast_ttl is not None else self.FORECAST_TTL
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._total_requests = 0
        self._cache_hits = 0
        self._network_requests = 0
        self._failed_requests = 0
        self._last_request: Optional[datetime] = None

    @property
    def providers(self) -> List[WeatherProvider]:
        return [provider for provider in (self.primary, self.fallback) if provider is not None]

    # Public API ---------------------------------------------------------
    def get_current(self, latitude: float, longitude: float, force_refresh: bool = False) -> WeatherData:
        cache_key = self._cache_key("current", latitude, longitude)
        return self._get(
            cache_key,
            self.current_ttl,
            force_refresh,
            lambda: self._fetch_with_fallback("current", latitude, longitude),
        )

    def get_hourly(
        self,
        latitude: float,
        longitude: float,
        hours: int = 24,
        force_refresh: bool = False,
    ) -> List[WeatherData]:
        cache_key = self._cache_key("hourly", latitude, longitude, hours)
        return self._get(
            cache_key,
            self.forecast_ttl,
            force_refresh,
            lambda: self._fetch_with_fallback("hourly", latitude, longitude, hours=hours),
        )

    def get_many(self, locations: Iterable[Coordinates]) -> List[WeatherData]:
        """Current weather for several places; failing places are skipped."""
        result: List[WeatherData] = []
        for location in locations:
            try:
                result.append(self.get_current(location.latitude, location.longitude))
            except ProviderError as exc:
                self._log.warning(
                    "Failed to get weather for %s,%s: %s", location.latitude, location.longitude, exc
                )
        return result

    def clear_cache(self) -> None:
        self.cache.clear()
        self._log.debug("Weather cache cleared")

    def statistics(self) -> Dict[str, Any]:
        with self._stats_lock:
            total = self._total_requests
            hits = self._cache_hits
            stats = {
                "total_requests": total,
                "cache_hits": hits,
                "network_requests": self._network_requests,
                "failed_requests": self._failed_requests,
                "cache_hit_rate": f"{hits / total * 100:.1f}%" if total else "0%",
                "last_request": self._last_request.isoformat() if self._last_request else None,
            }
        with self._inflight_lock:
            stats["inflight_requests"] = len(self._inflight)
        return stats

    # Helpers ------------------------------------------------------------
    def _get(self, cache_key: str, ttl: float, force_refresh: bool, fetch: Callable[[], Any]) -> Any:
        with self._stats_lock:
            self._total_requests += 1
            self._last_request = datetime.now(timezone.utc)
        if not force_refresh:
            cached = self.cache.get(cache_key)
            if cached is not None:
                with self._stats_lock:
                    self._cache_hits += 1
                self._log.debug("Cache hit for %s", cache_key)
                self._publish_cache_stats()
                return cached
        def load() -> Any:
            value = fetch()
            # stored before the in-flight entry is released
            self.cache.set(cache_key, value, ttl)
            return value

        result = self._deduplicate(cache_key, load)
        self._publish_cache_stats()
        return result

    def _deduplicate(self, key: str, fetch: Callable[[], Any]) -> Any:
        with self._inflight_lock:
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future
        if not owner:
            self._log.debug("Waiting for in-flight request %s", key)
            return future.result()
        try:
            result = fetch()
        except Exception as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)

    def _fetch_with_fallback(self, method_name: str, *args, **kwargs):
        errors: List[Exception] = []
        for provider in self.providers:
            method = getattr(provider, method_name, None)
            if not callable(method):
                continue
            with self._stats_lock:
                self._network_requests += 1
            try:
                result = method(*args, **kwargs)
            except QuotaExceeded as exc:
                self._log.warning("Provider %s quota exceeded", provider.name)
                self._record_error(provider)
                errors.append(exc)
                continue
            except ProviderError as exc:
                self._log.error("Provider %s failed: %s", provider.name, exc)
                self._record_error(provider)
                errors.append(exc)
                continue
            if self.health is not None:
                self.health.record_provider_success(provider.name)
            return result
        with self._stats_lock:
            self._failed_requests += 1
        raise WeatherServiceError("all providers failed") from (errors[-1] if errors else None)

    def _record_error(self, provider: WeatherProvider) -> None:
        if self.health is not None:
            self.health.record_provider_error(provider.name)

    def _publish_cache_stats(self) -> None:
        if self.health is not None:
            self.health.set_cache_stats(self.cache.stats())

    def _cache_key(self, kind: str, latitude: float, longitude: float, extra: Optional[int] = None) -> str:
        if extra is not None:
            return f"weather:{kind}:{latitude:.4f}:{longitude:.4f}:{extra}"
        return f"weather:{kind}:{latitude:.4f}:{longitude:.4f}"


def summarize(points: Sequence[WeatherData]) -> Dict[str, Optional[float]]:
    """Min/max temperature, max wind and total precipitation over a forecast."""
    if not points:
        return {"min_temperature_c": None, "max_temperature_c": None, "max_wind_kmh": None, "precipitation_mm": None}
    temperatures = [point.temperature_c for point in points]
    return {
        "min_temperature_c": min(temperatures),
        "max_temperature_c": max(temperatures),
        "max_wind_kmh": max(point.wind_speed_kmh for point in points),
        "precipitation_mm": round(sum(point.precipitation_mm for point in points), 2),
    }


__all__ = ["WeatherService", "WeatherServiceError", "summarize"]
