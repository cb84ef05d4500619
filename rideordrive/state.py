"""Observable weather state shared by the presentation layers."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .clock import utcnow
from .category import WeatherCategory, categorize, categorize_with_forecast
from .entities import WeatherData
from .location import LocationService
from .services.weather import WeatherService


logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class WeatherState:
    """Loads current weather plus forecast and caches it for a freshness window.

    Listeners are called after every observable change (loading flag, error,
    data).  A failed load keeps previously loaded data and only reports an
    error when there is nothing to show.
    """

    ERROR_MESSAGE = (
        "Failed to load weather data. Please check your internet connection and location permissions."
    )
    FORECAST_HOURS = 24

    def __init__(
        self,
        weather_service: WeatherService,
        location_service: LocationService,
        freshness_window: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.weather_service = weather_service
        self.location_service = location_service
        self.freshness_window = freshness_window
        self.clock = clock
        self._current: Optional[WeatherData] = None
        self._forecast: List[WeatherData] = []
        self._is_loading = False
        self._error_message: Optional[str] = None
        self._last_update: Optional[datetime] = None
        self._listeners: List[Listener] = []

    # -- read side ----------------------------------------------------------
    @property
    def current(self) -> Optional[WeatherData]:
        return self._current

    @property
    def forecast(self) -> List[WeatherData]:
        return list(self._forecast)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error_message(self) -> Optional[str]:
        return self._error_message

    @property
    def last_update(self) -> Optional[datetime]:
        return self._last_update

    @property
    def has_forecast(self) -> bool:
        return bool(self._forecast)

    @property
    def category(self) -> Optional[WeatherCategory]:
        if self._current is None:
            return None
        if self._forecast:
            return categorize_with_forecast(self._current, self._forecast)
        return categorize(self._current)

    def is_fresh(self) -> bool:
        if self._current is None or self._last_update is None:
            return False
        return self.clock() - self._last_update < self.freshness_window

    # -- listeners ----------------------------------------------------------
    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    # -- loading ------------------------------------------------------------
    async def load(self, force_refresh: bool = False) -> None:
        has_cached = self._current is not None and self._last_update is not None
        if not force_refresh and self.is_fresh():
            age = self.clock() - self._last_update  # type: ignore[operator]
            logger.debug("Using cached weather data (%d minutes old)", age.total_seconds() // 60)
            return

        if not has_cached:
            self._set_loading(True)
        self._clear_error()

        try:
            coordinates = await self.location_service.resolve()
            current, forecast = await asyncio.gather(
                asyncio.to_thread(
                    self.weather_service.get_current,
                    coordinates.latitude,
                    coordinates.longitude,
                    force_refresh,
                ),
                asyncio.to_thread(
                    self.weather_service.get_hourly,
                    coordinates.latitude,
                    coordinates.longitude,
                    self.FORECAST_HOURS,
                    force_refresh,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            if not has_cached:
                self._set_error(self.ERROR_MESSAGE)
            else:
                logger.warning("Serving stale weather data from %s", self._last_update)
            logger.error("Weather loading failed: %s", exc)
        else:
            self._current = current
            self._forecast = list(forecast)
            self._last_update = self.clock()
            logger.debug("Weather data loaded (%s forecast hours)", len(self._forecast))
            self._notify()

        self._set_loading(False)

    async def refresh(self) -> None:
        logger.debug("Refreshing weather data")
        await self.load(force_refresh=True)

    def clear(self) -> None:
        self._current = None
        self._forecast = []
        self._last_update = None
        self._clear_error()
        self._notify()

    # -- helpers ------------------------------------------------------------
    def _set_loading(self, loading: bool) -> None:
        if self._is_loading != loading:
            self._is_loading = loading
            self._notify()

    def _set_error(self, message: str) -> None:
        self._error_message = message
        self._notify()

    def _clear_error(self) -> None:
        if self._error_message is not None:
            self._error_message = None
            self._notify()


__all__ = ["WeatherState"]
