"""Lazily built application services and their startup/shutdown order.

Startup runs in two phases.  The critical phase (preferences and the
notification service) is awaited and any failure aborts startup.  The
background phase (weather monitor and scheduled alarms) starts after a short
delay, runs concurrently, and only logs failures.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Type, TypeVar

from .cache import WeatherCache
from .config import Settings, configure_logging
from .entities import Coordinates
from .health import HealthRegistry
from .location import LocationService, Locator, StaticLocator
from .notifications import InMemoryNotifier, NotificationService, Notifier
from .permissions import (
    PermissionBackend,
    PermissionCoordinator,
    PermissionKind,
    PermissionStatus,
    StaticPermissionBackend,
)
from .preferences import PreferencesStore
from .providers.base import RequestConfig, WeatherProvider
from .providers.openmeteo import OpenMeteoProvider
from .providers.openweather import OpenWeatherProvider
from .scheduling import ScheduledNotificationService, TaskScheduler, WeatherMonitor
from .services.weather import WeatherService
from .state import WeatherState


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ServiceNotRegistered(LookupError):
    """Raised for a service type the manager does not know how to build."""


class ServiceManager:
    BACKGROUND_DELAY = 2.0

    _instance: Optional["ServiceManager"] = None
    _instance_lock = threading.Lock()

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        permission_backend: Optional[PermissionBackend] = None,
        locator: Optional[Locator] = None,
        notifier: Optional[Notifier] = None,
        primary_provider: Optional[WeatherProvider] = None,
        fallback_provider: Optional[WeatherProvider] = None,
        settle_delay: float = 0.5,
        background_delay: Optional[float] = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.permission_backend = permission_backend
        self.locator = locator
        self.notifier = notifier
        self.primary_provider = primary_provider
        self.fallback_provider = fallback_provider
        self.settle_delay = settle_delay
        self.background_delay = self.BACKGROUND_DELAY if background_delay is None else background_delay

        self._services: Dict[type, Any] = {}
        self._lock = threading.RLock()
        self._factories: Dict[type, Callable[[], Any]] = {
            HealthRegistry: HealthRegistry,
            PreferencesStore: self._build_preferences,
            PermissionCoordinator: self._build_coordinator,
            WeatherService: self._build_weather_service,
            LocationService: self._build_location_service,
            NotificationService: self._build_notification_service,
            TaskScheduler: TaskScheduler,
            WeatherMonitor: self._build_monitor,
            ScheduledNotificationService: self._build_scheduled_notifications,
            WeatherState: self._build_weather_state,
        }
        self._initialized = False
        self._initializing: Optional[asyncio.Lock] = None
        self._background_task: Optional[asyncio.Task] = None
        self.timings: Dict[str, float] = {}

    # -- process singleton -------------------------------------------------
    @classmethod
    def instance(cls) -> "ServiceManager":
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        with cls._instance_lock:
            if cls._instance is not None:
                cls._instance.reset()
            cls._instance = None

    # -- lookup ------------------------------------------------------------
    def get_service(self, service_type: Type[T]) -> T:
        with self._lock:
            service = self._services.get(service_type)
            if service is not None:
                return service
            factory = self._factories.get(service_type)
            if factory is None:
                raise ServiceNotRegistered(f"Service of type {service_type.__name__} is not registered")
            service = factory()
            self._services[service_type] = service
            logger.debug("Created service %s", service_type.__name__)
            return service

    def register_instance(self, service_type: Type[T], service: T) -> None:
        """Use an already built service instead of the default factory."""
        with self._lock:
            if service_type not in self._factories:
                raise ServiceNotRegistered(f"Service of type {service_type.__name__} is not registered")
            self._services[service_type] = service

    def has_instance(self, service_type: type) -> bool:
        return service_type in self._services

    @property
    def preferences(self) -> PreferencesStore:
        return self.get_service(PreferencesStore)

    @property
    def weather_service(self) -> WeatherService:
        return self.get_service(WeatherService)

    @property
    def notification_service(self) -> NotificationService:
        return self.get_service(NotificationService)

    @property
    def health(self) -> HealthRegistry:
        return self.get_service(HealthRegistry)

    @property
    def initialized(self) -> bool:
        return self._initialized

    # -- lifecycle ---------------------------------------------------------
    async def initialize_all(self) -> None:
        if self._initialized:
            return
        if self._initializing is None:
            self._initializing = asyncio.Lock()
        async with self._initializing:
            if self._initialized:
                return
            configure_logging(self.settings.log_level)
            started = time.perf_counter()
            logger.info("Initializing critical services")
            try:
                self.get_service(PreferencesStore).initialize()
                await self.get_service(NotificationService).initialize()
            except Exception:
                logger.exception("Critical service initialization failed")
                raise
            self.timings["critical"] = time.perf_counter() - started
            self._initialized = True
            logger.info("Critical services ready in %.3fs", self.timings["critical"])
            self._background_task = asyncio.get_running_loop().create_task(
                self._initialize_background(), name="background_service_init"
            )

    async def _initialize_background(self) -> None:
        if self.background_delay:
            await asyncio.sleep(self.background_delay)
        started = time.perf_counter()
        results = await asyncio.gather(
            self.get_service(WeatherMonitor).initialize(),
            self.get_service(ScheduledNotificationService).initialize(),
            return_exceptions=True,
        )
        for name, result in zip(("weather monitor", "scheduled notifications"), results):
            if isinstance(result, BaseException):
                logger.error("Background initialization of %s failed", name, exc_info=result)
        self.timings["background"] = time.perf_counter() - started
        logger.info("Background services ready in %.3fs", self.timings["background"])

    async def wait_for_background(self) -> None:
        if self._background_task is not None:
            await self._background_task

    async def dispose(self) -> None:
        if not self._services:
            return
        logger.info("Disposing services")
        if self._background_task is not None and not self._background_task.done():
            self._background_task.cancel()
            await asyncio.gather(self._background_task, return_exceptions=True)
        self._background_task = None

        steps = []
        if WeatherMonitor in self._services:
            steps.append(("stop monitoring", self._services[WeatherMonitor].stop_monitoring))
        if ScheduledNotificationService in self._services:
            scheduled = self._services[ScheduledNotificationService]
            steps.append(("cancel daily alarm", _as_async(scheduled.cancel_daily_alarm)))
            steps.append(("cancel test alarm", _as_async(scheduled.cancel_test_alarm)))
        if TaskScheduler in self._services:
            steps.append(("shut down scheduler", self._services[TaskScheduler].shutdown))
        if PreferencesStore in self._services:
            steps.append(("close preferences", _as_async(self._services[PreferencesStore].close)))

        for label, step in steps:
            try:
                await step()
            except Exception:  # noqa: BLE001
                logger.exception("Failed to %s", label)
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._services.clear()
        self._initialized = False
        self._initializing = None
        self._background_task = None
        self.timings.clear()

    # -- factories ---------------------------------------------------------
    def _request_config(self) -> RequestConfig:
        return RequestConfig(
            timeout=self.settings.request_timeout,
            retries=self.settings.request_retries,
            backoff_factor=self.settings.backoff_factor,
        )

    def _build_preferences(self) -> PreferencesStore:
        return PreferencesStore(self.settings.database_url)

    def _build_coordinator(self) -> PermissionCoordinator:
        backend = self.permission_backend or StaticPermissionBackend(
            statuses={kind: PermissionStatus.GRANTED for kind in PermissionKind}
        )
        return PermissionCoordinator(backend, settle_delay=self.settle_delay)

    def _build_weather_service(self) -> WeatherService:
        primary = self.primary_provider or OpenMeteoProvider(
            base_url=self.settings.open_meteo_url, request_config=self._request_config()
        )
        fallback = self.fallback_provider
        if fallback is None and self.settings.openweather_api_key:
            fallback = OpenWeatherProvider(
                self.settings.openweather_api_key,
                base_url=self.settings.openweather_url,
                request_config=self._request_config(),
            )
        return WeatherService(
            primary_provider=primary,
            fallback_provider=fallback,
            cache=WeatherCache(),
            health=self.get_service(HealthRegistry),
            current_ttl=self.settings.current_ttl,
            forecast_ttl=self.settings.forecast_ttl,
        )

    def _default_location(self) -> Coordinates:
        return Coordinates(self.settings.default_latitude, self.settings.default_longitude)

    def _build_location_service(self) -> LocationService:
        default = self._default_location()
        return LocationService(
            self.get_service(PermissionCoordinator),
            self.locator or StaticLocator(default.latitude, default.longitude),
            self.get_service(PreferencesStore),
            cache_ttl=timedelta(seconds=self.settings.location_cache_ttl),
            default_location=default,
        )

    def _build_notification_service(self) -> NotificationService:
        if self.notifier is None:
            self.notifier = InMemoryNotifier()
        return NotificationService(
            self.notifier,
            self.get_service(PermissionCoordinator),
            self.get_service(PreferencesStore),
            self.get_service(WeatherService),
            self.get_service(LocationService),
        )

    def _build_monitor(self) -> WeatherMonitor:
        return WeatherMonitor(
            self.get_service(TaskScheduler),
            self.get_service(WeatherService),
            self.get_service(LocationService),
            self.get_service(NotificationService),
            self.get_service(PreferencesStore),
            interval=self.settings.monitor_interval,
        )

    def _build_scheduled_notifications(self) -> ScheduledNotificationService:
        notification_service = self.get_service(NotificationService)
        return ScheduledNotificationService(
            self.get_service(TaskScheduler),
            notification_service.notifier,
            self.get_service(PreferencesStore),
            self.get_service(WeatherMonitor),
        )

    def _build_weather_state(self) -> WeatherState:
        return WeatherState(
            self.get_service(WeatherService),
            self.get_service(LocationService),
            freshness_window=timedelta(seconds=self.settings.freshness_window),
        )


def _as_async(func: Callable[[], Any]) -> Callable[[], Any]:
    async def runner() -> Any:
        return func()

    return runner


__all__ = ["ServiceManager", "ServiceNotRegistered"]
