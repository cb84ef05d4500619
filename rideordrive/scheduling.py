"""In-process background work: one-off and periodic tasks, alarms and monitoring."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .category import FORECAST_HOURS, WeatherCategory, categorize, categorize_with_forecast
from .clock import localnow, next_occurrence, utcnow
from .entities import WeatherData
from .location import LocationService
from .notifications import Notification, NotificationService, Notifier
from .preferences import PreferencesStore
from .services.weather import WeatherService


logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[object]]

DAILY_FETCH_TASK = "daily_weather_fetch"
WEATHER_CHECK_TASK = "weather_check_task"
TEST_ALARM_TASK = "test_weather_alarm"

TEST_ALARM_ID = 101


class TaskScheduler:
    """Named asyncio tasks; registering an existing name replaces the task.

    Must be used from inside a running event loop.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, asyncio.Task] = {}

    def register_one_off(self, name: str, delay: float, action: Action) -> asyncio.Task:
        return self._register(name, self._run_once(name, max(delay, 0.0), action))

    def register_periodic(self, name: str, interval: float, action: Action) -> asyncio.Task:
        if interval <= 0:
            raise ValueError("interval must be positive")
        return self._register(name, self._run_periodic(name, interval, action))

    def cancel(self, name: str) -> bool:
        task = self._tasks.pop(name, None)
        if task is None:
            return False
        task.cancel()
        logger.debug("Task %s cancelled", name)
        return True

    def is_registered(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def names(self) -> List[str]:
        return sorted(name for name in self._tasks if self.is_registered(name))

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Task scheduler shut down (%s tasks cancelled)", len(tasks))

    def _register(self, name: str, coro) -> asyncio.Task:
        previous = self._tasks.pop(name, None)
        # a one-off task may re-register itself while it runs
        if previous is not None and previous is not asyncio.current_task():
            previous.cancel()
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks[name] = task
        return task

    async def _run_once(self, name: str, delay: float, action: Action) -> None:
        try:
            await asyncio.sleep(delay)
            await self._execute(name, action)
        finally:
            if self._tasks.get(name) is asyncio.current_task():
                del self._tasks[name]

    async def _run_periodic(self, name: str, interval: float, action: Action) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._execute(name, action)

    async def _execute(self, name: str, action: Action) -> None:
        logger.debug("Running task %s", name)
        try:
            await action()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Task %s failed", name)


class WeatherMonitor:
    """Periodic weather checks that feed the daily notification."""

    MONITORING_ACTIVE_KEY = "monitoring_active"
    LAST_CHECK_KEY = "last_weather_check"
    LAST_CATEGORY_KEY = "last_weather_category"

    def __init__(
        self,
        scheduler: TaskScheduler,
        weather_service: WeatherService,
        location_service: LocationService,
        notification_service: NotificationService,
        preferences: PreferencesStore,
        interval: float = 15 * 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.scheduler = scheduler
        self.weather_service = weather_service
        self.location_service = location_service
        self.notification_service = notification_service
        self.preferences = preferences
        self.interval = interval
        self.clock = clock
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        if self.preferences.get_bool(self.MONITORING_ACTIVE_KEY) and not self.scheduler.is_registered(
            WEATHER_CHECK_TASK
        ):
            logger.info("Resuming weather monitoring")
            self.scheduler.register_periodic(WEATHER_CHECK_TASK, self.interval, self.perform_check)
        logger.info("Weather monitor initialized")

    async def start_monitoring(self) -> None:
        if not self._initialized:
            await self.initialize()
        self.scheduler.register_periodic(WEATHER_CHECK_TASK, self.interval, self.perform_check)
        self.preferences.set_bool(self.MONITORING_ACTIVE_KEY, True)
        logger.info("Weather monitoring started (every %s seconds)", self.interval)

    async def stop_monitoring(self) -> None:
        self.scheduler.cancel(WEATHER_CHECK_TASK)
        self.preferences.set_bool(self.MONITORING_ACTIVE_KEY, False)
        logger.info("Weather monitoring stopped")

    def is_monitoring(self) -> bool:
        return bool(self.preferences.get_bool(self.MONITORING_ACTIVE_KEY))

    async def fetch(self) -> Tuple[WeatherData, List[WeatherData]]:
        coordinates = await self.location_service.resolve()
        current, forecast = await asyncio.gather(
            asyncio.to_thread(self.weather_service.get_current, coordinates.latitude, coordinates.longitude),
            asyncio.to_thread(
                self.weather_service.get_hourly,
                coordinates.latitude,
                coordinates.longitude,
                FORECAST_HOURS,
            ),
        )
        return current, forecast

    async def perform_check(self) -> Optional[WeatherCategory]:
        logger.debug("Performing background weather check")
        try:
            current, forecast = await self.fetch()
        except Exception:  # noqa: BLE001
            logger.error("Background weather check failed", exc_info=True)
            return None
        category = self._record(current, forecast)
        self.notification_service.show_daily_weather_notification(current, forecast)
        logger.debug("Background weather check completed (%s)", category.name)
        return category

    async def perform_daily_fetch(self) -> Optional[Notification]:
        try:
            current, forecast = await self.fetch()
        except Exception:  # noqa: BLE001
            logger.error("Daily weather fetch failed", exc_info=True)
            return self.notification_service.show_fallback_notification()
        self._record(current, forecast)
        return self.notification_service.show_daily_weather_notification(current, forecast)

    def last_check_time(self) -> Optional[datetime]:
        stamp = self.preferences.get_int(self.LAST_CHECK_KEY)
        if stamp is None:
            return None
        return datetime.fromtimestamp(stamp / 1000, tz=timezone.utc)

    def last_category(self) -> Optional[WeatherCategory]:
        name = self.preferences.get_string(self.LAST_CATEGORY_KEY)
        if name is None:
            return None
        try:
            return WeatherCategory[name]
        except KeyError:
            return None

    def statistics(self) -> Dict[str, object]:
        last_check = self.last_check_time()
        last_category = self.last_category()
        return {
            "status": "active" if self.is_monitoring() else "inactive",
            "interval_seconds": self.interval,
            "last_check": last_check.isoformat() if last_check else None,
            "last_category": last_category.name.lower() if last_category else None,
        }

    def _record(self, current: WeatherData, forecast: List[WeatherData]) -> WeatherCategory:
        category = categorize_with_forecast(current, forecast) if forecast else categorize(current)
        self.preferences.set_int(self.LAST_CHECK_KEY, int(self.clock().timestamp() * 1000))
        self.preferences.set_string(self.LAST_CATEGORY_KEY, category.name)
        return category


class ScheduledNotificationService:
    ALARM_ENABLED_KEY = "alarm_enabled"
    ALARM_HOUR_KEY = "alarm_hour"
    ALARM_MINUTE_KEY = "alarm_minute"
    DAILY_SCHEDULED_KEY = "daily_alarm_scheduled"
    DAILY_TIME_KEY = "daily_alarm_time"
    TEST_SCHEDULED_KEY = "test_alarm_scheduled"
    TEST_TIME_KEY = "test_alarm_time"

    DEFAULT_HOUR = 9
    DEFAULT_MINUTE = 0

    def __init__(
        self,
        scheduler: TaskScheduler,
        notifier: Notifier,
        preferences: PreferencesStore,
        monitor: WeatherMonitor,
        clock: Callable[[], datetime] = localnow,
    ) -> None:
        self.scheduler = scheduler
        self.notifier = notifier
        self.preferences = preferences
        self.monitor = monitor
        self.clock = clock
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        logger.info("Initializing scheduled notification service")
        await self.monitor.notification_service.initialize()
        self._initialized = True
        # tasks live in memory, so a persisted alarm has to be armed again
        if self.preferences.get_bool(self.ALARM_ENABLED_KEY):
            self.schedule_daily_alarm()

    # Daily alarm ---------------------------------------------------------
    def schedule_daily_alarm(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if not self.preferences.get_bool(self.ALARM_ENABLED_KEY):
            logger.debug("Daily notifications are disabled, not scheduling")
            return None
        now = now or self.clock()
        hour, minute = self._alarm_time()
        return self._arm(now, next_occurrence(hour, minute, now))

    def _alarm_time(self) -> Tuple[int, int]:
        hour = self.preferences.get_int(self.ALARM_HOUR_KEY)
        minute = self.preferences.get_int(self.ALARM_MINUTE_KEY)
        return (
            self.DEFAULT_HOUR if hour is None else hour,
            self.DEFAULT_MINUTE if minute is None else minute,
        )

    def _arm(self, now: datetime, fire_at: datetime) -> datetime:
        delay = (fire_at - now).total_seconds()
        self.scheduler.register_one_off(DAILY_FETCH_TASK, delay, self._run_daily_fetch)
        self.preferences.set_bool(self.DAILY_SCHEDULED_KEY, True)
        self.preferences.set_string(self.DAILY_TIME_KEY, fire_at.isoformat())
        logger.info("Daily weather fetch scheduled for %s", fire_at.isoformat())
        return fire_at

    async def _run_daily_fetch(self) -> None:
        try:
            await self.monitor.perform_daily_fetch()
        finally:
            self.preferences.set_bool(self.DAILY_SCHEDULED_KEY, False)
            if self.preferences.get_bool(self.ALARM_ENABLED_KEY):
                # the slot that just fired must not be picked again
                now = self.clock()
                hour, minute = self._alarm_time()
                fire_at = next_occurrence(hour, minute, now)
                if fire_at <= now:
                    fire_at += timedelta(days=1)
                self._arm(now, fire_at)

    def cancel_daily_alarm(self) -> None:
        self.scheduler.cancel(DAILY_FETCH_TASK)
        self.preferences.set_bool(self.DAILY_SCHEDULED_KEY, False)
        self.preferences.remove(self.DAILY_TIME_KEY)
        logger.debug("Daily alarm cancelled")

    # Test alarm ----------------------------------------------------------
    def schedule_test_alarm(self, minutes: float = 2, now: Optional[datetime] = None) -> Notification:
        now = now or self.clock()
        fire_at = now + timedelta(minutes=minutes)
        self.notifier.cancel(TEST_ALARM_ID)
        notification = Notification(
            id=TEST_ALARM_ID,
            title="Weather Test",
            body="Testing weather notification system",
            channel="test_weather_scheduled",
            payload="fetch_and_show_weather",
            scheduled_for=fire_at,
        )
        self.notifier.schedule(notification)
        self.scheduler.register_one_off(
            TEST_ALARM_TASK, (fire_at - now).total_seconds(), lambda: self._deliver_test_alarm(notification)
        )
        self.preferences.set_bool(self.TEST_SCHEDULED_KEY, True)
        self.preferences.set_string(self.TEST_TIME_KEY, fire_at.isoformat())
        logger.info("Test notification scheduled for %s", fire_at.isoformat())
        return notification

    async def _deliver_test_alarm(self, notification: Notification) -> None:
        self.notifier.cancel(notification.id)
        self.notifier.show(notification)
        self.preferences.set_bool(self.TEST_SCHEDULED_KEY, False)
        self.preferences.remove(self.TEST_TIME_KEY)

    def cancel_test_alarm(self) -> None:
        self.notifier.cancel(TEST_ALARM_ID)
        self.scheduler.cancel(TEST_ALARM_TASK)
        self.preferences.set_bool(self.TEST_SCHEDULED_KEY, False)
        self.preferences.remove(self.TEST_TIME_KEY)
        logger.debug("Test alarm cancelled")

    # Queries -------------------------------------------------------------
    def is_daily_alarm_scheduled(self) -> bool:
        return bool(self.preferences.get_bool(self.DAILY_SCHEDULED_KEY))

    def is_test_alarm_scheduled(self) -> bool:
        return bool(self.preferences.get_bool(self.TEST_SCHEDULED_KEY))

    def is_alarm_scheduled(self) -> bool:
        return self.is_daily_alarm_scheduled() or self.is_test_alarm_scheduled()

    def next_daily_alarm_time(self) -> Optional[datetime]:
        if not self.is_daily_alarm_scheduled():
            return None
        return self._parse(self.preferences.get_string(self.DAILY_TIME_KEY))

    def next_test_alarm_time(self) -> Optional[datetime]:
        if not self.is_test_alarm_scheduled():
            return None
        return self._parse(self.preferences.get_string(self.TEST_TIME_KEY))

    def next_alarm_time(self) -> Optional[datetime]:
        return self.next_daily_alarm_time() or self.next_test_alarm_time()

    @staticmethod
    def _parse(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning("Ignoring malformed alarm time %r", value)
            return None


__all__ = [
    "DAILY_FETCH_TASK",
    "ScheduledNotificationService",
    "TEST_ALARM_ID",
    "TaskScheduler",
    "WEATHER_CHECK_TASK",
    "WeatherMonitor",
    "next_occurrence",
]
