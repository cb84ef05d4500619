from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest

from rideordrive.category import WeatherCategory
from rideordrive.clock import localnow
from rideordrive.entities import Coordinates
from rideordrive.notifications import DAILY_WEATHER_ID, FALLBACK_ID, InMemoryNotifier, NotificationService
from rideordrive.permissions import PermissionCoordinator, StaticPermissionBackend
from rideordrive.scheduling import (
    DAILY_FETCH_TASK,
    TEST_ALARM_ID,
    WEATHER_CHECK_TASK,
    ScheduledNotificationService,
    TaskScheduler,
    WeatherMonitor,
    next_occurrence,
)
from rideordrive.services.weather import WeatherServiceError


class _Location:
    async def resolve(self, latitude=None, longitude=None, allow_default=True) -> Coordinates:
        return Coordinates(45.0, 7.0)


@pytest.fixture()
def notifier() -> InMemoryNotifier:
    return InMemoryNotifier()


@pytest.fixture()
def notification_service(notifier, preferences, stub_weather_service) -> NotificationService:
    coordinator = PermissionCoordinator(StaticPermissionBackend(), settle_delay=0)
    return NotificationService(
        notifier, coordinator, preferences, stub_weather_service, _Location(), rng=random.Random(2)
    )


@pytest.fixture()
def scheduler():
    return TaskScheduler()


@pytest.fixture()
def monitor(scheduler, stub_weather_service, notification_service, preferences, fixed_clock) -> WeatherMonitor:
    return WeatherMonitor(
        scheduler,
        stub_weather_service,
        _Location(),
        notification_service,
        preferences,
        interval=0.01,
        clock=fixed_clock,
    )


@pytest.fixture()
def alarms(scheduler, notifier, preferences, monitor, fixed_clock) -> ScheduledNotificationService:
    return ScheduledNotificationService(scheduler, notifier, preferences, monitor, clock=fixed_clock)


def test_next_occurrence_today_or_tomorrow() -> None:
    now = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)

    assert next_occurrence(10, 0, now) == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert next_occurrence(9, 30, now) == now
    assert next_occurrence(9, 0, now) == datetime(2024, 5, 2, 9, 0, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        next_occurrence(9, 60, now)


@pytest.mark.asyncio
async def test_one_off_task_runs_once_and_unregisters(scheduler) -> None:
    runs = []

    async def action() -> None:
        runs.append(1)

    scheduler.register_one_off("job", 0.01, action)
    assert scheduler.is_registered("job")
    await asyncio.sleep(0.05)

    assert runs == [1]
    assert not scheduler.is_registered("job")


@pytest.mark.asyncio
async def test_reregistering_replaces_task(scheduler) -> None:
    runs = []

    async def first() -> None:
        runs.append("first")

    async def second() -> None:
        runs.append("second")

    scheduler.register_one_off("job", 0.02, first)
    scheduler.register_one_off("job", 0.02, second)
    await asyncio.sleep(0.06)

    assert runs == ["second"]


@pytest.mark.asyncio
async def test_periodic_task_survives_failures(scheduler) -> None:
    runs = []

    async def flaky() -> None:
        runs.append(1)
        if len(runs) == 1:
            raise RuntimeError("boom")

    scheduler.register_periodic("tick", 0.01, flaky)
    await asyncio.sleep(0.06)
    assert scheduler.cancel("tick") is True

    assert len(runs) >= 2
    assert not scheduler.is_registered("tick")
    assert scheduler.cancel("tick") is False


@pytest.mark.asyncio
async def test_shutdown_cancels_everything(scheduler) -> None:
    async def action() -> None:
        return None

    scheduler.register_one_off("a", 10, action)
    scheduler.register_periodic("b", 10, action)
    assert scheduler.names() == ["a", "b"]

    await scheduler.shutdown()

    assert scheduler.names() == []


@pytest.mark.asyncio
async def test_periodic_interval_must_be_positive(scheduler) -> None:
    async def action() -> None:
        return None

    with pytest.raises(ValueError):
        scheduler.register_periodic("bad", 0, action)


@pytest.mark.asyncio
async def test_perform_check_records_and_notifies(monitor, notifier, preferences, fixed_clock) -> None:
    category = await monitor.perform_check()

    assert category is WeatherCategory.PERFECT
    assert notifier.last_shown().id == DAILY_WEATHER_ID
    assert monitor.last_check_time() == fixed_clock.now
    assert monitor.last_category() is WeatherCategory.PERFECT
    assert preferences.get_string("last_weather_category") == "PERFECT"


@pytest.mark.asyncio
async def test_perform_check_failure_is_logged_only(monitor, notifier, stub_weather_service) -> None:
    stub_weather_service.error = WeatherServiceError("down")

    assert await monitor.perform_check() is None
    assert notifier.shown == []
    assert monitor.last_check_time() is None


@pytest.mark.asyncio
async def test_daily_fetch_falls_back_on_failure(monitor, notifier, stub_weather_service) -> None:
    stub_weather_service.error = WeatherServiceError("down")

    notification = await monitor.perform_daily_fetch()

    assert notification.id == FALLBACK_ID


@pytest.mark.asyncio
async def test_daily_fetch_respects_category_filter(monitor, notifier, preferences) -> None:
    preferences.set_string_list("alarm_categories", ["dangerous"])

    assert await monitor.perform_daily_fetch() is None
    assert notifier.shown == []
    assert monitor.last_category() is WeatherCategory.PERFECT


@pytest.mark.asyncio
async def test_monitoring_lifecycle(monitor, scheduler, notifier) -> None:
    await monitor.start_monitoring()
    assert monitor.is_monitoring()
    assert scheduler.is_registered(WEATHER_CHECK_TASK)

    await asyncio.sleep(0.3)
    assert notifier.shown

    await monitor.stop_monitoring()
    assert not monitor.is_monitoring()
    assert not scheduler.is_registered(WEATHER_CHECK_TASK)
    assert monitor.statistics()["status"] == "inactive"


@pytest.mark.asyncio
async def test_monitor_resumes_persisted_monitoring(monitor, scheduler, preferences) -> None:
    preferences.set_bool("monitoring_active", True)

    await monitor.initialize()

    assert scheduler.is_registered(WEATHER_CHECK_TASK)
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_daily_alarm_requires_enabled_flag(alarms, scheduler) -> None:
    assert alarms.schedule_daily_alarm() is None
    assert not scheduler.is_registered(DAILY_FETCH_TASK)
    assert alarms.is_alarm_scheduled() is False


@pytest.mark.asyncio
async def test_daily_alarm_uses_default_time(alarms, scheduler, preferences, fixed_clock) -> None:
    preferences.set_bool("alarm_enabled", True)

    fire_at = alarms.schedule_daily_alarm()

    # clock says 12:00, so 09:00 is tomorrow
    assert fire_at == datetime(2024, 5, 2, 9, 0, tzinfo=timezone.utc)
    assert scheduler.is_registered(DAILY_FETCH_TASK)
    assert alarms.is_daily_alarm_scheduled()
    assert alarms.next_daily_alarm_time() == fire_at
    assert alarms.next_alarm_time() == fire_at
    assert preferences.get_string("daily_alarm_time") == fire_at.isoformat()

    alarms.cancel_daily_alarm()
    assert not scheduler.is_registered(DAILY_FETCH_TASK)
    assert alarms.next_daily_alarm_time() is None
    assert preferences.get_string("daily_alarm_time") is None


@pytest.mark.asyncio
async def test_daily_alarm_custom_time(alarms, preferences) -> None:
    preferences.set_bool("alarm_enabled", True)
    preferences.set_int("alarm_hour", 18)
    preferences.set_int("alarm_minute", 45)

    assert alarms.schedule_daily_alarm() == datetime(2024, 5, 1, 18, 45, tzinfo=timezone.utc)
    alarms.cancel_daily_alarm()


@pytest.mark.asyncio
async def test_daily_alarm_fires_and_rearms(alarms, scheduler, notifier, preferences, fixed_clock) -> None:
    preferences.set_bool("alarm_enabled", True)
    preferences.set_int("alarm_hour", 12)
    preferences.set_int("alarm_minute", 0)

    alarms.schedule_daily_alarm()
    await asyncio.sleep(0.3)

    assert notifier.last_shown().id == DAILY_WEATHER_ID
    assert scheduler.is_registered(DAILY_FETCH_TASK)
    assert alarms.is_daily_alarm_scheduled()
    alarms.cancel_daily_alarm()


@pytest.mark.asyncio
async def test_test_alarm_schedule_and_cancel(alarms, notifier, fixed_clock) -> None:
    notification = alarms.schedule_test_alarm(minutes=2)

    assert notification.id == TEST_ALARM_ID
    assert notification.payload == "fetch_and_show_weather"
    assert notification.scheduled_for == datetime(2024, 5, 1, 12, 2, tzinfo=timezone.utc)
    assert [item.id for item in notifier.pending()] == [TEST_ALARM_ID]
    assert alarms.is_test_alarm_scheduled()
    assert alarms.next_test_alarm_time() == notification.scheduled_for
    assert alarms.next_alarm_time() == notification.scheduled_for

    alarms.cancel_test_alarm()
    assert notifier.pending() == []
    assert not alarms.is_alarm_scheduled()
    assert alarms.next_alarm_time() is None


@pytest.mark.asyncio
async def test_test_alarm_is_delivered(alarms, notifier) -> None:
    alarms.schedule_test_alarm(minutes=0)
    await asyncio.sleep(0.05)

    assert notifier.last_shown().id == TEST_ALARM_ID
    assert notifier.pending() == []
    assert not alarms.is_test_alarm_scheduled()


@pytest.mark.asyncio
async def test_next_alarm_prefers_daily(alarms, preferences) -> None:
    preferences.set_bool("alarm_enabled", True)
    daily = alarms.schedule_daily_alarm()
    alarms.schedule_test_alarm(minutes=5)

    assert alarms.next_alarm_time() == daily
    alarms.cancel_daily_alarm()
    alarms.cancel_test_alarm()


@pytest.mark.asyncio
async def test_initialize_rearms_enabled_alarm(alarms, scheduler, preferences) -> None:
    preferences.set_bool("alarm_enabled", True)

    await alarms.initialize()

    assert scheduler.is_registered(DAILY_FETCH_TASK)
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_daily_alarm_follows_wall_clock(scheduler, notifier, preferences, monitor) -> None:
    new_york = timezone(timedelta(hours=-4))
    alarms = ScheduledNotificationService(
        scheduler, notifier, preferences, monitor, clock=lambda: datetime(2024, 5, 1, 12, 0, tzinfo=new_york)
    )
    preferences.set_bool("alarm_enabled", True)

    fire_at = alarms.schedule_daily_alarm()

    assert fire_at == datetime(2024, 5, 2, 9, 0, tzinfo=new_york)
    assert fire_at.astimezone(timezone.utc).hour == 13
    alarms.cancel_daily_alarm()


@pytest.mark.asyncio
async def test_daily_alarm_defaults_to_host_timezone(scheduler, notifier, preferences, monitor) -> None:
    alarms = ScheduledNotificationService(scheduler, notifier, preferences, monitor)
    preferences.set_bool("alarm_enabled", True)

    fire_at = alarms.schedule_daily_alarm()

    assert alarms.clock is localnow
    assert fire_at.astimezone().hour == 9
    assert fire_at.minute == 0
    alarms.cancel_daily_alarm()
