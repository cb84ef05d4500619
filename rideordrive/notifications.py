from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

from .category import (
    FORECAST_HOURS,
    all_messages,
    categorize,
    categorize_with_forecast,
    parse_categories,
    recommendation,
)
from .clock import localnow, next_occurrence, utcnow
from .entities import WeatherData
from .location import LocationService
from .permissions import PermissionCoordinator
from .preferences import PreferencesStore
from .services.weather import WeatherService


logger = logging.getLogger(__name__)

DAILY_WEATHER_ID = 1
SCHEDULED_DAILY_ID = 3
FALLBACK_ID = 5
TEST_ID = 999

ALARM_CATEGORIES_KEY = "alarm_categories"
DAILY_HOUR_KEY = "daily_notification_hour"
DAILY_MINUTE_KEY = "daily_notification_minute"
DAILY_ENABLED_KEY = "daily_notification_enabled"

WEATHER_PAYLOADS = frozenset({"scheduled_weather", "fetch_and_show_weather", "immediate_weather_display"})

FALLBACK_BODY = "Unable to fetch current weather. Please check your internet connection and try again."


@dataclass
class Notification:
    id: int
    title: str
    body: str
    channel: str
    payload: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)


class Notifier(Protocol):
    """Platform facility that displays and schedules notifications."""

    def show(self, notification: Notification) -> None:
        ...

    def schedule(self, notification: Notification) -> None:
        ...

    def cancel(self, notification_id: int) -> None:
        ...

    def cancel_all(self) -> None:
        ...

    def pending(self) -> List[Notification]:
        ...


class InMemoryNotifier:
    """Keeps shown and pending notifications in memory and logs them."""

    def __init__(self) -> None:
        self.shown: List[Notification] = []
        self._pending: Dict[int, Notification] = {}

    def show(self, notification: Notification) -> None:
        logger.info("[%s] %s: %s", notification.channel, notification.title, notification.body)
        self.shown.append(notification)

    def schedule(self, notification: Notification) -> None:
        logger.info(
            "Notification %s scheduled for %s", notification.id, notification.scheduled_for
        )
        self._pending[notification.id] = notification

    def cancel(self, notification_id: int) -> None:
        self._pending.pop(notification_id, None)

    def cancel_all(self) -> None:
        self._pending.clear()

    def pending(self) -> List[Notification]:
        return sorted(self._pending.values(), key=lambda item: item.id)

    def last_shown(self) -> Optional[Notification]:
        return self.shown[-1] if self.shown else None


class NotificationService:
    def __init__(
        self,
        notifier: Notifier,
        coordinator: PermissionCoordinator,
        preferences: PreferencesStore,
        weather_service: WeatherService,
        location_service: LocationService,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.notifier = notifier
        self.coordinator = coordinator
        self.preferences = preferences
        self.weather_service = weather_service
        self.location_service = location_service
        self.rng = rng
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            return
        logger.info("Initializing notification service")
        status = await self.coordinator.request_notification_permissions()
        if not status.is_granted:
            logger.warning("Notification permission not granted - notifications may not work")
        self._initialized = True

    # Displayed notifications --------------------------------------------
    def show_daily_weather_notification(
        self,
        current: WeatherData,
        forecast: Optional[Sequence[WeatherData]] = None,
    ) -> Optional[Notification]:
        forecast = list(forecast or [])
        if forecast:
            category = categorize_with_forecast(current, forecast)
        else:
            category = categorize(current)

        selected = self.preferences.get_string_list(ALARM_CATEGORIES_KEY)
        if selected and category not in parse_categories(selected):
            logger.debug("Skipping notification for %s, not in selected categories", category.name)
            return None

        body = recommendation(category, self.rng)
        if forecast:
            hours = min(len(forecast), FORECAST_HOURS)
            body += f"\n\nRecommendation based on current + next {hours} hours forecast"

        notification = Notification(
            id=DAILY_WEATHER_ID,
            title=f"Weather Update - {category.title}",
            body=body,
            channel="daily_weather",
            payload="daily_weather",
        )
        self.notifier.show(notification)
        return notification

    def show_fallback_notification(self) -> Notification:
        notification = Notification(
            id=FALLBACK_ID,
            title="Weather Update",
            body=FALLBACK_BODY,
            channel="weather_error",
            payload="weather_error",
        )
        self.notifier.show(notification)
        return notification

    def show_test_notification(self, rng: Optional[random.Random] = None) -> Notification:
        category, message = (rng or self.rng or random).choice(all_messages())
        notification = Notification(
            id=TEST_ID,
            title=f"Test Weather Update - {category.title}",
            body=message,
            channel="test",
            payload="test",
        )
        self.notifier.show(notification)
        return notification

    # Scheduling ----------------------------------------------------------
    def schedule_daily_notification(
        self, hour: int, minute: int, now: Optional[datetime] = None
    ) -> Notification:
        scheduled_for = next_occurrence(hour, minute, now or localnow())
        self.preferences.set_int(DAILY_HOUR_KEY, hour)
        self.preferences.set_int(DAILY_MINUTE_KEY, minute)
        self.preferences.set_bool(DAILY_ENABLED_KEY, True)

        self.notifier.cancel(SCHEDULED_DAILY_ID)
        notification = Notification(
            id=SCHEDULED_DAILY_ID,
            title="Daily Weather Update",
            body="Tap to see today's riding conditions",
            channel="daily_weather",
            payload="fetch_and_show_weather",
            scheduled_for=scheduled_for,
        )
        self.notifier.schedule(notification)
        logger.info("Daily notification scheduled for %02d:%02d", hour, minute)
        return notification

    def cancel_daily_notification(self) -> None:
        self.notifier.cancel(SCHEDULED_DAILY_ID)
        self.preferences.set_bool(DAILY_ENABLED_KEY, False)
        logger.debug("Daily notification cancelled")

    def cancel_notification(self, notification_id: int) -> None:
        self.notifier.cancel(notification_id)

    def cancel_all(self) -> None:
        self.notifier.cancel_all()

    # Responses -----------------------------------------------------------
    async def handle_response(self, payload: Optional[str]) -> Optional[Notification]:
        logger.debug("Notification tapped: %s", payload)
        if payload in WEATHER_PAYLOADS:
            return await self.fetch_and_show_weather()
        return None

    async def fetch_and_show_weather(self) -> Optional[Notification]:
        try:
            coordinates = await self.location_service.resolve()
            current, forecast = await asyncio.gather(
                asyncio.to_thread(
                    self.weather_service.get_current, coordinates.latitude, coordinates.longitude
                ),
                asyncio.to_thread(
                    self.weather_service.get_hourly,
                    coordinates.latitude,
                    coordinates.longitude,
                    FORECAST_HOURS,
                ),
            )
        except Exception:  # noqa: BLE001
            logger.error("Error fetching weather for notification", exc_info=True)
            return self.show_fallback_notification()
        return self.show_daily_weather_notification(current, forecast)


__all__ = [
    "DAILY_WEATHER_ID",
    "FALLBACK_ID",
    "InMemoryNotifier",
    "Notification",
    "NotificationService",
    "Notifier",
    "SCHEDULED_DAILY_ID",
    "TEST_ID",
]
