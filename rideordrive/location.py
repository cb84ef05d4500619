from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from .clock import utcnow
from .entities import Coordinates, Position
from .permissions import LocationPermission, PermissionCoordinator
from .preferences import PreferencesStore


logger = logging.getLogger(__name__)

LAST_LATITUDE_KEY = "last_known_latitude"
LAST_LONGITUDE_KEY = "last_known_longitude"
LAST_LOCATION_TIME_KEY = "last_location_time"

DEFAULT_LOCATION = Coordinates(40.7128, -74.0060)


class LocationUnavailable(RuntimeError):
    """Raised when no position can be resolved."""


class Locator(Protocol):
    async def current_position(self, timeout: float) -> Position:
        ...

    async def last_known_position(self) -> Optional[Position]:
        ...


class StaticLocator:
    """Locator for hosts without positioning hardware: a configured place."""

    def __init__(self, latitude: float, longitude: float) -> None:
        self.latitude = latitude
        self.longitude = longitude

    async def current_position(self, timeout: float) -> Position:
        return Position(
            latitude=self.latitude,
            longitude=self.longitude,
            timestamp=datetime.now(timezone.utc),
            source="static",
        )

    async def last_known_position(self) -> Optional[Position]:
        return None


class LocationService:
    FRESH_TIMEOUT = 5.0

    def __init__(
        self,
        coordinator: PermissionCoordinator,
        locator: Locator,
        preferences: PreferencesStore,
        cache_ttl: timedelta = timedelta(hours=6),
        default_location: Coordinates = DEFAULT_LOCATION,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.coordinator = coordinator
        self.locator = locator
        self.preferences = preferences
        self.cache_ttl = cache_ttl
        self.default_location = default_location
        self.clock = clock

    async def current_position(self) -> Optional[Position]:
        try:
            permission = await self.coordinator.request_location_permissions()
        except Exception:
            logger.exception("Location permission request failed")
            return self.cached_position()

        if permission is LocationPermission.DENIED:
            logger.warning("Location permissions are denied")
            return self.cached_position()
        if permission is LocationPermission.DENIED_FOREVER:
            logger.warning("Location permissions are permanently denied")
            return self.cached_position()

        try:
            position = await asyncio.wait_for(
                self.locator.current_position(self.FRESH_TIMEOUT), timeout=self.FRESH_TIMEOUT
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Fresh location failed: %s", exc)
        else:
            self.cache_position(position)
            return position

        try:
            last_known = await self.locator.last_known_position()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Last known position failed: %s", exc)
            last_known = None
        if last_known is not None:
            logger.debug("Using last known position")
            self.cache_position(last_known)
            return last_known

        cached = self.cached_position()
        if cached is None:
            logger.error("All location attempts failed")
        return cached

    async def resolve(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        allow_default: bool = True,
    ) -> Coordinates:
        if latitude is not None and longitude is not None:
            return Coordinates(latitude, longitude)
        position = await self.current_position()
        if position is not None:
            return position.coordinates
        if not allow_default:
            raise LocationUnavailable("no position available")
        logger.warning(
            "Using fallback location (%s, %s), location services unavailable",
            self.default_location.latitude,
            self.default_location.longitude,
        )
        return self.default_location

    def cache_position(self, position: Position) -> None:
        now = self.clock()
        self.preferences.set_float(LAST_LATITUDE_KEY, position.latitude)
        self.preferences.set_float(LAST_LONGITUDE_KEY, position.longitude)
        self.preferences.set_int(LAST_LOCATION_TIME_KEY, int(now.timestamp() * 1000))
        logger.debug("Location cached: %s, %s", position.latitude, position.longitude)

    def cached_position(self) -> Optional[Position]:
        latitude = self.preferences.get_float(LAST_LATITUDE_KEY)
        longitude = self.preferences.get_float(LAST_LONGITUDE_KEY)
        stamp = self.preferences.get_int(LAST_LOCATION_TIME_KEY)
        if latitude is None or longitude is None or stamp is None:
            logger.debug("No cached location available")
            return None
        cached_at = datetime.fromtimestamp(stamp / 1000, tz=timezone.utc)
        if self.clock() - cached_at > self.cache_ttl:
            logger.debug("Cached location expired")
            return None
        return Position(
            latitude=latitude,
            longitude=longitude,
            timestamp=cached_at,
            accuracy_m=100.0,
            source="cache",
        )


__all__ = [
    "DEFAULT_LOCATION",
    "LocationService",
    "LocationUnavailable",
    "Locator",
    "StaticLocator",
]
