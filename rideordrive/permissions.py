"""Sequential coordination of permission requests.

Permission prompts must never overlap: a request that arrives while another
one is in flight waits for it to finish.  Location is only requested after
notifications, and background location is a best-effort follow-up.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol


logger = logging.getLogger(__name__)


class PermissionStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    PERMANENTLY_DENIED = "permanently_denied"
    RESTRICTED = "restricted"
    LIMITED = "limited"
    PROVISIONAL = "provisional"

    @property
    def is_denied(self) -> bool:
        return self is PermissionStatus.DENIED

    @property
    def is_granted(self) -> bool:
        return self in (PermissionStatus.GRANTED, PermissionStatus.LIMITED, PermissionStatus.PROVISIONAL)


class LocationPermission(str, Enum):
    DENIED = "denied"
    DENIED_FOREVER = "denied_forever"
    WHILE_IN_USE = "while_in_use"
    ALWAYS = "always"
    UNABLE_TO_DETERMINE = "unable_to_determine"

    @property
    def is_usable(self) -> bool:
        return self in (LocationPermission.WHILE_IN_USE, LocationPermission.ALWAYS)


class PermissionKind(str, Enum):
    NOTIFICATION = "notification"
    SCHEDULE_EXACT_ALARM = "schedule_exact_alarm"
    LOCATION_ALWAYS = "location_always"


class PermissionBackend(Protocol):
    """Platform facility that shows permission prompts."""

    async def status(self, kind: PermissionKind) -> PermissionStatus:
        ...

    async def request(self, kind: PermissionKind) -> PermissionStatus:
        ...

    async def location_service_enabled(self) -> bool:
        ...

    async def check_location(self) -> LocationPermission:
        ...

    async def request_location(self) -> LocationPermission:
        ...


class StaticPermissionBackend:
    """Backend with fixed answers for hosts without permission prompts."""

    def __init__(
        self,
        statuses: Optional[Dict[PermissionKind, PermissionStatus]] = None,
        location: LocationPermission = LocationPermission.WHILE_IN_USE,
        location_enabled: bool = True,
        grant_on_request: bool = True,
    ) -> None:
        self.statuses: Dict[PermissionKind, PermissionStatus] = dict(statuses or {})
        self.location = location
        self.location_enabled = location_enabled
        self.grant_on_request = grant_on_request
        self.requested: List[str] = []

    async def status(self, kind: PermissionKind) -> PermissionStatus:
        return self.statuses.get(kind, PermissionStatus.DENIED)

    async def request(self, kind: PermissionKind) -> PermissionStatus:
        self.requested.append(kind.value)
        status = PermissionStatus.GRANTED if self.grant_on_request else PermissionStatus.PERMANENTLY_DENIED
        self.statuses[kind] = status
        return status

    async def location_service_enabled(self) -> bool:
        return self.location_enabled

    async def check_location(self) -> LocationPermission:
        return self.location

    async def request_location(self) -> LocationPermission:
        self.requested.append("location")
        if self.location is LocationPermission.DENIED and self.grant_on_request:
            self.location = LocationPermission.WHILE_IN_USE
        elif self.location is LocationPermission.DENIED:
            self.location = LocationPermission.DENIED_FOREVER
        return self.location


class PermissionCoordinator:
    def __init__(
        self,
        backend: PermissionBackend,
        settle_delay: float = 0.5,
        poll_interval: float = 0.1,
    ) -> None:
        self.backend = backend
        self.settle_delay = settle_delay
        self.poll_interval = poll_interval
        self._notification_requested = False
        self._location_requested = False
        self._is_requesting = False
        self._location_callbacks: List[Callable[[], None]] = []

    async def _wait_for_turn(self) -> None:
        if self._is_requesting:
            logger.warning("Permission request already in progress, waiting...")
            while self._is_requesting:
                await asyncio.sleep(self.poll_interval)
        self._is_requesting = True

    async def _request_if_denied(self, kind: PermissionKind) -> PermissionStatus:
        status = await self.backend.status(kind)
        logger.debug("Current %s permission status: %s", kind.value, status.value)
        if status.is_denied:
            status = await self.backend.request(kind)
            logger.debug("%s permission result: %s", kind.value, status.value)
        return status

    async def request_notification_permissions(self) -> PermissionStatus:
        await self._wait_for_turn()
        try:
            status = await self._request_if_denied(PermissionKind.NOTIFICATION)
            self._notification_requested = True
            logger.debug("Notification permissions completed")
            # let the prompt fully close before anything else is shown
            if self.settle_delay:
                await asyncio.sleep(self.settle_delay)
            return status
        finally:
            self._is_requesting = False

    async def request_schedule_exact_alarm_permission(self) -> PermissionStatus:
        await self._wait_for_turn()
        try:
            return await self._request_if_denied(PermissionKind.SCHEDULE_EXACT_ALARM)
        finally:
            self._is_requesting = False

    async def request_location_permissions(self) -> LocationPermission:
        if not self._notification_requested:
            logger.debug("Notification permissions not yet requested, requesting first")
            await self.request_notification_permissions()

        await self._wait_for_turn()
        try:
            if not await self.backend.location_service_enabled():
                logger.warning("Location services are disabled")
                return LocationPermission.DENIED

            permission = await self.backend.check_location()
            logger.debug("Current location permission status: %s", permission.value)
            if permission is LocationPermission.DENIED:
                permission = await self.backend.request_location()
                logger.debug("Location permission result: %s", permission.value)

            if permission.is_usable:
                await self._request_background_location()

            self._location_requested = True
            logger.debug("Location permissions completed")
            callbacks, self._location_callbacks = self._location_callbacks, []
            for callback in callbacks:
                callback()
            return permission
        finally:
            self._is_requesting = False

    async def _request_background_location(self) -> None:
        try:
            await self._request_if_denied(PermissionKind.LOCATION_ALWAYS)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Background location permission request failed: %s", exc)

    async def location_permissions_ready(self) -> bool:
        if not self._location_requested:
            return False
        permission = await self.backend.check_location()
        return permission.is_usable

    def on_location_permissions_ready(self, callback: Callable[[], None]) -> None:
        if self._location_requested:
            callback()
        else:
            self._location_callbacks.append(callback)

    def reset(self) -> None:
        self._notification_requested = False
        self._location_requested = False
        self._is_requesting = False
        self._location_callbacks.clear()

    def states(self) -> Dict[str, object]:
        return {
            "notification_requested": self._notification_requested,
            "location_requested": self._location_requested,
            "is_requesting": self._is_requesting,
            "pending_callbacks": len(self._location_callbacks),
        }


__all__ = [
    "LocationPermission",
    "PermissionBackend",
    "PermissionCoordinator",
    "PermissionKind",
    "PermissionStatus",
    "StaticPermissionBackend",
]
