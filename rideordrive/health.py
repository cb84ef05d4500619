"""In-memory health registry for providers and the weather cache.

The registry is fed by the weather service and read by the HTTP layer.
Everything lives in memory, which keeps the numbers per process.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Mapping, Optional


@dataclass(frozen=True)
class CacheStats:
    """Simple container for cache related counters."""

    hits: int = 0
    misses: int = 0
    keys: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"hits": self.hits, "misses": self.misses, "keys": self.keys}


class HealthRegistry:
    """Stores provider error counters, last successful fetches and cache stats."""

    def __init__(self) -> None:
        self._provider_last_ok: Dict[str, str] = {}
        self._provider_errors: Dict[str, int] = {}
        self._cache_stats: CacheStats = CacheStats()
        self._lock = Lock()

    # -- Provider successes -------------------------------------------------
    def record_provider_success(self, provider: str, when: Optional[datetime] = None) -> None:
        if not provider:
            raise ValueError("provider must be provided")
        when = when or datetime.now(timezone.utc)
        with self._lock:
            self._provider_last_ok[provider] = self._format_datetime(when)

    # -- Provider errors ----------------------------------------------------
    def record_provider_error(self, provider: str, increment: int = 1) -> None:
        if not provider:
            raise ValueError("provider must be provided")
        if increment <= 0:
            raise ValueError("increment must be positive")
        with self._lock:
            self._provider_errors[provider] = self._provider_errors.get(provider, 0) + increment

    def drain_provider_errors(self) -> Dict[str, int]:
        with self._lock:
            snapshot = dict(self._provider_errors)
            self._provider_errors.clear()
            return snapshot

    # -- Cache stats --------------------------------------------------------
    def set_cache_stats(self, stats: Optional[Mapping[str, int]]) -> None:
        if not stats:
            self._cache_stats = CacheStats()
            return
        self._cache_stats = CacheStats(
            hits=int(stats.get("hits", 0)),
            misses=int(stats.get("misses", 0)),
            keys=int(stats.get("keys", 0)),
        )

    # -- Snapshot -----------------------------------------------------------
    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            last_ok = dict(self._provider_last_ok)
            errors = dict(self._provider_errors)
            cache = self._cache_stats.as_dict()
        return {"providers": {"errors": errors, "last_success": last_ok}, "cache": cache}

    @staticmethod
    def _format_datetime(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()


__all__ = ["CacheStats", "HealthRegistry"]
