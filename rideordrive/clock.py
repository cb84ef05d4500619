from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def localnow() -> datetime:
    """Aware wall-clock time in the host's local timezone."""
    return datetime.now().astimezone()


def next_occurrence(hour: int, minute: int, now: datetime) -> datetime:
    """Today at ``hour:minute`` in the timezone of ``now``, or tomorrow if that already passed."""
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"invalid time {hour}:{minute}")
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate < now:
        candidate += timedelta(days=1)
    return candidate


__all__ = ["localnow", "next_occurrence", "utcnow"]
