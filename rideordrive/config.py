"""Environment driven settings for the weather advisory services."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number, got {value!r}") from exc


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}") from exc


@dataclass
class Settings:
    open_meteo_url: str = field(
        default_factory=lambda: _env_str("RIDEORDRIVE_OPEN_METEO_URL", "https://api.open-meteo.com/v1/forecast")
    )
    openweather_url: str = field(
        default_factory=lambda: _env_str(
            "RIDEORDRIVE_OPENWEATHER_URL", "https://api.openweathermap.org/data/2.5"
        )
    )
    openweather_api_key: Optional[str] = field(
        default_factory=lambda: _env_str("RIDEORDRIVE_OPENWEATHER_API_KEY")
    )
    request_timeout: float = field(default_factory=lambda: _env_float("RIDEORDRIVE_REQUEST_TIMEOUT", 5.0))
    request_retries: int = field(default_factory=lambda: _env_int("RIDEORDRIVE_REQUEST_RETRIES", 2))
    backoff_factor: float = field(default_factory=lambda: _env_float("RIDEORDRIVE_BACKOFF_FACTOR", 0.3))
    current_ttl: float = field(default_factory=lambda: _env_float("RIDEORDRIVE_CURRENT_TTL", 600.0))
    forecast_ttl: float = field(default_factory=lambda: _env_float("RIDEORDRIVE_FORECAST_TTL", 1800.0))
    freshness_window: float = field(default_factory=lambda: _env_float("RIDEORDRIVE_FRESHNESS_WINDOW", 600.0))
    location_cache_ttl: float = field(
        default_factory=lambda: _env_float("RIDEORDRIVE_LOCATION_CACHE_TTL", 6 * 60 * 60.0)
    )
    default_latitude: float = field(default_factory=lambda: _env_float("RIDEORDRIVE_DEFAULT_LATITUDE", 40.7128))
    default_longitude: float = field(
        default_factory=lambda: _env_float("RIDEORDRIVE_DEFAULT_LONGITUDE", -74.0060)
    )
    database_url: str = field(
        default_factory=lambda: _env_str("RIDEORDRIVE_DATABASE_URL", "sqlite:///rideordrive.sqlite3")
    )
    monitor_interval: float = field(default_factory=lambda: _env_float("RIDEORDRIVE_MONITOR_INTERVAL", 900.0))
    log_level: str = field(default_factory=lambda: _env_str("RIDEORDRIVE_LOG_LEVEL", "INFO"))

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once; later calls only adjust the level."""
    resolved = (level or _env_str("RIDEORDRIVE_LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(resolved)
        return
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = ["Settings", "configure_logging"]
