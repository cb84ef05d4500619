from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Position:
    """A resolved device position."""

    latitude: float
    longitude: float
    timestamp: datetime
    accuracy_m: float = 0.0
    source: str = "locator"

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)


@dataclass(frozen=True)
class WeatherData:
    """Normalized weather reading used for categorisation.

    Units are fixed so that providers are interchangeable:
    - temperature in Celsius
    - wind speed in kilometres per hour (km/h)
    - precipitation in millimetres per hour (mm/h)
    - precipitation probability in percent
    - visibility in kilometres
    - weather code following the WMO interpretation codes
    """

    temperature_c: float
    wind_speed_kmh: float
    wind_direction_deg: float
    precipitation_mm: float
    precipitation_probability: float
    visibility_km: float
    humidity_percent: float
    weather_code: int
    timestamp: datetime
    source: str

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        timestamp = self.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        payload["timestamp"] = timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        return payload


__all__ = ["Coordinates", "Position", "WeatherData"]
