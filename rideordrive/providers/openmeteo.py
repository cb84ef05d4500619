from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from .base import ProviderError, WeatherProvider, safe_float, safe_index
from ..entities import WeatherData


CURRENT_FIELDS = [
    "temperature_2m",
    "relative_humidity_2m",
    "precipitation",
    "weather_code",
    "wind_speed_10m",
    "wind_direction_10m",
    "precipitation_probability",
    "visibility",
]
HOURLY_FIELDS = ["temperature_2m", "precipitation", "weather_code", "wind_speed_10m", "visibility"]

DEFAULT_VISIBILITY_KM = 10.0
DEFAULT_HUMIDITY = 50.0


def _m_to_km(value: Optional[float]) -> float:
    if value is None:
        return DEFAULT_VISIBILITY_KM
    return round(value / 1000.0, 3)


class OpenMeteoProvider(WeatherProvider):
    name = "open-meteo"
    base_url = "https://api.open-meteo.com/v1/forecast"

    def __init__(self, base_url: Optional[str] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.base_url = base_url or self.base_url
        self._log = logging.getLogger(self.__class__.__name__)

    def current(self, latitude: float, longitude: float) -> WeatherData:
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "current": ",".join(CURRENT_FIELDS),
            "wind_speed_unit": "kmh",
            "timezone": "UTC",
        }
        response = self._request("GET", self.base_url, params=params)
        data = self._json(response)
        current = data.get("current")
        if not current:
            raise ProviderError("missing current weather")
        temperature = safe_float(current.get("temperature_2m"))
        if temperature is None:
            raise ProviderError("missing current temperature")
        return WeatherData(
            temperature_c=temperature,
            wind_speed_kmh=safe_float(current.get("wind_speed_10m"), 0.0),
            wind_direction_deg=safe_float(current.get("wind_direction_10m"), 0.0),
            precipitation_mm=safe_float(current.get("precipitation"), 0.0),
            precipitation_probability=safe_float(current.get("precipitation_probability"), 0.0),
            visibility_km=_m_to_km(safe_float(current.get("visibility"))),
            humidity_percent=safe_float(current.get("relative_humidity_2m"), DEFAULT_HUMIDITY),
            weather_code=int(safe_float(current.get("weather_code"), 0.0)),
            timestamp=self._parse_time(current.get("time")),
            source="open-meteo:current",
        )

    def hourly(self, latitude: float, longitude: float, hours: int = 24) -> List[WeatherData]:
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "hourly": ",".join(HOURLY_FIELDS),
            "wind_speed_unit": "kmh",
            "forecast_days": max(2, -(-hours // 24) + 1),
            "timezone": "UTC",
        }
        response = self._request("GET", self.base_url, params=params)
        data = self._json(response)
        hourly = data.get("hourly") or {}
        timestamps = hourly.get("time") or []
        if not timestamps:
            raise ProviderError("missing hourly data")
        temps = hourly.get("temperature_2m") or []
        precipitation = hourly.get("precipitation") or []
        codes = hourly.get("weather_code") or []
        winds = hourly.get("wind_speed_10m") or []
        visibilities = hourly.get("visibility")

        now = self.clock()
        result: List[WeatherData] = []
        for idx, ts in enumerate(timestamps):
            if len(result) >= hours:
                break
            timestamp = self._parse_time(ts)
            # only hours that are still ahead of us
            if timestamp <= now:
                continue
            temperature = safe_index(temps, idx)
            if temperature is None:
                continue
            visibility = safe_index(visibilities, idx) if visibilities is not None else None
            result.append(
                WeatherData(
                    temperature_c=temperature,
                    wind_speed_kmh=safe_index(winds, idx, 0.0),
                    wind_direction_deg=0.0,
                    precipitation_mm=safe_index(precipitation, idx, 0.0),
                    precipitation_probability=0.0,
                    visibility_km=_m_to_km(visibility),
                    humidity_percent=DEFAULT_HUMIDITY,
                    weather_code=int(safe_index(codes, idx, 0.0)),
                    timestamp=timestamp,
                    source="open-meteo:hour",
                )
            )
        self._log.debug("Parsed %s future hours out of %s", len(result), len(timestamps))
        return result

    # helpers ------------------------------------------------------------
    def _parse_time(self, value: Optional[str]) -> datetime:
        if not value:
            return self.clock()
        if value.endswith("Z"):
            value = value[:-1]
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


__all__ = ["OpenMeteoProvider"]
