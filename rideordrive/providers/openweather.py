"""OpenWeather weather provider, used as the fallback source."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from .base import ProviderError, WeatherProvider, safe_float
from ..entities import WeatherData


def _ms_to_kmh(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    return round(value * 3.6, 2)


def _rain_per_hour(rain: dict) -> float:
    hourly = safe_float(rain.get("1h"))
    if hourly is not None:
        return hourly
    # forecast entries carry a three hour total
    return round(safe_float(rain.get("3h"), 0.0) / 3, 2)


def to_wmo_code(condition_id: int) -> int:
    """Translate an OpenWeather condition id into the closest WMO code."""
    if 200 <= condition_id < 300:
        return 95
    if 300 <= condition_id < 400:
        return 53
    if condition_id == 511:
        return 67
    if 500 <= condition_id < 520:
        return 63
    if 520 <= condition_id < 600:
        return 81
    if 600 <= condition_id < 610:
        return 73
    if 610 <= condition_id < 620:
        return 77
    if 620 <= condition_id < 700:
        return 85
    if 700 <= condition_id < 800:
        return 45
    if condition_id in (801, 802):
        return 2
    if condition_id in (803, 804):
        return 3
    return 0


class OpenWeatherProvider(WeatherProvider):
    """Integration with the OpenWeather current weather and forecast endpoints."""

    name = "openweather"
    base_url = "https://api.openweathermap.org/data/2.5"

    def __init__(self, api_key: str, base_url: Optional[str] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = (base_url or self.base_url).rstrip("/")
        self._log = logging.getLogger(self.__class__.__name__)

    def current(self, latitude: float, longitude: float) -> WeatherData:
        data = self._fetch("weather", latitude, longitude)
        if "main" not in data:
            raise ProviderError("missing main block")
        return self._build_point(data, source="openweather:current")

    def hourly(self, latitude: float, longitude: float, hours: int = 24) -> List[WeatherData]:
        data = self._fetch("forecast", latitude, longitude)
        entries = data.get("list") or []
        if not entries:
            raise ProviderError("missing forecast list")
        now = self.clock()
        result: List[WeatherData] = []
        for entry in entries:
            if len(result) >= hours:
                break
            point = self._build_point(entry, source="openweather:hour")
            if point.timestamp > now:
                result.append(point)
        return result

    # Helpers ------------------------------------------------------------
    def _fetch(self, endpoint: str, latitude: float, longitude: float) -> dict:
        params = {"lat": latitude, "lon": longitude, "appid": self.api_key, "units": "metric"}
        response = self._request("GET", f"{self.base_url}/{endpoint}", params=params)
        return self._json(response)

    def _build_point(self, payload: dict, *, source: str) -> WeatherData:
        main = payload.get("main") or {}
        wind = payload.get("wind") or {}
        rain = payload.get("rain") or {}
        weather = payload.get("weather") or [{}]
        temperature = safe_float(main.get("temp"))
        if temperature is None:
            raise ProviderError("missing temperature")
        visibility_m = safe_float(payload.get("visibility"), 10000.0)
        return WeatherData(
            temperature_c=temperature,
            wind_speed_kmh=_ms_to_kmh(safe_float(wind.get("speed"))),
            wind_direction_deg=safe_float(wind.get("deg"), 0.0),
            precipitation_mm=_rain_per_hour(rain),
            precipitation_probability=safe_float(payload.get("pop"), 0.0) * 100,
            visibility_km=visibility_m / 1000.0,
            humidity_percent=safe_float(main.get("humidity"), 50.0),
            weather_code=to_wmo_code(int(safe_float(weather[0].get("id"), 800.0))),
            timestamp=self._parse_timestamp(payload.get("dt")),
            source=source,
        )

    def _parse_timestamp(self, value: Optional[int]) -> datetime:
        if value is None:
            return self.clock()
        return datetime.fromtimestamp(int(value), tz=timezone.utc)


__all__ = ["OpenWeatherProvider", "to_wmo_code"]
