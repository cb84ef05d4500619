"""Five-tier riding safety classification of weather readings.

Categories are ordered by severity; a reading is checked against the
most severe tier first and the first matching tier wins.  Rain of any
amount rules out riding, snow and thunderstorms make it dangerous.
"""
from __future__ import annotations

import random
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Set

from .entities import WeatherData


class WeatherCategory(Enum):
    PERFECT = ("Perfect", "Ideal weather with clear skies, mild temperatures, and calm winds", 0xFF4CAF50)
    GOOD = ("Good", "Pleasant conditions with minor weather factors to consider", 0xFF8BC34A)
    OK = ("Okay", "Acceptable weather but requires extra caution and awareness", 0xFFFFC107)
    BAD = ("Bad", "Challenging conditions with significant weather hazards present", 0xFFFF9800)
    DANGEROUS = ("Dangerous", "Severe weather posing serious safety risks - avoid riding", 0xFFF44336)

    def __init__(self, title: str, description: str, color: int) -> None:
        self.title = title
        self.description = description
        self.color = color

    @property
    def severity(self) -> int:
        return _ORDER.index(self)

    @property
    def color_hex(self) -> str:
        return f"#{self.color & 0xFFFFFF:06X}"


_ORDER: List[WeatherCategory] = list(WeatherCategory)


class Thresholds:
    # Temperature (Celsius)
    PERFECT_TEMP_MIN = 12.0
    PERFECT_TEMP_MAX = 28.0
    GOOD_TEMP_MIN = 7.0
    GOOD_TEMP_MAX = 33.0
    OK_TEMP_MIN = 2.0
    OK_TEMP_MAX = 38.0
    DANGEROUS_TEMP_MIN = -5.0
    DANGEROUS_TEMP_MAX = 40.0

    # Wind speed (km/h)
    PERFECT_WIND_MAX = 15.0
    GOOD_WIND_MAX = 25.0
    OK_WIND_MAX = 35.0
    BAD_WIND_MAX = 55.0

    # Precipitation (mm/h)
    LIGHT_RAIN = 1.0
    MODERATE_RAIN = 4.0
    HEAVY_RAIN = 10.0

    # Visibility (km)
    GOOD_VISIBILITY = 8.0
    OK_VISIBILITY = 3.0
    BAD_VISIBILITY = 0.5


FORECAST_HOURS = 8


def categorize(data: WeatherData) -> WeatherCategory:
    if _is_dangerous(data):
        return WeatherCategory.DANGEROUS
    if data.precipitation_mm > 0.0:
        return WeatherCategory.BAD
    if _is_bad(data):
        return WeatherCategory.BAD
    if _is_ok(data):
        return WeatherCategory.OK
    if _is_good(data):
        return WeatherCategory.GOOD
    return WeatherCategory.PERFECT


def categorize_with_forecast(
    current: WeatherData,
    forecast: Sequence[WeatherData],
    hours: int = FORECAST_HOURS,
) -> WeatherCategory:
    """Return the worst category of the current reading and the next hours."""
    worst = categorize(current)
    for point in list(forecast)[:hours]:
        candidate = categorize(point)
        if is_worse(candidate, worst):
            worst = candidate
    return worst


def is_worse(first: WeatherCategory, second: WeatherCategory) -> bool:
    return first.severity > second.severity


def is_stormy(code: int) -> bool:
    # 95-99 thunderstorm, 85-86 snow showers, 71-77 snowfall
    return code >= 95 or 85 <= code <= 86 or 71 <= code <= 77


def _is_dangerous(data: WeatherData) -> bool:
    return (
        data.temperature_c < Thresholds.DANGEROUS_TEMP_MIN
        or data.temperature_c > Thresholds.DANGEROUS_TEMP_MAX
        or data.wind_speed_kmh > Thresholds.BAD_WIND_MAX
        or data.precipitation_mm > Thresholds.HEAVY_RAIN
        or data.visibility_km < Thresholds.BAD_VISIBILITY
        or is_stormy(data.weather_code)
    )


def _is_bad(data: WeatherData) -> bool:
    return (
        data.temperature_c < Thresholds.OK_TEMP_MIN
        or data.temperature_c > Thresholds.OK_TEMP_MAX
        or data.wind_speed_kmh > Thresholds.OK_WIND_MAX
        or data.visibility_km < Thresholds.OK_VISIBILITY
    )


def _is_ok(data: WeatherData) -> bool:
    return (
        data.temperature_c < Thresholds.GOOD_TEMP_MIN
        or data.temperature_c > Thresholds.GOOD_TEMP_MAX
        or data.wind_speed_kmh > Thresholds.GOOD_WIND_MAX
        or data.visibility_km < Thresholds.GOOD_VISIBILITY
    )


def _is_good(data: WeatherData) -> bool:
    return (
        data.temperature_c < Thresholds.PERFECT_TEMP_MIN
        or data.temperature_c > Thresholds.PERFECT_TEMP_MAX
        or data.wind_speed_kmh > Thresholds.PERFECT_WIND_MAX
    )


# Recommendation messages ------------------------------------------------

MESSAGES = {
    WeatherCategory.PERFECT: (
        "🏍️ Perfect weather for riding today. Go enjoy the road!",
        "🏍️ Clear skies and calm winds. Your bike has been waiting for this.",
        "🏍️ Riding conditions are flawless. Helmet on, time to go.",
        "🏍️ The roads are dry and the sun is out. It does not get better than this.",
        "🏍️ Perfect riding conditions detected. Take the long way home.",
    ),
    WeatherCategory.GOOD: (
        "🏍️ Good weather for riding. Not perfect, but close enough.",
        "🏍️ Solid riding weather ahead. Your bike is giving you the look.",
        "🏍️ Good conditions today. A small jacket and you are set.",
        "🏍️ Decent riding weather. Your motorcycle just sent you a ride request.",
        "🏍️ Good weather, good vibes. Ride on.",
    ),
    WeatherCategory.OK: (
        "🏍️ Okay conditions for riding. Proceed with extra care.",
        "🏍️ Meh weather, but still rideable. Keep your eyes open.",
        "🏍️ Weather is a bit moody today. Ride carefully and stay visible.",
        "🏍️ Not great, not terrible. Take it slow out there.",
        "🏍️ Average conditions outside. Leave some extra braking distance.",
    ),
    WeatherCategory.BAD: (
        "🚗 Bad weather for riding. Your car misses you anyway.",
        "🚗 Not ideal riding weather. Four wheels it is today.",
        "🚗 Rough weather today. The bike can rest in the garage.",
        "🚗 Poor conditions for riding. The car was getting jealous anyway.",
        "🚗 Weather says no to riding today. Drive safe.",
    ),
    WeatherCategory.DANGEROUS: (
        "🚗 Dangerous weather! Leave the motorcycle at home.",
        "🚗 Absolutely not riding weather. Drive, and ride another day.",
        "🚗 Dangerous conditions for riding. Even the car should take it easy.",
        "🚗 Severe weather outside. Your bike is staying under its cover.",
        "🚗 Stay off two wheels today. Conditions are hazardous.",
    ),
}


def recommendation(category: WeatherCategory, rng: Optional[random.Random] = None) -> str:
    pool = MESSAGES[category]
    return (rng or random).choice(pool)


def all_messages() -> List[tuple]:
    """Every message paired with the category it belongs to."""
    return [(category, message) for category in _ORDER for message in MESSAGES[category]]


# Presentation helpers ---------------------------------------------------

_COMPASS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")


def wind_direction_text(degrees: float) -> str:
    if degrees >= 337.5 or degrees < 22.5:
        return "N"
    for index, name in enumerate(_COMPASS[1:], start=1):
        lower = 22.5 + (index - 1) * 45.0
        if lower <= degrees < lower + 45.0:
            return name
    return "N"


def visibility_text(visibility_km: float) -> str:
    miles = f"{visibility_km * 0.621371:.1f} mi"
    if visibility_km >= 10:
        return f"Excellent ({miles})"
    if visibility_km >= 5:
        return f"Good ({miles})"
    if visibility_km >= 2:
        return f"Moderate ({miles})"
    if visibility_km >= 1:
        return f"Poor ({miles})"
    return f"Very Poor ({miles})"


def condition_details(data: WeatherData) -> str:
    details: List[str] = []
    if data.temperature_c < 0:
        details.append(f"Freezing temperature ({data.temperature_c:.1f}°C)")
    elif data.temperature_c > 35:
        details.append(f"Very hot ({data.temperature_c:.1f}°C)")
    if data.wind_speed_kmh > Thresholds.OK_WIND_MAX:
        details.append(f"Strong winds ({data.wind_speed_kmh:.1f} km/h)")
    if data.precipitation_mm > Thresholds.LIGHT_RAIN:
        details.append(f"Rain ({data.precipitation_mm:.1f} mm/h)")
    if data.visibility_km < Thresholds.GOOD_VISIBILITY:
        details.append(f"Poor visibility ({data.visibility_km:.1f} km)")
    return ", ".join(details)


_DESCRIPTIONS = {
    0: "Clear sky",
    1: "Partly cloudy",
    2: "Partly cloudy",
    3: "Partly cloudy",
    45: "Fog",
    48: "Fog",
    51: "Drizzle",
    53: "Drizzle",
    55: "Drizzle",
    56: "Freezing drizzle",
    57: "Freezing drizzle",
    61: "Rain",
    63: "Rain",
    65: "Rain",
    66: "Freezing rain",
    67: "Freezing rain",
    71: "Snow",
    73: "Snow",
    75: "Snow",
    77: "Snow grains",
    80: "Rain showers",
    81: "Rain showers",
    82: "Rain showers",
    85: "Snow showers",
    86: "Snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with hail",
    99: "Thunderstorm with hail",
}


def weather_description(code: int) -> str:
    return _DESCRIPTIONS.get(code, "Unknown")


def parse_categories(names: Iterable[str]) -> Set[WeatherCategory]:
    """Map stored category names back to members; unknown names become PERFECT."""
    result: Set[WeatherCategory] = set()
    for name in names:
        try:
            result.add(WeatherCategory[str(name).upper()])
        except KeyError:
            result.add(WeatherCategory.PERFECT)
    return result


__all__ = [
    "FORECAST_HOURS",
    "MESSAGES",
    "Thresholds",
    "WeatherCategory",
    "all_messages",
    "categorize",
    "categorize_with_forecast",
    "condition_details",
    "is_stormy",
    "is_worse",
    "parse_categories",
    "recommendation",
    "visibility_text",
    "weather_description",
    "wind_direction_text",
]
