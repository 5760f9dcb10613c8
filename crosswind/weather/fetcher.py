"""
Weather integration. Fetches current conditions and daily forecasts for a
coordinate pair from WeatherAPI.com.

Flow:
  get_weather(lat, lon) → checks in-memory cache → fetches if stale → parses JSON
  If fetch fails → returns fallback with confidence="unknown"
  No API key (or WEATHER_MOCK=1) → deterministic mock scenarios
"""
import json
import logging
import math
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from crosswind.config import config
from crosswind.scheduling.availability import utcnow, start_of_day

logger = logging.getLogger(__name__)

KPH_PER_KNOT = 1.852
CROSSWIND_ANGLE_DEG = 45        # no runway heading, assume a 45° component
DEFAULT_CEILING_FT = 5000       # no cloud data, assume VFR


@dataclass
class WeatherObservation:
    location: str
    timestamp: datetime              # valid time (forecast day for forecasts)
    visibility: Optional[float]      # statute miles
    wind_speed: Optional[float]      # knots
    wind_gust: Optional[float]       # knots
    wind_direction: Optional[int]    # degrees
    temperature: Optional[float]     # °C
    conditions: str
    cloud_cover: Optional[int]       # %
    lat: float
    lon: float
    confidence: str                  # "live" | "cached" | "mock" | "unknown"
    fetched_at: Optional[datetime] = None

    def __post_init__(self):
        if self.fetched_at is None:
            self.fetched_at = utcnow()

    @property
    def ceiling_ft(self) -> int:
        """Rough ceiling estimate from cloud cover percentage."""
        if self.cloud_cover is None:
            return DEFAULT_CEILING_FT
        if self.cloud_cover < 25:
            return 10000
        if self.cloud_cover < 50:
            return 5000
        if self.cloud_cover < 75:
            return 2500
        return 1000

    @property
    def crosswind_kt(self) -> Optional[float]:
        if self.wind_direction is None or self.wind_speed is None:
            return None
        return round(self.wind_speed * math.sin(math.radians(CROSSWIND_ANGLE_DEG)), 1)

    @property
    def is_available(self) -> bool:
        return self.confidence != "unknown"

    def is_stale(self) -> bool:
        return utcnow() - self.fetched_at > timedelta(minutes=config.weather.cache_ttl_minutes)

    def summary(self) -> str:
        wind = f"{self.wind_speed:.0f}" if self.wind_speed is not None else "N/A"
        vis = f"{self.visibility:g}" if self.visibility is not None else "N/A"
        return f"{self.conditions} - Wind: {wind} knots, Visibility: {vis} miles"

    def to_dict(self) -> dict:
        return {
            "location": self.location,
            "timestamp": self.timestamp.isoformat(),
            "visibility": self.visibility,
            "wind_speed": self.wind_speed,
            "wind_gust": self.wind_gust,
            "wind_direction": self.wind_direction,
            "temperature": self.temperature,
            "conditions": self.conditions,
            "cloud_cover": self.cloud_cover,
            "ceiling_ft": self.ceiling_ft,
            "crosswind_kt": self.crosswind_kt,
            "coordinates": {"lat": self.lat, "lon": self.lon},
            "confidence": self.confidence,
        }


# ── In-memory cache ───────────────────────────────────────────────────────────

_cache: dict[tuple, WeatherObservation] = {}


def _cache_key(lat: float, lon: float) -> tuple:
    return (round(lat, 2), round(lon, 2))


def clear_cache():
    _cache.clear()


def get_weather(lat: float, lon: float, scenario: Optional[str] = None) -> WeatherObservation:
    """
    Main entry point. Current conditions at (lat, lon). Never raises.
    scenario forces a mock scenario (testing / demo runs).
    """
    if scenario or config.weather.use_mock:
        return get_weather_mock(lat, lon, scenario or config.weather.mock_scenario)

    key = _cache_key(lat, lon)

    # Return cached if still fresh
    if key in _cache and not _cache[key].is_stale():
        logger.debug("Weather cache hit for %s", key)
        return replace(_cache[key], confidence="cached")

    # Try to fetch live
    try:
        data = _fetch_json("current.json", {"q": f"{lat},{lon}", "aqi": "no"})
        observation = _parse_current(data, lat, lon)
        _cache[key] = observation
        return observation
    except Exception as e:
        logger.warning("Weather fetch failed for %s,%s: %s", lat, lon, e)
        return _fallback(lat, lon)


def get_forecast(lat: float, lon: float, days: int = 7,
                 scenario: Optional[str] = None) -> list[WeatherObservation]:
    """
    Daily forecast for the `days` days after today (index 0 = tomorrow).
    Falls back to the mock forecast when the provider fails.
    """
    if scenario or config.weather.use_mock:
        return get_forecast_mock(lat, lon, days, scenario=scenario)

    try:
        data = _fetch_json("forecast.json", {
            "q": f"{lat},{lon}", "days": days + 1, "aqi": "no", "alerts": "no",
        })
        forecast = _parse_forecast(data, lat, lon)[1:days + 1]
        if not forecast:
            raise ValueError("Empty forecast")
        return forecast
    except Exception as e:
        logger.warning("Forecast fetch failed for %s,%s: %s (using mock)", lat, lon, e)
        return get_forecast_mock(lat, lon, days)


def fetch_corridor_weather(booking, scenario: Optional[str] = None) -> dict[str, WeatherObservation]:
    """Departure always; arrival only when the booking has coordinates for it."""
    corridor = {"departure": get_weather(booking.departure_lat, booking.departure_lon, scenario)}
    if booking.arrival_lat is not None and booking.arrival_lon is not None:
        corridor["arrival"] = get_weather(booking.arrival_lat, booking.arrival_lon, scenario)
    return corridor


# ── Fetcher ───────────────────────────────────────────────────────────────────

def _fetch_json(endpoint: str, params: dict) -> dict:
    """GET {base_url}/{endpoint}?key=...; raises on HTTP or payload errors."""
    query = urllib.parse.urlencode({"key": config.weather.api_key, **params})
    url = f"{config.weather.base_url}/{endpoint}?{query}"
    req = urllib.request.Request(url, headers={"User-Agent": "crosswind-scheduler/1.0"})
    try:
        with urllib.request.urlopen(req, timeout=config.weather.timeout) as resp:
            data = json.loads(resp.read().decode())
    except urllib.error.HTTPError as e:
        message = e.reason
        try:
            message = json.loads(e.read().decode())["error"]["message"]
        except (ValueError, KeyError, TypeError):
            pass
        raise ValueError(f"Weather API error: {message} (code {e.code})") from e

    if not data:
        raise ValueError("No data received from weather provider")
    return data


# ── Parser ────────────────────────────────────────────────────────────────────

def _parse_current(data: dict, lat: float, lon: float) -> WeatherObservation:
    loc, cur = data["location"], data["current"]
    gust = cur.get("gust_kph")
    return WeatherObservation(
        location=f"{loc['name']}, {loc['region']}, {loc['country']}",
        timestamp=utcnow(),
        visibility=cur.get("vis_miles"),
        wind_speed=cur["wind_kph"] / KPH_PER_KNOT,
        wind_gust=gust / KPH_PER_KNOT if gust else None,
        wind_direction=cur.get("wind_degree"),
        temperature=cur.get("temp_c"),
        conditions=cur.get("condition", {}).get("text", "Unknown"),
        cloud_cover=cur.get("cloud"),
        lat=lat,
        lon=lon,
        confidence="live",
    )


def _parse_forecast(data: dict, lat: float, lon: float) -> list[WeatherObservation]:
    loc = data["location"]
    days = []
    for fday in data["forecast"]["forecastday"]:
        day = fday["day"]
        hours = fday.get("hour") or []
        clouds = [h["cloud"] for h in hours if "cloud" in h]
        conditions = day.get("condition", {}).get("text", "Unknown")
        rain = day.get("daily_chance_of_rain")
        if rain:
            conditions = f"{conditions} ({rain}% chance of rain)"
        days.append(WeatherObservation(
            location=f"{loc['name']}, {loc['region']}, {loc['country']}",
            timestamp=datetime.fromisoformat(fday["date"]),
            visibility=day.get("avgvis_miles"),
            wind_speed=day["maxwind_kph"] / KPH_PER_KNOT,
            wind_gust=None,
            wind_direction=None,
            temperature=day.get("avgtemp_c"),
            conditions=conditions,
            cloud_cover=round(sum(clouds) / len(clouds)) if clouds else None,
            lat=lat,
            lon=lon,
            confidence="live",
        ))
    return days


# ── Fallback ──────────────────────────────────────────────────────────────────

def _fallback(lat: float, lon: float) -> WeatherObservation:
    """Used when fetch fails. The minimums engine treats it as unsafe."""
    return WeatherObservation(
        location=f"{lat},{lon}",
        timestamp=utcnow(),
        visibility=None,
        wind_speed=None,
        wind_gust=None,
        wind_direction=None,
        temperature=None,
        conditions="Unavailable",
        cloud_cover=None,
        lat=lat,
        lon=lon,
        confidence="unknown",
    )


# ── Mock for testing (no internet needed) ────────────────────────────────────

MOCK_SCENARIOS = {
    # scenario: (visibility, wind, gust, direction, temp, conditions, cloud)
    "good":        (10.0, 8.0,  None, 270, 22.0, "Clear",    10),
    "low_vis":     (2.0,  5.0,  None, 270, 18.0, "Mist",     60),
    "low_ceiling": (8.0,  6.0,  None, 270, 17.0, "Overcast", 90),
    "high_wind":   (8.0,  25.0, 32.0, 270, 20.0, "Windy",    20),
}


def get_weather_mock(lat: float, lon: float, scenario: str = "good") -> WeatherObservation:
    """
    Returns deterministic weather for testing.
    scenario: "good" | "low_vis" | "low_ceiling" | "high_wind" | "unavailable"
    """
    if scenario == "unavailable":
        return _fallback(lat, lon)
    vis, wind, gust, direction, temp, conditions, cloud = \
        MOCK_SCENARIOS.get(scenario, MOCK_SCENARIOS["good"])
    return WeatherObservation(
        location=f"{lat},{lon}",
        timestamp=utcnow(),
        visibility=vis,
        wind_speed=wind,
        wind_gust=gust,
        wind_direction=direction,
        temperature=temp,
        conditions=conditions,
        cloud_cover=cloud,
        lat=lat,
        lon=lon,
        confidence="mock",
    )


def get_forecast_mock(lat: float, lon: float, days: int = 7,
                      start: Optional[datetime] = None,
                      scenario: Optional[str] = None) -> list[WeatherObservation]:
    """
    Deterministic forecast. Index 0 is the day after `start` (default today).
    With no scenario, visibility improves and wind drops day over day.
    With a scenario, every day carries that scenario's conditions.
    """
    base = start_of_day(start or utcnow())
    if scenario:
        forecast = []
        for i in range(1, days + 1):
            day = get_weather_mock(lat, lon, scenario)
            day.timestamp = base + timedelta(days=i)
            forecast.append(day)
        return forecast

    forecast = []
    for i in range(1, days + 1):
        wind = float(max(15 - i, 5))
        if i >= 3:
            conditions = ("Clear", "VFR conditions", "Mostly sunny")[i % 3]
        else:
            conditions = ("Partly cloudy", "Few clouds")[i % 2]
        forecast.append(WeatherObservation(
            location=f"{lat},{lon}",
            timestamp=base + timedelta(days=i),
            visibility=min(3 + i * 0.5, 10.0),
            wind_speed=wind,
            wind_gust=wind + 3 if wind > 8 else None,
            wind_direction=270,
            temperature=20.0 + i,
            conditions=conditions,
            cloud_cover=40 if i < 3 else 10,
            lat=lat,
            lon=lon,
            confidence="mock",
        ))
    return forecast
