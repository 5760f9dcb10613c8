"""Weather fetcher: parsing, cache, fallback and mock scenarios."""
from dataclasses import replace
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from crosswind.config import config
from crosswind.weather import fetcher
from crosswind.weather.fetcher import (
    WeatherObservation, fetch_corridor_weather, get_forecast, get_forecast_mock,
    get_weather, get_weather_mock,
)

CURRENT_PAYLOAD = {
    "location": {"name": "San Francisco", "region": "California", "country": "USA"},
    "current": {
        "vis_miles": 9.0,
        "wind_kph": 18.52,
        "gust_kph": 27.78,
        "wind_degree": 280,
        "temp_c": 16.1,
        "condition": {"text": "Partly cloudy"},
        "cloud": 30,
    },
}

FORECAST_PAYLOAD = {
    "location": {"name": "San Francisco", "region": "California", "country": "USA"},
    "forecast": {"forecastday": [
        {"date": "2026-10-18", "day": {"maxwind_kph": 9.26, "avgvis_miles": 10.0, "avgtemp_c": 18.0,
                                       "condition": {"text": "Sunny"}, "daily_chance_of_rain": 0},
         "hour": [{"cloud": 0}, {"cloud": 10}]},
        {"date": "2026-10-19", "day": {"maxwind_kph": 37.04, "avgvis_miles": 4.0, "avgtemp_c": 14.0,
                                       "condition": {"text": "Patchy rain"}, "daily_chance_of_rain": 80},
         "hour": [{"cloud": 80}, {"cloud": 100}]},
    ]},
}


@pytest.fixture
def live(monkeypatch):
    """Switch the fetcher to the live provider path with a fake HTTP layer."""
    live_config = replace(config, weather=replace(config.weather, api_key="test-key", force_mock=False))
    monkeypatch.setattr(fetcher, "config", live_config)
    calls = []

    def fake_fetch(endpoint, params):
        calls.append(endpoint)
        return CURRENT_PAYLOAD if endpoint == "current.json" else FORECAST_PAYLOAD

    monkeypatch.setattr(fetcher, "_fetch_json", fake_fetch)
    return calls


def failing_fetch(endpoint, params):
    raise ValueError("Weather API error: API key is invalid. (code 401)")


# =============================================================================
# Live path
# =============================================================================

def test_parse_current_converts_to_knots(live):
    observation = get_weather(37.7749, -122.4194)
    assert observation.location == "San Francisco, California, USA"
    assert observation.wind_speed == pytest.approx(10.0)
    assert observation.wind_gust == pytest.approx(15.0)
    assert observation.visibility == 9.0
    assert observation.confidence == "live"
    assert observation.ceiling_ft == 5000


def test_second_lookup_served_from_cache(live):
    get_weather(37.7749, -122.4194)
    cached = get_weather(37.77491, -122.41939)
    assert cached.confidence == "cached"
    assert live == ["current.json"]


def test_stale_cache_refetches(live, monkeypatch):
    get_weather(37.7749, -122.4194)
    key = fetcher._cache_key(37.7749, -122.4194)
    fetcher._cache[key].fetched_at -= timedelta(hours=2)
    assert get_weather(37.7749, -122.4194).confidence == "live"
    assert live == ["current.json", "current.json"]


def test_fetch_failure_returns_unknown_fallback(live, monkeypatch):
    monkeypatch.setattr(fetcher, "_fetch_json", failing_fetch)
    observation = get_weather(37.7749, -122.4194)
    assert observation.confidence == "unknown"
    assert not observation.is_available
    assert observation.visibility is None


def test_forecast_drops_today_and_averages_clouds(live):
    forecast = get_forecast(37.7749, -122.4194, days=1)
    assert len(forecast) == 1
    day = forecast[0]
    assert day.timestamp == datetime(2026, 10, 19)
    assert day.conditions == "Patchy rain (80% chance of rain)"
    assert day.cloud_cover == 90
    assert day.wind_speed == pytest.approx(20.0)


def test_forecast_failure_falls_back_to_mock(live, monkeypatch):
    monkeypatch.setattr(fetcher, "_fetch_json", failing_fetch)
    forecast = get_forecast(37.7749, -122.4194, days=3)
    assert len(forecast) == 3
    assert all(day.confidence == "mock" for day in forecast)


# =============================================================================
# Mock path
# =============================================================================

@pytest.mark.parametrize("scenario,visibility,wind", [
    ("good", 10.0, 8.0),
    ("low_vis", 2.0, 5.0),
    ("high_wind", 8.0, 25.0),
])
def test_mock_scenarios(scenario, visibility, wind):
    observation = get_weather(37.7749, -122.4194, scenario=scenario)
    assert observation.confidence == "mock"
    assert (observation.visibility, observation.wind_speed) == (visibility, wind)


def test_unknown_mock_scenario_is_good_weather():
    assert get_weather_mock(0, 0, "hurricane").conditions == "Clear"


def test_forecast_follows_requested_scenario():
    windy = get_forecast(37.7749, -122.4194, days=3, scenario="high_wind")
    assert [(d.wind_speed, d.wind_gust) for d in windy] == [(25.0, 32.0)] * 3
    assert [d.timestamp for d in windy] == sorted(d.timestamp for d in windy)
    assert len({d.timestamp.date() for d in windy}) == 3

    misty = get_forecast_mock(37.7749, -122.4194, days=2,
                              start=datetime(2026, 10, 18, 8, 30), scenario="low_vis")
    assert [d.timestamp for d in misty] == [datetime(2026, 10, 19), datetime(2026, 10, 20)]
    assert all(d.visibility == 2.0 and d.conditions == "Mist" for d in misty)

    dark = get_forecast(37.7749, -122.4194, days=2, scenario="unavailable")
    assert all(not d.is_available for d in dark)


def test_mock_forecast_improves_day_over_day():
    start = datetime(2026, 10, 18, 8, 30)
    forecast = get_forecast_mock(37.7749, -122.4194, days=7, start=start)
    assert [d.timestamp.date().isoformat() for d in forecast[:2]] == ["2026-10-19", "2026-10-20"]
    assert [d.visibility for d in forecast] == sorted(d.visibility for d in forecast)
    assert forecast[0].wind_speed > forecast[-1].wind_speed


# =============================================================================
# Derived values
# =============================================================================

@pytest.mark.parametrize("cloud,ceiling", [(None, 5000), (10, 10000), (40, 5000), (60, 2500), (90, 1000)])
def test_ceiling_estimate(cloud, ceiling):
    observation = replace(get_weather_mock(0, 0), cloud_cover=cloud)
    assert observation.ceiling_ft == ceiling


def test_crosswind_component():
    observation = replace(get_weather_mock(0, 0), wind_speed=10.0, wind_direction=90)
    assert observation.crosswind_kt == 7.1
    assert replace(observation, wind_direction=None).crosswind_kt is None


def test_summary_and_to_dict():
    observation = get_weather_mock(37.7749, -122.4194, "low_vis")
    assert observation.summary() == "Mist - Wind: 5 knots, Visibility: 2 miles"
    data = observation.to_dict()
    assert data["coordinates"] == {"lat": 37.7749, "lon": -122.4194}
    assert data["ceiling_ft"] == 2500


def test_corridor_includes_arrival_only_when_present():
    local = SimpleNamespace(departure_lat=37.77, departure_lon=-122.42, arrival_lat=None, arrival_lon=None)
    cross_country = SimpleNamespace(departure_lat=37.77, departure_lon=-122.42,
                                    arrival_lat=38.58, arrival_lon=-121.49)
    assert list(fetch_corridor_weather(local)) == ["departure"]
    corridor = fetch_corridor_weather(cross_country, scenario="low_vis")
    assert list(corridor) == ["departure", "arrival"]
    assert isinstance(corridor["arrival"], WeatherObservation)
