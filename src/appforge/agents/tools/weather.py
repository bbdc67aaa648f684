from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field

from .base import ToolDefinition
from .http import TOOL_HTTP_TIMEOUT, build_session


GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

# WMO weather interpretation codes (subset)
WEATHER_CODES: Dict[int, str] = {
    0: "clear sky",
    1: "mainly clear",
    2: "partly cloudy",
    3: "overcast",
    45: "fog",
    48: "depositing rime fog",
    51: "light drizzle",
    53: "drizzle",
    55: "dense drizzle",
    61: "light rain",
    63: "rain",
    65: "heavy rain",
    71: "light snow",
    73: "snow",
    75: "heavy snow",
    80: "rain showers",
    81: "heavy rain showers",
    95: "thunderstorm",
}


class WeatherArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    location: str = Field(min_length=2, description="City name, optionally with country, e.g. 'Lisbon, Portugal'")


_session: Optional[requests.Session] = None


def _get_session() -> requests.Session:
    global _session
    if _session is None:
        _session = build_session()
    return _session


def _lookup(location: str) -> Dict[str, Any]:
    session = _get_session()
    geo = session.get(GEOCODING_URL, params={"name": location, "count": 1}, timeout=TOOL_HTTP_TIMEOUT)
    geo.raise_for_status()
    places = geo.json().get("results") or []
    if not places:
        return {"error": f"Location not found: {location}"}
    place = places[0]
    forecast = session.get(
        FORECAST_URL,
        params={
            "latitude": place["latitude"],
            "longitude": place["longitude"],
            "current": "temperature_2m,weather_code,wind_speed_10m",
        },
        timeout=TOOL_HTTP_TIMEOUT,
    )
    forecast.raise_for_status()
    current = forecast.json().get("current") or {}
    code = current.get("weather_code")
    return {
        "location": ", ".join(p for p in (place.get("name"), place.get("country")) if p),
        "temperature_c": current.get("temperature_2m"),
        "wind_speed_kmh": current.get("wind_speed_10m"),
        "conditions": WEATHER_CODES.get(code, "unknown") if code is not None else "unknown",
    }


async def _get_weather(args: WeatherArgs) -> Dict[str, Any]:
    return await asyncio.to_thread(_lookup, args.location)


tool_weather_definition = ToolDefinition(
    name="get_weather",
    description="Get the current weather for a location.",
    args_model=WeatherArgs,
    implementation=_get_weather,
)
