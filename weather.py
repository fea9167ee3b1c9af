import logging
from datetime import datetime, timezone
from typing import List, Optional

import requests

import settings

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.openweathermap.org/data/2.5"
FORECAST_SLOTS = 8
TIMEOUT = 12


class WeatherAPIError(Exception):
    def __init__(self, status_code: int, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details


def _params(location: Optional[str], lat: Optional[float], lon: Optional[float]) -> dict:
    params = {"appid": settings.WEATHER_API_KEY, "units": "metric"}
    if lat is not None and lon is not None:
        params.update({"lat": lat, "lon": lon})
    elif location:
        params["q"] = location
    else:
        raise ValueError("Location or coordinates required")
    return params


def fetch_current(location: Optional[str] = None, lat: Optional[float] = None, lon: Optional[float] = None) -> dict:
    params = _params(location, lat, lon)
    logger.info("Requesting current weather for %s", params.get("q") or f"{lat},{lon}")
    try:
        response = requests.get(f"{API_BASE_URL}/weather", params=params, timeout=TIMEOUT)
    except requests.exceptions.RequestException as e:
        raise WeatherAPIError(500, "Failed to fetch weather data", str(e)) from e

    if response.status_code == 401:
        raise WeatherAPIError(401, "Invalid API key. Please check your OpenWeatherMap API key.",
                              "Make sure your API key is correct and activated")
    if response.status_code == 404:
        raise WeatherAPIError(404, "Location not found. Please check the location name and try again.")
    if not response.ok:
        logger.error("Weather API error %s: %s", response.status_code, response.text[:200])
        raise WeatherAPIError(response.status_code, f"Weather API error: {response.status_code} {response.reason}",
                              response.text)
    try:
        return response.json()
    except ValueError as e:
        raise WeatherAPIError(500, "Invalid response from weather service", response.text[:200]) from e


def fetch_forecast(location: Optional[str] = None, lat: Optional[float] = None, lon: Optional[float] = None) -> Optional[dict]:
    try:
        response = requests.get(f"{API_BASE_URL}/forecast", params=_params(location, lat, lon), timeout=TIMEOUT)
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as e:
        logger.warning("Forecast request failed, continuing without forecast: %s", e)
        return None


def agricultural_insights(temp: float, humidity: float, wind_speed: float, condition: str) -> List[dict]:
    """Advisories derived from fixed thresholds on the current conditions."""
    condition = condition.lower()
    insights = []

    if temp > 35:
        insights.append({
            "type": "warning",
            "title": "High Temperature Alert",
            "message": "Extreme heat may stress crops. Ensure adequate irrigation and consider shade protection for sensitive plants.",
            "icon": "🌡️",
        })
    elif temp < 5:
        insights.append({
            "type": "warning",
            "title": "Cold Weather Alert",
            "message": "Low temperatures may damage crops. Consider frost protection measures for sensitive plants.",
            "icon": "❄️",
        })
    elif 20 <= temp <= 30:
        insights.append({
            "type": "positive",
            "title": "Optimal Temperature",
            "message": "Current temperature is ideal for most crop growth and outdoor farming activities.",
            "icon": "🌱",
        })

    if humidity > 80:
        insights.append({
            "type": "warning",
            "title": "High Humidity",
            "message": "High humidity increases risk of fungal diseases. Ensure good air circulation and consider fungicide application.",
            "icon": "💧",
        })
    elif humidity < 30:
        insights.append({
            "type": "info",
            "title": "Low Humidity",
            "message": "Low humidity may increase water stress. Monitor soil moisture and increase irrigation frequency.",
            "icon": "🏜️",
        })

    if "rain" in condition:
        insights.append({
            "type": "info",
            "title": "Rainfall Detected",
            "message": "Good for soil moisture but avoid heavy machinery use. Check for waterlogging in low-lying areas.",
            "icon": "🌧️",
        })
    elif "clear" in condition or "sun" in condition:
        insights.append({
            "type": "positive",
            "title": "Clear Weather",
            "message": "Excellent conditions for harvesting, spraying, and other field operations.",
            "icon": "☀️",
        })

    if wind_speed > 10:
        insights.append({
            "type": "warning",
            "title": "Strong Winds",
            "message": "High winds may damage crops and make spraying ineffective. Postpone aerial applications.",
            "icon": "💨",
        })

    insights.append({
        "type": "info",
        "title": "Market Impact",
        "message": "Weather conditions directly affect crop quality and market prices. Plan harvesting and storage accordingly.",
        "icon": "📈",
    })
    return insights


def _iso(ts: Optional[int]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def format_weather(current: dict, forecast: Optional[dict] = None) -> dict:
    main = current["main"]
    wind = current.get("wind", {})
    conditions = current.get("weather") or [{}]
    sys = current.get("sys", {})
    visibility = current.get("visibility")

    return {
        "location": {
            "name": current.get("name"),
            "country": sys.get("country"),
            "coordinates": current.get("coord"),
        },
        "current": {
            "temperature": round(main["temp"]),
            "feelsLike": round(main.get("feels_like", main["temp"])),
            "humidity": main.get("humidity"),
            "pressure": main.get("pressure"),
            "visibility": round(visibility / 1000) if visibility else None,
            "windSpeed": wind.get("speed"),
            "windDirection": wind.get("deg"),
            "description": conditions[0].get("description"),
            "icon": conditions[0].get("icon"),
            "cloudiness": current.get("clouds", {}).get("all"),
            "sunrise": _iso(sys.get("sunrise")),
            "sunset": _iso(sys.get("sunset")),
        },
        "forecast": [
            {
                "time": _iso(item["dt"]),
                "temperature": round(item["main"]["temp"]),
                "description": item["weather"][0]["description"],
                "icon": item["weather"][0]["icon"],
                "humidity": item["main"]["humidity"],
                "windSpeed": item["wind"]["speed"],
            }
            for item in (forecast or {}).get("list", [])[:FORECAST_SLOTS]
        ],
        "agriculturalInsights": agricultural_insights(
            main["temp"], main.get("humidity", 0), wind.get("speed", 0), conditions[0].get("main", ""),
        ),
        "lastUpdated": datetime.now(timezone.utc).isoformat(),
    }


def get_weather(location: Optional[str] = None, lat: Optional[float] = None, lon: Optional[float] = None) -> dict:
    current = fetch_current(location, lat, lon)
    return format_weather(current, fetch_forecast(location, lat, lon))


def check_api_key() -> dict:
    """Probe the configured key with a fixed city; never raises."""
    if not settings.WEATHER_API_KEY:
        return {
            "status": "error",
            "message": "WEATHER_API_KEY environment variable not found",
            "solution": "Add WEATHER_API_KEY to your .env file",
        }
    try:
        data = fetch_current(location="London")
    except WeatherAPIError as e:
        return {
            "status": "error",
            "message": f"API key test failed: {e.message}",
            "details": e.details,
            "solutions": [
                "Check if your API key is correct",
                "Wait up to 2 hours for new API keys to activate",
                "Verify your OpenWeatherMap account is active",
            ],
        }
    return {
        "status": "success",
        "message": "Weather API key is working correctly!",
        "testLocation": f"{data.get('name')}, {data.get('sys', {}).get('country')}",
        "temperature": f"{round(data['main']['temp'])}°C",
        "description": (data.get("weather") or [{}])[0].get("description"),
    }
