import pytest

import settings
import weather

CURRENT = {
    "name": "Nashik",
    "coord": {"lat": 19.99, "lon": 73.79},
    "sys": {"country": "IN", "sunrise": 1700000000, "sunset": 1700040000},
    "main": {"temp": 24.6, "feels_like": 25.2, "humidity": 55, "pressure": 1012},
    "wind": {"speed": 3.4, "deg": 240},
    "weather": [{"main": "Clear", "description": "clear sky", "icon": "01d"}],
    "clouds": {"all": 0},
    "visibility": 10000,
}


def forecast_slot(dt, temp):
    return {
        "dt": dt,
        "main": {"temp": temp, "humidity": 60},
        "weather": [{"description": "few clouds", "icon": "02d"}],
        "wind": {"speed": 2.0},
    }


FORECAST = {"list": [forecast_slot(1700000000 + i * 10800, 20 + i) for i in range(10)]}


def titles(insights):
    return [i["title"] for i in insights]


@pytest.mark.parametrize("temp,humidity,wind,condition,expected", [
    (38, 50, 2, "Clouds", ["High Temperature Alert", "Market Impact"]),
    (2, 50, 2, "Clouds", ["Cold Weather Alert", "Market Impact"]),
    (25, 90, 2, "Rain", ["Optimal Temperature", "High Humidity", "Rainfall Detected", "Market Impact"]),
    (15, 20, 12, "Clear", ["Low Humidity", "Clear Weather", "Strong Winds", "Market Impact"]),
    (32, 50, 10, "Haze", ["Market Impact"]),
])
def test_agricultural_insights(temp, humidity, wind, condition, expected):
    assert titles(weather.agricultural_insights(temp, humidity, wind, condition)) == expected


def test_format_weather():
    data = weather.format_weather(CURRENT, FORECAST)
    assert data["location"] == {"name": "Nashik", "country": "IN", "coordinates": {"lat": 19.99, "lon": 73.79}}
    current = data["current"]
    assert current["temperature"] == 25
    assert current["visibility"] == 10
    assert current["description"] == "clear sky"
    assert current["sunrise"].startswith("2023-11-14")
    assert len(data["forecast"]) == weather.FORECAST_SLOTS
    assert data["forecast"][0]["temperature"] == 20
    assert titles(data["agriculturalInsights"]) == ["Optimal Temperature", "Clear Weather", "Market Impact"]


def test_format_weather_without_forecast():
    assert weather.format_weather(CURRENT)["forecast"] == []


def test_params_need_location_or_coordinates():
    with pytest.raises(ValueError):
        weather._params(None, 19.9, None)
    assert weather._params("Pune", None, None)["q"] == "Pune"
    params = weather._params("Pune", 18.5, 73.8)
    assert (params["lat"], params["lon"]) == (18.5, 73.8)
    assert "q" not in params


@pytest.fixture
def owm(monkeypatch):
    calls = []

    def current(location=None, lat=None, lon=None):
        calls.append((location, lat, lon))
        return CURRENT

    monkeypatch.setattr(weather, "fetch_current", current)
    monkeypatch.setattr(weather, "fetch_forecast", lambda location=None, lat=None, lon=None: FORECAST)
    return calls


def test_weather_endpoint(client, owm):
    res = client.get("/api/weather", params={"location": "Nashik"})
    assert res.status_code == 200
    assert res.json()["location"]["name"] == "Nashik"
    assert owm == [("Nashik", None, None)]


def test_weather_endpoint_by_coordinates(client, owm):
    assert client.get("/api/weather", params={"lat": 19.99, "lon": 73.79}).status_code == 200
    assert owm == [(None, 19.99, 73.79)]


def test_weather_endpoint_requires_location(client, owm):
    assert client.get("/api/weather").status_code == 400
    assert client.get("/api/weather", params={"lat": 19.99}).status_code == 400
    assert owm == []


def test_weather_endpoint_maps_upstream_errors(client, monkeypatch):
    def not_found(location=None, lat=None, lon=None):
        raise weather.WeatherAPIError(404, "Location not found. Please check the location name and try again.")

    monkeypatch.setattr(weather, "fetch_current", not_found)
    res = client.get("/api/weather", params={"location": "Atlantis"})
    assert res.status_code == 404
    assert res.json()["detail"].startswith("Location not found")
    assert "details" not in res.json()


def test_weather_endpoint_passes_error_details(client, monkeypatch):
    def bad_key(location=None, lat=None, lon=None):
        raise weather.WeatherAPIError(401, "Invalid API key. Please check your OpenWeatherMap API key.",
                                      "Make sure your API key is correct and activated")

    monkeypatch.setattr(weather, "fetch_current", bad_key)
    res = client.get("/api/weather", params={"location": "Pune"})
    assert res.status_code == 401
    assert res.json() == {
        "detail": "Invalid API key. Please check your OpenWeatherMap API key.",
        "details": "Make sure your API key is correct and activated",
    }


def test_weather_endpoint_without_key(client, monkeypatch):
    monkeypatch.setattr(settings, "WEATHER_API_KEY", None)
    res = client.get("/api/weather", params={"location": "Nashik"})
    assert res.status_code == 500


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self.payload = payload or {}
        self.ok = status_code < 400
        self.reason = "Error"
        self.text = str(payload)

    def json(self):
        return self.payload


class HTMLResponse(FakeResponse):
    def __init__(self):
        super().__init__(200)
        self.text = "<html>maintenance</html>"

    def json(self):
        raise ValueError("Expecting value")


@pytest.mark.parametrize("status,expected", [(401, 401), (404, 404), (429, 429)])
def test_fetch_current_status_mapping(monkeypatch, status, expected):
    monkeypatch.setattr(weather.requests, "get", lambda url, params, timeout: FakeResponse(status))
    with pytest.raises(weather.WeatherAPIError) as exc:
        weather.fetch_current("Pune")
    assert exc.value.status_code == expected


def test_fetch_current_network_failure(monkeypatch):
    def boom(url, params, timeout):
        raise weather.requests.exceptions.ConnectionError("unreachable")

    monkeypatch.setattr(weather.requests, "get", boom)
    with pytest.raises(weather.WeatherAPIError) as exc:
        weather.fetch_current("Pune")
    assert exc.value.status_code == 500
    assert weather.fetch_forecast("Pune") is None


def test_check_api_key(client, monkeypatch):
    monkeypatch.setattr(weather, "fetch_current", lambda location=None, lat=None, lon=None: CURRENT)
    body = client.get("/api/test-weather-key").json()
    assert body["status"] == "success"
    assert body["temperature"] == "25°C"

    monkeypatch.setattr(settings, "WEATHER_API_KEY", None)
    body = client.get("/api/test-weather-key").json()
    assert body["status"] == "error"


def test_fetch_current_non_json_body(client, monkeypatch):
    monkeypatch.setattr(weather.requests, "get", lambda url, params, timeout: HTMLResponse())
    with pytest.raises(weather.WeatherAPIError) as exc:
        weather.fetch_current("Pune")
    assert exc.value.status_code == 500
    assert "maintenance" in exc.value.details

    res = client.get("/api/weather", params={"location": "Pune"})
    assert res.status_code == 500
    assert res.json()["detail"] == "Invalid response from weather service"
