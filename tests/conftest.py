import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import gemini
import settings
from auth import create_access_token
from main import app

VENDOR_EMAIL = "vendor@example.com"
OTHER_EMAIL = "other@example.com"


def bearer(email, name=None):
    token = create_access_token({"sub": email, "name": name})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setattr(settings, "MONGODB_URI", None)
    monkeypatch.setattr(settings, "GEMINI_API_KEY", None)
    monkeypatch.setattr(settings, "SERP_API_KEY", "test-serp-key")
    monkeypatch.setattr(settings, "WEATHER_API_KEY", "test-weather-key")
    gemini.reset_model()
    yield
    gemini.reset_model()


@pytest.fixture
def db():
    mongo = database.init(mongomock.MongoClient())
    yield mongo
    database.close()


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def vendor():
    return bearer(VENDOR_EMAIL, "Ravi Kumar")


@pytest.fixture
def other_vendor():
    return bearer(OTHER_EMAIL, "Meena Devi")
