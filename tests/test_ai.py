import json
import random

import pytest

import gemini
import settings


@pytest.fixture
def model_reply(monkeypatch):
    """Make ``gemini.generate`` answer with a fixed text."""
    def reply(text):
        monkeypatch.setattr(gemini, "generate", lambda prompt: text)
    return reply


def test_extract_json_ignores_fences_and_chatter():
    text = 'Here you go:\n```json\n{"product": "Onion", "nested": {"a": 1}}\n```\nHope this helps'
    assert gemini.extract_json(text) == {"product": "Onion", "nested": {"a": 1}}
    assert gemini.extract_json('Phrases: ["one", "two"]', opener="[") == ["one", "two"]
    with pytest.raises(ValueError):
        gemini.extract_json("no json at all")


def test_generate_without_key_is_unavailable():
    with pytest.raises(gemini.GeminiUnavailable):
        gemini.generate("hello")


def test_price_range_matches_plural_keys():
    assert gemini.price_range_for("Tomato") == {"min": 15, "max": 35}
    assert gemini.price_range_for("potato") == {"min": 12, "max": 28}
    assert gemini.price_range_for("rice") == {"min": 25, "max": 60}
    assert gemini.price_range_for("saffron") == {"min": 20, "max": 50}


def test_analyze_price_from_model(client, model_reply):
    model_reply(json.dumps({
        "product": "Onion",
        "fairPriceRange": {"min": 20, "max": 40},
        "confidence": 99,
        "marketInsights": ["Storage stocks are high"],
        "negotiationTips": ["Buy in bulk"],
        "nearbyMandis": [{"name": "Lasalgaon", "price": 30, "distance": "12 km"}],
    }))
    res = client.post("/api/analyze-price", json={"product": "Onion"})
    assert res.status_code == 200
    body = res.json()
    assert body["aiPowered"] is True
    assert body["fallbackMode"] is False
    assert body["confidence"] == 95
    assert body["nearbyMandis"][0]["name"] == "Lasalgaon"
    assert body["success"] is True


def test_analyze_price_incomplete_answer_falls_back(model_reply):
    model_reply('{"product": "Onion"}')
    result = gemini.analyze_product_price("Onion")
    assert result.is_fallback
    assert result.data["fairPriceRange"] == {"min": 20, "max": 45}


def test_analyze_price_without_key(client):
    res = client.post("/api/analyze-price", json={"product": "Tomato", "language": "hi"})
    assert res.status_code == 200
    body = res.json()
    assert body["aiPowered"] is False
    assert body["fallbackMode"] is True
    assert body["fallbackReason"]
    assert body["product"] == "Tomato"
    assert body["fairPriceRange"] == {"min": 15, "max": 35}
    assert body["confidence"] == 80
    assert body["nearbyMandis"][0] == {"name": "Central Wholesale Mandi", "price": 25, "distance": "2.5 km"}


def test_analyze_price_requires_product(client):
    assert client.post("/api/analyze-price", json={"product": "  "}).status_code == 400


def test_negotiation_phrases_from_model(client, model_reply):
    model_reply('```json\n["Bhaiya, 30 mein de do", "Quality dekh ke rate lagao"]\n```')
    res = client.post("/api/negotiation-phrases", json={
        "product": "Tomato", "currentPrice": 40, "targetPrice": 30, "language": "hi",
    })
    assert res.status_code == 200
    body = res.json()
    assert body["phrases"] == ["Bhaiya, 30 mein de do", "Quality dekh ke rate lagao"]
    assert body["aiPowered"] is True
    assert body["language"] == "hi"


def test_negotiation_phrases_fallback(client):
    res = client.post("/api/negotiation-phrases", json={
        "product": "Tomato", "currentPrice": 40, "targetPrice": 30,
    })
    body = res.json()
    assert body["fallbackMode"] is True
    assert len(body["phrases"]) == 5
    assert any("₹30" in p for p in body["phrases"])


def test_negotiation_fallback_unknown_language_uses_english():
    assert gemini.fallback_phrases("fr", 12.5) == gemini.fallback_phrases("en", 12.5)
    assert "₹12.5" in gemini.fallback_phrases("en", 12.5)[1]


@pytest.mark.parametrize("payload", [
    {"product": "Tomato", "currentPrice": 0, "targetPrice": 30},
    {"product": "Tomato", "currentPrice": 40},
    {"currentPrice": 40, "targetPrice": 30},
])
def test_negotiation_phrases_validation(client, payload):
    assert client.post("/api/negotiation-phrases", json=payload).status_code == 400


def test_translate(client, model_reply):
    model_reply("टमाटर का भाव क्या है?")
    res = client.post("/api/translate", json={"text": "What is the price of tomatoes?", "targetLanguage": "hi"})
    body = res.json()
    assert body["translatedText"] == "टमाटर का भाव क्या है?"
    assert body["originalText"] == "What is the price of tomatoes?"
    assert body["aiPowered"] is True


def test_translate_fallback_returns_original(client):
    res = client.post("/api/translate", json={"text": "Fresh onions", "targetLanguage": "ta"})
    body = res.json()
    assert res.status_code == 200
    assert body["translatedText"] == "Fresh onions"
    assert body["fallbackMode"] is True


def test_market_overview_from_model(model_reply):
    model_reply(json.dumps({
        "commodities": [{"name": "Onion", "currentPrice": 32}],
        "aiInsights": {"marketSentiment": "bullish"},
        "marketAnalysis": {"overallCondition": "busy"},
    }))
    result = gemini.market_overview("Azadpur Mandi", "Delhi")
    assert not result.is_fallback
    assert result.data["marketName"] == "Azadpur Mandi"
    assert result.data["location"] == "Delhi"


def test_market_overview_invalid_structure_falls_back(model_reply):
    model_reply('{"commodities": "none", "aiInsights": {}, "marketAnalysis": {}}')
    result = gemini.market_overview("Azadpur Mandi", rng=random.Random(4))
    assert result.is_fallback
    assert "commodities" in result.reason
    assert result.data["estimated"] is True
    assert len(result.data["commodities"]) == len(gemini.COMMODITY_TEMPLATES)


def test_fallback_overview_prices_follow_market_type():
    rng = random.Random(7)
    wholesale = gemini.fallback_market_overview("Azadpur Wholesale", rng=rng)
    for commodity, template in zip(wholesale["commodities"], gemini.COMMODITY_TEMPLATES):
        assert commodity["currentPrice"] <= round(template["basePrice"] * 0.9 * 1.15) + 1
        assert [d["day"] for d in commodity["weeklyTrend"]] == gemini.WEEKDAYS


def test_market_data_endpoints(client):
    res = client.get("/api/market-data")
    assert res.status_code == 200
    body = res.json()
    assert body["marketName"] == "Local Mandi"
    assert body["location"] == "India"
    assert body["fallbackMode"] is True

    res = client.post("/api/market-data", json={"market": "Vashi APMC", "location": "Navi Mumbai"})
    assert res.json()["marketName"] == "Vashi APMC"

    assert client.post("/api/market-data", json={"location": "Pune"}).status_code == 400


def test_test_gemini_without_key(client):
    res = client.get("/api/test-gemini")
    assert res.status_code == 500
    assert res.json()["success"] is False


def test_get_model_is_cached(monkeypatch):
    created = []
    monkeypatch.setattr(settings, "GEMINI_API_KEY", "test-gemini-key")
    monkeypatch.setattr(gemini.genai, "configure", lambda api_key: None)
    monkeypatch.setattr(gemini.genai, "GenerativeModel", lambda name: created.append(name) or object())
    assert gemini.get_model() is gemini.get_model()
    assert created == [settings.GEMINI_MODEL]
