"""
Gemini-backed market helpers.

Every public helper returns an ``AIResult``. When the model is not
configured, errors out, or answers with something that does not parse into
the expected shape, the result carries a static fallback payload and
``status == "fallback"`` so callers can tell estimated data from AI output.
"""

import json
import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional

import google.generativeai as genai

import settings
from schemas import PriceAnalysis

logger = logging.getLogger(__name__)

TEST_MODELS = ["gemini-2.5-flash", "gemini-1.5-flash-latest", "gemini-pro"]

LANGUAGES = {
    "en": "English",
    "hi": "Hindi (हिंदी)",
    "ta": "Tamil (தமிழ்)",
    "te": "Telugu (తెలుగు)",
    "kn": "Kannada (ಕನ್ನಡ)",
    "mr": "Marathi (मराठी)",
}

OK = "ok"
FALLBACK = "fallback"


class GeminiUnavailable(Exception):
    pass


@dataclass
class AIResult:
    status: str
    data: Any
    reason: Optional[str] = None

    @classmethod
    def ok(cls, data):
        return cls(OK, data)

    @classmethod
    def fallback(cls, data, reason: str):
        return cls(FALLBACK, data, reason)

    @property
    def is_fallback(self) -> bool:
        return self.status == FALLBACK

    def flags(self) -> dict:
        return {
            "aiPowered": not self.is_fallback,
            "fallbackMode": self.is_fallback,
            "fallbackReason": self.reason,
        }


# ------------------------- Client -------------------------

_model = None


def get_model():
    global _model
    if _model is None:
        if not settings.GEMINI_API_KEY:
            raise GeminiUnavailable("Gemini API key not configured")
        genai.configure(api_key=settings.GEMINI_API_KEY)
        _model = genai.GenerativeModel(settings.GEMINI_MODEL)
    return _model


def reset_model():
    global _model
    _model = None


def generate(prompt: str) -> str:
    response = get_model().generate_content(prompt)
    text = getattr(response, "text", None)
    if not text:
        raise ValueError("Empty response from Gemini")
    return text.strip()


def probe_models(prompt: str = "Say hello") -> dict:
    """Find the first model name that answers ``prompt``."""
    if not settings.GEMINI_API_KEY:
        raise GeminiUnavailable("Gemini API key not configured")
    genai.configure(api_key=settings.GEMINI_API_KEY)
    names = [settings.GEMINI_MODEL] + [m for m in TEST_MODELS if m != settings.GEMINI_MODEL]
    for name in names:
        try:
            response = genai.GenerativeModel(name).generate_content(prompt)
            return {"model": name, "response": response.text}
        except Exception as e:
            logger.warning("Model %s failed: %s", name, e)
    raise GeminiUnavailable("All models failed")


def language_name(code: str, default: Optional[str] = None) -> str:
    return LANGUAGES.get(code, default or code)


def extract_json(text: str, opener: str = "{"):
    """Parse the outermost JSON object (or array, with ``opener="["``) in a
    free-text model answer, ignoring code fences and chatter around it."""
    closer = "}" if opener == "{" else "]"
    text = re.sub(r"```(?:json)?", "", text)
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end < start:
        raise ValueError("No JSON found in model response")
    return json.loads(text[start:end + 1])


# ------------------------- Price analysis -------------------------

PRICE_RANGES = {
    "tomatoes": {"min": 15, "max": 35},
    "onions": {"min": 20, "max": 45},
    "potatoes": {"min": 12, "max": 28},
    "rice": {"min": 25, "max": 60},
    "wheat": {"min": 20, "max": 35},
    "apples": {"min": 80, "max": 150},
    "bananas": {"min": 30, "max": 60},
    "carrots": {"min": 25, "max": 50},
    "cabbage": {"min": 10, "max": 25},
    "spinach": {"min": 15, "max": 30},
}
DEFAULT_PRICE_RANGE = {"min": 20, "max": 50}

PRICE_PROMPT = """You are an AI assistant for Indian agricultural markets (mandis).
Analyze the product "{product}" and provide comprehensive market insights in {language}.

Consider the current season, regional variations across India, quality grades,
transportation and storage costs, demand patterns, and wholesale vs retail pricing.
Give realistic prices in INR per kg or per quintal as appropriate.

Respond with a JSON object with exactly this structure:
{{
  "product": "product name in {language}",
  "fairPriceRange": {{"min": number, "max": number}},
  "confidence": number between 75 and 95,
  "marketInsights": ["four insights on season, quality, regional prices, logistics"],
  "negotiationTips": ["four practical negotiation tips"],
  "nearbyMandis": [{{"name": "mandi name", "price": number, "distance": "X km"}}]
}}"""


def price_range_for(product: str) -> dict:
    key = product.lower().strip()
    for candidate in (key, key + "s", key + "es"):
        if candidate in PRICE_RANGES:
            return dict(PRICE_RANGES[candidate])
    return dict(DEFAULT_PRICE_RANGE)


def fallback_price_analysis(product: str) -> dict:
    price_range = price_range_for(product)
    low, high = price_range["min"], price_range["max"]
    return {
        "product": product,
        "fairPriceRange": price_range,
        "confidence": 80,
        "marketInsights": [
            f"{product} prices are influenced by seasonal demand patterns",
            "Quality assessment is crucial for fair pricing negotiations",
            "Regional variations can affect pricing by 15-25%",
            "Transportation costs vary with fuel prices and distance to the mandi",
        ],
        "negotiationTips": [
            "Compare prices with at least 2-3 nearby mandis before negotiating",
            "Highlight the quality and freshness of your produce",
            "Consider bulk purchase discounts for regular customers",
            "Build long-term relationships for better pricing stability",
        ],
        "nearbyMandis": [
            {"name": "Central Wholesale Mandi", "price": round((low + high) / 2), "distance": "2.5 km"},
            {"name": "Farmers Direct Market", "price": round(low * 1.1), "distance": "4.2 km"},
            {"name": "Regional Trading Hub", "price": round(high * 0.9), "distance": "3.8 km"},
        ],
    }


def analyze_product_price(product: str, language: str = "en") -> AIResult:
    prompt = PRICE_PROMPT.format(product=product, language=language_name(language, "English"))
    try:
        analysis = PriceAnalysis.model_validate(extract_json(generate(prompt)))
        analysis.confidence = min(95, max(75, analysis.confidence))
        return AIResult.ok(analysis.model_dump())
    except Exception as e:
        logger.warning("Price analysis for %r fell back: %s", product, e)
        return AIResult.fallback(fallback_price_analysis(product), str(e))


# ------------------------- Negotiation phrases -------------------------

NEGOTIATION_PROMPT = """Generate 5 culturally appropriate and effective negotiation phrases for an Indian mandi vendor.

Context:
- Product: {product}
- Current asking price: ₹{current} per kg
- Target price: ₹{target} per kg
- Language: {language}

The phrases must be respectful but firm, sound natural in {language}, and refer to
quality, market rates or bulk purchases where appropriate.

Respond with exactly 5 phrases as a JSON array: ["phrase 1", "phrase 2", "phrase 3", "phrase 4", "phrase 5"]"""

FALLBACK_PHRASES = {
    "en": [
        "The quality is excellent, but can we discuss a better rate for regular business?",
        "I've seen similar quality at ₹{target} in nearby mandis. Can you match that?",
        "For bulk purchases like this, what's your best price?",
        "This looks fresh and good quality. What's your final rate for cash payment?",
        "I'm a regular customer here. Can we work out a fair price that benefits both of us?",
    ],
    "hi": [
        "गुणवत्ता बहुत अच्छी है, लेकिन नियमित व्यापार के लिए बेहतर दर पर बात कर सकते हैं?",
        "पास की मंडी में इसी गुणवत्ता का ₹{target} में मिल रहा है। क्या आप वही दर दे सकते हैं?",
        "इतनी मात्रा के लिए आपका अंतिम भाव क्या है?",
        "माल ताज़ा और अच्छा लग रहा है। नकद पेमेंट के लिए फाइनल रेट क्या है?",
        "मैं यहाँ का पुराना ग्राहक हूँ। क्या हम दोनों के फायदे की कोई दर तय कर सकते हैं?",
    ],
    "ta": [
        "தரம் மிகவும் நல்லது, ஆனால் வழக்கமான வியாபாரத்திற்கு சிறந்த விலையில் பேசலாமா?",
        "அருகிலுள்ள மண்டியில் இதே தரத்தில் ₹{target} கிடைக்கிறது. அதே விலை கொடுக்க முடியுமா?",
        "இவ்வளவு அளவுக்கு உங்கள் இறுதி விலை என்ன?",
        "பொருள் புதியதாகவும் நல்ல தரமாகவும் இருக்கிறது. பணம் கொடுத்தால் இறுதி விலை என்ன?",
        "நான் இங்கே வழக்கமான வாடிக்கையாளர். நம் இருவருக்கும் நன்மையான விலை நிர்ணயிக்கலாமா?",
    ],
    "te": [
        "నాణ్యత చాలా బాగుంది, కానీ రెగ్యులర్ బిజినెస్ కోసం మంచి రేటు మాట్లాడవచ్చా?",
        "దగ్గరి మండీలో ఇదే నాణ్యతలో ₹{target} కి దొరుకుతోంది. అదే రేటు ఇవ్వగలరా?",
        "ఇంత పరిమాణానికి మీ ఫైనల్ రేటు ఎంత?",
        "సామాన్ తాజాగా మరియు మంచి నాణ్యతతో ఉంది. క్యాష్ పేమెంట్ కి ఫైనల్ రేటు ఎంత?",
        "నేను ఇక్కడ రెగ్యులర్ కస్టమర్ ని. మా ఇద్దరికీ మేలు చేసే రేటు ఫిక్స్ చేయవచ్చా?",
    ],
    "kn": [
        "ಗುಣಮಟ್ಟ ತುಂಬಾ ಚೆನ್ನಾಗಿದೆ, ಆದರೆ ನಿಯಮಿತ ವ್ಯಾಪಾರಕ್ಕಾಗಿ ಉತ್ತಮ ದರದಲ್ಲಿ ಮಾತನಾಡಬಹುದೇ?",
        "ಹತ್ತಿರದ ಮಂಡಿಯಲ್ಲಿ ಇದೇ ಗುಣಮಟ್ಟದಲ್ಲಿ ₹{target} ಗೆ ಸಿಗುತ್ತಿದೆ. ಅದೇ ದರ ಕೊಡಬಹುದೇ?",
        "ಇಷ್ಟು ಪ್ರಮಾಣಕ್ಕೆ ನಿಮ್ಮ ಅಂತಿಮ ದರ ಎಷ್ಟು?",
        "ಸಾಮಾನು ತಾಜಾ ಮತ್ತು ಉತ್ತಮ ಗುಣಮಟ್ಟದಲ್ಲಿದೆ. ನಗದು ಪಾವತಿಗೆ ಅಂತಿಮ ದರ ಎಷ್ಟು?",
        "ನಾನು ಇಲ್ಲಿ ನಿಯಮಿತ ಗ್ರಾಹಕ. ನಮ್ಮಿಬ್ಬರಿಗೂ ಲಾಭದಾಯಕ ದರ ನಿಗದಿಪಡಿಸಬಹುದೇ?",
    ],
    "mr": [
        "गुणवत्ता खूप चांगली आहे, पण नियमित व्यापारासाठी चांगल्या दराने बोलू शकतो का?",
        "जवळच्या मंडीत याच गुणवत्तेत ₹{target} ला मिळतंय. तोच दर देऊ शकाल का?",
        "एवढ्या प्रमाणासाठी तुमचा अंतिम भाव काय आहे?",
        "माल ताजा आणि चांगल्या गुणवत्तेचा दिसतोय. रोख पेमेंटसाठी फायनल रेट काय आहे?",
        "मी इथला जुना ग्राहक आहे. आपल्या दोघांच्या फायद्याचा दर ठरवू शकतो का?",
    ],
}


def _price_label(value: float) -> str:
    return f"{value:g}"


def fallback_phrases(language: str, target_price: float) -> List[str]:
    phrases = FALLBACK_PHRASES.get(language, FALLBACK_PHRASES["en"])
    return [p.format(target=_price_label(target_price)) for p in phrases]


def generate_negotiation_phrases(product: str, current_price: float, target_price: float,
                                 language: str = "en") -> AIResult:
    prompt = NEGOTIATION_PROMPT.format(
        product=product,
        current=_price_label(current_price),
        target=_price_label(target_price),
        language=language_name(language, "English"),
    )
    try:
        phrases = extract_json(generate(prompt), opener="[")
        if not isinstance(phrases, list) or not phrases:
            raise ValueError("Expected a non-empty list of phrases")
        return AIResult.ok([str(p) for p in phrases])
    except Exception as e:
        logger.warning("Negotiation phrases for %r fell back: %s", product, e)
        return AIResult.fallback(fallback_phrases(language, target_price), str(e))


# ------------------------- Translation -------------------------

TRANSLATE_PROMPT = """Translate the following text to {language}.
Keep the translation natural and culturally appropriate for Indian market contexts.
If the text contains market or agricultural terms, use appropriate local terminology.

Text to translate: "{text}"

Provide only the translation, no explanations."""


def translate_text(text: str, target_language: str) -> AIResult:
    prompt = TRANSLATE_PROMPT.format(language=language_name(target_language), text=text)
    try:
        return AIResult.ok(generate(prompt))
    except Exception as e:
        logger.warning("Translation to %s fell back: %s", target_language, e)
        return AIResult.fallback(text, str(e))


# ------------------------- Market overview -------------------------

MARKET_PROMPT = """Generate market data for {market} ({location}) as a JSON object. Keep it realistic for Indian markets.
Include the keys "marketName", "location", "commodities" (a list with name, currentPrice, unit,
category, weeklyTrend, priceAnalysis, demandLevel), "marketAnalysis", "aiInsights",
"nearbyMarkets", "weatherImpact" and "economicFactors"."""

COMMODITY_TEMPLATES = [
    {"name": "Tomato", "basePrice": 45, "category": "vegetable", "seasonal": "winter"},
    {"name": "Onion", "basePrice": 35, "category": "vegetable", "seasonal": "storage"},
    {"name": "Potato", "basePrice": 25, "category": "vegetable", "seasonal": "harvest"},
    {"name": "Rice", "basePrice": 55, "category": "grain", "seasonal": "post-harvest"},
    {"name": "Wheat", "basePrice": 28, "category": "grain", "seasonal": "rabi"},
    {"name": "Apple", "basePrice": 120, "category": "fruit", "seasonal": "winter"},
    {"name": "Banana", "basePrice": 40, "category": "fruit", "seasonal": "year-round"},
    {"name": "Cauliflower", "basePrice": 35, "category": "vegetable", "seasonal": "winter"},
]

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
WEEKDAY_FACTORS = [
    "Lower Monday demand after weekend",
    "Gradual demand increase",
    "Mid-week market stability",
    "Increased buying activity",
    "Weekend preparation buying",
    "Peak weekend demand",
    "Market adjustment and closure effects",
]


def market_multiplier(market: str) -> float:
    name = market.lower()
    if "wholesale" in name or "azadpur" in name:
        return 0.9
    if "premium" in name or "organic" in name:
        return 1.3
    if "local" in name or "farmers" in name:
        return 1.1
    return 1.0


def _weekly_trend(price: int, rng) -> list:
    trend = []
    for index, day in enumerate(WEEKDAYS):
        day_multiplier = 0.95 if index == 0 else 1.05 if index >= 4 else 1.0
        trend.append({
            "day": day,
            "price": round(price * day_multiplier * (1 + rng.uniform(-0.05, 0.05))),
            "factors": WEEKDAY_FACTORS[index],
        })
    return trend


def _fallback_commodity(template: dict, market: str, rng) -> dict:
    base = template["basePrice"]
    price = round(base * market_multiplier(market) * (1 + rng.uniform(-0.15, 0.15)))
    change = (price - base) / base * 100
    return {
        "name": template["name"],
        "currentPrice": price,
        "unit": "kg",
        "category": template["category"],
        "weeklyTrend": _weekly_trend(price, rng),
        "priceAnalysis": {
            "changePercentage": f"{change:+.1f}%",
            "changeReason": f"Estimated from typical {template['seasonal']} season prices for {market}",
            "marketForces": [
                f"{template['seasonal']} seasonal impact",
                "Local supply dynamics",
                "Transportation costs",
                "Market demand patterns",
            ],
            "futureOutlook": "Prices usually follow seasonal supply; check live rates before trading",
        },
        "demandLevel": rng.choice(["high", "medium", "low"]),
        "qualityGrade": rng.choice(["A", "B", "C"]),
        "seasonalImpact": f"{template['seasonal']} season affecting supply and quality patterns",
        "supplyStatus": f"{rng.choice(['Adequate', 'Good', 'Limited'])} supply with regional variations",
    }


def _nearby_market(name: str, speciality: str, advantages: str, distance: int, rng) -> dict:
    spread = rng.randint(1, 8)
    return {
        "name": name,
        "distance": f"{distance + rng.randint(0, 3)} km",
        "avgPriceDifference": f"{rng.choice(['+', '-'])}{spread}%",
        "speciality": speciality,
        "advantages": advantages,
        "transportCost": f"₹{rng.randint(4, 10) * 10} per quintal",
    }


def fallback_market_overview(market: str, location: Optional[str] = None, rng=random) -> dict:
    """Typical-season market picture, filled with estimates rather than
    measurements; every number here is labelled as estimated."""
    return {
        "marketName": market,
        "location": location or "India",
        "lastUpdated": datetime.now(timezone.utc).isoformat(),
        "estimated": True,
        "marketAnalysis": {
            "overallCondition": f"{market} is assumed to be trading normally; no live analysis was available.",
            "seasonalFactors": "Seasonal crops drive supply while storage crops keep staples steady.",
            "supplyChainStatus": "Transport and cold storage assumed to be operating normally.",
            "demandPatterns": f"Typical demand for vegetables and staples in {market}.",
        },
        "commodities": [_fallback_commodity(t, market, rng) for t in COMMODITY_TEMPLATES],
        "aiInsights": {
            "marketSentiment": "Not available: showing typical conditions",
            "todayHighlight": "Seasonal produce usually commands better prices when fresh.",
            "weeklyPrediction": "No prediction available; expect normal seasonal movement.",
            "bestSellingTime": "6:00 AM - 10:00 AM (morning rush) and 4:00 PM - 7:00 PM (evening peak)",
            "priceDrivers": [
                {"factor": "Seasonal supply patterns", "impact": "medium",
                 "explanation": "Crop availability changes through the season"},
                {"factor": "Local demand dynamics", "impact": "medium",
                 "explanation": f"{market} specific buying patterns"},
                {"factor": "Transportation efficiency", "impact": "low",
                 "explanation": "Fuel costs and road conditions affect landed prices"},
            ],
            "riskFactors": [
                {"risk": "Weather disruptions", "probability": "low",
                 "impact": "Could temporarily affect supply timing",
                 "mitigation": "Monitor weather forecasts and keep buffer inventory"},
                {"risk": "Seasonal demand shifts", "probability": "medium",
                 "impact": "May affect specific commodity prices",
                 "mitigation": "Diversify product mix and track demand"},
            ],
            "opportunities": [
                {"opportunity": "Premium seasonal produce", "timeframe": "Next 2-3 weeks",
                 "potential": "Higher margins on quality products"},
            ],
            "strategicAdvice": f"Focus on consistent quality and competitive pricing in {market}.",
        },
        "nearbyMarkets": [
            _nearby_market(
                f"{'Regional' if 'Central' in market else 'Central'} Wholesale Market",
                "Bulk commodities and wholesale trading",
                "Lower prices for bulk purchases, wider variety", 2, rng,
            ),
            _nearby_market(
                "Local Farmers Market", "Fresh farm produce and organic options",
                "Direct from farmers, fresher produce", 1, rng,
            ),
            _nearby_market(
                "Regional Distribution Hub", "Processed and packaged goods",
                "Consistent supply, standardized quality", 5, rng,
            ),
        ],
        "weatherImpact": {
            "currentConditions": "Not available",
            "forecast": "Check the weather page for the local forecast",
            "seasonalTrends": "Seasonal temperatures affect crop cycles and transport timing",
        },
        "economicFactors": {
            "inflation": "Moderate inflation affecting input costs",
            "fuelPrices": "Diesel prices drive transportation costs",
            "governmentPolicies": "MSP and storage subsidies support staple prices",
            "exportImportTrends": "Trade flows influence domestic price stability",
        },
    }


def market_overview(market: str, location: Optional[str] = None, rng=random) -> AIResult:
    prompt = MARKET_PROMPT.format(market=market, location=location or "India")
    try:
        data = extract_json(generate(prompt))
        if not isinstance(data.get("commodities"), list):
            raise ValueError("Invalid commodities data structure")
        if not data.get("aiInsights"):
            raise ValueError("Missing AI insights")
        if not data.get("marketAnalysis"):
            raise ValueError("Missing market analysis")
        data.setdefault("marketName", market)
        data.setdefault("location", location or "India")
        return AIResult.ok(data)
    except Exception as e:
        logger.warning("Market overview for %r fell back: %s", market, e)
        return AIResult.fallback(fallback_market_overview(market, location, rng), str(e))
