"""
Live market prices scraped from search-engine results.

The pipeline is: build a query, fetch a SERP, pull candidate price points
out of the answer box, knowledge graph and organic results, drop repeated
commodities, and when nothing usable turns up, synthesize one clearly
labelled estimate.

Everything except ``fetch_serp`` and ``lookup`` is a pure function of its
inputs, so extraction can be tested against literal snippets.
"""

import logging
import random
import re
from datetime import datetime, timezone
from typing import Callable, List, Optional

from serpapi import GoogleSearch

import settings

logger = logging.getLogger(__name__)

QUERY_SUFFIX = "market price India mandi wholesale rate today"
ALT_QUERY_SUFFIX = "price rate mandi market India today"
PRIMARY_RESULTS = 20
ALT_RESULTS = 15
MAX_ORGANIC_RESULTS = 8
MIN_PRICE = 1
MAX_PRICE = 10000
DEFAULT_MARKET = "Local Market"
DEFAULT_BASE_PRICE = 50

COMMODITIES = [
    "tomato", "onion", "potato", "rice", "wheat", "carrot", "cabbage",
    "spinach", "apple", "banana", "mango", "grapes", "cauliflower",
    "brinjal", "okra", "peas", "beans", "corn", "sugarcane", "cotton",
    "groundnut", "cumin", "turmeric", "coriander", "chili", "garlic",
    "ginger", "lemon", "orange", "pomegranate", "watermelon", "cucumber",
]

# Names recognised inside result text when the query names no commodity.
TEXT_COMMODITIES = COMMODITIES[:22]

CITIES = [
    "delhi", "mumbai", "bangalore", "chennai", "kolkata", "pune", "hyderabad",
    "ahmedabad", "jaipur", "lucknow", "kanpur", "nagpur", "indore", "bhopal",
    "patna", "guwahati", "chandigarh", "kochi", "coimbatore", "madurai",
    "vijayawada", "visakhapatnam", "thiruvananthapuram", "bhubaneswar",
    "raipur", "ranchi", "gurgaon", "noida", "faridabad", "ghaziabad", "agra",
    "meerut", "varanasi", "allahabad", "jodhpur", "udaipur", "ajmer",
    "bikaner", "kota", "bharatpur", "alwar", "sikar", "pali", "bhilwara",
    "tonk", "churu", "jhunjhunu", "dausa", "sawai madhopur", "karauli",
    "dholpur", "baran", "jhalawar", "banswara", "dungarpur", "pratapgarh",
    "rajsamand", "chittorgarh", "nagaur", "hanumangarh", "sri ganganagar",
]

BASE_PRICES = {
    "tomato": 45, "onion": 35, "potato": 25, "rice": 55, "wheat": 28,
    "carrot": 40, "cabbage": 20, "spinach": 30, "apple": 120, "banana": 40,
    "mango": 80, "grapes": 100, "cauliflower": 35, "brinjal": 30, "okra": 50,
}

VOLATILE = ["tomato", "onion", "potato", "cauliflower"]
STABLE = ["rice", "wheat", "sugar"]

_NUMBER = r"(\d+(?:,\d+)*(?:\.\d+)?)"
CURRENCY_PRICE = re.compile(r"₹\s*" + _NUMBER)
PRICE_PATTERNS = [
    re.compile(r"₹\s*" + _NUMBER + r"\s*(?:per|/)\s*(?:kg|quintal|ton)", re.I),
    CURRENCY_PRICE,
    re.compile(r"\b(?:rs\.?|rupees?)\s*" + _NUMBER, re.I),
    re.compile(_NUMBER + r"\s*(?:rs|rupees?)\b", re.I),
]
COMMODITY_PATTERN = re.compile(r"\b(" + "|".join(TEXT_COMMODITIES) + r")\b", re.I)
CITY_PATTERN = re.compile(r"\b(" + "|".join(CITIES) + r")\b", re.I)

RELEVANT_TITLE_WORDS = ("price", "rate", "mandi")
RELEVANT_SNIPPET_WORDS = ("₹", "rupee", "price", "market", "wholesale", "retail")


class MarketDataError(Exception):
    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_number(raw: str) -> float:
    return float(raw.replace(",", ""))


def build_search_query(query: str) -> str:
    return f"{query} {QUERY_SUFFIX}"


def build_alternate_query(query: str) -> str:
    return f"{extract_commodity(query) or query} {ALT_QUERY_SUFFIX}"


def extract_commodity(query: str) -> Optional[str]:
    """First vocabulary commodity contained in the query, lower-cased."""
    lowered = query.lower()
    for commodity in COMMODITIES:
        if commodity in lowered:
            return commodity
    return None


def _first_in_range(pattern, text: str) -> Optional[float]:
    for match in pattern.finditer(text):
        price = _to_number(match.group(1))
        if MIN_PRICE <= price <= MAX_PRICE:
            return price
    return None


def extract_price(text: str) -> Optional[float]:
    """First plausible rupee price in ``text``.

    Patterns are tried from most to least specific; within a pattern the
    first value inside [MIN_PRICE, MAX_PRICE] wins.
    """
    for pattern in PRICE_PATTERNS:
        price = _first_in_range(pattern, text)
        if price is not None:
            return price
    return None


def extract_market(text: str, location: Optional[str] = None) -> str:
    match = CITY_PATTERN.search(text)
    if match:
        return match.group(1).title()
    return location or DEFAULT_MARKET


def capitalize(name: str) -> str:
    return name[:1].upper() + name[1:]


def price_volatility(commodity: str) -> float:
    lowered = commodity.lower()
    if any(c in lowered for c in VOLATILE):
        return 0.15
    if any(c in lowered for c in STABLE):
        return 0.03
    return 0.05


def estimate_change(commodity: str, rng: random.Random = random) -> float:
    """Illustrative percentage move, bounded by the commodity's volatility."""
    change = rng.uniform(-1, 1) * price_volatility(commodity) * 100
    return round(change, 1)


def is_relevant(result: dict) -> bool:
    title = (result.get("title") or "").lower()
    snippet = (result.get("snippet") or "").lower()
    return any(w in title for w in RELEVANT_TITLE_WORDS) or any(w in snippet for w in RELEVANT_SNIPPET_WORDS)


def parse_answer_box(answer_box: dict, query: str) -> Optional[dict]:
    text = f"{answer_box.get('title') or ''} {answer_box.get('snippet') or ''}"
    price = _first_in_range(CURRENCY_PRICE, text)
    if price is None:
        return None
    return {
        "commodity": capitalize(extract_commodity(query) or "Market Commodity"),
        "price": price,
        "change": 0,
        "market": "National Average",
        "source": "SERP Answer Box",
        "timestamp": _now(),
        "url": answer_box.get("link") or "",
        "title": answer_box.get("title") or "",
        "confidence": "high",
    }


def parse_knowledge_graph(kg: dict, query: str) -> Optional[dict]:
    for attr in kg.get("attributes") or []:
        name = (attr.get("name") or "").lower()
        value = attr.get("value")
        if "price" not in name or not value:
            continue
        price = _first_in_range(CURRENCY_PRICE, value)
        if price is not None:
            return {
                "commodity": capitalize(extract_commodity(query) or kg.get("title") or "Market Commodity"),
                "price": price,
                "change": 0,
                "market": "Knowledge Graph",
                "source": "SERP Knowledge Graph",
                "timestamp": _now(),
                "confidence": "high",
            }
    return None


def parse_organic_result(result: dict, query: str, location: Optional[str] = None, index: int = 0,
                         rng: random.Random = random) -> Optional[dict]:
    title = result.get("title") or ""
    snippet = result.get("snippet") or ""
    text = f"{title} {snippet}"

    price = extract_price(text)
    if price is None:
        return None

    commodity = extract_commodity(query)
    if not commodity:
        match = COMMODITY_PATTERN.search(text)
        commodity = match.group(1).lower() if match else f"Commodity {index + 1}"

    return {
        "commodity": capitalize(commodity),
        "price": price,
        "unit": "kg",
        "change": estimate_change(commodity, rng),
        "market": extract_market(text, location),
        "source": "SERP Organic Results",
        "timestamp": _now(),
        "url": result.get("link") or "",
        "title": title[:100],
        "snippet": snippet[:200],
        "confidence": "medium",
    }


def dedupe(points: List[dict]) -> List[dict]:
    seen = set()
    unique = []
    for point in points:
        key = point["commodity"].lower()
        if key not in seen:
            seen.add(key)
            unique.append(point)
    return unique


def process_results(serp: dict, query: str, location: Optional[str] = None,
                    rng: random.Random = random) -> List[dict]:
    points = []

    if serp.get("answer_box"):
        point = parse_answer_box(serp["answer_box"], query)
        if point:
            points.append(point)

    if serp.get("knowledge_graph"):
        point = parse_knowledge_graph(serp["knowledge_graph"], query)
        if point:
            points.append(point)

    relevant = [r for r in serp.get("organic_results") or [] if is_relevant(r)]
    logger.info("Found %d relevant organic results", len(relevant))
    for index, result in enumerate(relevant[:MAX_ORGANIC_RESULTS]):
        point = parse_organic_result(result, query, location, index, rng)
        if point:
            points.append(point)

    unique = dedupe(points)
    logger.info("Extracted %d unique market data points", len(unique))
    return unique


def fallback_points(query: str, location: Optional[str] = None, rng: random.Random = random) -> List[dict]:
    """A single estimated data point for when extraction finds nothing."""
    commodity = extract_commodity(query) or "Market Commodity"
    base_price = BASE_PRICES.get(commodity.lower(), DEFAULT_BASE_PRICE)
    change = estimate_change(commodity, rng)
    return [{
        "commodity": capitalize(commodity),
        "price": round(base_price * (1 + change / 100), 2),
        "basePrice": base_price,
        "unit": "kg",
        "change": change,
        "market": location or DEFAULT_MARKET,
        "source": "Market Intelligence (Fallback)",
        "timestamp": _now(),
        "confidence": "low",
        "estimated": True,
        "note": "Search results did not contain specific price data. This is estimated market information.",
    }]


def fetch_serp(query: str, num: int = PRIMARY_RESULTS) -> dict:
    params = {
        "engine": "google",
        "q": query,
        "api_key": settings.SERP_API_KEY,
        "num": num,
        "gl": "in",
        "hl": "en",
    }
    try:
        data = GoogleSearch(params).get_dict()
    except Exception as e:
        raise MarketDataError(str(e)) from e
    if "error" in data:
        raise MarketDataError(data["error"])
    logger.info(
        "SERP response: organic=%d answer_box=%s knowledge_graph=%s",
        len(data.get("organic_results") or []), "answer_box" in data, "knowledge_graph" in data,
    )
    return data


def lookup(query: str, location: Optional[str] = None,
           search: Callable[[str, int], dict] = None, rng: random.Random = random) -> dict:
    """Run the whole pipeline for a user phrase.

    One alternate query is tried when the primary search yields nothing;
    after that the estimate is used. A failing primary search raises
    ``MarketDataError``; a failing alternate one falls through to the
    estimate.
    """
    search = search or fetch_serp
    search_query = build_search_query(query)
    logger.info("Searching SERP API for %r", query)
    points = process_results(search(search_query, PRIMARY_RESULTS), query, location, rng)

    if not points:
        alt_query = build_alternate_query(query)
        logger.info("No market data extracted, trying alternate query %r", alt_query)
        try:
            points = process_results(search(alt_query, ALT_RESULTS), query, location, rng)
        except MarketDataError as e:
            logger.warning("Alternate SERP query failed: %s", e)

    fallback = not points
    if fallback:
        logger.warning("Using estimated market data for %r", query)
        points = fallback_points(query, location, rng)
        message = f"I searched for \"{query}\" but couldn't find specific price data. Here's general market information:"
    else:
        message = f"Based on live market data, here's what I found for \"{query}\":"

    return {
        "response": message,
        "marketData": points,
        "source": "SERP API",
        "timestamp": _now(),
        "searchQuery": search_query,
        "fallback": fallback,
    }
