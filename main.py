import logging
import re
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, FastAPI, HTTPException, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
import gemini
import market_data
import settings
import weather
from auth import get_current_user, get_optional_user, resolve_redirect
from database import INVENTORY, LISTINGS, USERS
from schemas import (
    InventoryIn,
    InventoryItem,
    Listing,
    ListingIn,
    ListingUpdateIn,
    LiveMarketDataIn,
    MarketDataIn,
    NegotiationIn,
    PriceAnalysisIn,
    ProfileIn,
    ProfileUpdateIn,
    TranslateIn,
    User,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Vanijya AI API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

LISTING_LIMIT = 50

# ------------------------- Error handlers -------------------------

def validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    err = errors[0]
    field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
    msg = err.get("msg", "Invalid value").replace("Value error, ", "")
    return f"{field}: {msg}" if field else msg


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": validation_message(exc)})


@app.exception_handler(PyMongoError)
async def database_error_handler(request, exc: PyMongoError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Database error"})

# ------------------------- DB helpers -------------------------

def get_collection(name: str):
    db = database.get_db()
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db[name]


def to_oid(val) -> Optional[ObjectId]:
    try:
        return ObjectId(str(val))
    except (InvalidId, TypeError):
        return None


def to_public(doc: Optional[dict]):
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def now() -> datetime:
    return datetime.now(timezone.utc)


def insert_and_fetch(collection, doc: dict) -> dict:
    res = collection.insert_one(doc)
    return collection.find_one({"_id": res.inserted_id})


def find_owned(collection, id_str: str, email: str):
    oid = to_oid(id_str)
    if oid is None:
        return None
    return collection.find_one({"_id": oid, "userId": email})


def name_pattern(name: str) -> dict:
    return {"$regex": f"^{re.escape(name)}$", "$options": "i"}

# ------------------------- Session -------------------------

@app.get("/auth/session")
def session_status(path: str = "/", user=Depends(get_optional_user)):
    has_profile = False
    if user:
        has_profile = get_collection(USERS).find_one({"email": user["email"]}) is not None
    return {
        "authenticated": user is not None,
        "hasCompletedProfile": has_profile,
        "user": user,
        "redirect": resolve_redirect(path, user is not None, has_profile),
    }

# ------------------------- Inventory -------------------------

@app.get("/api/inventory")
def list_inventory(category: Optional[str] = None, user=Depends(get_current_user)):
    query = {"userId": user["email"]}
    if category and category != "all":
        query["category"] = category
    items = get_collection(INVENTORY).find(query).sort("updatedAt", -1)
    return [to_public(i) for i in items]


@app.post("/api/inventory", status_code=201)
def create_inventory_item(body: InventoryIn, user=Depends(get_current_user)):
    col = get_collection(INVENTORY)
    if col.find_one({"userId": user["email"], "name": name_pattern(body.name)}):
        raise HTTPException(status_code=409, detail="An item with this name already exists in your inventory")
    ts = now()
    item = InventoryItem(userId=user["email"], lastUpdated=ts, createdAt=ts, updatedAt=ts, **body.model_dump())
    return to_public(insert_and_fetch(col, item.model_dump()))


@app.put("/api/inventory/{item_id}")
def update_inventory_item(item_id: str, body: InventoryIn, user=Depends(get_current_user)):
    col = get_collection(INVENTORY)
    existing = find_owned(col, item_id, user["email"])
    if not existing:
        raise HTTPException(status_code=404, detail="Inventory item not found")
    conflict = col.find_one({
        "userId": user["email"],
        "name": name_pattern(body.name),
        "_id": {"$ne": existing["_id"]},
    })
    if conflict:
        raise HTTPException(status_code=409, detail="An item with this name already exists in your inventory")
    ts = now()
    updated = col.find_one_and_update(
        {"_id": existing["_id"]},
        {"$set": {**body.model_dump(), "lastUpdated": ts, "updatedAt": ts}},
        return_document=ReturnDocument.AFTER,
    )
    return to_public(updated)


@app.delete("/api/inventory/{item_id}")
def delete_inventory_item(item_id: str, user=Depends(get_current_user)):
    col = get_collection(INVENTORY)
    existing = find_owned(col, item_id, user["email"])
    if not existing:
        raise HTTPException(status_code=404, detail="Inventory item not found")
    col.delete_one({"_id": existing["_id"]})
    return {"message": "Inventory item deleted successfully"}

# ------------------------- Buyer / seller listings -------------------------

def with_contact(doc: dict) -> dict:
    """Public listing with each contact channel resolved: the listing's own
    override when set, otherwise the owner's account value."""
    d = to_public(doc)
    d["contact"] = {
        "email": d.get("contactEmail") or d.get("userEmail"),
        "phone": d.get("contactPhone") or d.get("userPhone"),
        "whatsApp": d.get("contactWhatsApp") or d.get("userWhatsApp") or d.get("contactPhone") or d.get("userPhone"),
    }
    return d


def owner_details(body: ListingIn, user: dict) -> dict:
    profile = get_collection(USERS).find_one({"email": user["email"]}) or {}
    return {
        "userId": user["email"],
        "userEmail": user["email"],
        "userName": body.userName or profile.get("name") or user.get("name") or user["email"],
        "userPhone": body.userPhone or profile.get("phone"),
        "userWhatsApp": body.userWhatsApp,
    }


def listing_fields(body: ListingIn) -> dict:
    return body.model_dump(exclude={"userName", "userPhone", "userWhatsApp"})


@app.get("/api/buyer-seller")
def list_listings(type: Optional[str] = None, category: Optional[str] = None, location: Optional[str] = None):
    query = {"isActive": True}
    if type in ("buyer", "seller"):
        query["type"] = type
    if category and category != "all":
        query["category"] = category
    if location:
        query["location"] = {"$regex": re.escape(location), "$options": "i"}
    docs = get_collection(LISTINGS).find(query).sort("createdAt", -1).limit(LISTING_LIMIT)
    return [with_contact(d) for d in docs]


@app.post("/api/buyer-seller", status_code=201)
def create_listing(body: ListingIn, user=Depends(get_current_user)):
    ts = now()
    listing = Listing(**owner_details(body, user), **listing_fields(body), isActive=True, createdAt=ts, updatedAt=ts)
    return with_contact(insert_and_fetch(get_collection(LISTINGS), listing.model_dump()))


@app.get("/api/buyer-seller/my-listings")
def my_listings(user=Depends(get_current_user)):
    docs = get_collection(LISTINGS).find({"userId": user["email"]}).sort("createdAt", -1)
    return [with_contact(d) for d in docs]


@app.get("/api/buyer-seller/{listing_id}")
def get_listing(listing_id: str, user=Depends(get_optional_user)):
    oid = to_oid(listing_id)
    doc = get_collection(LISTINGS).find_one({"_id": oid}) if oid else None
    if not doc or (not doc.get("isActive") and (user is None or user["email"] != doc.get("userId"))):
        raise HTTPException(status_code=404, detail="Listing not found")
    return with_contact(doc)


@app.put("/api/buyer-seller/{listing_id}")
def update_listing(listing_id: str, body: ListingUpdateIn, user=Depends(get_current_user)):
    col = get_collection(LISTINGS)
    existing = find_owned(col, listing_id, user["email"])
    if not existing:
        raise HTTPException(status_code=404, detail="Listing not found or you do not have permission to edit it")
    updated = col.find_one_and_update(
        {"_id": existing["_id"]},
        {"$set": {**owner_details(body, user), **listing_fields(body), "updatedAt": now()}},
        return_document=ReturnDocument.AFTER,
    )
    return with_contact(updated)


@app.delete("/api/buyer-seller/{listing_id}")
def delete_listing(listing_id: str, user=Depends(get_current_user)):
    col = get_collection(LISTINGS)
    existing = find_owned(col, listing_id, user["email"])
    if not existing:
        raise HTTPException(status_code=404, detail="Listing not found or you do not have permission to delete it")
    col.delete_one({"_id": existing["_id"]})
    return {"message": "Listing deleted successfully"}

# ------------------------- User profile -------------------------

def profile_email(email: Optional[str], user: Optional[dict]) -> str:
    email = email or (user or {}).get("email")
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")
    return email


@app.get("/api/users/profile")
def get_profile(email: Optional[str] = None, user=Depends(get_optional_user)):
    found = get_collection(USERS).find_one({"email": profile_email(email, user)})
    if not found:
        raise HTTPException(status_code=404, detail="User not found")
    return to_public(found)


@app.post("/api/users/profile")
def upsert_profile(body: ProfileIn, response: Response, user=Depends(get_optional_user)):
    email = profile_email(body.email, user)
    col = get_collection(USERS)
    ts = now()
    if col.find_one({"email": email}):
        updated = col.find_one_and_update(
            {"email": email},
            {"$set": {"name": body.name, "phone": body.phone, "address": body.address, "updatedAt": ts}},
            return_document=ReturnDocument.AFTER,
        )
        return to_public(updated)

    new_user = User(
        email=email,
        name=body.name,
        phone=body.phone,
        address=body.address,
        googleId=body.googleId,
        avatar=body.avatar or (user or {}).get("avatar"),
        createdAt=ts,
        updatedAt=ts,
    )
    try:
        created = insert_and_fetch(col, new_user.model_dump())
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="User already exists")
    logger.info("Created profile for %s", email)
    response.status_code = 201
    return to_public(created)


@app.put("/api/users/profile")
def update_profile(body: ProfileUpdateIn, user=Depends(get_optional_user)):
    email = profile_email(body.email, user)
    changes = body.model_dump(exclude={"email"}, exclude_none=True)
    changes["updatedAt"] = now()
    updated = get_collection(USERS).find_one_and_update(
        {"email": email},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="User not found or update failed")
    return to_public(updated)

# ------------------------- Market data -------------------------

@app.post("/api/live-market-data")
def live_market_data(body: LiveMarketDataIn):
    if not settings.SERP_API_KEY:
        logger.error("SERP API key not found in environment variables")
        raise HTTPException(status_code=500, detail="SERP API configuration missing. Please add SERP_API_KEY to your environment variables.")
    try:
        return market_data.lookup(body.query, body.location)
    except market_data.MarketDataError as e:
        logger.error("SERP API error: %s", e)
        raise HTTPException(status_code=500, detail=f"SERP API request failed: {e}")


def market_overview_response(market: str, location: Optional[str]) -> dict:
    result = gemini.market_overview(market, location)
    return {**result.data, **result.flags()}


@app.get("/api/market-data")
def market_data_get(market: str = "Local Mandi", location: str = "India"):
    return market_overview_response(market, location)


@app.post("/api/market-data")
def market_data_post(body: MarketDataIn):
    return market_overview_response(body.market, body.location)

# ------------------------- AI helpers -------------------------

@app.post("/api/analyze-price")
def analyze_price(body: PriceAnalysisIn):
    result = gemini.analyze_product_price(body.product, body.language)
    return {**result.data, **result.flags(), "success": True, "timestamp": now().isoformat()}


@app.post("/api/negotiation-phrases")
def negotiation_phrases(body: NegotiationIn):
    result = gemini.generate_negotiation_phrases(body.product, body.currentPrice, body.targetPrice, body.language)
    return {
        "phrases": result.data,
        "product": body.product,
        "currentPrice": body.currentPrice,
        "targetPrice": body.targetPrice,
        "language": body.language,
        "success": True,
        "timestamp": now().isoformat(),
        **result.flags(),
    }


@app.post("/api/translate")
def translate(body: TranslateIn):
    result = gemini.translate_text(body.text, body.targetLanguage)
    return {
        "originalText": body.text,
        "translatedText": result.data,
        "targetLanguage": body.targetLanguage,
        "success": True,
        **result.flags(),
    }

# ------------------------- Weather -------------------------

@app.get("/api/weather")
def get_weather(location: Optional[str] = None, lat: Optional[float] = None, lon: Optional[float] = None):
    if not settings.WEATHER_API_KEY:
        raise HTTPException(status_code=500, detail="Weather API key not configured. Please add WEATHER_API_KEY to your environment variables.")
    if not location and (lat is None or lon is None):
        raise HTTPException(status_code=400, detail="Location or coordinates required")
    try:
        return weather.get_weather(location, lat, lon)
    except weather.WeatherAPIError as e:
        content = {"detail": e.message}
        if e.details:
            content["details"] = e.details
        return JSONResponse(status_code=e.status_code, content=content)

# ------------------------- Root and health -------------------------

@app.get("/")
def read_root():
    return {"message": "Vanijya AI API running"}


@app.get("/api/health/database")
def database_health():
    try:
        result = database.ping()
    except (RuntimeError, PyMongoError) as e:
        logger.error("Database connection error: %s", e)
        return JSONResponse(status_code=500, content={
            "status": "error",
            "message": "Failed to connect to database",
            "error": str(e)[:200],
            "timestamp": now().isoformat(),
        })
    return {
        "status": "connected",
        "database": settings.DATABASE_NAME,
        "ping": result,
        "timestamp": now().isoformat(),
    }


@app.get("/api/test-weather-key")
def test_weather_key():
    return weather.check_api_key()


@app.get("/api/test-gemini")
def test_gemini():
    try:
        result = gemini.probe_models()
    except gemini.GeminiUnavailable as e:
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
    return {"success": True, **result}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
