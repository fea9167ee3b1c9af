"""
MongoDB connection manager for Vanijya AI.

A single client is created lazily on first use and reused for the life of
the process. Tests bind their own client with ``init(client)`` and drop it
with ``close()``.
"""

import logging
from typing import Optional

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

import settings

logger = logging.getLogger(__name__)

USERS = "users"
INVENTORY = "inventories"
LISTINGS = "buyersellers"

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def init(client: Optional[MongoClient] = None) -> Optional[Database]:
    global _client, _db
    if client is None:
        if not settings.MONGODB_URI:
            logger.warning("MONGODB_URI not set; database features are disabled")
            return None
        client = MongoClient(settings.MONGODB_URI)
    _client = client
    _db = client[settings.DATABASE_NAME]
    try:
        ensure_indexes(_db)
    except PyMongoError as e:
        logger.error("Could not create indexes: %s", e)
    logger.info("Connected to MongoDB database %s", settings.DATABASE_NAME)
    return _db


def get_db() -> Optional[Database]:
    if _db is None:
        return init()
    return _db


def close():
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None


def ensure_indexes(db: Database):
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[INVENTORY].create_index([("userId", ASCENDING), ("category", ASCENDING)])
    db[INVENTORY].create_index([("userId", ASCENDING), ("name", ASCENDING)])
    db[LISTINGS].create_index([("type", ASCENDING), ("category", ASCENDING), ("isActive", ASCENDING)])
    db[LISTINGS].create_index([("userId", ASCENDING), ("isActive", ASCENDING)])
    db[LISTINGS].create_index([("location", ASCENDING), ("type", ASCENDING), ("isActive", ASCENDING)])


def ping() -> dict:
    db = get_db()
    if db is None:
        raise RuntimeError("Database not configured")
    return db.command("ping")


def backfill_whatsapp_fields(db: Database) -> int:
    """Copy phone numbers into missing WhatsApp fields on existing listings.

    ``userPhone`` fills ``userWhatsApp`` and ``contactPhone`` fills
    ``contactWhatsApp``. Returns how many listings were changed.
    """
    # None matches both missing and null fields
    query = {"$or": [{"userWhatsApp": None}, {"contactWhatsApp": None}]}
    updated = 0
    for listing in db[LISTINGS].find(query):
        changes = {}
        if listing.get("userPhone") and not listing.get("userWhatsApp"):
            changes["userWhatsApp"] = listing["userPhone"]
        if listing.get("contactPhone") and not listing.get("contactWhatsApp"):
            changes["contactWhatsApp"] = listing["contactPhone"]
        if changes:
            db[LISTINGS].update_one({"_id": listing["_id"]}, {"$set": changes})
            logger.info("Updated listing %s with WhatsApp fields", listing["_id"])
            updated += 1
    return updated


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    database = get_db()
    if database is None:
        raise SystemExit("MONGODB_URI not found in environment variables")
    try:
        count = backfill_whatsapp_fields(database)
        logger.info("Migration completed: %d listings updated", count)
    finally:
        close()
