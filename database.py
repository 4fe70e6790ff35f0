"""
MongoDB access for the marketplace.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; handlers
check for that and answer 500 instead of crashing at import time.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_URL, DATABASE_NAME

logger = logging.getLogger(__name__)

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def now_utc() -> datetime:
    """Naive UTC, the form pymongo hands datetimes back in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as a string."""
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)

    data_dict["created_at"] = now_utc()
    data_dict["updated_at"] = now_utc()

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes():
    """Create the unique and lookup indexes the collections rely on."""
    if db is None:
        return

    db["user"].create_index("email", unique=True)
    db["user"].create_index("username", unique=True)
    db["user"].create_index("referral_code", unique=True, sparse=True)
    db["user"].create_index("role")

    db["game"].create_index([("gm_id", ASCENDING), ("is_active", ASCENDING)])
    db["game"].create_index([("schedule.start_time", ASCENDING), ("is_active", ASCENDING)])
    db["game"].create_index("tags")

    db["booking"].create_index([("game_id", ASCENDING), ("player_id", ASCENDING)])
    db["booking"].create_index("player_id")

    db["review"].create_index([("game_id", ASCENDING), ("reviewer_id", ASCENDING)], unique=True)
    db["review"].create_index("gm_id")

    db["conversation"].create_index([("participants", ASCENDING), ("last_activity", DESCENDING)])

    db["message"].create_index([("conversation_id", ASCENDING), ("created_at", DESCENDING)])
    db["message"].create_index([("recipient_id", ASCENDING), ("is_read", ASCENDING)])

    db["friendrequest"].create_index([("sender_id", ASCENDING), ("recipient_id", ASCENDING)], unique=True)
    db["friendship"].create_index([("user1", ASCENDING), ("user2", ASCENDING)], unique=True)
    db["friendship"].create_index("user2")

    db["notification"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["notification"].create_index([("user_id", ASCENDING), ("is_read", ASCENDING)])
    db["notification"].create_index("metadata.expires_at", expireAfterSeconds=0)

    db["favorite"].create_index([("user_id", ASCENDING), ("gm_id", ASCENDING)], unique=True)

    logger.info("Database indexes ensured on %s", db.name)
