"""
MongoDB access helpers.

One MongoClient is created per process and shared; services receive the
Database handle explicitly instead of importing a module global.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings
from errors import ValidationError

log = logging.getLogger(__name__)

USERS = "user"
PROFILES = "profile"
SESSIONS = "session"

_client: Optional[MongoClient] = None


def get_database(settings: Settings) -> Database:
    global _client
    if _client is None:
        log.info("Connecting to MongoDB database %s", settings.database_name)
        _client = MongoClient(settings.database_url, tz_aware=False)
    return _client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[USERS].create_index([("verification_token", ASCENDING)])
    db[USERS].create_index([("reset_token", ASCENDING)])
    db[PROFILES].create_index([("username", ASCENDING)], unique=True)
    db[PROFILES].create_index([("user_id", ASCENDING)], unique=True)
    # Mongo removes rows once expires_at has passed.
    db[SESSIONS].create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)
    db[SESSIONS].create_index([("user_id", ASCENDING)])


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def object_id(value: Union[str, ObjectId]) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    # ObjectId(None) would mint a fresh id instead of failing.
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError("Invalid id")
    return ObjectId(value)


def to_public(doc):
    """Make a stored document JSON friendly: `_id` becomes `id`, ObjectIds become strings."""
    if isinstance(doc, list):
        return [to_public(item) for item in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if not isinstance(doc, dict):
        return doc
    out = {}
    for key, value in doc.items():
        if key == "_id":
            key = "id"
        out[key] = to_public(value)
    return out
