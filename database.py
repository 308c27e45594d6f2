"""
MongoDB access helpers.

Each collection is named after the lowercased schema class (Product -> "product").
References between documents are stored as ObjectId values; `oid` and `require`
validate them where a handler needs the referenced document to exist.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends
from pymongo import MongoClient
from pymongo.database import Database

from config import Settings, get_settings
from errors import NotFoundError, ValidationError

_client: Optional[MongoClient] = None


def get_db(settings: Settings = Depends(get_settings)) -> Database:
    global _client
    if _client is None:
        _client = MongoClient(settings.DATABASE_URL)
    return _client[settings.DATABASE_NAME]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid ID")


def require(db: Database, collection: str, id_str: Any, label: str = None) -> Dict[str, Any]:
    """Fetch a referenced document, failing with NotFoundError when it is missing."""
    doc = db[collection].find_one({"_id": oid(id_str)})
    if not doc:
        raise NotFoundError(f"{label or collection.capitalize()} not found")
    return doc


def create_document(db: Database, collection: str, data: Dict[str, Any]) -> ObjectId:
    doc = dict(data)
    doc.setdefault("created_at", now_utc())
    doc.setdefault("updated_at", doc["created_at"])
    res = db[collection].insert_one(doc)
    return res.inserted_id


def get_documents(db: Database, collection: str, filt: Dict[str, Any] = None, limit: int = 0) -> List[Dict[str, Any]]:
    cur = db[collection].find(filt or {})
    if limit:
        cur = cur.limit(limit)
    return [serialize(d) for d in cur]


def serialize(value: Any) -> Any:
    """Make a document JSON friendly: ObjectId values become strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize(v) for v in value]
    return value
