"""
MongoDB access helpers.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; the API
reports that through /test and answers 503 on data routes.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Any) -> Optional[datetime]:
    """Coerce a stored timestamp (naive UTC datetime or ISO string) to an aware datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def id_query(doc_id: str) -> Dict[str, Any]:
    """Match a document stored under either an ObjectId or a plain string key."""
    if ObjectId.is_valid(doc_id):
        return {"_id": {"$in": [ObjectId(doc_id), doc_id]}}
    return {"_id": doc_id}


def find_by_id(database: Database, collection_name: str, doc_id: Optional[str]) -> Optional[dict]:
    if not doc_id:
        return None
    return database[collection_name].find_one(id_query(str(doc_id)))


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Stringify `_id` and expose it as `id` for API responses."""
    if doc is None:
        return None
    doc = dict(doc)
    doc["_id"] = str(doc["_id"])
    doc["id"] = doc["_id"]
    return doc


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    """Insert a document stamped with created_at / updated_at and return its id."""
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not configured")
    payload = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utc_now()
    payload.setdefault("created_at", now)
    payload["updated_at"] = now
    result = target[collection_name].insert_one(payload)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    database: Optional[Database] = None,
) -> List[dict]:
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not configured")
    cursor = target[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
