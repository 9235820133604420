"""
Database access

Thin helpers over pymongo. Every document written through create_document gets
created_at/updated_at stamps; to_document is the write half of the mapping
layer whose read half lives in schemas.Document.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import Settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_storage_datetime(value: datetime) -> datetime:
    """BSON dates are UTC without tzinfo; store them that way."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _convert(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_storage_datetime(value)
    # Decimals are not BSON types
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _convert(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_convert(v) for v in value]
    return value


def to_document(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="python", exclude={"id"}, exclude_none=True)
    else:
        data = {k: v for k, v in data.items() if k != "id"}
    return {k: _convert(v) for k, v in data.items()}


def get_database(settings: Settings) -> Optional[Database]:
    if not settings.database_url or not settings.database_name:
        return None
    client = MongoClient(
        settings.database_url,
        serverSelectionTimeoutMS=settings.db_timeout_ms,
        connectTimeoutMS=settings.db_timeout_ms,
        socketTimeoutMS=settings.db_timeout_ms,
    )
    return client[settings.database_name]


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    doc = to_document(data)
    now = to_storage_datetime(utcnow())
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    newest_first: bool = True,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    cursor = cursor.sort([("created_at", -1 if newest_first else 1)])
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(db: Database) -> None:
    db["users"].create_index("email", unique=True)
    db["bookings"].create_index([("user_id", 1), ("created_at", -1)])
    db["vehicles"].create_index([("status", 1), ("category", 1), ("created_at", -1)])
    db["offers"].create_index([("active", 1), ("created_at", -1)])
