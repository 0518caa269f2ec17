"""
MongoDB access for the jewelry store.

One collection per schema in schemas.py, named after the lowercase class name.
Handlers never import `db` directly: they receive it through `get_db` so the
database can be swapped (tests use mongomock).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import settings
from errors import ErrorKind, StoreError

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.DATABASE_URL:
    client = MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[settings.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise StoreError(ErrorKind.UPSTREAM_FAILURE, "Database not configured", status_code=503)
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_document(database: Database, collection_name: str, data: Any) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise StoreError(ErrorKind.NOT_FOUND, f"Resource not found with id of {value}")


def serialize_doc(value: Any) -> Any:
    """Make a Mongo document JSON-safe: ObjectIds become strings, datetimes ISO-8601."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return {k: serialize_doc(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    return value


def ensure_indexes(database: Database):
    database["user"].create_index("email", unique=True)
    database["user"].create_index(
        "wallet_address",
        unique=True,
        partialFilterExpression={"wallet_address": {"$type": "string"}},
    )
    database["category"].create_index("name", unique=True)
    database["category"].create_index("slug", unique=True)
    database["product"].create_index([("category", ASCENDING), ("is_active", ASCENDING)])
    database["product"].create_index("price")
    database["review"].create_index([("product", ASCENDING), ("user", ASCENDING)], unique=True)
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index([("user", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index(
        "payment_details.transaction_id",
        unique=True,
        partialFilterExpression={"payment_details.transaction_id": {"$type": "string"}},
    )
    database["cart"].create_index("user", unique=True)
    logger.info("Indexes ensured on %s", database.name)
