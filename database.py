"""
MongoDB access helpers.

`db` is a pymongo Database built from DATABASE_URL / DATABASE_NAME, or None
when either is missing. Routes receive it through the `get_db` dependency so
tests can swap in another database.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from errors import Internal

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def utcnow() -> datetime:
    # naive UTC, the same shape pymongo hands back from reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db() -> Database:
    if db is None:
        raise Internal("Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    database["admin"].create_index([("email", ASCENDING)], unique=True)
    database["admin"].create_index([("uniqueId", ASCENDING)], unique=True)
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index([("uniqueId", ASCENDING)])
    database["car"].create_index([("carId", ASCENDING)], unique=True)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    else:
        data = dict(data)
    now = utcnow()
    data.setdefault("createdAt", now)
    data["updatedAt"] = now
    result = database[collection_name].insert_one(data)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, projection: Optional[Dict[str, int]] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {}, projection)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
        elif isinstance(v, list):
            doc[k] = [serialize_doc(x) if isinstance(x, dict) else x for x in v]
    return doc
