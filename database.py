"""
MongoDB access helpers.

The client is created once by the application lifespan (see ``main.py``) and
kept on ``app.state.db``. Route handlers receive the database through the
``get_db`` dependency; nothing here opens a connection on import.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import ValidationFailed

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def create_client(url: str = DATABASE_URL) -> MongoClient:
    logger.info("Creating MongoDB client")
    return MongoClient(url)


def open_database(client: MongoClient, name: str = DATABASE_NAME) -> Database:
    return client[name]


def get_db(request: Request) -> Database:
    return request.app.state.db


def create_document(db: Database, collection: str, data: Any) -> str:
    """Insert a pydantic model (or dict) and return the new id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    doc.setdefault("created_at", _now())
    doc.setdefault("updated_at", doc["created_at"])
    result = db[collection].insert_one(doc)
    return str(result.inserted_id)


def to_object_id(value: str, field: str = "id") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationFailed({field: f"Invalid {field}"}, detail=f"Invalid {field}")


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Return a JSON-friendly copy of a stored document (``_id`` -> ``id``)."""
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out
