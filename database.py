"""
MongoDB connection and document helpers.

The connection is configured from the environment:

- DATABASE_URL: MongoDB connection string
- DATABASE_NAME: database holding the "communities" collection
- DATABASE_TIMEOUT_MS: server selection / socket timeout (default 5000)

When either of the first two is missing ``db`` stays ``None`` and any
store access raises StoreFailure.
"""

import logging
import os
from typing import Optional

from bson import ObjectId
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from errors import StoreFailure

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

client: Optional[MongoClient] = None
db = None

if DATABASE_URL and DATABASE_NAME:
    # MongoClient connects lazily, so this never blocks at import time
    client = MongoClient(
        DATABASE_URL,
        tz_aware=True,
        serverSelectionTimeoutMS=DATABASE_TIMEOUT_MS,
        socketTimeoutMS=DATABASE_TIMEOUT_MS,
    )
    db = client[DATABASE_NAME]


def log_configuration() -> None:
    if db is None:
        logger.warning("DATABASE_URL or DATABASE_NAME not set; MongoDB disabled")
    else:
        logger.info("MongoDB configured", extra={"database_name": DATABASE_NAME})


def get_collection(name: str) -> Collection:
    if db is None:
        raise StoreFailure("Database is not configured")
    return db[name]


def ping() -> bool:
    """Return True when the database answers a ping."""
    if client is None:
        return False
    try:
        client.admin.command("ping")
    except PyMongoError:
        logger.warning("MongoDB ping failed", exc_info=True)
        return False
    return True


def to_object_id(value: Optional[str]) -> Optional[ObjectId]:
    # Malformed ids can never match a stored document
    if value is None or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


# Utility to convert Mongo documents to JSON-serializable dicts

def to_public(doc: dict):
    if not doc:
        return doc
    d = {**doc}
    _id = d.pop("_id", None)
    if isinstance(_id, ObjectId):
        d["id"] = str(_id)
    elif _id is not None:
        d["id"] = _id
    return d
