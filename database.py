"""
MongoDB access for the Natours API.

The client is created lazily from the environment; routes receive the
database handle through the `get_db` dependency so tests can swap in an
in-memory database.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, GEOSPHERE, MongoClient
from pymongo.database import Database

from config import get_settings
from errors import CastError

logger = logging.getLogger(__name__)

_settings = get_settings()
client = MongoClient(_settings.database_url)
db = client[_settings.database_name]


def get_db() -> Database:
    return db


def utcnow() -> datetime:
    # Mongo stores naive UTC datetimes
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any, path: str = "_id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise CastError(path, value)


def ensure_indexes(database: Database) -> None:
    database["tours"].create_index([("name", ASCENDING)], unique=True)
    database["tours"].create_index([("price", ASCENDING), ("ratingsAverage", -1)])
    database["tours"].create_index([("startLocation", GEOSPHERE)])
    database["users"].create_index([("email", ASCENDING)], unique=True)
    database["reviews"].create_index([("tour", ASCENDING), ("user", ASCENDING)], unique=True)
    logger.info("Indexes ensured on database %s", database.name)


def _convert(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list):
        return [_convert(v) for v in value]
    if isinstance(value, dict):
        return serialize_doc(value)
    return value


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = d.pop("_id")
    return {k: _convert(v) for k, v in d.items()}
