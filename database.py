"""
Database helpers

A Database object is created once by the application factory and passed to
every service; nothing here caches a connection at module level.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from config import Settings

logger = logging.getLogger(__name__)


class Database:
    """Owns the MongoClient and exposes the selected pymongo database."""

    def __init__(self, client: Optional[MongoClient], db):
        self.client = client
        self.db = db

    def close(self):
        if self.client is not None:
            self.client.close()


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url, connect=False)
    logger.info("MongoDB client configured for database '%s'", settings.database_name)
    return Database(client, client[settings.database_name])


def ensure_indexes(db):
    db["producttype"].create_index([("name", ASCENDING)], unique=True)
    db["rawleathertype"].create_index([("name", ASCENDING)], unique=True)
    db["quoterequest"].create_index([("requestNumber", ASCENDING)], unique=True)
    db["samplerequest"].create_index([("requestNumber", ASCENDING)], unique=True)
    db["samplerequest"].create_index([("wiseTransferId", ASCENDING)], unique=True, sparse=True)
    db["finishedproduct"].create_index([("productType", ASCENDING), ("isArchived", ASCENDING)])
    db["rawleather"].create_index([("leatherType", ASCENDING), ("isArchived", ASCENDING)])
    logger.info("Ensured database indexes")


def utcnow() -> datetime:
    # naive UTC, matching what pymongo hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(db, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(exclude_none=True)
    else:
        data_dict = {k: v for k, v in data.items() if v is not None}
    now = utcnow()
    data_dict.setdefault("createdAt", now)
    data_dict["updatedAt"] = now
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(db, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort=None):
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(doc: Optional[dict]):
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            d[k] = str(v)
    return d
