"""
MongoDB access for the storefront.

The connection is configured from DATABASE_URL / DATABASE_NAME. When either
is missing, `db` stays None and the API reports the database as unavailable.
"""
import os
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient, ReadPreference
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


class WriteConflict(Exception):
    """A compare-and-set update inside a transaction matched no document."""


def to_object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort=None):
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


class MongoTransaction:
    """Transaction-scoped reads and writes bound to one client session."""

    def __init__(self, database, session):
        self.database = database
        self.session = session

    def get(self, collection_name: str, doc_id: str) -> Optional[dict]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        return self.database[collection_name].find_one({"_id": oid}, session=self.session)

    def set(self, collection_name: str, data: dict) -> str:
        doc = dict(data)
        doc["_id"] = ObjectId()
        self.database[collection_name].insert_one(doc, session=self.session)
        return str(doc["_id"])

    def update(self, collection_name: str, doc_id: str, data: dict, expect: Optional[dict] = None) -> None:
        filt = {"_id": to_object_id(doc_id)}
        if expect:
            filt.update(expect)
        res = self.database[collection_name].update_one(filt, {"$set": data}, session=self.session)
        if res.matched_count == 0:
            raise WriteConflict(f"{collection_name}/{doc_id} changed during transaction")


def run_transaction(callback: Callable[[MongoTransaction], Any]) -> Any:
    # the driver retries the callback on transient conflicts; other errors abort and propagate
    if client is None or db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    with client.start_session() as session:
        return session.with_transaction(
            lambda s: callback(MongoTransaction(db, s)),
            read_concern=ReadConcern("snapshot"),
            write_concern=WriteConcern("majority"),
            read_preference=ReadPreference.PRIMARY,
        )
