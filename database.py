"""
MongoDB connection and small document helpers.

Collections used by the booking service:
- tests         lab test catalog (read only)
- codes         pre-provisioned single-use discount codes
- availedCodes  consumed codes together with the booking they were granted to
"""
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient

from config import DATABASE_URL, DATABASE_NAME

TESTS = "tests"
CODES = "codes"
AVAILED_CODES = "availedCodes"

client = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def _serialize(doc: dict) -> dict:
    doc = dict(doc)
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a single document with created/updated timestamps and return its id"""
    if db is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)

    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> list:
    """Fetch documents from a collection with ObjectIds converted to strings"""
    if db is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME.")

    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return [_serialize(doc) for doc in cursor]
