import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from pymongo import MongoClient

from config import settings
from schemas import LedgerEvent

logger = logging.getLogger(__name__)

# The Mongo mirror is optional; db stays None unless both settings are present
db = None

if settings.database_url and settings.database_name:
    client = MongoClient(settings.database_url)
    db = client[settings.database_name]


def create_document(collection_name: str, data, database=None):
    """Insert a document and return its id as a string."""
    database = database if database is not None else db
    if database is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, database=None):
    database = database if database is not None else db
    if database is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


class MongoEventSink:
    """Event bus subscriber that mirrors committed ledger events into Mongo."""

    collection = "ledger_event"

    def __init__(self, database=None):
        self.database = database

    def __call__(self, event: LedgerEvent) -> None:
        try:
            create_document(self.collection, event, database=self.database)
        except Exception as e:
            # ledger state is already committed at this point
            logger.error("Failed to mirror %s event: %s", event.name, str(e)[:200])
