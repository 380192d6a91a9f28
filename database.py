"""
MongoDB access for the course store.

The service works against four logical collections plus one for signed-out
sessions. Services receive the `Database` handle explicitly; nothing here
keeps a global connection.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Union

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

USERS = "users"
ACCOUNTS = "accounts"
COURSES = "courses"
TRANSACTIONS = "transactions"
REVIEWS = "reviews"
REVOKED_TOKENS = "revoked_tokens"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    # Fixed width so string ordering matches time ordering
    return utc_now().isoformat(timespec="microseconds")


def connect(database_url: str, database_name: str) -> MongoClient:
    logger.info("Connecting to MongoDB database %s", database_name)
    return MongoClient(database_url)


def get_database(client: MongoClient, database_name: str) -> Database:
    return client[database_name]


def ensure_indexes(db: Database) -> None:
    """Create the indexes the services rely on. Safe to call repeatedly."""
    db[TRANSACTIONS].create_index([("transaction_id", ASCENDING)], unique=True)
    db[TRANSACTIONS].create_index([("user_id", ASCENDING)])
    db[ACCOUNTS].create_index([("email", ASCENDING)], unique=True)
    db[REVIEWS].create_index([("course_id", ASCENDING)])
    db[REVOKED_TOKENS].create_index([("jti", ASCENDING)], unique=True)
    db[REVOKED_TOKENS].create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with a store-generated id and return the id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)

