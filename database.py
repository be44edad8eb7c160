"""MongoDB access helpers shared by the store layer and the API."""
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import GEOSPHERE, TEXT, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import StorageError
from schemas import Store
from settings import settings

logger = structlog.get_logger(__name__)

_client: Optional[MongoClient] = None
_client_lock = threading.Lock()


def get_client() -> Optional[MongoClient]:
    global _client
    if _client is None and settings.DATABASE_URL:
        with _client_lock:
            if _client is None:
                # MongoClient connects lazily, so this never blocks on startup
                _client = MongoClient(settings.DATABASE_URL)
                logger.info("mongo_client_created", database=settings.DATABASE_NAME)
    return _client


def get_database() -> Database:
    """FastAPI dependency returning the configured database."""
    client = get_client()
    if client is None:
        raise StorageError("DATABASE_URL is not configured")
    return client[settings.DATABASE_NAME]


def collection_name(model_cls) -> str:
    return model_cls.__name__.lower()


def oid(oid_str: Any) -> ObjectId:
    """Parse an ObjectId, raising ValueError on garbage."""
    if isinstance(oid_str, ObjectId):
        return oid_str
    try:
        return ObjectId(oid_str)
    except (InvalidId, TypeError) as exc:
        raise ValueError(f"Invalid id: {oid_str!r}") from exc


def create_document(database: Database, collection: str, data: Dict[str, Any]) -> str:
    """Insert a document stamped with created_at/updated_at, return its id."""
    now = datetime.now(timezone.utc)
    doc = dict(data)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    try:
        result = database[collection].insert_one(doc)
    except PyMongoError as exc:
        raise StorageError(f"insert into {collection} failed: {exc}") from exc
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    try:
        cursor = database[collection].find(filter_dict or {})
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)
    except PyMongoError as exc:
        raise StorageError(f"find on {collection} failed: {exc}") from exc


def ensure_indexes(database: Database) -> None:
    """Create the indexes the store collection relies on.

    The unique slug index turns a lost slug race into a DuplicateKeyError
    at commit instead of two stores sharing a slug.
    """
    col = database[collection_name(Store)]
    try:
        col.create_index("slug", unique=True)
        col.create_index([("name", TEXT), ("description", TEXT)])
        col.create_index([("location", GEOSPHERE)])
    except PyMongoError as exc:
        raise StorageError(f"index creation failed: {exc}") from exc
    logger.info("indexes_ensured", collection=col.name)
