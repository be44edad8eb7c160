"""Store persistence: validation, slug assignment and the reviews join.

Every write goes through ``create_or_update``:

    parse input -> merge over the stored document -> validate/normalise
    -> assign slug (only when the name changed) -> insert/replace

Reads go through ``fetch``/``fetch_one``, which attach each store's reviews
with one extra query against the review collection.
"""
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from slugify import slugify as make_slug

from database import collection_name, get_documents, oid
from errors import SlugConflictError, StorageError, StoreNotFoundError, StoreValidationError
from schemas import Review, Store, StoreIn

logger = structlog.get_logger(__name__)

STORE_COLLECTION = collection_name(Store)
REVIEW_COLLECTION = collection_name(Review)


def slugify(name: str) -> str:
    """Lower-case ASCII slug: alphanumerics joined by single hyphens."""
    return make_slug(name) or "store"


def assign_slug(collection: Collection, name: str) -> str:
    """Return a slug for ``name`` based on how many stores already use it.

    With N stores already matching ``candidate`` or ``candidate-<digits>``
    the result is ``candidate-(N+1)``. This is a count, not a search for
    the smallest free suffix, so deleting a store in the middle of a
    sequence can hand out a suffix that is still taken; the unique index
    on ``slug`` rejects that write. Concurrent saves of the same name race
    the same way.
    """
    candidate = slugify(name)
    query = {"slug": re.compile(f"^{candidate}(-[0-9]+)?$", re.IGNORECASE)}
    try:
        matches = collection.count_documents(query)
    except PyMongoError as exc:
        raise StorageError(f"slug lookup failed: {exc}") from exc
    if matches:
        return f"{candidate}-{matches + 1}"
    return candidate


def validate_store(record: Dict[str, Any]) -> Dict[str, Any]:
    """Check required fields and normalise a store document.

    Returns a new dict; raises StoreValidationError listing every missing
    field at once.
    """
    clean = dict(record)
    for field in ("name", "description", "photo", "author"):
        if isinstance(clean.get(field), str):
            clean[field] = clean[field].strip()

    location = dict(clean.get("location") or {})
    if isinstance(location.get("address"), str):
        location["address"] = location["address"].strip()
    location["type"] = "Point"
    clean["location"] = location

    errors: Dict[str, str] = {}
    if not clean.get("name"):
        errors["name"] = "missing store name"
    if not location.get("address"):
        errors["location.address"] = "missing address"
    coordinates = location.get("coordinates") or []
    if not any(isinstance(c, (int, float)) and not isinstance(c, bool) for c in coordinates):
        errors["location.coordinates"] = "missing coordinates"
    if not clean.get("author"):
        errors["author"] = "missing author"
    if errors:
        raise StoreValidationError(errors)

    if clean.get("created") is None:
        clean["created"] = datetime.now(timezone.utc)
    if clean.get("tags") is None:
        clean["tags"] = []
    # virtual, never stored
    clean.pop("reviews", None)
    return clean


def _parse_input(store_input: Union[StoreIn, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(store_input, StoreIn):
        parsed = store_input
    else:
        try:
            parsed = StoreIn.model_validate(store_input)
        except ValidationError as exc:
            raise StoreValidationError(
                {".".join(str(p) for p in err["loc"]): err["msg"] for err in exc.errors()}
            ) from exc
    return parsed.model_dump(exclude_unset=True)


def _merge(existing: Optional[Dict[str, Any]], changes: Dict[str, Any]) -> Dict[str, Any]:
    record = {k: v for k, v in (existing or {}).items() if k != "_id"}
    for key, value in changes.items():
        if key == "location" and isinstance(value, dict):
            record["location"] = {**(record.get("location") or {}), **value}
        else:
            record[key] = value
    return record


def create_or_update(
    database: Database,
    store_input: Union[StoreIn, Dict[str, Any]],
    store_id: Optional[str] = None,
) -> Store:
    """Validate and persist a store, returning it as read back with reviews.

    Without ``store_id`` a new store is inserted. With it, only the fields
    present in ``store_input`` are changed; the slug is recomputed only if
    the name changed.
    """
    changes = _parse_input(store_input)
    collection = database[STORE_COLLECTION]

    existing = None
    if store_id is not None:
        _id = oid(store_id)
        try:
            existing = collection.find_one({"_id": _id})
        except PyMongoError as exc:
            raise StorageError(f"store lookup failed: {exc}") from exc
        if existing is None:
            raise StoreNotFoundError(f"store {store_id} not found")

    record = validate_store(_merge(existing, changes))

    if existing is None or existing.get("name") != record["name"]:
        # a rename that slugs to the store's own slug keeps it
        if existing is None or slugify(record["name"]) != existing.get("slug"):
            record["slug"] = assign_slug(collection, record["name"])
            logger.info("slug_assigned", name=record["name"], slug=record["slug"])

    try:
        if existing is None:
            _id = collection.insert_one(record).inserted_id
        else:
            collection.replace_one({"_id": _id}, record)
    except DuplicateKeyError as exc:
        logger.warning("slug_conflict", slug=record.get("slug"))
        raise SlugConflictError(f"slug {record.get('slug')!r} is already taken") from exc
    except PyMongoError as exc:
        raise StorageError(f"store write failed: {exc}") from exc

    logger.info("store_saved", store_id=str(_id), created=existing is None)
    return fetch_one(database, {"_id": _id})


def to_review(doc: Dict[str, Any]) -> Review:
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    data["store"] = str(data["store"])
    return Review(**data)


def to_store(doc: Dict[str, Any], reviews: List[Review]) -> Store:
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    data["author"] = str(data["author"])
    data["reviews"] = reviews
    return Store(**data)


def attach_reviews(database: Database, docs: List[Dict[str, Any]]) -> List[Store]:
    """Join reviews onto raw store documents."""
    if not docs:
        return []
    reviews = get_documents(
        database, REVIEW_COLLECTION, {"store": {"$in": [d["_id"] for d in docs]}}
    )
    by_store: Dict[Any, List[Review]] = defaultdict(list)
    for review in reviews:
        by_store[review["store"]].append(to_review(review))
    return [to_store(doc, by_store.get(doc["_id"], [])) for doc in docs]


def fetch(
    database: Database,
    query: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
) -> List[Store]:
    docs = get_documents(database, STORE_COLLECTION, query, limit)
    return attach_reviews(database, docs)


def fetch_one(database: Database, query: Dict[str, Any]) -> Optional[Store]:
    stores = fetch(database, query, limit=1)
    return stores[0] if stores else None
