"""Read-only statistics over the store and review collections."""
from typing import Any, Dict, List

import structlog
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import StorageError
from schemas import TagCount, TopStore
from stores import REVIEW_COLLECTION, STORE_COLLECTION, to_review

logger = structlog.get_logger(__name__)

TOP_STORES_LIMIT = 10


def _aggregate(collection: Collection, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    try:
        return list(collection.aggregate(pipeline))
    except PyMongoError as exc:
        raise StorageError(f"aggregation on {collection.name} failed: {exc}") from exc


def get_tags_list(database: Database) -> List[TagCount]:
    """Count every tag across all stores, most used first.

    A tag listed twice on one store counts twice. Order among equal counts
    is whatever the server returns.
    """
    rows = _aggregate(database[STORE_COLLECTION], [
        {"$unwind": "$tags"},
        {"$group": {"_id": "$tags", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ])
    return [TagCount(tag=row["_id"], count=row["count"]) for row in rows]


def get_top_stores(database: Database) -> List[TopStore]:
    """Up to ten stores with more than one review, best average rating first."""
    rows = _aggregate(database[STORE_COLLECTION], [
        {"$lookup": {
            "from": REVIEW_COLLECTION,
            "localField": "_id",
            "foreignField": "store",
            "as": "reviews",
        }},
        # at least two reviews
        {"$match": {"reviews.1": {"$exists": True}}},
        {"$project": {
            "photo": 1,
            "name": 1,
            "slug": 1,
            "reviews": 1,
            "averageRating": {"$avg": "$reviews.rating"},
        }},
        {"$sort": {"averageRating": -1}},
        {"$limit": TOP_STORES_LIMIT},
    ])
    logger.debug("top_stores_ranked", returned=len(rows))
    return [
        TopStore(
            id=str(row["_id"]),
            photo=row.get("photo"),
            name=row["name"],
            slug=row.get("slug"),
            reviews=[to_review(r) for r in row["reviews"]],
            average_rating=row.get("averageRating"),
        )
        for row in rows
    ]
