"""Pytest configuration and shared fixtures."""

import mongomock
import pytest
from bson import ObjectId

from database import collection_name
from schemas import Store
from stores import REVIEW_COLLECTION, create_or_update


@pytest.fixture
def db():
    """In-memory MongoDB with the unique slug index in place."""
    database = mongomock.MongoClient()["stores_test"]
    database[collection_name(Store)].create_index("slug", unique=True)
    return database


@pytest.fixture
def store_data():
    return {
        "name": "Cafe Delight",
        "description": "Coffee and cake",
        "tags": ["wifi", "coffee"],
        "location": {"coordinates": [-79.38, 43.65], "address": "1 King St W"},
        "photo": "cafe.jpg",
        "author": str(ObjectId()),
    }


@pytest.fixture
def make_store(db, store_data):
    def _make(**overrides):
        return create_or_update(db, {**store_data, **overrides})
    return _make


@pytest.fixture
def add_reviews(db):
    def _add(store, *ratings):
        for rating in ratings:
            db[REVIEW_COLLECTION].insert_one({"store": ObjectId(store.id), "rating": rating})
    return _add
