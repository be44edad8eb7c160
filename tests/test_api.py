"""HTTP tests for the stores API, run against an in-memory MongoDB."""

import threading
import time
from unittest.mock import MagicMock, call

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import database as database_module
from database import ensure_indexes, get_database
from main import app
from settings import settings
from stores import STORE_COLLECTION


@pytest.fixture
def client(db):
    app.dependency_overrides[get_database] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root(client):
    assert client.get("/").json() == {"message": "Stores API running"}


def test_create_and_get_by_slug(client, store_data):
    created = client.post("/api/stores", json=store_data)
    assert created.status_code == 201
    body = created.json()
    assert body["slug"] == "cafe-delight"
    assert body["reviews"] == []

    fetched = client.get("/api/stores/cafe-delight")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == body["id"]


def test_create_missing_address(client, store_data, db):
    store_data["location"].pop("address")
    response = client.post("/api/stores", json=store_data)
    assert response.status_code == 422
    assert response.json()["errors"] == {"location.address": "missing address"}
    assert client.get("/api/stores").json() == []


def test_update_keeps_slug(client, store_data):
    client.post("/api/stores", json=store_data)
    store_id = client.post("/api/stores", json=store_data).json()["id"]

    response = client.put(f"/api/stores/{store_id}", json={"description": "Now with bagels"})
    assert response.status_code == 200
    assert response.json()["slug"] == "cafe-delight-2"
    assert response.json()["description"] == "Now with bagels"


def test_update_bad_and_unknown_ids(client):
    assert client.put("/api/stores/not-an-id", json={"name": "x"}).status_code == 400
    assert client.put(f"/api/stores/{ObjectId()}", json={"name": "x"}).status_code == 404


def test_unknown_slug_is_404(client):
    assert client.get("/api/stores/missing").status_code == 404


def test_slug_conflict_is_409(client, store_data, db):
    client.post("/api/stores", json=store_data)
    middle = client.post("/api/stores", json=store_data).json()["id"]
    client.post("/api/stores", json=store_data)
    db[STORE_COLLECTION].delete_one({"_id": ObjectId(middle)})

    assert client.post("/api/stores", json=store_data).status_code == 409


def test_list_stores_by_tag(client, store_data):
    client.post("/api/stores", json={**store_data, "name": "Wifi Cafe", "tags": ["wifi"]})
    client.post("/api/stores", json={**store_data, "name": "Quiet Cafe", "tags": ["quiet"]})

    names = [s["name"] for s in client.get("/api/stores", params={"tag": "wifi"}).json()]
    assert names == ["Wifi Cafe"]


def test_reviews_tags_and_top(client, store_data):
    store_id = client.post("/api/stores", json=store_data).json()["id"]
    for rating in (5, 3):
        response = client.post("/api/reviews", json={"store_id": store_id, "rating": rating})
        assert response.status_code == 201

    store = client.get("/api/stores/cafe-delight").json()
    assert sorted(r["rating"] for r in store["reviews"]) == [3, 5]

    tags = {t["tag"]: t["count"] for t in client.get("/api/tags").json()}
    assert tags == {"wifi": 1, "coffee": 1}

    [top] = client.get("/api/top").json()
    assert top["averageRating"] == 4
    assert top["slug"] == "cafe-delight"
    assert len(top["reviews"]) == 2


def test_review_for_unknown_store(client):
    response = client.post("/api/reviews", json={"store_id": str(ObjectId()), "rating": 4})
    assert response.status_code == 404


def test_unconfigured_database_is_503(monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", None)
    monkeypatch.setattr(database_module, "_client", None)
    client = TestClient(app)

    assert client.get("/api/tags").status_code == 503
    assert client.get("/test").json()["connection_status"] == "Not Connected"


def test_ensure_indexes_creates_slug_text_and_geo_indexes():
    database = MagicMock()
    collection = database.__getitem__.return_value

    ensure_indexes(database)

    database.__getitem__.assert_called_with("store")
    assert collection.create_index.call_args_list == [
        call("slug", unique=True),
        call([("name", "text"), ("description", "text")]),
        call([("location", "2dsphere")]),
    ]


def test_review_store_check_is_a_bare_count():
    database = MagicMock()
    collection = database.__getitem__.return_value
    collection.count_documents.return_value = 0
    app.dependency_overrides[get_database] = lambda: database
    try:
        store_id = ObjectId()
        response = TestClient(app).post("/api/reviews", json={"store_id": str(store_id), "rating": 4})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 404
    collection.count_documents.assert_called_once_with({"_id": store_id}, limit=1)
    collection.find.assert_not_called()
    collection.insert_one.assert_not_called()


def test_concurrent_first_requests_build_one_client(monkeypatch):
    def slow_client(url):
        time.sleep(0.05)
        return MagicMock(name=url)

    factory = MagicMock(side_effect=slow_client)
    monkeypatch.setattr(settings, "DATABASE_URL", "mongodb://db.example:27017")
    monkeypatch.setattr(database_module, "_client", None)
    monkeypatch.setattr(database_module, "MongoClient", factory)

    barrier = threading.Barrier(8)
    clients = []

    def worker():
        barrier.wait()
        clients.append(database_module.get_client())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert factory.call_count == 1
    assert len({id(c) for c in clients}) == 1
