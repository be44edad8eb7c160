import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

from aggregations import get_tags_list, get_top_stores
from database import create_document, ensure_indexes, get_client, get_database, oid
from errors import SlugConflictError, StorageError, StoreNotFoundError, StoreValidationError
from schemas import Store, StoreIn, TagCount, TopStore
from settings import settings
from stores import REVIEW_COLLECTION, STORE_COLLECTION, create_or_update, fetch, fetch_one

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if get_client() is not None:
        ensure_indexes(get_database())
    else:
        logger.warning("database_not_configured")
    yield


app = FastAPI(title="Stores API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Utilities

def parse_id(oid_str: str) -> ObjectId:
    try:
        return oid(oid_str)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid id")


@app.exception_handler(StoreValidationError)
async def store_validation_error_handler(request: Request, exc: StoreValidationError):
    return JSONResponse(status_code=422, content={"detail": "Invalid store", "errors": exc.errors})


@app.exception_handler(StoreNotFoundError)
async def store_not_found_handler(request: Request, exc: StoreNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    if isinstance(exc, SlugConflictError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})
    logger.error("storage_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


@app.get("/")
def root():
    return {"message": "Stores API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    client = get_client()
    if client is None:
        return response
    db = client[settings.DATABASE_NAME]
    response["database"] = "Available"
    response["database_name"] = db.name
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["connection_status"] = "Connected"
        response["database"] = "Connected & Working"
    except Exception as e:
        response["database"] = f"Connected but Error: {str(e)[:80]}"
    return response


@app.post("/api/stores", response_model=Store, status_code=201)
def create_store(body: StoreIn, database: Database = Depends(get_database)):
    return create_or_update(database, body)


@app.put("/api/stores/{store_id}", response_model=Store)
def update_store(store_id: str, body: StoreIn, database: Database = Depends(get_database)):
    parse_id(store_id)
    return create_or_update(database, body, store_id=store_id)


@app.get("/api/stores", response_model=List[Store])
def list_stores(
    tag: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    database: Database = Depends(get_database),
):
    filt = {"tags": tag} if tag else {}
    return fetch(database, filt, limit)


@app.get("/api/stores/{slug}", response_model=Store)
def get_store(slug: str, database: Database = Depends(get_database)):
    store = fetch_one(database, {"slug": slug})
    if store is None:
        raise HTTPException(404, "Store not found")
    return store


@app.get("/api/tags", response_model=List[TagCount])
def tags(database: Database = Depends(get_database)):
    return get_tags_list(database)


@app.get("/api/top", response_model=List[TopStore])
def top_stores(database: Database = Depends(get_database)):
    return get_top_stores(database)


class ReviewCreate(BaseModel):
    store_id: str
    rating: int = Field(..., ge=1, le=5)
    text: Optional[str] = None


@app.post("/api/reviews", status_code=201)
def add_review(body: ReviewCreate, database: Database = Depends(get_database)):
    store_oid = parse_id(body.store_id)
    try:
        exists = database[STORE_COLLECTION].count_documents({"_id": store_oid}, limit=1)
    except PyMongoError as exc:
        raise StorageError(f"store lookup failed: {exc}") from exc
    if not exists:
        raise HTTPException(404, "Store not found")
    rid = create_document(database, REVIEW_COLLECTION, {
        "store": store_oid,
        "rating": body.rating,
        "text": body.text,
    })
    logger.info("review_added", store_id=body.store_id, review_id=rid)
    return {"status": "ok", "review_id": rid}


if __name__ == "__main__":
    import os

    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
