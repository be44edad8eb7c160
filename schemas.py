"""
Database Schemas for the Stores API

Each Pydantic model maps to a MongoDB collection or to a shape returned
by the store layer. Collection name is the lowercase of the class name
(see database.collection_name).
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class LocationIn(BaseModel):
    type: Literal["Point"] = Field("Point", description="GeoJSON geometry type")
    coordinates: Optional[List[float]] = Field(None, description="[longitude, latitude]")
    address: Optional[str] = Field(None, description="Street address")


class StoreIn(BaseModel):
    """Caller supplied store fields. Everything is optional here so that a
    missing field reaches validation instead of failing at parse time, and
    so that an update can carry only the fields it changes."""

    name: Optional[str] = Field(None, description="Store name")
    description: Optional[str] = Field(None, description="Free text description")
    tags: Optional[List[str]] = Field(None, description="Tags e.g. ['wifi','family-friendly']")
    created: Optional[datetime] = Field(None, description="Creation time, defaults to now")
    location: Optional[LocationIn] = None
    photo: Optional[str] = Field(None, description="Path or URL of the store photo")
    author: Optional[str] = Field(None, description="ID of the user who owns the store")


class Location(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float]
    address: str


class Review(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., description="Review id (string ObjectId)")
    store: str = Field(..., description="ID of the reviewed store (string ObjectId)")
    rating: Optional[float] = Field(None, description="Star rating")


class Store(BaseModel):
    id: str = Field(..., description="Store id (string ObjectId)")
    name: str
    slug: str
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created: datetime
    location: Location
    photo: Optional[str] = None
    author: str
    reviews: List[Review] = Field(default_factory=list, description="Joined on read, never stored")


class TagCount(BaseModel):
    tag: str
    count: int


class TopStore(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    photo: Optional[str] = None
    name: str
    slug: Optional[str] = None
    reviews: List[Review] = Field(default_factory=list)
    average_rating: Optional[float] = Field(None, alias="averageRating")
