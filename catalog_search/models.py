"""Pydantic models for request/response payloads."""
from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class Product(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    title: str | None = None
    brand: str | None = None
    category: str | None = None
    product_type: str | None = None
    description: str | None = None
    price: float | None = None
    rating: float | None = None
    stock: int | None = None
    currency: str | None = None
    sku: str | None = None
    created_at: datetime | None = None
    score: float | None = None


class SearchResponse(BaseModel):
    items: List[Product]
    page: int
    limit: int
    totalItems: int
    totalPages: int
    tookMs: float
    cached: bool


class SuggestResponse(BaseModel):
    suggestions: List[str]


class IngestResponse(BaseModel):
    ok: bool = True
    totalIndexed: int


class SaveDatasetRequest(BaseModel):
    prefix: str | None = None
    key: str | None = Field(default=None, min_length=5, max_length=8)
    value: str = Field(..., min_length=1)
    ttl: int | None = Field(default=None, gt=0)


class DatasetKey(BaseModel):
    prefix: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)

    @property
    def full_key(self) -> str:
        return f"{self.prefix}:{self.key}"


class Dataset(BaseModel):
    prefix: str
    key: str
    value: str
    ttl: int

    @property
    def full_key(self) -> str:
        return f"{self.prefix}:{self.key}"
