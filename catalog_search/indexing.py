"""Index creation and maintenance helpers."""
from __future__ import annotations

import asyncio
import logging

from elasticsearch import Elasticsearch
from elasticsearch.exceptions import BadRequestError, NotFoundError

from .config import settings

logger = logging.getLogger(__name__)

# Longest value kept in the `.raw` keyword sub-fields. Lucene caps a term at
# 32766 bytes, and 8191 characters stay under it for any UTF-8 text.
RAW_IGNORE_ABOVE = 8191


def _searchable_text() -> dict:
    return {"type": "text", "fields": {"raw": {"type": "keyword", "ignore_above": RAW_IGNORE_ABOVE}}}


PRODUCT_MAPPING: dict = {
    "settings": {"number_of_shards": 1},
    "mappings": {
        "properties": {
            "title": _searchable_text(),
            "brand": _searchable_text(),
            "category": _searchable_text(),
            "product_type": _searchable_text(),
            "sku": _searchable_text(),
            "description": {"type": "text"},
            "currency": {"type": "keyword"},
            "price": {"type": "double"},
            "rating": {"type": "double"},
            "stock": {"type": "long"},
            "created_at": {"type": "date"},
        }
    },
}


async def ensure_index(es: Elasticsearch, index: str | None = None) -> None:
    """Create the products index if it is missing."""

    index = index or settings.es_index
    exists = await asyncio.to_thread(es.indices.exists, index=index)
    if exists:
        return
    logger.info("Creating index %s", index)
    try:
        await asyncio.to_thread(es.indices.create, index=index, **PRODUCT_MAPPING)
    except BadRequestError as exc:
        if getattr(exc, "error", "") == "resource_already_exists_exception":
            logger.info("Index %s already exists", index)
            return
        logger.exception("Failed to create index: %s", exc)
        raise


async def index_is_empty(es: Elasticsearch, index: str | None = None) -> bool:
    try:
        stats = await asyncio.to_thread(es.count, index=index or settings.es_index)
        return stats.get("count", 0) == 0
    except NotFoundError:
        return True
