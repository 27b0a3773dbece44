"""Cache-aside product search over the weighted text index."""
from __future__ import annotations

import asyncio
import logging
import math
from time import perf_counter
from typing import List, Optional

from pydantic import ValidationError

from .cache import CacheBackend
from .config import settings
from .errors import CacheError
from .models import Product, SearchResponse
from .store import PatternQuery, ProductStore, SkuQuery, TextQuery

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 50
EXACT_SKU_MAX_LENGTH = 64


def clamp_limit(limit: Optional[int]) -> int:
    return min(max(int(limit or DEFAULT_LIMIT), 1), MAX_LIMIT)


def clamp_page(page: Optional[int]) -> int:
    return max(int(page or DEFAULT_PAGE), 1)


def search_cache_key(query: str, page: int, limit: int) -> str:
    return f"search:q={query}:page={page}:limit={limit}"


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


class SearchEngine:
    def __init__(self, store: ProductStore, cache: CacheBackend, *, ttl: Optional[int] = None) -> None:
        self.store = store
        self.cache = cache
        self.ttl = ttl or settings.search_cache_ttl_seconds

    async def _read_cache(self, key: str) -> Optional[SearchResponse]:
        try:
            payload = await asyncio.to_thread(self.cache.get, key)
        except CacheError as exc:
            logger.warning("Search cache read failed for %r: %s", key, exc.detail)
            return None
        if not payload:
            return None
        try:
            return SearchResponse.model_validate_json(payload)
        except ValidationError as exc:
            logger.warning("Discarding corrupt search cache entry %r: %s", key, exc)
            return None

    async def _write_cache(self, key: str, response: SearchResponse) -> None:
        payload = response.model_copy(update={"cached": True}).model_dump_json()
        try:
            await asyncio.to_thread(self.cache.set, key, payload, self.ttl)
        except CacheError as exc:
            logger.warning("Search cache write failed for %r: %s", key, exc.detail)

    async def _ranked(self, query: str, skip: int, limit: int) -> tuple[int, List[dict]]:
        text_query = TextQuery(query)
        total = await self.store.count(text_query)
        if total:
            return total, await self.store.find(text_query, skip=skip, limit=limit, sort="relevance")
        # No relevance hits: substring match, ordered by title.
        pattern_query = PatternQuery(query)
        total = await self.store.count(pattern_query)
        if not total:
            return 0, []
        logger.debug("search fallback q=%r pattern=%r hits=%s", query, pattern_query.pattern, total)
        return total, await self.store.find(pattern_query, skip=skip, limit=limit, sort="title")

    async def _boost_exact_sku(self, query: str, items: List[dict]) -> List[dict]:
        if len(query) > EXACT_SKU_MAX_LENGTH:
            return items
        exact = await self.store.find(SkuQuery(query), limit=1)
        if not exact:
            return items
        match = exact[0]
        if any(item.get("id") == match.get("id") for item in items):
            return items
        return [match, *items]

    async def search(self, query: Optional[str], page: Optional[int] = DEFAULT_PAGE, limit: Optional[int] = DEFAULT_LIMIT) -> SearchResponse:
        text = (query or "").strip()
        page = clamp_page(page)
        limit = clamp_limit(limit)
        if not text:
            return SearchResponse(items=[], page=page, limit=limit, totalItems=0, totalPages=0, tookMs=0, cached=False)

        key = search_cache_key(text, page, limit)
        cache_start = perf_counter()
        cached = await self._read_cache(key)
        if cached is not None:
            took_ms = round((perf_counter() - cache_start) * 1000, 2)
            logger.info("timing: total=%.2fms cache_hit=1 q=%r page=%s limit=%s", took_ms, text, page, limit)
            return cached.model_copy(update={"cached": True, "tookMs": took_ms})

        t0 = perf_counter()
        total, items = await self._ranked(text, (page - 1) * limit, limit)
        items = await self._boost_exact_sku(text, items)
        response = SearchResponse(
            items=[Product.model_validate(item) for item in items],
            page=page,
            limit=limit,
            totalItems=total,
            totalPages=total_pages(total, limit),
            tookMs=0,
            cached=False,
        )
        response.tookMs = round((perf_counter() - t0) * 1000, 2)
        logger.info(
            "timing: total=%.2fms cache_hit=0 q=%r page=%s limit=%s hits=%s",
            response.tookMs,
            text,
            page,
            limit,
            total,
        )
        await self._write_cache(key, response)
        return response
