"""Cache-aside search: clamping, ranking, fallback, sku boost and cache handling."""
from __future__ import annotations

import asyncio
import json

import pytest

from catalog_search.cache import InMemoryCache
from catalog_search.errors import CacheError
from catalog_search.models import SearchResponse
from catalog_search.products import build_operation
from catalog_search.search import SearchEngine, clamp_limit, clamp_page, search_cache_key, total_pages
from catalog_search.store import InMemoryProductStore


class CountingStore(InMemoryProductStore):
    def __init__(self) -> None:
        super().__init__()
        self.queries = 0

    async def find(self, query, **kwargs):
        self.queries += 1
        return await super().find(query, **kwargs)

    async def count(self, query):
        self.queries += 1
        return await super().count(query)


class BrokenCache(InMemoryCache):
    def get(self, key):
        raise CacheError("connection refused")

    def set(self, key, value, ttl):
        raise CacheError("connection refused")


def seed(store: InMemoryProductStore, *rows: dict) -> None:
    operations = [build_operation(row) for row in rows]
    asyncio.run(store.bulk_upsert([op for op in operations if op is not None]))


def run_search(engine: SearchEngine, query, page=1, limit=20):
    return asyncio.run(engine.search(query, page, limit))


@pytest.fixture
def counting_store() -> CountingStore:
    store = CountingStore()
    seed(
        store,
        {"sku": "S-1", "title": "Red Shoes", "brand": "Acme", "category": "Footwear"},
        {"sku": "S-2", "title": "Blue Shoes", "brand": "Acme", "category": "Footwear"},
        {"sku": "S-3", "title": "Red Hat", "brand": "Hatters", "category": "Headwear"},
        {"sku": "S-4", "title": "Wool Socks", "brand": "Knit", "category": "Hosiery"},
    )
    store.queries = 0
    return store


def test_clamping_rules():
    assert clamp_limit(None) == 20
    assert clamp_limit(0) == 20
    assert clamp_limit(-5) == 1
    assert clamp_limit(500) == 50
    assert clamp_page(None) == 1
    assert clamp_page(-3) == 1
    assert clamp_page(4) == 4


def test_total_pages():
    assert total_pages(0, 20) == 0
    assert total_pages(41, 20) == 3


def test_blank_query_touches_nothing(counting_store):
    engine = SearchEngine(counting_store, BrokenCache())

    response = run_search(engine, "   ", page=0, limit=100)

    assert response.items == []
    assert (response.page, response.limit) == (1, 50)
    assert (response.totalItems, response.totalPages, response.tookMs, response.cached) == (0, 0, 0, False)
    assert counting_store.queries == 0


def test_relevance_ranking_prefers_title_matches(counting_store, cache):
    engine = SearchEngine(counting_store, cache)

    response = run_search(engine, "red shoes")

    titles = [item.title for item in response.items]
    assert titles[0] == "Red Shoes"
    assert set(titles) == {"Red Shoes", "Blue Shoes", "Red Hat"}
    assert response.totalItems == 3
    assert response.totalPages == 1
    assert response.cached is False


def test_second_identical_search_is_served_from_cache(counting_store, cache):
    engine = SearchEngine(counting_store, cache)

    first = run_search(engine, "red shoes")
    queries_after_first = counting_store.queries
    second = run_search(engine, "red shoes")

    assert first.cached is False
    assert second.cached is True
    assert second.items == first.items
    assert second.totalItems == first.totalItems
    assert counting_store.queries == queries_after_first


def test_cache_entry_is_stored_with_cached_flag_and_ttl(counting_store):
    calls = []

    class SpyCache(InMemoryCache):
        def set(self, key, value, ttl):
            calls.append((key, json.loads(value), ttl))
            super().set(key, value, ttl)

    engine = SearchEngine(counting_store, SpyCache(), ttl=60)

    run_search(engine, "  Red Shoes ", page=1, limit=5)

    [(key, payload, ttl)] = calls
    assert key == search_cache_key("Red Shoes", 1, 5) == "search:q=Red Shoes:page=1:limit=5"
    assert payload["cached"] is True
    assert ttl == 60


def test_cache_key_keeps_query_case(counting_store, cache):
    engine = SearchEngine(counting_store, cache)

    run_search(engine, "Red")
    response = run_search(engine, "red")

    assert response.cached is False


def test_pagination_uses_skip_and_limit(counting_store, cache):
    engine = SearchEngine(counting_store, cache)

    page_one = run_search(engine, "red shoes", page=1, limit=2)
    page_two = run_search(engine, "red shoes", page=2, limit=2)

    assert len(page_one.items) == 2
    assert len(page_two.items) == 1
    assert page_one.totalPages == page_two.totalPages == 2
    assert {item.title for item in page_one.items + page_two.items} == {"Red Shoes", "Blue Shoes", "Red Hat"}


def test_substring_fallback_sorted_by_title(cache):
    store = InMemoryProductStore()
    seed(
        store,
        {"sku": "F-1", "title": "Sandal", "category": "Footwear"},
        {"sku": "F-2", "title": "Boot", "category": "Footwear"},
        {"sku": "F-3", "title": "Clog", "category": "footwear"},
        {"sku": "H-1", "title": "Beanie", "category": "Headwear"},
    )
    engine = SearchEngine(store, cache)

    response = run_search(engine, "ootwe", limit=2)

    assert [item.title for item in response.items] == ["Boot", "Clog"]
    assert response.totalItems == 3
    assert response.totalPages == 2
    assert all(item.score is None for item in response.items)


def test_fallback_requires_every_token_in_any_order(cache):
    store = InMemoryProductStore()
    seed(
        store,
        {"sku": "R-1", "title": "Running Shoes"},
        {"sku": "R-2", "title": "Running Socks"},
    )
    engine = SearchEngine(store, cache)

    response = run_search(engine, "hoe unn")

    assert [item.title for item in response.items] == ["Running Shoes"]


def test_fallback_escapes_regex_characters(cache):
    store = InMemoryProductStore()
    seed(store, {"sku": "C++1", "title": "Compiler"}, {"sku": "CXX1", "title": "Other"})
    engine = SearchEngine(store, cache)

    response = run_search(engine, "++")

    assert [item.sku for item in response.items] == ["C++1"]


def test_exact_sku_is_prepended_when_missing_from_page(cache):
    store = InMemoryProductStore()
    seed(
        store,
        {"sku": "ab-1", "title": "Widget"},
        {"sku": "X1", "title": "ab 1 deluxe"},
        {"sku": "X2", "title": "ab 1 classic"},
    )
    engine = SearchEngine(store, cache)

    response = run_search(engine, "ab-1", limit=1)

    assert response.items[0].sku == "ab-1"
    assert len(response.items) == 2
    assert response.totalItems == 3


def test_exact_sku_is_not_duplicated(counting_store, cache):
    engine = SearchEngine(counting_store, cache)

    response = run_search(engine, "S-4")

    skus = [item.sku for item in response.items]
    assert skus.count("S-4") == 1


def test_cache_failures_degrade_to_store_queries(counting_store):
    engine = SearchEngine(counting_store, BrokenCache())

    first = run_search(engine, "red shoes")
    second = run_search(engine, "red shoes")

    assert first.cached is False
    assert second.cached is False
    assert second.totalItems == 3


def test_corrupt_cache_entry_is_a_miss(counting_store, cache):
    cache.set(search_cache_key("red shoes", 1, 20), "{not json", 60)
    engine = SearchEngine(counting_store, cache)

    response = run_search(engine, "red shoes")

    assert response.cached is False
    assert response.totalItems == 3


def test_nothing_matches(counting_store, cache):
    engine = SearchEngine(counting_store, cache)

    response = run_search(engine, "zzzz")

    assert response.items == []
    assert (response.totalItems, response.totalPages) == (0, 0)


def test_exact_sku_is_prepended_on_the_fallback_path(cache):
    store = CountingStore()
    seed(
        store,
        {"sku": "++", "title": "Zulu"},
        {"sku": "A++", "title": "Alpha"},
        {"sku": "B++", "title": "Bravo"},
    )
    engine = SearchEngine(store, cache)

    response = run_search(engine, "++", limit=1)

    assert [item.sku for item in response.items] == ["++", "A++"]
    assert all(item.score is None for item in response.items)
    assert (response.totalItems, response.totalPages) == (3, 3)


def test_cache_hit_reports_its_own_latency(counting_store, cache):
    stored = SearchResponse(items=[], page=1, limit=20, totalItems=0, totalPages=0, tookMs=999, cached=False)
    cache.set(search_cache_key("red shoes", 1, 20), stored.model_dump_json(), 60)
    engine = SearchEngine(counting_store, cache)

    response = run_search(engine, "red shoes")

    assert response.cached is True
    assert response.tookMs != 999
    assert response.tookMs < 999
    assert counting_store.queries == 0
