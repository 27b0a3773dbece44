"""HTTP surface wired against the in-memory store and cache."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from helpers import csv_text, product_row

from catalog_search.main import app, get_cache_backend, get_store
from catalog_search.products import REQUIRED_COLUMNS


@pytest.fixture
def client(store, cache):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_cache_backend] = lambda: cache
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(client: TestClient, content: str, content_type: str = "text/csv"):
    return client.post("/index/load", files={"file": ("products.csv", content.encode("utf-8"), content_type)})


def test_load_then_search(client):
    content = csv_text(
        [
            product_row(sku="A-1", title="Red Shoes", brand="Acme", price="10"),
            product_row(title="Green Scarf", brand="Knit", category="Accessories", product_type="scarf"),
        ]
    )

    loaded = _upload(client, content)
    found = client.get("/search", params={"q": "red shoes"})
    again = client.get("/search", params={"q": "red shoes"})

    assert loaded.status_code == 200
    assert loaded.json() == {"ok": True, "totalIndexed": 2}
    body = found.json()
    assert body["totalItems"] == 1
    assert body["page"] == 1 and body["limit"] == 20
    assert body["cached"] is False
    assert body["items"][0]["title"] == "Red Shoes"
    assert "description" not in body["items"][0]
    assert again.json()["cached"] is True
    assert again.json()["items"] == body["items"]


def test_load_rejects_missing_columns(client, store):
    header = [column for column in REQUIRED_COLUMNS if column != "price"]

    response = _upload(client, csv_text([["x"] * len(header)], header=header))

    assert response.status_code == 400
    assert "price" in response.json()["detail"]
    assert len(store) == 0


def test_load_rejects_non_text_media_type(client):
    response = _upload(client, csv_text([product_row(sku="A")]), content_type="image/png")

    assert response.status_code == 415


def test_search_without_query_is_empty(client):
    response = client.get("/search", params={"limit": 500})

    assert response.json() == {
        "items": [],
        "page": 1,
        "limit": 50,
        "totalItems": 0,
        "totalPages": 0,
        "tookMs": 0,
        "cached": False,
    }


def test_suggest_endpoint(client, cache):
    cache.add_terms("sugg:lam", {"lamp": 3, "laminate": 1})

    response = client.get("/search/suggest", params={"q": "LAM"})

    assert response.json() == {"suggestions": ["lamp", "laminate"]}


def test_dataset_round_trip(client):
    created = client.post("/redis/dataset", json={"prefix": "cfg", "key": "abcde", "value": "42", "ttl": 60})
    fetched = client.get("/redis/dataset", params={"prefix": "cfg", "key": "abcde"})
    deleted = client.request("DELETE", "/redis/dataset", json={"prefix": "cfg", "key": "abcde"})
    missing = client.get("/redis/dataset", params={"prefix": "cfg", "key": "abcde"})

    assert created.status_code == 200
    assert created.json() == {"prefix": "cfg", "key": "abcde", "value": "42", "ttl": 60}
    assert fetched.json() == "42"
    assert deleted.json() is True
    assert missing.status_code == 404
    assert "cfg:abcde" in missing.json()["detail"]


def test_dataset_key_length_is_validated(client):
    response = client.post("/redis/dataset", json={"key": "abc", "value": "v"})

    assert response.status_code == 422
