"""Shared fixtures: in-memory store/cache and a CSV writer."""
from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from catalog_search.cache import InMemoryCache
from catalog_search.store import InMemoryProductStore


@pytest.fixture
def store() -> InMemoryProductStore:
    return InMemoryProductStore()


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[..., Path]:
    counter = {"n": 0}

    def _write(content: str | bytes, name: str | None = None) -> Path:
        counter["n"] += 1
        path = tmp_path / (name or f"upload-{counter['n']}.csv")
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
        return path

    return _write
