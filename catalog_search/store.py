"""Product store capability and an in-memory implementation.

The search and ingestion code only talks to :class:`ProductStore`. The
production adapter lives in :mod:`catalog_search.es_store`; the in-memory
store below follows the same rules and backs tests and local runs.
"""
from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Optional, Protocol, Sequence, Union

from .products import SEARCH_FIELD_WEIGHTS, BatchOperation

# Fields scanned by the substring fallback and by live suggestions.
PATTERN_FIELDS: tuple[str, ...] = ("title", "brand", "category", "sku", "product_type")

SortOrder = Literal["relevance", "title"]
_WORD_RE = re.compile(r"\w+", re.UNICODE)


@dataclass(frozen=True)
class TextQuery:
    """Weighted full-text relevance query."""

    text: str

    @property
    def terms(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(_WORD_RE.findall(self.text.lower())))


@dataclass(frozen=True)
class PatternQuery:
    """Case-insensitive "all tokens present, any order" match on one field."""

    text: str
    fields: tuple[str, ...] = PATTERN_FIELDS

    @property
    def tokens(self) -> tuple[str, ...]:
        return tuple(self.text.split())

    @property
    def pattern(self) -> str:
        return build_token_pattern(self.text)

    def compile(self) -> re.Pattern[str]:
        return re.compile(self.pattern, re.IGNORECASE)


@dataclass(frozen=True)
class SkuQuery:
    sku: str


StoreQuery = Union[TextQuery, PatternQuery, SkuQuery]


@dataclass(frozen=True)
class BulkResult:
    upserted: int
    modified: int


def build_token_pattern(text: str) -> str:
    """Regex requiring every whitespace token of ``text``, in any order."""
    tokens = text.split()
    if not tokens:
        return re.escape(text)
    return "".join(f"(?=.*{re.escape(token)})" for token in tokens)


def document_id(filter_: Dict[str, str]) -> str:
    """Stable document identity derived from an upsert filter."""
    payload = json.dumps(filter_, sort_keys=True, ensure_ascii=False)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


class ProductStore(Protocol):
    async def find(
        self,
        query: StoreQuery,
        *,
        skip: int = 0,
        limit: Optional[int] = None,
        sort: SortOrder = "relevance",
    ) -> List[Dict[str, Any]]: ...

    async def count(self, query: StoreQuery) -> int: ...

    async def bulk_upsert(self, operations: Sequence[BatchOperation]) -> BulkResult: ...


def _text_score(document: Dict[str, Any], terms: Iterable[str]) -> float:
    score = 0.0
    for field, weight in SEARCH_FIELD_WEIGHTS.items():
        value = document.get(field)
        if not value:
            continue
        words = set(_WORD_RE.findall(str(value).lower()))
        score += weight * sum(1 for term in terms if term in words)
    return score


def _title_key(document: Dict[str, Any]) -> tuple[bool, str]:
    title = document.get("title")
    return (title is None, title or "")


class InMemoryProductStore:
    """Dictionary-backed store with the same matching rules as Elasticsearch."""

    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._documents)

    def all(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._documents.values()]

    def _matches(self, query: StoreQuery) -> List[Dict[str, Any]]:
        if isinstance(query, SkuQuery):
            return [doc for doc in self._documents.values() if doc.get("sku") == query.sku]
        if isinstance(query, PatternQuery):
            matcher = query.compile()
            return [
                doc
                for doc in self._documents.values()
                if any(isinstance(doc.get(field), str) and matcher.search(doc[field]) for field in query.fields)
            ]
        terms = query.terms
        scored = []
        for doc in self._documents.values():
            score = _text_score(doc, terms)
            if score > 0:
                scored.append({**doc, "score": score})
        return scored

    async def find(
        self,
        query: StoreQuery,
        *,
        skip: int = 0,
        limit: Optional[int] = None,
        sort: SortOrder = "relevance",
    ) -> List[Dict[str, Any]]:
        matches = self._matches(query)
        if sort == "title":
            matches.sort(key=_title_key)
        elif isinstance(query, TextQuery):
            matches.sort(key=lambda doc: doc["score"], reverse=True)
        end = None if limit is None else skip + limit
        return [copy.deepcopy(doc) for doc in matches[skip:end]]

    async def count(self, query: StoreQuery) -> int:
        return len(self._matches(query))

    async def bulk_upsert(self, operations: Sequence[BatchOperation]) -> BulkResult:
        upserted = modified = 0
        for operation in operations:
            doc_id = document_id(operation.filter)
            existing = self._documents.get(doc_id)
            if existing is None:
                self._documents[doc_id] = {"id": doc_id, **operation.filter, **operation.patch}
                upserted += 1
            else:
                existing.update(operation.patch)
                modified += 1
        # Yield like a real network round-trip so concurrent dispatch interleaves.
        await asyncio.sleep(0)
        return BulkResult(upserted=upserted, modified=modified)
