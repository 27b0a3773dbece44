"""Autocomplete suggestions.

Terms come from the precomputed ``sugg:{prefix}`` sorted sets when they exist
for the last typed word. Otherwise candidates are pulled from the store with
the substring matcher and each field value is scored by where and how well it
matched.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Dict, Iterable, List, Optional

from .cache import CacheBackend
from .config import settings
from .errors import CacheError
from .store import PatternQuery, ProductStore

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 10
MIN_PREFIX_LENGTH = 2
CANDIDATE_LIMIT = 50
PRECOMPUTED_BASE_SCORE = 100

FIELD_SCORES: Dict[str, int] = {
    "title": 50,
    "brand": 40,
    "sku": 35,
    "category": 30,
    "product_type": 20,
}
PREFIX_BONUS = 5
EXACT_BONUS = 10
PATTERN_BONUS = 2


def suggest_cache_key(normalized: str) -> str:
    return f"suggest:q={normalized}"


def precomputed_key(prefix: str) -> str:
    return f"sugg:{prefix}"


def normalize_suggest_query(query: Optional[str]) -> str:
    return (query or "").strip().lower()


def current_term(normalized: str) -> str:
    parts = normalized.split()
    return parts[-1] if parts else ""


def rank_terms(scores: Dict[str, float], limit: int = MAX_SUGGESTIONS) -> List[str]:
    ordered = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
    return [term for term, _ in ordered[:limit]]


def score_candidates(normalized: str, candidates: Iterable[dict]) -> Dict[str, float]:
    """Best score per distinct field value across all candidates."""
    flexible = PatternQuery(normalized).compile()
    prefix = re.compile("^" + re.escape(normalized), re.IGNORECASE)
    scores: Dict[str, float] = {}
    for candidate in candidates:
        for field, base in FIELD_SCORES.items():
            value = candidate.get(field)
            if not isinstance(value, str) or not value.strip():
                continue
            term = value.strip()
            score = base
            if prefix.search(term):
                score += PREFIX_BONUS
            if term.lower() == normalized:
                score += EXACT_BONUS
            if flexible.search(term):
                score += PATTERN_BONUS
            if score > scores.get(term, 0):
                scores[term] = score
    return scores


class SuggestionEngine:
    def __init__(self, store: ProductStore, cache: CacheBackend, *, ttl: Optional[int] = None) -> None:
        self.store = store
        self.cache = cache
        self.ttl = ttl or settings.suggest_cache_ttl_seconds

    async def _read_cache(self, key: str) -> Optional[List[str]]:
        try:
            payload = await asyncio.to_thread(self.cache.get, key)
        except CacheError as exc:
            logger.warning("Suggestion cache read failed for %r: %s", key, exc.detail)
            return None
        if not payload:
            return None
        try:
            cached = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt suggestion cache entry %r", key)
            return None
        if isinstance(cached, list) and all(isinstance(term, str) for term in cached):
            return cached
        logger.warning("Discarding malformed suggestion cache entry %r", key)
        return None

    async def _write_cache(self, key: str, suggestions: List[str]) -> None:
        try:
            await asyncio.to_thread(self.cache.set, key, json.dumps(suggestions, ensure_ascii=False), self.ttl)
        except CacheError as exc:
            logger.warning("Suggestion cache write failed for %r: %s", key, exc.detail)

    async def _precomputed(self, term: str) -> Dict[str, float]:
        if len(term) < MIN_PREFIX_LENGTH:
            return {}
        try:
            terms = await asyncio.to_thread(self.cache.top_terms, precomputed_key(term), MAX_SUGGESTIONS)
        except CacheError as exc:
            logger.warning("Precomputed suggestions unavailable for %r: %s", term, exc.detail)
            return {}
        # Rank bonus keeps the sorted set's own order through the merge.
        scores: Dict[str, float] = {}
        for rank, entry in enumerate(terms):
            scores.setdefault(entry, PRECOMPUTED_BASE_SCORE + len(terms) - rank)
        return scores

    async def _live(self, normalized: str) -> Dict[str, float]:
        candidates = await self.store.find(PatternQuery(normalized), limit=CANDIDATE_LIMIT, sort="title")
        return score_candidates(normalized, candidates)

    async def suggest(self, query: Optional[str]) -> List[str]:
        normalized = normalize_suggest_query(query)
        if not normalized:
            return []
        key = suggest_cache_key(normalized)
        cached = await self._read_cache(key)
        if cached is not None:
            return cached

        scores = await self._precomputed(current_term(normalized))
        source = "precomputed"
        if not scores:
            scores = await self._live(normalized)
            source = "live"
        suggestions = rank_terms(scores)
        logger.debug("suggest q=%r source=%s terms=%s", normalized, source, len(suggestions))
        await self._write_cache(key, suggestions)
        return suggestions
