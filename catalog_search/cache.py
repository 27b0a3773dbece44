"""Caching helpers with Redis primary and in-memory fallback."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Protocol

import redis

from .config import settings
from .errors import CacheError

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl: int) -> None: ...

    def delete(self, key: str) -> bool: ...

    def top_terms(self, key: str, count: int) -> List[str]: ...


@dataclass
class RedisCache:
    client: redis.Redis

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except redis.RedisError as exc:
            raise CacheError(f"Redis GET {key} failed: {exc}") from exc

    def set(self, key: str, value: str, ttl: int) -> None:
        try:
            self.client.set(key, value, ex=ttl)
        except redis.RedisError as exc:
            raise CacheError(f"Redis SET {key} failed: {exc}") from exc

    def delete(self, key: str) -> bool:
        try:
            return self.client.delete(key) == 1
        except redis.RedisError as exc:
            raise CacheError(f"Redis DEL {key} failed: {exc}") from exc

    def top_terms(self, key: str, count: int) -> List[str]:
        try:
            return list(self.client.zrevrange(key, 0, count - 1))
        except redis.RedisError as exc:
            raise CacheError(f"Redis ZREVRANGE {key} failed: {exc}") from exc


class InMemoryCache:
    def __init__(self) -> None:
        self._store: Dict[str, tuple[float, str]] = {}
        self._sorted: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._store.get(key)
            if not value:
                return None
            expires_at, payload = value
            if expires_at < time.time():
                self._store.pop(key, None)
                return None
            return payload

    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._store[key] = (time.time() + ttl, value)

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._store.pop(key, None) is not None
            return self._sorted.pop(key, None) is not None or removed

    def add_terms(self, key: str, scores: Mapping[str, float]) -> None:
        """Increment members of a sorted set, like ``ZINCRBY``."""
        with self._lock:
            members = self._sorted.setdefault(key, {})
            for term, score in scores.items():
                members[term] = members.get(term, 0.0) + score

    def top_terms(self, key: str, count: int) -> List[str]:
        with self._lock:
            members = self._sorted.get(key, {})
            # Redis orders equal scores by member, descending.
            ranked = sorted(members.items(), key=lambda item: (item[1], item[0]), reverse=True)
            return [term for term, _ in ranked[:count]]


_cache: CacheBackend | None = None


def get_cache() -> CacheBackend:
    global _cache
    if _cache is not None:
        return _cache
    try:
        client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=True,
        )
        client.ping()
        logger.info("Using Redis cache at %s:%s", settings.redis_host, settings.redis_port)
        _cache = RedisCache(client)
    except redis.RedisError:
        logger.warning("Redis not available, using in-memory cache")
        _cache = InMemoryCache()
    return _cache
