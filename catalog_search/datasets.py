"""Arbitrary key/value datasets kept in the cache under ``{prefix}:{key}``."""
from __future__ import annotations

import asyncio
import logging
import secrets
import string
from typing import Optional

from .cache import CacheBackend
from .config import settings
from .errors import DatasetNotFoundError
from .models import Dataset, DatasetKey

logger = logging.getLogger(__name__)

_KEY_ALPHABET = string.digits + string.ascii_lowercase
GENERATED_KEY_LENGTH = 5


def generate_key() -> str:
    return "".join(secrets.choice(_KEY_ALPHABET) for _ in range(GENERATED_KEY_LENGTH))


class DatasetService:
    def __init__(self, cache: CacheBackend, *, default_prefix: Optional[str] = None, default_ttl: Optional[int] = None) -> None:
        self.cache = cache
        self.default_prefix = default_prefix or settings.dataset_default_prefix
        self.default_ttl = default_ttl or settings.dataset_default_ttl_seconds

    async def save(
        self,
        value: str,
        *,
        key: Optional[str] = None,
        prefix: Optional[str] = None,
        ttl: Optional[int] = None,
    ) -> Dataset:
        dataset = Dataset(
            prefix=prefix or self.default_prefix,
            key=key or generate_key(),
            value=value,
            ttl=ttl or self.default_ttl,
        )
        await asyncio.to_thread(self.cache.set, dataset.full_key, dataset.value, dataset.ttl)
        logger.info("Saved dataset %s ttl=%ss", dataset.full_key, dataset.ttl)
        return dataset

    async def get(self, prefix: Optional[str], key: str) -> str:
        full_key = DatasetKey(prefix=prefix or self.default_prefix, key=key).full_key
        value = await asyncio.to_thread(self.cache.get, full_key)
        if not value:
            raise DatasetNotFoundError(full_key)
        return value

    async def delete(self, prefix: str, key: str) -> bool:
        await self.get(prefix, key)
        removed = await asyncio.to_thread(self.cache.delete, DatasetKey(prefix=prefix, key=key).full_key)
        logger.info("Deleted dataset %s:%s removed=%s", prefix, key, removed)
        return removed
