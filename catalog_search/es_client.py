"""Elasticsearch client and product store factories.

The rest of the code works against the official synchronous client. Blocking
calls are wrapped via ``asyncio.to_thread`` by the store.
"""
from __future__ import annotations

import logging
from functools import lru_cache

from elasticsearch import Elasticsearch

from .config import settings
from .es_store import ElasticsearchProductStore

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_client() -> Elasticsearch:
    logger.info("Connecting to Elasticsearch at %s (index %s)", settings.es_host, settings.es_index)
    basic_auth = (settings.es_username, settings.es_password or "") if settings.es_username else None
    return Elasticsearch(
        settings.es_host,
        basic_auth=basic_auth,
        request_timeout=settings.es_request_timeout,
        retry_on_timeout=True,
    )


def get_product_store() -> ElasticsearchProductStore:
    return ElasticsearchProductStore(get_client(), settings.es_index)
