"""Application configuration and constants."""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value is not None else default


@dataclass(frozen=True)
class Settings:
    """Simple settings container with environment variable overrides."""

    es_host: str = _get_env("ES_HOST", "http://localhost:9200")
    es_index: str = _get_env("ES_INDEX", "products")
    es_username: str | None = os.getenv("ES_USERNAME")
    es_password: str | None = os.getenv("ES_PASSWORD")
    es_request_timeout: float = float(_get_env("ES_REQUEST_TIMEOUT", "30"))
    redis_host: str = _get_env("REDIS_HOST", "localhost")
    redis_port: int = int(_get_env("REDIS_PORT", "6379"))
    redis_username: str | None = os.getenv("REDIS_USERNAME")
    redis_password: str | None = os.getenv("REDIS_PASSWORD")
    search_cache_ttl_seconds: int = int(_get_env("SEARCH_CACHE_TTL_SECONDS", "60"))
    suggest_cache_ttl_seconds: int = int(_get_env("SUGGEST_CACHE_TTL_SECONDS", "30"))
    dataset_default_ttl_seconds: int = int(_get_env("DATASET_DEFAULT_TTL_SECONDS", "3600"))
    dataset_default_prefix: str = _get_env("DATASET_DEFAULT_PREFIX", "dataset")
    ingest_batch_size: int = int(_get_env("INGEST_BATCH_SIZE", "20000"))
    ingest_max_in_flight: int = int(_get_env("INGEST_MAX_IN_FLIGHT", "10"))
    upload_dir: str = _get_env("UPLOAD_DIR", os.path.join(tempfile.gettempdir(), "catalog-search-upload"))
    max_upload_bytes: int = int(_get_env("MAX_UPLOAD_BYTES", str(1024 * 1024 * 1024)))
    log_level: str = _get_env("LOG_LEVEL", "INFO")


settings = Settings()
