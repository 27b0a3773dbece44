"""FastAPI application wiring ingestion, search and the dataset store."""
from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse

from .cache import CacheBackend, get_cache
from .config import settings
from .datasets import DatasetService
from .errors import DatasetNotFoundError, InvalidMediaTypeError
from .es_client import get_client, get_product_store
from .indexing import ensure_index, index_is_empty
from .ingest import IngestFailed, IngestOk, IngestRejected, ingest_file
from .models import Dataset, DatasetKey, IngestResponse, SaveDatasetRequest, SearchResponse, SuggestResponse
from .search import SearchEngine
from .store import ProductStore
from .suggest import SuggestionEngine

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVEL = logging.getLevelName(settings.log_level.upper())

# ``force=True`` replaces uvicorn's default handlers.
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, force=True)
for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "elastic_transport"):
    logging.getLogger(name).setLevel(LOG_LEVEL)

logger = logging.getLogger(__name__)
logger.info("Logging configured at %s", settings.log_level.upper())

UPLOAD_CHUNK_BYTES = 1024 * 1024

app = FastAPI(title="Product Catalog Search Service")


def get_store() -> ProductStore:
    return get_product_store()


def get_cache_backend() -> CacheBackend:
    return get_cache()


def get_search_engine(
    store: ProductStore = Depends(get_store), cache: CacheBackend = Depends(get_cache_backend)
) -> SearchEngine:
    return SearchEngine(store, cache)


def get_suggestion_engine(
    store: ProductStore = Depends(get_store), cache: CacheBackend = Depends(get_cache_backend)
) -> SuggestionEngine:
    return SuggestionEngine(store, cache)


def get_dataset_service(cache: CacheBackend = Depends(get_cache_backend)) -> DatasetService:
    return DatasetService(cache)


@app.on_event("startup")
async def startup_event() -> None:
    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
    await ensure_index(get_client())


@app.exception_handler(DatasetNotFoundError)
async def dataset_not_found_handler(_request, exc: DatasetNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": exc.detail})


@app.get("/health")
async def health() -> dict:
    es = get_client()
    status = await asyncio.to_thread(es.cluster.health)
    empty = await index_is_empty(es)
    return {
        "elasticsearch": status.get("status"),
        "index": settings.es_index,
        "empty": empty,
    }


def _spool_upload(upload: UploadFile) -> tuple[Path, int]:
    """Copy the upload to ``UPLOAD_DIR`` in chunks; returns path and size."""
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(upload.filename or "").suffix or ".csv"
    target = upload_dir / f"{uuid.uuid4().hex}{suffix}"
    written = 0
    try:
        with target.open("wb") as out:
            while chunk := upload.file.read(UPLOAD_CHUNK_BYTES):
                written += len(chunk)
                if written > settings.max_upload_bytes:
                    raise HTTPException(status_code=413, detail="Uploaded file is too large")
                out.write(chunk)
    except BaseException:
        target.unlink(missing_ok=True)
        raise
    return target, written


@app.post("/index/load", response_model=IngestResponse)
async def load_index(file: UploadFile = File(...), store: ProductStore = Depends(get_store)) -> IngestResponse:
    path, size = await asyncio.to_thread(_spool_upload, file)
    logger.info("Received upload %s (%s bytes)", file.filename, size)
    outcome = await ingest_file(path, store, content_type=file.content_type)
    if isinstance(outcome, IngestOk):
        return IngestResponse(ok=True, totalIndexed=outcome.total_indexed)
    if isinstance(outcome, IngestRejected):
        status = 415 if isinstance(outcome.error, InvalidMediaTypeError) else 400
        raise HTTPException(status_code=status, detail=outcome.error.detail)
    if isinstance(outcome, IngestFailed):
        raise HTTPException(status_code=500, detail=outcome.error.detail)
    raise TypeError(f"Unexpected ingestion outcome {outcome!r}")


@app.get("/search", response_model=SearchResponse, response_model_exclude_none=True)
async def search(
    q: str = Query("", description="Search query"),
    page: int = 1,
    limit: int = 20,
    engine: SearchEngine = Depends(get_search_engine),
) -> SearchResponse:
    return await engine.search(q, page, limit)


@app.get("/search/suggest", response_model=SuggestResponse)
async def suggest(
    q: str = Query("", description="Partial query"),
    engine: SuggestionEngine = Depends(get_suggestion_engine),
) -> SuggestResponse:
    return SuggestResponse(suggestions=await engine.suggest(q))


@app.post("/redis/dataset", response_model=Dataset)
async def create_dataset(body: SaveDatasetRequest, service: DatasetService = Depends(get_dataset_service)) -> Dataset:
    return await service.save(body.value, key=body.key, prefix=body.prefix, ttl=body.ttl)


@app.get("/redis/dataset")
async def get_dataset(
    prefix: str = Query(...),
    key: str = Query(...),
    service: DatasetService = Depends(get_dataset_service),
) -> str:
    return await service.get(prefix, key)


@app.delete("/redis/dataset")
async def delete_dataset(body: DatasetKey, service: DatasetService = Depends(get_dataset_service)) -> bool:
    return await service.delete(body.prefix, body.key)
