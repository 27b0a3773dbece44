"""Streaming CSV ingestion with bounded-concurrency bulk upserts.

Rows are pulled lazily from the file in a worker thread, normalized into
upserts and collected into batches. Each full batch is handed to
:class:`BulkDispatcher`, which runs it as a background task. At most
``max_in_flight`` writes are outstanding; when all slots are taken the parse
loop waits for one to finish. That wait is the only backpressure between the
file and the store.

On a parse error or a rejected write the loop stops pulling rows, every
dispatched write is awaited, and the first failure is reported. The upload
file is removed exactly once whatever happens.
"""
from __future__ import annotations

import asyncio
import csv
import io
import itertools
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from typing import Iterable, Iterator, List, Optional, Set, TextIO, Tuple, Union

from .config import settings
from .csv_validator import CsvLayout, validate_csv
from .errors import CsvValidationError, ProcessingError
from .products import REQUIRED_COLUMNS, BatchOperation, RawCsvRow, build_operation
from .store import ProductStore

logger = logging.getLogger(__name__)

# Rows parsed per worker-thread hop; the event loop runs between hops.
PARSE_CHUNK_ROWS = 1000


@dataclass(frozen=True)
class IngestOk:
    total_indexed: int


@dataclass(frozen=True)
class IngestRejected:
    error: CsvValidationError


@dataclass(frozen=True)
class IngestFailed:
    error: ProcessingError


IngestOutcome = Union[IngestOk, IngestRejected, IngestFailed]


def iter_rows(stream: TextIO, layout: CsvLayout) -> Iterator[RawCsvRow]:
    """Yield one dict of the twelve raw columns per non-blank data line."""
    reader = csv.reader(stream, delimiter=layout.delimiter)
    positions: Optional[dict[str, int]] = None
    for fields in reader:
        if not any(field.strip() for field in fields):
            continue
        if positions is None:
            header = [field.strip().lower() for field in fields]
            positions = {}
            for index, name in enumerate(header):
                positions.setdefault(name, index)
            continue
        yield {
            column: fields[positions[column]].strip()
            if column in positions and positions[column] < len(fields)
            else ""
            for column in REQUIRED_COLUMNS
        }


def read_operations(rows: Iterator[RawCsvRow], count: int) -> Tuple[List[BatchOperation], bool]:
    """Pull up to ``count`` rows and normalize them; runs in a worker thread.

    Returns the indexable operations and whether ``rows`` ran out.
    """
    operations: List[BatchOperation] = []
    consumed = 0
    for row in itertools.islice(rows, count):
        consumed += 1
        operation = build_operation(row)
        if operation is not None:
            operations.append(operation)
    return operations, consumed < count


class BulkDispatcher:
    """Runs bulk upserts as tasks, never more than ``max_in_flight`` at once."""

    def __init__(self, store: ProductStore, max_in_flight: int) -> None:
        self._store = store
        self._slots = asyncio.Semaphore(max_in_flight)
        self._pending: Set[asyncio.Task] = set()
        self.first_error: Optional[BaseException] = None
        self.dispatched = 0
        self.created = 0
        self.updated = 0

    @property
    def failed(self) -> bool:
        return self.first_error is not None

    async def submit(self, batch: List[BatchOperation]) -> None:
        await self._slots.acquire()
        self.dispatched += 1
        logger.debug("dispatch batch=%s size=%s in_flight=%s", self.dispatched, len(batch), len(self._pending) + 1)
        task = asyncio.create_task(self._write(self.dispatched, batch))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        # Let the write get on the wire before parsing resumes.
        await asyncio.sleep(0)

    async def _write(self, number: int, batch: List[BatchOperation]) -> None:
        try:
            result = await self._store.bulk_upsert(batch)
            self.created += result.upserted
            self.updated += result.modified
        except Exception as exc:
            logger.error("Bulk write %s (%s ops) failed: %s", number, len(batch), exc)
            if self.first_error is None:
                self.first_error = exc
        finally:
            self._slots.release()

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))


class IngestionPipeline:
    def __init__(
        self,
        store: ProductStore,
        *,
        batch_size: Optional[int] = None,
        max_in_flight: Optional[int] = None,
    ) -> None:
        self.store = store
        self.batch_size = batch_size or settings.ingest_batch_size
        self.max_in_flight = max_in_flight or settings.ingest_max_in_flight

    async def run(self, rows: Iterable[RawCsvRow]) -> int:
        """Upsert every indexable row and return how many were indexed.

        Raises :class:`ProcessingError` after all dispatched writes settle.
        """
        dispatcher = BulkDispatcher(self.store, self.max_in_flight)
        source = iter(rows)
        chunk_size = min(self.batch_size, PARSE_CHUNK_ROWS)
        buffer: List[BatchOperation] = []
        total = 0
        exhausted = False
        try:
            while not exhausted and not dispatcher.failed:
                operations, exhausted = await asyncio.to_thread(read_operations, source, chunk_size)
                for operation in operations:
                    buffer.append(operation)
                    total += 1
                    if len(buffer) >= self.batch_size:
                        batch, buffer = buffer, []
                        await dispatcher.submit(batch)
                        if dispatcher.failed:
                            break
            if buffer and not dispatcher.failed:
                await dispatcher.submit(buffer)
        except (csv.Error, UnicodeError, ValueError, OSError) as exc:
            logger.error("CSV parsing stopped after %s rows: %s", total, exc)
            await dispatcher.drain()
            raise ProcessingError(f"Failed to parse CSV: {exc}", exc) from exc

        await dispatcher.drain()
        if dispatcher.first_error is not None:
            error = dispatcher.first_error
            raise ProcessingError(f"Failed to write products to the store: {error}", error) from error
        logger.info(
            "Ingested %s rows in %s bulk requests (%s created, %s updated)",
            total,
            dispatcher.dispatched,
            dispatcher.created,
            dispatcher.updated,
        )
        return total


async def ingest_file(
    path: Union[str, Path],
    store: ProductStore,
    *,
    content_type: Optional[str] = None,
    remove: bool = True,
    batch_size: Optional[int] = None,
    max_in_flight: Optional[int] = None,
) -> IngestOutcome:
    """Validate and ingest the CSV at ``path``; delete it afterwards when ``remove``."""
    path = Path(path)
    pipeline = IngestionPipeline(store, batch_size=batch_size, max_in_flight=max_in_flight)
    started = perf_counter()
    try:
        with path.open("rb") as raw:
            try:
                layout = validate_csv(raw, size=os.fstat(raw.fileno()).st_size, content_type=content_type)
            except CsvValidationError as exc:
                logger.warning("Rejected upload %s: %s", path.name, exc.detail)
                return IngestRejected(exc)
            raw.seek(0)
            with io.TextIOWrapper(raw, encoding="utf-8-sig", errors="replace", newline="") as text:
                total = await pipeline.run(iter_rows(text, layout))
    except ProcessingError as exc:
        return IngestFailed(exc)
    except OSError as exc:
        logger.exception("Could not read upload %s", path)
        return IngestFailed(ProcessingError(f"Could not read the uploaded file: {exc}", exc))
    finally:
        if remove:
            path.unlink(missing_ok=True)
    logger.info("Indexed %s products from %s in %.2fms", total, path.name, (perf_counter() - started) * 1000)
    return IngestOk(total_indexed=total)
