"""Error taxonomy shared by ingestion, search and the dataset store."""
from __future__ import annotations

from typing import Sequence


class CatalogError(Exception):
    """Base error carrying a human-readable ``detail``."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class CsvValidationError(CatalogError):
    """Upload rejected before any row was parsed or written."""


class EmptyFileError(CsvValidationError):
    def __init__(self) -> None:
        super().__init__("The uploaded file is empty")


class InvalidMediaTypeError(CsvValidationError):
    def __init__(self, content_type: str) -> None:
        super().__init__(f"Invalid file type {content_type!r}; a CSV or plain text file is required")
        self.content_type = content_type


class BinaryContentError(CsvValidationError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"The uploaded file looks binary: {reason}")


class NoHeadersError(CsvValidationError):
    def __init__(self) -> None:
        super().__init__("The CSV file has no header row")


class MissingColumnsError(CsvValidationError):
    def __init__(self, columns: Sequence[str]) -> None:
        self.columns = list(columns)
        super().__init__("Missing required columns: " + ", ".join(self.columns))


class ProcessingError(CatalogError):
    """Row parsing or a bulk write failed after validation succeeded."""

    def __init__(self, detail: str, cause: BaseException | None = None) -> None:
        super().__init__(detail)
        self.cause = cause


class CacheError(CatalogError):
    """Cache backend could not be reached or rejected the command."""


class DatasetNotFoundError(CatalogError):
    def __init__(self, full_key: str) -> None:
        super().__init__(f"Redis key {full_key} not found or expired")
        self.full_key = full_key
