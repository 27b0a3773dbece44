"""Upload sniffing: reject malformed or incompatible CSV files before parsing."""
from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional

from .errors import (
    BinaryContentError,
    EmptyFileError,
    InvalidMediaTypeError,
    MissingColumnsError,
    NoHeadersError,
)
from .products import REQUIRED_COLUMNS

logger = logging.getLogger(__name__)

PREVIEW_BYTES = 32 * 1024
MAX_SUSPICIOUS_RATIO = 0.10

CSV_MEDIA_TYPES = {
    "text/csv",
    "text/x-csv",
    "text/plain",
    "application/csv",
    "application/x-csv",
    "application/vnd.ms-excel",
}
TEXT_MEDIA_PREFIX = "text/"

# Tab, LF, VT, FF, CR plus printable ASCII.
_ALLOWED_BYTES = frozenset({9, 10, 11, 12, 13, *range(32, 127)})


@dataclass(frozen=True)
class CsvLayout:
    delimiter: str
    headers: tuple[str, ...]


def check_media_type(content_type: Optional[str]) -> None:
    if not content_type:
        return
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type in CSV_MEDIA_TYPES or media_type.startswith(TEXT_MEDIA_PREFIX):
        return
    raise InvalidMediaTypeError(content_type)


def check_binary(preview: bytes) -> None:
    if b"\x00" in preview:
        raise BinaryContentError("null byte found")
    if not preview:
        return
    suspicious = sum(1 for byte in preview if byte not in _ALLOWED_BYTES)
    ratio = suspicious / len(preview)
    if ratio > MAX_SUSPICIOUS_RATIO:
        raise BinaryContentError(f"{ratio:.0%} of sampled bytes are not text")


def _clean_header(field: str) -> str:
    return field.strip().strip('"').strip()


def detect_delimiter(line: str) -> str:
    return ";" if line.count(";") > line.count(",") else ","


def sniff_header(preview: bytes) -> CsvLayout:
    if preview.startswith(codecs.BOM_UTF8):
        preview = preview[len(codecs.BOM_UTF8):]
    text = preview.decode("utf-8", errors="replace")
    header_line = next((line for line in text.splitlines() if line.strip()), None)
    if header_line is None:
        raise NoHeadersError()
    delimiter = detect_delimiter(header_line)
    headers = tuple(name for name in (_clean_header(field) for field in header_line.split(delimiter)) if name)
    if not headers:
        raise NoHeadersError()
    present = {header.lower() for header in headers}
    missing = [column for column in REQUIRED_COLUMNS if column not in present]
    if missing:
        raise MissingColumnsError(missing)
    return CsvLayout(delimiter=delimiter, headers=headers)


def validate_csv(stream: BinaryIO, size: Optional[int] = None, content_type: Optional[str] = None) -> CsvLayout:
    """Validate an upload and return its delimiter and header row.

    Only a bounded preview is read. The caller is responsible for rewinding
    ``stream`` before parsing rows.
    """
    if size == 0:
        raise EmptyFileError()
    check_media_type(content_type)
    preview = stream.read(PREVIEW_BYTES)
    if not preview:
        raise EmptyFileError()
    check_binary(preview)
    layout = sniff_header(preview)
    logger.debug("CSV layout delimiter=%r headers=%s", layout.delimiter, layout.headers)
    return layout
