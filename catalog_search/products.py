"""Product record shape, row normalization and identity rules.

A CSV row arrives as twelve raw strings. :func:`normalize_row` turns it into a
patch holding only the fields that survived parsing; absent values are
omitted rather than written as ``None``. :func:`identity_filter` then decides
which document the patch belongs to: ``sku`` when present, otherwise the
non-empty subset of ``title``/``brand``/``category``/``product_type``.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Mapping, Optional

REQUIRED_COLUMNS: tuple[str, ...] = (
    "id",
    "title",
    "brand",
    "category",
    "product_type",
    "description",
    "price",
    "currency",
    "stock",
    "sku",
    "rating",
    "created_at",
)

STRING_FIELDS = ("title", "brand", "category", "product_type", "description", "currency", "sku")
FLOAT_FIELDS = ("price", "rating")
INT_FIELDS = ("stock",)
DATE_FIELDS = ("created_at",)

IDENTITY_FIELDS = ("title", "brand", "category", "product_type")

# Weighted text index. Ranking order depends on these exact weights.
SEARCH_FIELD_WEIGHTS: Dict[str, int] = {
    "title": 10,
    "category": 6,
    "brand": 4,
    "sku": 3,
    "product_type": 2,
}

# Leading-number rules: "12.5kg" -> 12.5, "7 units" -> 7.
_FLOAT_PREFIX_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_INT_PREFIX_RE = re.compile(r"^[+-]?\d+")
_FLOAT_SPECIAL_RE = re.compile(r"^[+-]?(?:inf|infinity|nan)\b", re.IGNORECASE)

# Integer fields are stored as a signed 64-bit ``long``.
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

RawCsvRow = Dict[str, str]
Patch = Dict[str, Any]


@dataclass(frozen=True)
class BatchOperation:
    """One upsert instruction: match ``filter``, set ``patch``."""

    filter: Dict[str, str]
    patch: Patch


def _clean_str(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_float(value: Optional[str]) -> Optional[float]:
    text = _clean_str(value)
    if text is None or _FLOAT_SPECIAL_RE.match(text):
        return None
    match = _FLOAT_PREFIX_RE.match(text)
    if not match:
        return None
    try:
        number = float(match.group(0))
    except (OverflowError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_int(value: Optional[str]) -> Optional[int]:
    text = _clean_str(value)
    if text is None:
        return None
    match = _INT_PREFIX_RE.match(text)
    if not match:
        return None
    try:
        number = int(match.group(0), 10)
    except ValueError:
        # Longer than the interpreter's digit limit.
        return None
    return number if INT64_MIN <= number <= INT64_MAX else None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO-8601 dates and datetimes; naive values are taken as UTC."""
    text = _clean_str(value)
    if text is None:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(text), time())
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_row(row: Mapping[str, Optional[str]]) -> Patch:
    """Build the patch for one raw row, omitting every absent field."""
    patch: Patch = {}
    for field in STRING_FIELDS:
        value = _clean_str(row.get(field))
        if value is not None:
            patch[field] = value
    for field in FLOAT_FIELDS:
        number = parse_float(row.get(field))
        if number is not None:
            patch[field] = number
    for field in INT_FIELDS:
        integer = parse_int(row.get(field))
        if integer is not None:
            patch[field] = integer
    for field in DATE_FIELDS:
        stamp = parse_timestamp(row.get(field))
        if stamp is not None:
            patch[field] = stamp
    return patch


def identity_filter(patch: Mapping[str, Any]) -> Dict[str, str]:
    """Return the upsert filter for ``patch``; empty means not indexable."""
    sku = patch.get("sku")
    if sku:
        return {"sku": sku}
    return {field: patch[field] for field in IDENTITY_FIELDS if patch.get(field)}


def build_operation(row: Mapping[str, Optional[str]]) -> Optional[BatchOperation]:
    """Normalize a raw row into an upsert, or ``None`` when it must be dropped."""
    patch = normalize_row(row)
    if not patch:
        return None
    filter_ = identity_filter(patch)
    if not filter_:
        return None
    return BatchOperation(filter=filter_, patch=patch)
