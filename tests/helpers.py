"""CSV builders shared by the ingestion and API tests."""
from __future__ import annotations

from typing import Iterable, Sequence

from catalog_search.products import REQUIRED_COLUMNS


def csv_text(rows: Iterable[Sequence[str]], header: Sequence[str] = REQUIRED_COLUMNS, delimiter: str = ",") -> str:
    lines = [delimiter.join(header)]
    lines.extend(delimiter.join(row) for row in rows)
    return "\n".join(lines) + "\n"


def product_row(**values: str) -> list[str]:
    return [values.get(column, "") for column in REQUIRED_COLUMNS]
