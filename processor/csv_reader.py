"""Lenient CSV reading for the player and impression feeds.

Rows come back lazily as ``(line_number, record)`` pairs. The reader strips a
BOM, trims every field, skips blank lines and tolerates ragged rows: missing
columns read as ``""`` and surplus columns are dropped.
"""

from __future__ import annotations

import csv
import math
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterator

from processor.errors import SourceFileError

# Free-text fields can exceed the 128 KiB default limit.
csv.field_size_limit(min(sys.maxsize, 2**31 - 1))

_FALLBACK_FORMATS = (
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
)


def read_csv_rows(path: str | Path) -> Iterator[tuple[int, dict[str, str]]]:
    """Yield ``(line_number, {column: value})`` for every non-blank data row."""
    path = Path(path)
    try:
        handle = open(path, encoding="utf-8-sig", newline="")
    except OSError as exc:
        raise SourceFileError(f"cannot open {path}: {exc}") from exc

    with handle:
        reader = csv.reader(handle, skipinitialspace=True, strict=False)
        try:
            header: list[str] | None = None
            for fields in reader:
                if not any(f.strip() for f in fields):
                    continue
                if header is None:
                    header = [f.strip() for f in fields]
                    continue
                record = {
                    column: (fields[i].strip() if i < len(fields) else "")
                    for i, column in enumerate(header)
                }
                yield reader.line_num, record
        except (csv.Error, UnicodeDecodeError) as exc:
            raise SourceFileError(f"cannot parse {path} near line {reader.line_num}: {exc}") from exc


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a calendar timestamp; aware values are normalised to naive UTC.

    Returns None for empty or unparseable input.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = None
        for fmt in _FALLBACK_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def is_valid_timestamp(value: str | None) -> bool:
    return parse_timestamp(value) is not None


def to_float(value: str | None, default: float = 0.0) -> float:
    """Lenient float parse; blank, garbage and non-finite values give ``default``."""
    if value is None or not value.strip():
        return default
    try:
        number = float(value)
    except ValueError:
        return default
    if not math.isfinite(number):
        return default
    return number


def to_int(value: str | None, default: int = 0) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        number = to_float(value, default=float(default))
        return int(number)


def to_bool(value: str | None) -> bool:
    return value == "true"
