"""CSV -> base table ingestion.

The CSV parse runs as a producer that fills a bounded queue with validated
batches while the consumer flushes the previous batch to the store. Invalid
rows are counted, sampled and dropped; unique-key conflicts are skipped.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from loguru import logger
from sqlalchemy import Table, delete

from database import Database
from database.models import ContentPerformance, PlayerEvent, PlayerEventStaging, PlayerSession
from processor.config import IMPORT_MODES
from processor.csv_reader import read_csv_rows
from processor.dedup import bulk_insert_ignore
from processor.errors import ConfigError, check_cancelled
from processor.row_validation import (
    IssueType,
    describe_impression_row,
    describe_player_row,
    impression_row_values,
    player_row_values,
    validate_impression_row,
    validate_player_row,
)

BATCH_SIZE = 5_000
_DONE = object()


@dataclass
class InvalidRowSample:
    line_number: int
    reason: str
    data: str


@dataclass
class IngestStats:
    source: str
    total: int = 0
    valid: int = 0
    skipped: int = 0
    batches: int = 0
    flushed: int = 0
    issue_counts: Counter = field(default_factory=Counter)
    invalid_samples: list[InvalidRowSample] = field(default_factory=list)
    sample_limit: int = 10

    def record_invalid(self, line_number: int, issues: list[IssueType], data: str) -> None:
        self.skipped += 1
        for issue in issues:
            self.issue_counts[issue.value] += 1
        if len(self.invalid_samples) < self.sample_limit:
            reason = ", ".join(issue.value for issue in issues)
            self.invalid_samples.append(InvalidRowSample(line_number, reason, data))

    def as_dict(self) -> dict:
        return {
            "source": self.source,
            "total": self.total,
            "valid": self.valid,
            "skipped": self.skipped,
            "batches": self.batches,
            "flushed": self.flushed,
            "issue_counts": dict(self.issue_counts),
            "invalid_samples": [s.__dict__ for s in self.invalid_samples],
        }


@dataclass
class IngestOptions:
    batch_size: int = BATCH_SIZE
    queue_depth: int = 2
    sample_limit: int = 10
    strict: bool = False
    cancel: asyncio.Event | None = None


# (record) -> (values | None, issues, description)
RowConverter = Callable[[dict[str, str]], tuple[dict | None, list[IssueType], str]]


async def _produce(
    path: Path,
    convert: RowConverter,
    queue: asyncio.Queue,
    stats: IngestStats,
    options: IngestOptions,
) -> None:
    batch: list[dict] = []
    try:
        for line_number, record in read_csv_rows(path):
            stats.total += 1
            values, issues, description = convert(record)
            if issues:
                stats.record_invalid(line_number, issues, description)
                continue
            stats.valid += 1
            batch.append(values)
            if len(batch) >= options.batch_size:
                check_cancelled(options.cancel, f"parse {path.name}")
                await queue.put(batch)
                await asyncio.sleep(0)
                batch = []
        if batch:
            await queue.put(batch)
    except Exception:
        # unblock the consumer; the error is re-raised through ``await producer``
        await queue.put(_DONE)
        raise
    await queue.put(_DONE)


async def _consume(
    db: Database,
    table: Table,
    queue: asyncio.Queue,
    stats: IngestStats,
    options: IngestOptions,
) -> None:
    while True:
        batch = await queue.get()
        if batch is _DONE:
            return
        check_cancelled(options.cancel, f"flush {table.name}")
        async with db.session() as session:
            await bulk_insert_ignore(session, table, batch, db.dialect, chunk_size=options.batch_size)
            await session.commit()
        stats.batches += 1
        stats.flushed += len(batch)
        logger.info("[ingest] {}: {} rows flushed (batch {})", table.name, stats.flushed, stats.batches)


async def ingest_csv(
    db: Database,
    path: str | Path,
    table: Table,
    convert: RowConverter,
    options: IngestOptions | None = None,
) -> IngestStats:
    """Stream ``path`` into ``table`` and return row counters."""
    options = options or IngestOptions()
    path = Path(path)
    stats = IngestStats(source=str(path), sample_limit=options.sample_limit)
    queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, options.queue_depth))

    producer = asyncio.create_task(_produce(path, convert, queue, stats, options))
    try:
        await _consume(db, table, queue, stats, options)
        await producer
    finally:
        if not producer.done():
            producer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await producer

    _log_invalid_rows(stats)
    logger.info("[ingest] {}: {} rows (skipped: {})", table.name, stats.valid, stats.skipped)
    return stats


def _log_invalid_rows(stats: IngestStats) -> None:
    if not stats.skipped:
        return
    logger.warning("[ingest] {} invalid rows in {}", stats.skipped, stats.source)
    for sample in stats.invalid_samples:
        logger.warning("  line {} {} - {}", sample.line_number, sample.reason, sample.data)
    if stats.skipped > len(stats.invalid_samples):
        logger.warning("  ... and {} more", stats.skipped - len(stats.invalid_samples))


# ── Feed-specific entry points ──


def player_table(mode: str) -> Table:
    if mode not in IMPORT_MODES:
        raise ConfigError(f"unknown import mode: {mode!r} (expected one of {IMPORT_MODES})")
    return PlayerEvent.__table__ if mode == "full" else PlayerEventStaging.__table__


def _player_converter(mode: str) -> RowConverter:
    def convert(record: dict[str, str]):
        issues = validate_player_row(record, mode)
        if issues:
            return None, issues, describe_player_row(record)
        return player_row_values(record), [], ""

    return convert


def _impression_converter(strict: bool) -> RowConverter:
    seen_keys: set[str] | None = set() if strict else None

    def convert(record: dict[str, str]):
        issues = validate_impression_row(record, strict=strict, seen_keys=seen_keys)
        if issues:
            return None, issues, describe_impression_row(record)
        return impression_row_values(record), [], ""

    return convert


async def import_player_history(
    db: Database,
    path: str | Path,
    mode: str = "full",
    options: IngestOptions | None = None,
) -> IngestStats:
    """player_history.csv -> player_history (full) or player_history_staging."""
    table = player_table(mode)
    logger.info("[ingest] player feed {} -> {} (mode={})", path, table.name, mode)
    return await ingest_csv(db, path, table, _player_converter(mode), options)


async def import_content_performance(
    db: Database,
    path: str | Path,
    options: IngestOptions | None = None,
) -> IngestStats:
    """content_performance.csv -> raw_content_performance."""
    options = options or IngestOptions()
    table = ContentPerformance.__table__
    logger.info("[ingest] impression feed {} -> {} (strict={})", path, table.name, options.strict)
    return await ingest_csv(db, path, table, _impression_converter(options.strict), options)


async def clear_base_tables(db: Database) -> None:
    """Delete base rows owned by a previous run (full refresh).

    Both player tables are emptied so a skip-raw-archival run never sees a
    stale archive left by an earlier full run.
    """
    async with db.session() as session:
        for model in (PlayerSession, ContentPerformance, PlayerEvent, PlayerEventStaging):
            await session.execute(delete(model))
        await session.commit()
