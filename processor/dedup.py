"""Duplicate-safe bulk INSERT -- unique-key conflicts are skipped, not raised.

Used by ingestion, session collapse and the star-schema builder so that
re-running a stage against the same input is a no-op for existing keys.
"""

from typing import Iterable

from sqlalchemy import Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from processor.errors import ConfigError


def insert_ignore(table: Table, dialect: str):
    """INSERT ... ON CONFLICT DO NOTHING for the given dialect."""
    if dialect == "sqlite":
        return sqlite_insert(table).on_conflict_do_nothing()
    if dialect == "postgresql":
        return pg_insert(table).on_conflict_do_nothing()
    raise ConfigError(f"unsupported dialect for bulk insert: {dialect}")


async def bulk_insert_ignore(
    session: AsyncSession,
    table: Table,
    rows: Iterable[dict],
    dialect: str,
    chunk_size: int = 5_000,
) -> int:
    """Insert ``rows`` in executemany chunks. Returns the number of rows submitted."""
    submitted = 0
    chunk: list[dict] = []
    stmt = insert_ignore(table, dialect)
    for row in rows:
        chunk.append(row)
        if len(chunk) >= chunk_size:
            await session.execute(stmt, chunk)
            submitted += len(chunk)
            chunk = []
    if chunk:
        await session.execute(stmt, chunk)
        submitted += len(chunk)
    return submitted
