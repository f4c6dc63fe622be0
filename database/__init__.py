"""Database engine/session bootstrap for the signage pipeline.

The engine is owned by an explicit ``Database`` handle that every pipeline
stage receives as its first argument. ``open_database()`` acquires it at
process start and always disposes it on the way out.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database.models import Base

DATABASE_URL = os.getenv(
    "SIGNAGE_DATABASE_URL",
    "sqlite+aiosqlite:///signage.db",
)


class Database:
    """Async engine + session factory pair."""

    def __init__(self, url: str = DATABASE_URL, echo: bool = False):
        self.url = url
        connect_args = {"timeout": 30} if url.startswith("sqlite") else {}
        self.engine = create_async_engine(url, echo=echo, connect_args=connect_args)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def init(self) -> None:
        """Create tables (idempotent)."""
        async with self.engine.begin() as conn:
            if self.dialect == "sqlite":
                # SQLite performance pragmas
                await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
                await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
                await conn.exec_driver_sql("PRAGMA cache_size=10000")
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


@asynccontextmanager
async def open_database(url: str | None = None) -> AsyncIterator[Database]:
    """Open, initialise and always dispose a ``Database``."""
    db = Database(url or DATABASE_URL)
    try:
        await db.init()
        yield db
    finally:
        await db.dispose()
