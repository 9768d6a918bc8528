"""Async SQLite connection manager for the persisted watchlist.

One aiosqlite connection per process, WAL journal, schema created on
connect. Writes go through transaction(), which commits on success and
rolls back and raises WatchlistStoreError on any driver failure.
"""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Self

import aiosqlite

from forex.exceptions import WatchlistStoreError
from forex.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS watch_entries (
    id TEXT PRIMARY KEY,
    pair_string TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    sort_order INTEGER NOT NULL,
    date_added TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_watch_entries_order
    ON watch_entries(sort_order);
"""


class WatchlistDatabase:
    """Owns the aiosqlite connection backing WatchlistStore.

    ``":memory:"`` gives a throwaway database (tests, headless trials).

    Usage:
        async with WatchlistDatabase("data/watchlist.db") as database:
            store = WatchlistStore(database)
            entries = await store.list_entries()
    """

    def __init__(self, db_path: str = "data/watchlist.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def db(self) -> aiosqlite.Connection:
        """The open connection. Raises RuntimeError before connect()."""
        if self._connection is None:
            raise RuntimeError("Watchlist database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the file (creating its directory), set pragmas, apply the schema."""
        if self._connection is not None:
            return

        if self._db_path != ":memory:":
            parent = os.path.dirname(self._db_path)
            if parent:
                os.makedirs(parent, exist_ok=True)

        try:
            connection = await aiosqlite.connect(self._db_path)
        except aiosqlite.Error as e:
            raise WatchlistStoreError(f"Cannot open watchlist database {self._db_path}: {e}") from e

        connection.row_factory = aiosqlite.Row
        self._connection = connection
        try:
            await connection.execute("PRAGMA journal_mode=WAL")
            await connection.execute("PRAGMA synchronous=NORMAL")
            await self._apply_schema()
        except BaseException:
            await self.close()
            raise

        logger.info("watchlist_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        if self._connection is None:
            return
        connection, self._connection = self._connection, None
        await connection.close()
        logger.info("watchlist_db_closed", db_path=self._db_path)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run writes atomically.

        Commits when the block exits normally. On aiosqlite.Error the
        transaction is rolled back and WatchlistStoreError is raised.
        """
        connection = self.db
        try:
            yield connection
            await connection.commit()
        except aiosqlite.Error as e:
            await connection.rollback()
            raise WatchlistStoreError(str(e)) from e

    async def _apply_schema(self) -> None:
        async with self.transaction() as connection:
            await connection.executescript(_SCHEMA_SQL)

        cursor = await self.db.execute("SELECT MAX(version) FROM schema_version")
        row = await cursor.fetchone()
        version = row[0] if row is not None else None

        if version is None:
            async with self.transaction() as connection:
                await connection.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
                )
            logger.info("schema_version_set", version=SCHEMA_VERSION)
        elif version > SCHEMA_VERSION:
            raise WatchlistStoreError(
                f"Watchlist database {self._db_path} has schema version {version}, "
                f"this build supports {SCHEMA_VERSION}"
            )

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
