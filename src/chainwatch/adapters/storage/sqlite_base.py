"""Connection management shared by the SQLite-backed stores."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from chainwatch.core.errors import StorageError

MEMORY = ":memory:"


class AsyncConnectionManager:
    """Manages aiosqlite connections for one database file.

    The schema is applied once, on first use. File databases run in WAL mode
    and get a fresh connection per operation. ``:memory:`` databases are
    connection-scoped in SQLite, so a single persistent connection is kept.

    Args:
        db_path: Database file, or ``:memory:``.
        schema: SQL script creating tables and indexes.
    """

    def __init__(self, db_path: str | Path, schema: str) -> None:
        self._db_path = str(db_path)
        self._schema = schema
        self._initialized = False
        self._init_lock: asyncio.Lock | None = None
        self._persistent_conn: aiosqlite.Connection | None = None

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def is_memory(self) -> bool:
        return self._db_path == MEMORY

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the initialization lock (lazy to avoid event loop issues)."""
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        return self._init_lock

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        async with self._get_lock():
            if self._initialized:
                return
            if self.is_memory:
                self._persistent_conn = await aiosqlite.connect(MEMORY)
                await self._persistent_conn.executescript(self._schema)
            else:
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
                async with aiosqlite.connect(self._db_path) as db:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.executescript(self._schema)
            self._initialized = True

    async def _get_connection(self) -> aiosqlite.Connection:
        await self._ensure_initialized()
        if self.is_memory:
            if self._persistent_conn is None:
                raise RuntimeError("Memory database connection not initialized")
            return self._persistent_conn
        return await aiosqlite.connect(self._db_path)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection, translating SQLite and filesystem failures.

        Raises:
            StorageError: If the database cannot be opened or a statement fails.
        """
        try:
            db = await self._get_connection()
        except (aiosqlite.Error, OSError) as exc:
            raise StorageError(f"cannot open {self._db_path}: {exc}") from exc
        try:
            yield db
        except aiosqlite.Error as exc:
            raise StorageError(f"{self._db_path}: {exc}") from exc
        finally:
            if not self.is_memory:
                await db.close()

    async def close(self) -> None:
        """Close the persistent connection (for :memory: databases)."""
        if self._persistent_conn is not None:
            await self._persistent_conn.close()
            self._persistent_conn = None
            self._initialized = False
