"""
Database infrastructure with SQLite and async support.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite


logger = logging.getLogger(__name__)


class Database:
    """Async SQLite database wrapper.

    The connection runs in autocommit mode; multi-statement work goes through
    :meth:`transaction`, which serialises writers on this connection.
    """

    def __init__(self, db_path: str = "crawler.db"):
        # Handle SQLite URL format if provided
        if db_path.startswith("sqlite"):
            # Handle sqlite+aiosqlite:///path format
            if "///" in db_path:
                actual_path = db_path.split("///")[-1]
            else:
                actual_path = db_path.split("//")[-1]
            self.db_path = Path(actual_path)
        else:
            self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None
        self._tx_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Connect to the database and run migrations."""
        if self._connection:
            return

        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Open connection with a longer busy timeout
        self._connection = await aiosqlite.connect(self.db_path, timeout=30, isolation_level=None)
        self._connection.row_factory = aiosqlite.Row
        # Improve concurrency: use WAL journal mode and set busy timeout (ms)
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA busy_timeout=30000;")
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @asynccontextmanager
    async def transaction(self, mode: str = "IMMEDIATE"):
        """Context manager for database transactions."""
        if not self._connection:
            await self.connect()

        async with self._tx_lock:
            await self._connection.execute(f"BEGIN {mode}")
            try:
                yield self._connection
            except BaseException:
                await self._connection.execute("ROLLBACK")
                raise
            else:
                await self._connection.execute("COMMIT")

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        if not self._connection:
            await self.connect()
        return await self._connection.execute(sql, tuple(params))

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[aiosqlite.Row]:
        """Fetch one row."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[aiosqlite.Row]:
        """Fetch all rows."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchall()

    async def fetch_value(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = await self.fetch_one(sql, params)
        return row[0] if row is not None else None

    async def insert(self, table: str, data: Dict[str, Any]) -> int:
        """Insert one row and return its rowid."""
        columns = list(data.keys())
        placeholders = ", ".join("?" * len(columns))
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        cursor = await self.execute(sql, tuple(data.values()))
        return cursor.lastrowid

    async def insert_ignore(
        self,
        table: str,
        data: Dict[str, Any],
        key_columns: List[str],
    ) -> bool:
        """Insert unless a row with the same key exists. Returns True if inserted."""
        columns = list(data.keys())
        placeholders = ", ".join("?" * len(columns))
        sql = f"""
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            ON CONFLICT({', '.join(key_columns)}) DO NOTHING
        """
        cursor = await self.execute(sql, tuple(data.values()))
        return cursor.rowcount == 1

    async def upsert(
        self,
        table: str,
        data: Dict[str, Any],
        pk_columns: List[str],
    ) -> None:
        """Upsert data into a table."""
        columns = list(data.keys())
        placeholders = ", ".join("?" * len(columns))
        values = list(data.values())

        # Build the conflict resolution clause
        update_columns = [col for col in columns if col not in pk_columns]
        if update_columns:
            update_clause = ", ".join(f"{col} = excluded.{col}" for col in update_columns)
            conflict_clause = f"ON CONFLICT({', '.join(pk_columns)}) DO UPDATE SET {update_clause}"
        else:
            conflict_clause = f"ON CONFLICT({', '.join(pk_columns)}) DO NOTHING"

        sql = f"""
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            {conflict_clause}
        """
        await self.execute(sql, tuple(values))

    async def _run_migrations(self) -> None:
        """Run database migrations."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # No hardcoded tables here - each store creates its own on first use
