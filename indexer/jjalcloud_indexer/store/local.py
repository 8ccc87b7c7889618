"""
Local SQLite store for the jjalcloud indexer.

Backs the DurableStore protocol with an embedded SQLite file, typically the
same file the web app's local development server uses.

Thread safety:
    A connection is opened per operation. SQLite serializes writers; WAL
    mode lets readers proceed during writes.

Invariants:
    - Multi-statement operations (like replace, batches) run in one transaction
    - Backend errors surface as StoreQueryError
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from . import statements as sql
from .base import GifRecord, LikeRecord, Statement, StoreQueryError

logger = logging.getLogger(__name__)


class LocalStore:
    """DurableStore backed by a local SQLite database file.

    Example:
        >>> store = LocalStore("/var/lib/jjalcloud/index.sqlite")
        >>> await store.initialize()
        >>> await store.upsert_gif(record)
    """

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the local store.

        Args:
            db_path: Path to the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, closed on exit."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _execute_all(self, stmts: Sequence[Statement]) -> None:
        """Run statements in order inside one transaction."""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for stmt in stmts:
                    conn.execute(stmt.sql, stmt.params)
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StoreQueryError(f"SQLite statement failed: {e}") from e

    def _query(self, stmt: Statement) -> list[sqlite3.Row]:
        with self._get_connection() as conn:
            try:
                return conn.execute(stmt.sql, stmt.params).fetchall()
            except sqlite3.Error as e:
                raise StoreQueryError(f"SQLite query failed: {e}") from e

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection() as conn:
                conn.executescript(sql.SCHEMA)
        logger.info("Using local SQLite database", extra={"db_path": str(self.db_path)})

    async def close(self) -> None:
        """Nothing to release; connections are per operation."""
        pass

    async def upsert_gif(self, record: GifRecord) -> None:
        self._execute_all([sql.upsert_gif(record)])
        logger.debug("Upserted gif", extra={"uri": record.uri})

    async def delete_gif(self, uri: str) -> None:
        self._execute_all([sql.delete_gif(uri)])
        logger.debug("Deleted gif", extra={"uri": uri})

    async def insert_like(self, record: LikeRecord) -> None:
        self._execute_all(sql.insert_like(record))
        logger.debug("Inserted like", extra={"author": record.author, "rkey": record.rkey})

    async def delete_like(self, author: str, rkey: str) -> None:
        self._execute_all([sql.delete_like(author, rkey)])
        logger.debug("Deleted like", extra={"author": author, "rkey": rkey})

    async def get_gif(self, uri: str) -> GifRecord | None:
        rows = self._query(Statement(sql.SELECT_GIF_SQL, (uri,)))
        return sql.gif_from_row(rows[0]) if rows else None

    async def get_like(self, author: str, rkey: str) -> LikeRecord | None:
        rows = self._query(Statement(sql.SELECT_LIKE_SQL, (author, rkey)))
        return sql.like_from_row(rows[0]) if rows else None

    async def list_gif_uris(self, author: str) -> list[str]:
        return [row["uri"] for row in self._query(Statement(sql.LIST_GIF_URIS_SQL, (author,)))]

    async def list_like_rkeys(self, author: str) -> list[str]:
        return [
            row["rkey"] for row in self._query(Statement(sql.LIST_LIKE_RKEYS_SQL, (author,)))
        ]

    async def list_known_identities(self) -> list[str]:
        return [row["did"] for row in self._query(Statement(sql.LIST_KNOWN_IDENTITIES_SQL))]

    async def execute_batch(self, statements: Sequence[Statement]) -> None:
        if not statements:
            return
        self._execute_all(statements)

    async def count_rows(self, table: str) -> int:
        """Row count for gifs, likes or users."""
        if table not in ("gifs", "likes", "users"):
            raise ValueError(f"Unknown table: {table}")
        rows = self._query(Statement(f"SELECT COUNT(*) AS n FROM {table}"))
        return rows[0]["n"]
