"""
SQLite database and transaction runner for the ShareFeed server.

This module manages the single SQLite database that stores:
- Items (files and folders, including sharees' virtual items)
- Shares and share grants
- Per-account change logs and their sequence counters

One database holds every account because a mirrored mutation writes
change rows for several accounts and must commit or roll back as one unit.

Invariants:
    - Every write runs inside BEGIN IMMEDIATE ... COMMIT
    - A failed transaction is rolled back entirely, nothing partial is visible
    - Change ids are allocated inside the same transaction as the insert
    - Lock contention is retried a bounded number of times

How to change safely:
    - Schema migrations must be backward compatible
    - Keep every multi-row write inside a single run() call
    - Bump SCHEMA_VERSION when altering tables

Table schema:
    items:
        - id TEXT PRIMARY KEY
        - owner_id TEXT
        - parent_id TEXT (NULL for an account root)
        - name TEXT
        - is_folder INTEGER
        - content BLOB
        - source_item_id TEXT (set on a sharee's virtual item)
        - created_time INTEGER (Unix ms)
        - updated_time INTEGER (Unix ms)

    shares:
        - id TEXT PRIMARY KEY
        - type INTEGER
        - owner_id TEXT
        - file_id TEXT UNIQUE
        - created_time INTEGER

    share_users:
        - id TEXT PRIMARY KEY
        - share_id TEXT REFERENCES shares(id)
        - user_id TEXT
        - is_accepted INTEGER
        - created_time INTEGER
        - UNIQUE (share_id, user_id)

    changes:
        - owner_id TEXT
        - id INTEGER (per-owner sequence)
        - item_id TEXT
        - item_type INTEGER
        - type INTEGER
        - updated_time INTEGER
        - created_time INTEGER
        - PRIMARY KEY (owner_id, id)

    change_sequences:
        - owner_id TEXT PRIMARY KEY
        - last_id INTEGER
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import TypeVar

from ..config import ServerConfig
from ..errors import TransactionConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


def is_lock_contention(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class Database:
    """Connection and transaction management for the ShareFeed store.

    Thread safety:
        Each database connection is created per-operation.
        Writers in this process are serialized by an asyncio lock;
        across processes SQLite's BEGIN IMMEDIATE gives one writer at a time.

    Example:
        >>> db = Database("/var/lib/sharefeed")
        >>> def work(conn):
        ...     conn.execute("INSERT INTO ...")
        >>> await db.run(work)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_filename: str = "sharefeed.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        max_retries: int = 3,
        retry_delay_ms: int = 50,
        clock: Callable[[], int] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """Initialize the database.

        Args:
            data_dir: Directory for the SQLite database file
            db_filename: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            max_retries: Retries after lock contention
            retry_delay_ms: Base delay between retries
            clock: Current time in Unix ms (defaults to the wall clock)
            id_factory: Generator for item, share and grant IDs
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_filename
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self._clock = clock or wall_clock_ms
        self._id_factory = id_factory or new_id
        self._write_lock = asyncio.Lock()
        self._schema_ready = False

    @classmethod
    def from_config(cls, config: ServerConfig, **kwargs) -> Database:
        return cls(
            data_dir=config.storage.data_dir,
            db_filename=config.storage.db_filename,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
            max_retries=config.transactions.max_retries,
            retry_delay_ms=config.transactions.retry_delay_ms,
            **kwargs,
        )

    def current_time(self) -> int:
        """Current time in Unix ms."""
        return self._clock()

    def generate_id(self) -> str:
        return self._id_factory()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, creating the schema on first use."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

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
            conn.execute("PRAGMA foreign_keys = ON")

            if not self._schema_ready:
                self._create_schema(conn)
                self._schema_ready = True

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS items (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                parent_id TEXT,
                name TEXT NOT NULL,
                is_folder INTEGER NOT NULL DEFAULT 0,
                content BLOB,
                source_item_id TEXT,
                created_time INTEGER NOT NULL,
                updated_time INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_items_parent ON items(parent_id, name);
            CREATE INDEX IF NOT EXISTS idx_items_owner ON items(owner_id);
            CREATE INDEX IF NOT EXISTS idx_items_source ON items(source_item_id);
            CREATE UNIQUE INDEX IF NOT EXISTS idx_items_root
                ON items(owner_id) WHERE parent_id IS NULL;

            CREATE TABLE IF NOT EXISTS shares (
                id TEXT PRIMARY KEY,
                type INTEGER NOT NULL,
                owner_id TEXT NOT NULL,
                file_id TEXT NOT NULL UNIQUE,
                created_time INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_shares_owner ON shares(owner_id);

            CREATE TABLE IF NOT EXISTS share_users (
                id TEXT PRIMARY KEY,
                share_id TEXT NOT NULL REFERENCES shares(id) ON DELETE CASCADE,
                user_id TEXT NOT NULL,
                is_accepted INTEGER NOT NULL DEFAULT 0,
                created_time INTEGER NOT NULL,
                UNIQUE (share_id, user_id)
            );

            CREATE INDEX IF NOT EXISTS idx_share_users_user ON share_users(user_id);

            CREATE TABLE IF NOT EXISTS changes (
                owner_id TEXT NOT NULL,
                id INTEGER NOT NULL,
                item_id TEXT NOT NULL,
                item_type INTEGER NOT NULL,
                type INTEGER NOT NULL,
                updated_time INTEGER NOT NULL,
                created_time INTEGER NOT NULL,
                PRIMARY KEY (owner_id, id)
            );

            CREATE INDEX IF NOT EXISTS idx_changes_item ON changes(owner_id, item_id);

            CREATE TABLE IF NOT EXISTS change_sequences (
                owner_id TEXT PRIMARY KEY,
                last_id INTEGER NOT NULL
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)
        logger.info("Initialized database schema", extra={"db_path": str(self.db_path)})

    @asynccontextmanager
    async def read(self) -> AsyncIterator[sqlite3.Connection]:
        """Connection for reads; rows are immutable or single-row, no transaction needed."""
        with self._connect() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[sqlite3.Connection]:
        """Connection inside BEGIN IMMEDIATE, committed on success.

        Raises:
            sqlite3.OperationalError: If the write lock cannot be taken
        """
        async with self._write_lock:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise

    async def run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run fn(conn) as one atomic transaction, retrying on lock contention.

        Args:
            fn: Work to perform; every row it writes commits or none do

        Returns:
            Whatever fn returns

        Raises:
            TransactionConflictError: If the store stayed locked after all retries
        """
        attempt = 0
        while True:
            try:
                async with self.transaction() as conn:
                    return fn(conn)
            except sqlite3.OperationalError as e:
                if not is_lock_contention(e):
                    raise
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(
                        "Transaction abandoned after lock contention",
                        extra={"attempts": attempt, "error": str(e)},
                    )
                    raise TransactionConflictError(
                        f"Store is busy, transaction rolled back: {e}", attempts=attempt
                    ) from e
                logger.warning(
                    "Retrying transaction after lock contention",
                    extra={"attempt": attempt, "error": str(e)},
                )
                await asyncio.sleep(self.retry_delay_ms * attempt / 1000.0)
