"""
Per-account append-only change log.

Each account has its own ledger of Create/Update/Delete entries keyed
by a sequence number that only that account's appends advance.

Invariants:
    - For one owner_id, ids are strictly increasing with no reuse
    - Rows are never updated or deleted
    - Ids are allocated in the caller's transaction, together with the insert
    - No compaction: every mutation gets its own entry

How to change safely:
    - Never add an UPDATE or DELETE against the changes table
    - Keep (owner_id, id) as the only ordering used by readers
"""

from __future__ import annotations

import logging
import sqlite3

from ..models import Change, ChangeType, ItemType
from .database import Database

logger = logging.getLogger(__name__)


class ChangeLogStore:
    """Append and page per-account change logs.

    Example:
        >>> log = ChangeLogStore(db)
        >>> def work(conn):
        ...     return log.append(conn, "alice", item_id, ItemType.FILE, ChangeType.CREATE, ts)
        >>> change = await db.run(work)
        >>> changes, has_more = await log.page("alice", after_id=0, limit=100)
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def _next_id(self, conn: sqlite3.Connection, owner_id: str) -> int:
        conn.execute(
            """
            INSERT INTO change_sequences (owner_id, last_id) VALUES (?, 1)
            ON CONFLICT(owner_id) DO UPDATE SET last_id = last_id + 1
            """,
            (owner_id,),
        )
        row = conn.execute(
            "SELECT last_id FROM change_sequences WHERE owner_id = ?", (owner_id,)
        ).fetchone()
        return row["last_id"]

    def append(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        item_id: str,
        item_type: ItemType,
        change_type: ChangeType,
        updated_time: int,
    ) -> Change:
        """Append one immutable entry to an account's log.

        Args:
            conn: Connection inside an open transaction
            owner_id: Account whose feed receives the entry
            item_id: Item as that account sees it
            item_type: File or folder
            change_type: Kind of mutation
            updated_time: Snapshot of the item's updated_time

        Returns:
            The written Change
        """
        change = Change(
            id=self._next_id(conn, owner_id),
            owner_id=owner_id,
            item_id=item_id,
            item_type=item_type,
            type=change_type,
            updated_time=updated_time,
            created_time=self.db.current_time(),
        )
        conn.execute(
            """
            INSERT INTO changes (owner_id, id, item_id, item_type, type, updated_time, created_time)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                change.owner_id,
                change.id,
                change.item_id,
                int(change.item_type),
                int(change.type),
                change.updated_time,
                change.created_time,
            ),
        )

        logger.debug(
            "Appended change",
            extra={
                "owner_id": owner_id,
                "change_id": change.id,
                "item_id": item_id,
                "type": change_type.name,
            },
        )
        return change

    async def page(
        self,
        owner_id: str,
        after_id: int,
        limit: int,
    ) -> tuple[list[Change], bool]:
        """Get entries after a position, oldest first.

        Args:
            owner_id: Account whose log is read
            after_id: Last id already delivered (0 for the beginning)
            limit: Maximum entries to return

        Returns:
            Tuple of (changes, has_more)
        """
        async with self.db.read() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM changes
                WHERE owner_id = ? AND id > ?
                ORDER BY id ASC
                LIMIT ?
                """,
                (owner_id, after_id, limit + 1),
            )
            rows = cursor.fetchall()

        changes = [Change.from_row(row) for row in rows[:limit]]
        return changes, len(rows) > limit

    async def last_id(self, owner_id: str) -> int:
        """Id of the newest entry in an account's log, 0 when empty."""
        async with self.db.read() as conn:
            row = conn.execute(
                "SELECT last_id FROM change_sequences WHERE owner_id = ?", (owner_id,)
            ).fetchone()
            return row["last_id"] if row else 0

    async def list_for_item(self, owner_id: str, item_id: str) -> list[Change]:
        """History of one item in one account's feed."""
        async with self.db.read() as conn:
            cursor = conn.execute(
                "SELECT * FROM changes WHERE owner_id = ? AND item_id = ? ORDER BY id ASC",
                (owner_id, item_id),
            )
            return [Change.from_row(row) for row in cursor.fetchall()]
