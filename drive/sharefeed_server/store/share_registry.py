"""
Share registry for the ShareFeed server.

Tracks Share rows (an item made shareable) and ShareUser rows (a grant
of a share to one account, pending or accepted).

Invariants:
    - At most one Share per file_id, enforced by a UNIQUE index
    - At most one ShareUser per (share_id, user_id)
    - is_accepted only ever moves from false to true
"""

from __future__ import annotations

import logging
import sqlite3

from ..errors import AlreadySharedError
from ..models import Share, ShareType, ShareUser
from .database import Database

logger = logging.getLogger(__name__)


class ShareRegistry:
    """Stores shares and share grants."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # --- Shares ---

    def get_for_file(self, conn: sqlite3.Connection, file_id: str) -> Share | None:
        row = conn.execute("SELECT * FROM shares WHERE file_id = ?", (file_id,)).fetchone()
        return Share.from_row(row) if row else None

    def get_row(self, conn: sqlite3.Connection, share_id: str) -> Share | None:
        row = conn.execute("SELECT * FROM shares WHERE id = ?", (share_id,)).fetchone()
        return Share.from_row(row) if row else None

    async def get(self, share_id: str) -> Share | None:
        async with self.db.read() as conn:
            return self.get_row(conn, share_id)

    def create(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        file_id: str,
        share_type: ShareType,
    ) -> Share:
        """Register a share for an item.

        Args:
            conn: Connection inside an open transaction
            owner_id: Owner of the physical item
            file_id: Physical item being shared
            share_type: Link or App

        Returns:
            Created Share

        Raises:
            AlreadySharedError: If the item already has a share
        """
        existing = self.get_for_file(conn, file_id)
        if existing is not None:
            raise AlreadySharedError(file_id, existing.id)

        share = Share(
            id=self.db.generate_id(),
            type=share_type,
            owner_id=owner_id,
            file_id=file_id,
            created_time=self.db.current_time(),
        )
        try:
            conn.execute(
                """
                INSERT INTO shares (id, type, owner_id, file_id, created_time)
                VALUES (?, ?, ?, ?, ?)
                """,
                (share.id, int(share.type), share.owner_id, share.file_id, share.created_time),
            )
        except sqlite3.IntegrityError as e:
            raise AlreadySharedError(file_id) from e
        return share

    def shared_file_ids(self, conn: sqlite3.Connection, file_ids: list[str]) -> set[str]:
        """Subset of the given item IDs that have a share."""
        if not file_ids:
            return set()
        placeholders = ",".join("?" for _ in file_ids)
        cursor = conn.execute(
            f"SELECT file_id FROM shares WHERE file_id IN ({placeholders})", file_ids
        )
        return {row["file_id"] for row in cursor.fetchall()}

    def delete_for_file(self, conn: sqlite3.Connection, file_id: str) -> bool:
        """Remove the share on an item along with its grants."""
        cursor = conn.execute("DELETE FROM shares WHERE file_id = ?", (file_id,))
        return cursor.rowcount > 0

    # --- Share users ---

    def get_user_row(self, conn: sqlite3.Connection, share_user_id: str) -> ShareUser | None:
        row = conn.execute("SELECT * FROM share_users WHERE id = ?", (share_user_id,)).fetchone()
        return ShareUser.from_row(row) if row else None

    async def get_user(self, share_user_id: str) -> ShareUser | None:
        async with self.db.read() as conn:
            return self.get_user_row(conn, share_user_id)

    def add_user(self, conn: sqlite3.Connection, share_id: str, user_id: str) -> ShareUser:
        """Grant a share to an account; granting twice returns the first grant."""
        row = conn.execute(
            "SELECT * FROM share_users WHERE share_id = ? AND user_id = ?",
            (share_id, user_id),
        ).fetchone()
        if row:
            return ShareUser.from_row(row)

        share_user = ShareUser(
            id=self.db.generate_id(),
            share_id=share_id,
            user_id=user_id,
            is_accepted=False,
            created_time=self.db.current_time(),
        )
        conn.execute(
            """
            INSERT INTO share_users (id, share_id, user_id, is_accepted, created_time)
            VALUES (?, ?, ?, 0, ?)
            """,
            (share_user.id, share_user.share_id, share_user.user_id, share_user.created_time),
        )
        return share_user

    def set_accepted(self, conn: sqlite3.Connection, share_user_id: str) -> None:
        conn.execute("UPDATE share_users SET is_accepted = 1 WHERE id = ?", (share_user_id,))

    def delete_user(self, conn: sqlite3.Connection, share_user_id: str) -> bool:
        cursor = conn.execute("DELETE FROM share_users WHERE id = ?", (share_user_id,))
        return cursor.rowcount > 0

    def users_rows(
        self,
        conn: sqlite3.Connection,
        share_id: str,
        accepted_only: bool = False,
    ) -> list[ShareUser]:
        query = "SELECT * FROM share_users WHERE share_id = ?"
        if accepted_only:
            query += " AND is_accepted = 1"
        query += " ORDER BY created_time ASC, user_id ASC"
        cursor = conn.execute(query, (share_id,))
        return [ShareUser.from_row(row) for row in cursor.fetchall()]

    async def users_for_share(self, share_id: str, accepted_only: bool = False) -> list[ShareUser]:
        async with self.db.read() as conn:
            return self.users_rows(conn, share_id, accepted_only=accepted_only)

    async def shares_for_user(self, user_id: str) -> list[ShareUser]:
        """Grants an account has received, oldest first."""
        async with self.db.read() as conn:
            cursor = conn.execute(
                "SELECT * FROM share_users WHERE user_id = ? ORDER BY created_time ASC",
                (user_id,),
            )
            return [ShareUser.from_row(row) for row in cursor.fetchall()]
