"""
Item repository for the ShareFeed server.

Row-level access to files and folders. An item shared into another
account is never copied: the sharee gets a virtual item whose
source_item_id names the single physical row, and content and
timestamps are always read from that row.

Invariants:
    - Each account has exactly one root folder (parent_id IS NULL)
    - updated_time strictly increases on every update of a row
    - Virtual items hold no content

How to change safely:
    - Mutators take the caller's transaction connection; never open
      a second transaction from inside one
    - Visibility decisions belong to the share resolver, not here
"""

from __future__ import annotations

import logging
import sqlite3

from ..models import Item
from .database import Database

logger = logging.getLogger(__name__)

ROOT_NAME = ""


class ItemRepository:
    """Stores files, folders and sharees' virtual items.

    Example:
        >>> items = ItemRepository(db)
        >>> root_id = await items.root_id_for("alice")
        >>> item = await db.run(lambda conn: items.create(conn, "alice", root_id, "a.txt", b"hi"))
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # --- Reads ---

    def get_row(self, conn: sqlite3.Connection, item_id: str) -> Item | None:
        row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
        return Item.from_row(row) if row else None

    async def fetch(self, item_id: str) -> Item | None:
        """Get an item row by ID regardless of owner."""
        async with self.db.read() as conn:
            return self.get_row(conn, item_id)

    async def get(self, item_id: str, as_owner: str) -> Item | None:
        """Get an item row owned by an account.

        Args:
            item_id: Item identifier
            as_owner: Account that must own the row

        Returns:
            Item or None if missing or owned by someone else
        """
        item = await self.fetch(item_id)
        if item is None or item.owner_id != as_owner:
            return None
        return item

    def children_rows(self, conn: sqlite3.Connection, parent_id: str) -> list[Item]:
        cursor = conn.execute(
            "SELECT * FROM items WHERE parent_id = ? ORDER BY name ASC, created_time ASC",
            (parent_id,),
        )
        return [Item.from_row(row) for row in cursor.fetchall()]

    async def children_of(self, parent_id: str) -> list[Item]:
        """Rows directly under a folder, ordered by name."""
        async with self.db.read() as conn:
            return self.children_rows(conn, parent_id)

    def find_child(self, conn: sqlite3.Connection, parent_id: str, name: str) -> Item | None:
        row = conn.execute(
            """
            SELECT * FROM items WHERE parent_id = ? AND name = ?
            ORDER BY source_item_id IS NOT NULL, created_time ASC
            LIMIT 1
            """,
            (parent_id, name),
        ).fetchone()
        return Item.from_row(row) if row else None

    def links_to(self, conn: sqlite3.Connection, source_item_id: str) -> list[Item]:
        """Virtual items that resolve to a physical item."""
        cursor = conn.execute(
            "SELECT * FROM items WHERE source_item_id = ? ORDER BY owner_id ASC",
            (source_item_id,),
        )
        return [Item.from_row(row) for row in cursor.fetchall()]

    def link_for(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        source_item_id: str,
    ) -> Item | None:
        row = conn.execute(
            "SELECT * FROM items WHERE owner_id = ? AND source_item_id = ?",
            (owner_id, source_item_id),
        ).fetchone()
        return Item.from_row(row) if row else None

    def descendants(self, conn: sqlite3.Connection, item_id: str) -> list[Item]:
        """All rows below an item, each parent listed before its children."""
        result: list[Item] = []
        pending = [item_id]
        while pending:
            parent_id = pending.pop(0)
            for child in self.children_rows(conn, parent_id):
                result.append(child)
                if child.is_folder:
                    pending.append(child.id)
        return result

    def ancestors(self, conn: sqlite3.Connection, item: Item) -> list[Item]:
        """Parents of an item, nearest first, up to and including the root."""
        result: list[Item] = []
        parent_id = item.parent_id
        while parent_id is not None:
            parent = self.get_row(conn, parent_id)
            if parent is None:
                break
            result.append(parent)
            parent_id = parent.parent_id
        return result

    # --- Roots ---

    def ensure_root(self, conn: sqlite3.Connection, owner_id: str) -> Item:
        """Get the account's root folder, creating it on first use."""
        now = self.db.current_time()
        conn.execute(
            """
            INSERT OR IGNORE INTO items
            (id, owner_id, parent_id, name, is_folder, content, source_item_id,
             created_time, updated_time)
            VALUES (?, ?, NULL, ?, 1, NULL, NULL, ?, ?)
            """,
            (self.db.generate_id(), owner_id, ROOT_NAME, now, now),
        )
        row = conn.execute(
            "SELECT * FROM items WHERE owner_id = ? AND parent_id IS NULL", (owner_id,)
        ).fetchone()
        return Item.from_row(row)

    def find_root(self, conn: sqlite3.Connection, owner_id: str) -> Item | None:
        row = conn.execute(
            "SELECT * FROM items WHERE owner_id = ? AND parent_id IS NULL", (owner_id,)
        ).fetchone()
        return Item.from_row(row) if row else None

    async def root_id_for(self, owner_id: str) -> str:
        """ID of the account's root folder, created through a write transaction on first use."""
        async with self.db.read() as conn:
            root = self.find_root(conn, owner_id)
            if root is not None:
                return root.id

        root = await self.db.run(lambda conn: self.ensure_root(conn, owner_id))
        logger.info("Created root folder", extra={"owner_id": owner_id, "item_id": root.id})
        return root.id

    # --- Writes ---

    def create(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        parent_id: str,
        name: str,
        content: bytes = b"",
        is_folder: bool = False,
        source_item_id: str | None = None,
    ) -> Item:
        """Insert a new item.

        Args:
            conn: Connection inside an open transaction
            owner_id: Owning account
            parent_id: Parent folder ID
            name: Item name
            content: File content
            is_folder: Whether the item is a folder
            source_item_id: Physical item, when creating a virtual item

        Returns:
            Created Item
        """
        now = self.db.current_time()
        item = Item(
            id=self.db.generate_id(),
            owner_id=owner_id,
            parent_id=parent_id,
            name=name,
            is_folder=is_folder,
            content=b"" if (is_folder or source_item_id) else content,
            created_time=now,
            updated_time=now,
            source_item_id=source_item_id,
        )
        conn.execute(
            """
            INSERT INTO items
            (id, owner_id, parent_id, name, is_folder, content, source_item_id,
             created_time, updated_time)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.id,
                item.owner_id,
                item.parent_id,
                item.name,
                int(item.is_folder),
                item.content,
                item.source_item_id,
                item.created_time,
                item.updated_time,
            ),
        )
        return item

    def update(
        self,
        conn: sqlite3.Connection,
        item_id: str,
        content: bytes | None = None,
        name: str | None = None,
    ) -> Item | None:
        """Apply a mutation and advance updated_time.

        The new updated_time is the current time, or one millisecond past
        the previous value when the clock has not moved.

        Returns:
            Updated Item or None if not found
        """
        item = self.get_row(conn, item_id)
        if item is None:
            return None

        if content is not None and not item.is_folder:
            item.content = content
        if name is not None:
            item.name = name
        item.updated_time = max(self.db.current_time(), item.updated_time + 1)

        conn.execute(
            "UPDATE items SET content = ?, name = ?, updated_time = ? WHERE id = ?",
            (item.content, item.name, item.updated_time, item.id),
        )
        return item

    def rename_links(self, conn: sqlite3.Connection, source_item_id: str, name: str) -> None:
        conn.execute("UPDATE items SET name = ? WHERE source_item_id = ?", (name, source_item_id))

    def delete(self, conn: sqlite3.Connection, item_id: str) -> bool:
        cursor = conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
        return cursor.rowcount > 0
