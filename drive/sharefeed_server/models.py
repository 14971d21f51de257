"""
Domain types for the ShareFeed server.

Items, shares, share grants and change records as they are stored in
SQLite and returned to API callers.

Invariants:
    - Every item has exactly one owner
    - A virtual item (source_item_id set) holds no content of its own
    - Changes are immutable once written

How to change safely:
    - Enum values are persisted; never renumber them
    - New fields need defaults so existing rows still load
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any


class ShareType(IntEnum):
    """How a share grants access."""

    LINK = 1  # unauthenticated access by URL
    APP = 2  # explicit per-user grant


class ItemType(IntEnum):
    """Kind of item a change refers to."""

    FILE = 1
    FOLDER = 2


class ChangeType(IntEnum):
    """Kind of mutation recorded in a change log."""

    CREATE = 1
    UPDATE = 2
    DELETE = 3


@dataclass
class Item:
    """A file or folder.

    Attributes:
        id: Item identifier
        owner_id: Account that owns the physical item
        parent_id: Parent folder ID (None for an account root)
        name: Item name within its parent
        is_folder: Whether the item is a folder
        content: File content (empty for folders and virtual items)
        created_time: Creation timestamp (Unix ms)
        updated_time: Last mutation timestamp (Unix ms)
        source_item_id: Physical item a sharee's virtual item resolves to
    """

    id: str
    owner_id: str
    parent_id: str | None
    name: str
    is_folder: bool
    content: bytes
    created_time: int
    updated_time: int
    source_item_id: str | None = None

    @property
    def item_type(self) -> ItemType:
        return ItemType.FOLDER if self.is_folder else ItemType.FILE

    @property
    def is_virtual(self) -> bool:
        return self.source_item_id is not None

    @property
    def physical_id(self) -> str:
        """ID of the single stored copy of this item."""
        return self.source_item_id or self.id

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Item:
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            parent_id=row["parent_id"],
            name=row["name"],
            is_folder=bool(row["is_folder"]),
            content=bytes(row["content"] or b""),
            created_time=row["created_time"],
            updated_time=row["updated_time"],
            source_item_id=row["source_item_id"],
        )

    def as_seen_through(self, link: Item) -> Item:
        """Present this physical item the way a sharee's virtual item shows it."""
        return replace(
            self,
            id=link.id,
            parent_id=link.parent_id,
            source_item_id=self.id,
        )

    def to_dict(self) -> dict[str, Any]:
        """Metadata view, without content."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "parent_id": self.parent_id,
            "name": self.name,
            "is_directory": int(self.is_folder),
            "size": len(self.content),
            "created_time": self.created_time,
            "updated_time": self.updated_time,
            "source_file_id": self.source_item_id,
        }


@dataclass
class Share:
    """An item made available for sharing."""

    id: str
    type: ShareType
    owner_id: str
    file_id: str
    created_time: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Share:
        return cls(
            id=row["id"],
            type=ShareType(row["type"]),
            owner_id=row["owner_id"],
            file_id=row["file_id"],
            created_time=row["created_time"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": int(self.type),
            "owner_id": self.owner_id,
            "file_id": self.file_id,
            "created_time": self.created_time,
        }


@dataclass
class ShareUser:
    """A grant of a share to one account, pending until accepted."""

    id: str
    share_id: str
    user_id: str
    is_accepted: bool
    created_time: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ShareUser:
        return cls(
            id=row["id"],
            share_id=row["share_id"],
            user_id=row["user_id"],
            is_accepted=bool(row["is_accepted"]),
            created_time=row["created_time"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "share_id": self.share_id,
            "user_id": self.user_id,
            "is_accepted": int(self.is_accepted),
            "created_time": self.created_time,
        }


@dataclass(frozen=True)
class Change:
    """One entry of an account's change log.

    Attributes:
        id: Sequence number, strictly increasing per owner_id
        owner_id: Account whose feed this entry belongs to
        item_id: Item as that account sees it
        item_type: File or folder
        type: Create, update or delete
        updated_time: Snapshot of the item's updated_time at record time
        created_time: When the entry was appended (Unix ms)
    """

    id: int
    owner_id: str
    item_id: str
    item_type: ItemType
    type: ChangeType
    updated_time: int
    created_time: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Change:
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            item_id=row["item_id"],
            item_type=ItemType(row["item_type"]),
            type=ChangeType(row["type"]),
            updated_time=row["updated_time"],
            created_time=row["created_time"],
        )


@dataclass
class DeltaEntry:
    """A change materialized with the current item snapshot."""

    change: Change
    item: Item | None

    @property
    def type(self) -> ChangeType:
        return self.change.type

    @property
    def item_id(self) -> str:
        return self.change.item_id

    def to_dict(self) -> dict[str, Any]:
        item: dict[str, Any] = {"id": self.change.item_id}
        if self.item is not None:
            item = self.item.to_dict()
        # the snapshot taken when the change was recorded wins over current state
        item["updated_time"] = self.change.updated_time
        return {
            "id": self.change.id,
            "type": int(self.change.type),
            "item_type": int(self.change.item_type),
            "updated_time": self.change.updated_time,
            "created_time": self.change.created_time,
            "item": item,
        }


@dataclass
class ChangePage:
    """A bounded page of an account's change log."""

    items: list[DeltaEntry] = field(default_factory=list)
    cursor: str = ""
    has_more: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [entry.to_dict() for entry in self.items],
            "cursor": self.cursor,
            "has_more": self.has_more,
        }
