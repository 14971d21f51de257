"""
Storage module for the ShareFeed server.

This module handles:
- The SQLite database and its transaction runner
- Items (files, folders and sharees' virtual items)
- Shares and share grants
- Per-account change logs

Invariants:
    - All multi-row writes happen inside one Database.run() call
    - Change rows are immutable once written
"""

from .change_log import ChangeLogStore
from .database import Database
from .item_repository import ItemRepository
from .share_registry import ShareRegistry

__all__ = [
    "ChangeLogStore",
    "Database",
    "ItemRepository",
    "ShareRegistry",
]
