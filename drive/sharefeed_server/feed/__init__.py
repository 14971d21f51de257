"""
Delta feed module for the ShareFeed server.

Cursor encoding and paging over per-account change logs, and the
delta service sync clients call.
"""

from .cursor import CursorPager, LogPage
from .delta import DeltaFeedService

__all__ = ["CursorPager", "DeltaFeedService", "LogPage"]
