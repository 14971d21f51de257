"""
ShareFeed Server - share-aware incremental change feeds for synced files.

Several accounts collaborate on a shared set of files while each keeps its
own private, append-only log of what changed and when. A sync client asks
for "changes since my cursor" and gets exactly the creates, updates and
deletes it has not seen, for items it owns and for items shared into it.

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────────┐
    │ Sync client │────▶│ HTTP server │────▶│ ShareVisibilityResolver│
    └─────────────┘     └──────┬──────┘     └──────────┬───────────┘
                               │                       │ one transaction per mutation
                               ▼                       ▼
                        ┌─────────────┐     ┌──────────────────────┐
                        │DeltaFeedSvc │────▶│ SQLite: items, shares,│
                        │ CursorPager │     │ share_users, changes  │
                        └─────────────┘     └──────────────────────┘

Invariants:
    - Each account's change log is append-only and strictly ordered
    - A mutation and all of its mirrored change rows commit together
    - Accounts that see the same item record the same updated_time for it
    - An item can carry at most one share

How to change safely:
    - Keep visibility decisions inside sharing.resolver
    - Never rewrite or delete change rows

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
