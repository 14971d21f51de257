"""
API module for the ShareFeed server.

Invariants:
    - All operations except health and link-share content require an actor
    - Visibility is decided by the share resolver, never by the handlers
"""

from .http_server import create_http_app, run_http_server

__all__ = [
    "create_http_app",
    "run_http_server",
]
