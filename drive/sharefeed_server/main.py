"""
ShareFeed Server - Main entry point.

This module starts the ShareFeed server:
- SQLite store (items, shares, change logs)
- Share visibility resolver and delta feed
- HTTP API

Usage:
    python -m drive.sharefeed_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Every component shares one Database instance
    - Graceful shutdown stops accepting requests before exiting

How to change safely:
    - Add new components to Services so tests can build the same wiring
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from dataclasses import dataclass

import json_log_formatter

from .api import run_http_server
from .config import ServerConfig
from .feed import CursorPager, DeltaFeedService
from .sharing import ShareVisibilityResolver
from .store import ChangeLogStore, Database, ItemRepository, ShareRegistry

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


@dataclass
class Services:
    """All components wired over one database."""

    db: Database
    items: ItemRepository
    shares: ShareRegistry
    change_log: ChangeLogStore
    resolver: ShareVisibilityResolver
    pager: CursorPager
    feed: DeltaFeedService


def create_services(
    config: ServerConfig,
    clock: Callable[[], int] | None = None,
    id_factory: Callable[[], str] | None = None,
) -> Services:
    """Build the store, resolver and feed from configuration.

    Args:
        config: Server configuration
        clock: Optional time source in Unix ms
        id_factory: Optional ID generator
    """
    db = Database.from_config(config, clock=clock, id_factory=id_factory)
    items = ItemRepository(db)
    shares = ShareRegistry(db)
    change_log = ChangeLogStore(db)
    resolver = ShareVisibilityResolver(db, items, shares, change_log)
    pager = CursorPager(
        change_log,
        secret=config.feed.cursor_secret,
        default_page_size=config.feed.default_page_size,
        max_page_size=config.feed.max_page_size,
    )
    feed = DeltaFeedService(resolver, pager)
    return Services(
        db=db,
        items=items,
        shares=shares,
        change_log=change_log,
        resolver=resolver,
        pager=pager,
        feed=feed,
    )


class Server:
    """ShareFeed Server orchestrator.

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self.services: Services | None = None
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting ShareFeed server")
        self.config.log_config()

        try:
            self.services = create_services(self.config)

            http_task = asyncio.create_task(
                run_http_server(self.services.resolver, self.services.feed, self.config.http)
            )
            self._tasks.append(http_task)

            self._running = True
            logger.info("ShareFeed server started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running and not self._tasks:
            return

        logger.info("Stopping ShareFeed server")

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        self._running = False
        logger.info("ShareFeed server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    server = Server(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
