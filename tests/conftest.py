"""
Shared fixtures for ShareFeed tests.

Every test gets its own temporary SQLite database and a deterministic
clock, so timestamps and change ids are reproducible.
"""

import tempfile

import pytest

from drive.sharefeed_server.config import FeedConfig, ServerConfig, StorageConfig
from drive.sharefeed_server.main import create_services


class FakeClock:
    """Deterministic Unix ms clock that advances by `step` on every read."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(data_dir):
    """Configuration pointing at the temporary directory."""
    return ServerConfig(
        storage=StorageConfig(data_dir=data_dir, wal_mode=False),
        feed=FeedConfig(default_page_size=50, max_page_size=200, cursor_secret="test-secret"),
    )


@pytest.fixture
def services(config, clock):
    """Fully wired stores, resolver and feed."""
    return create_services(config, clock=clock)
