"""
Unit tests for cursor encoding and paging.

Tests cover:
- Cursor validation (tampering, foreign accounts, garbage)
- Limit clamping
- Paging without duplicates or gaps
"""

import pytest

from drive.sharefeed_server.errors import ValidationError
from drive.sharefeed_server.feed.cursor import CursorPager
from drive.sharefeed_server.models import ChangeType, ItemType


class TestCursorPager:
    """Tests for CursorPager."""

    @pytest.fixture
    def pager(self, services):
        return CursorPager(services.change_log, secret="s3cret", default_page_size=3, max_page_size=5)

    async def fill(self, services, owner_id, count):
        def work(conn):
            for i in range(count):
                services.change_log.append(
                    conn, owner_id, f"item{i}", ItemType.FILE, ChangeType.CREATE, 1000 + i
                )

        await services.db.run(work)

    def test_missing_cursor_means_beginning(self, pager):
        assert pager.decode("alice", None) == 0
        assert pager.decode("alice", "") == 0

    def test_decode_own_cursor(self, pager):
        cursor = pager.encode("alice", 17)
        assert pager.decode("alice", cursor) == 17

    def test_foreign_cursor_rejected(self, pager):
        """A cursor issued to one account is never valid for another."""
        cursor = pager.encode("alice", 3)

        with pytest.raises(ValidationError) as exc_info:
            pager.decode("bob", cursor)
        assert exc_info.value.field_name == "cursor"

    @pytest.mark.parametrize("cursor", ["garbage", "abc.def", ".", "!!!.1234"])
    def test_malformed_cursor_rejected(self, pager, cursor):
        with pytest.raises(ValidationError):
            pager.decode("alice", cursor)

    def test_tampered_cursor_rejected(self, pager):
        encoded, _, tag = pager.encode("alice", 3).partition(".")
        forged = CursorPager(pager.change_log, secret="other").encode("alice", 999)

        with pytest.raises(ValidationError):
            pager.decode("alice", forged)
        with pytest.raises(ValidationError):
            pager.decode("alice", f"{encoded}.{'0' * len(tag)}")

    def test_clamp_limit(self, pager):
        assert pager.clamp_limit(None) == 3
        assert pager.clamp_limit(2) == 2
        assert pager.clamp_limit(50) == 5
        with pytest.raises(ValidationError):
            pager.clamp_limit(0)

    @pytest.mark.asyncio
    async def test_pages_cover_log_exactly_once(self, services, pager):
        """Following cursors yields every change once, in order."""
        await self.fill(services, "alice", 8)

        seen = []
        cursor = None
        while True:
            page = await pager.page("alice", cursor)
            seen.extend(change.id for change in page.changes)
            cursor = page.cursor
            if not page.has_more:
                break

        assert seen == list(range(1, 9))

    @pytest.mark.asyncio
    async def test_empty_page_keeps_position(self, services, pager):
        await self.fill(services, "alice", 2)
        first = await pager.page("alice", None)

        empty = await pager.page("alice", first.cursor)
        assert empty.changes == []
        assert empty.has_more is False
        assert pager.decode("alice", empty.cursor) == 2

        await self.fill(services, "alice", 1)
        later = await pager.page("alice", empty.cursor)
        assert [c.id for c in later.changes] == [3]
