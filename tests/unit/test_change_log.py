"""
Unit tests for the per-account change log.

Tests cover:
- Per-owner sequence allocation
- Paging with has_more
- Rollback does not consume ids
"""

import pytest

from drive.sharefeed_server.errors import ValidationError
from drive.sharefeed_server.models import ChangeType, ItemType


class TestChangeLogStore:
    """Tests for ChangeLogStore."""

    @pytest.fixture
    def db(self, services):
        return services.db

    @pytest.fixture
    def change_log(self, services):
        return services.change_log

    async def append(self, db, change_log, owner_id, item_id, change_type=ChangeType.CREATE):
        return await db.run(
            lambda conn: change_log.append(conn, owner_id, item_id, ItemType.FILE, change_type, 1000)
        )

    @pytest.mark.asyncio
    async def test_ids_increase_per_owner(self, db, change_log):
        """Each owner has an independent sequence starting at 1."""
        a1 = await self.append(db, change_log, "alice", "i1")
        a2 = await self.append(db, change_log, "alice", "i2")
        b1 = await self.append(db, change_log, "bob", "i3")
        a3 = await self.append(db, change_log, "alice", "i1", ChangeType.UPDATE)

        assert [a1.id, a2.id, a3.id] == [1, 2, 3]
        assert b1.id == 1

    @pytest.mark.asyncio
    async def test_page_returns_oldest_first(self, db, change_log):
        for i in range(5):
            await self.append(db, change_log, "alice", f"i{i}")

        changes, has_more = await change_log.page("alice", after_id=0, limit=3)
        assert [c.id for c in changes] == [1, 2, 3]
        assert has_more is True

        changes, has_more = await change_log.page("alice", after_id=3, limit=3)
        assert [c.id for c in changes] == [4, 5]
        assert has_more is False

    @pytest.mark.asyncio
    async def test_page_only_reads_own_log(self, db, change_log):
        await self.append(db, change_log, "alice", "i1")
        await self.append(db, change_log, "bob", "i2")

        changes, _ = await change_log.page("bob", after_id=0, limit=10)
        assert [c.item_id for c in changes] == ["i2"]
        assert all(c.owner_id == "bob" for c in changes)

    @pytest.mark.asyncio
    async def test_change_fields_round_trip(self, db, change_log):
        await db.run(
            lambda conn: change_log.append(
                conn, "alice", "folder", ItemType.FOLDER, ChangeType.DELETE, 1234
            )
        )

        [change] = await change_log.list_for_item("alice", "folder")
        assert change.item_type == ItemType.FOLDER
        assert change.type == ChangeType.DELETE
        assert change.updated_time == 1234

    @pytest.mark.asyncio
    async def test_rolled_back_append_does_not_consume_id(self, db, change_log):
        """Ids are allocated inside the transaction; a rollback releases them."""

        def failing(conn):
            change_log.append(conn, "alice", "i1", ItemType.FILE, ChangeType.CREATE, 1)
            raise ValidationError("abort")

        with pytest.raises(ValidationError):
            await db.run(failing)

        change = await self.append(db, change_log, "alice", "i2")
        assert change.id == 1

    @pytest.mark.asyncio
    async def test_last_id(self, db, change_log):
        assert await change_log.last_id("alice") == 0
        await self.append(db, change_log, "alice", "i1")
        await self.append(db, change_log, "alice", "i2")
        assert await change_log.last_id("alice") == 2
