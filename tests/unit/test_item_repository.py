"""
Unit tests for the item repository.

Tests cover:
- Root folder creation
- Item CRUD
- Tree traversal
- Monotonic updated_time
"""

import pytest

from drive.sharefeed_server.store.item_repository import ItemRepository
from drive.sharefeed_server.store.database import Database


class TestItemRepository:
    """Tests for ItemRepository."""

    @pytest.fixture
    def db(self, data_dir, clock):
        return Database(data_dir, wal_mode=False, clock=clock)

    @pytest.fixture
    def items(self, db):
        return ItemRepository(db)

    @pytest.mark.asyncio
    async def test_root_created_once(self, items):
        """Every account has exactly one root folder."""
        first = await items.root_id_for("alice")
        second = await items.root_id_for("alice")
        other = await items.root_id_for("bob")

        assert first == second
        assert first != other

        root = await items.fetch(first)
        assert root.parent_id is None
        assert root.is_folder is True

    @pytest.mark.asyncio
    async def test_create_and_get(self, db, items):
        root_id = await items.root_id_for("alice")
        item = await db.run(lambda conn: items.create(conn, "alice", root_id, "a.txt", b"hello"))

        fetched = await items.get(item.id, as_owner="alice")
        assert fetched.name == "a.txt"
        assert fetched.content == b"hello"
        assert fetched.is_virtual is False
        assert fetched.physical_id == item.id

        assert await items.get(item.id, as_owner="bob") is None

    @pytest.mark.asyncio
    async def test_virtual_item_holds_no_content(self, db, items):
        root_id = await items.root_id_for("bob")
        link = await db.run(
            lambda conn: items.create(
                conn, "bob", root_id, "a.txt", b"ignored", source_item_id="physical"
            )
        )

        assert link.content == b""
        assert link.is_virtual is True
        assert link.physical_id == "physical"

    @pytest.mark.asyncio
    async def test_descendants_parents_first(self, db, items):
        root_id = await items.root_id_for("alice")

        def build(conn):
            folder = items.create(conn, "alice", root_id, "docs", is_folder=True)
            sub = items.create(conn, "alice", folder.id, "sub", is_folder=True)
            items.create(conn, "alice", sub.id, "deep.txt", b"x")
            items.create(conn, "alice", folder.id, "a.txt", b"y")
            return folder

        folder = await db.run(build)

        async with db.read() as conn:
            names = [item.name for item in items.descendants(conn, folder.id)]
            deep = items.find_child(conn, items.find_child(conn, folder.id, "sub").id, "deep.txt")
            ancestors = [a.name for a in items.ancestors(conn, deep)]

        assert names.index("sub") < names.index("deep.txt")
        assert set(names) == {"sub", "deep.txt", "a.txt"}
        assert ancestors == ["sub", "docs", ""]

    @pytest.mark.asyncio
    async def test_update_time_strictly_increases(self, data_dir):
        """With a frozen clock updated_time still moves forward."""
        db = Database(data_dir, wal_mode=False, clock=lambda: 5000)
        items = ItemRepository(db)
        root_id = await items.root_id_for("alice")
        item = await db.run(lambda conn: items.create(conn, "alice", root_id, "a.txt", b"1"))

        first = await db.run(lambda conn: items.update(conn, item.id, content=b"2"))
        second = await db.run(lambda conn: items.update(conn, item.id, content=b"3"))

        assert item.updated_time == 5000
        assert first.updated_time == 5001
        assert second.updated_time == 5002
        assert second.content == b"3"

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, db, items):
        assert await db.run(lambda conn: items.update(conn, "missing", content=b"x")) is None

    @pytest.mark.asyncio
    async def test_children_ordered_by_name(self, db, items):
        root_id = await items.root_id_for("alice")

        def build(conn):
            for name in ("c", "a", "b"):
                items.create(conn, "alice", root_id, name)

        await db.run(build)
        children = await items.children_of(root_id)
        assert [c.name for c in children] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_delete(self, db, items):
        root_id = await items.root_id_for("alice")
        item = await db.run(lambda conn: items.create(conn, "alice", root_id, "a.txt"))

        assert await db.run(lambda conn: items.delete(conn, item.id)) is True
        assert await items.fetch(item.id) is None
        assert await db.run(lambda conn: items.delete(conn, item.id)) is False
