"""
Unit tests for the share registry.

Tests cover:
- One share per item
- Idempotent grants
- Cascading grant removal
"""

import pytest

from drive.sharefeed_server.errors import AlreadySharedError
from drive.sharefeed_server.models import ShareType


class TestShareRegistry:
    """Tests for ShareRegistry."""

    @pytest.fixture
    def db(self, services):
        return services.db

    @pytest.fixture
    def shares(self, services):
        return services.shares

    @pytest.mark.asyncio
    async def test_create_and_get(self, db, shares):
        share = await db.run(lambda conn: shares.create(conn, "alice", "file1", ShareType.APP))

        fetched = await shares.get(share.id)
        assert fetched.owner_id == "alice"
        assert fetched.file_id == "file1"
        assert fetched.type == ShareType.APP

        assert await shares.get("missing") is None

    @pytest.mark.asyncio
    async def test_second_share_rejected(self, db, shares):
        """An item can only be shared once."""
        first = await db.run(lambda conn: shares.create(conn, "alice", "file1", ShareType.APP))

        with pytest.raises(AlreadySharedError) as exc_info:
            await db.run(lambda conn: shares.create(conn, "alice", "file1", ShareType.LINK))

        assert exc_info.value.share_id == first.id
        assert exc_info.value.code == "ALREADY_SHARED"

    @pytest.mark.asyncio
    async def test_add_user_is_idempotent(self, db, shares):
        share = await db.run(lambda conn: shares.create(conn, "alice", "file1", ShareType.APP))

        first = await db.run(lambda conn: shares.add_user(conn, share.id, "bob"))
        second = await db.run(lambda conn: shares.add_user(conn, share.id, "bob"))

        assert first.id == second.id
        assert first.is_accepted is False
        assert len(await shares.users_for_share(share.id)) == 1

    @pytest.mark.asyncio
    async def test_accept_and_filter(self, db, shares):
        share = await db.run(lambda conn: shares.create(conn, "alice", "file1", ShareType.APP))
        bob = await db.run(lambda conn: shares.add_user(conn, share.id, "bob"))
        await db.run(lambda conn: shares.add_user(conn, share.id, "carol"))

        await db.run(lambda conn: shares.set_accepted(conn, bob.id))

        accepted = await shares.users_for_share(share.id, accepted_only=True)
        assert [su.user_id for su in accepted] == ["bob"]
        assert (await shares.get_user(bob.id)).is_accepted is True

    @pytest.mark.asyncio
    async def test_delete_for_file_removes_grants(self, db, shares):
        share = await db.run(lambda conn: shares.create(conn, "alice", "file1", ShareType.APP))
        grant = await db.run(lambda conn: shares.add_user(conn, share.id, "bob"))

        assert await db.run(lambda conn: shares.delete_for_file(conn, "file1")) is True

        assert await shares.get(share.id) is None
        assert await shares.get_user(grant.id) is None

    @pytest.mark.asyncio
    async def test_shares_for_user(self, db, shares):
        s1 = await db.run(lambda conn: shares.create(conn, "alice", "f1", ShareType.APP))
        s2 = await db.run(lambda conn: shares.create(conn, "carol", "f2", ShareType.APP))
        await db.run(lambda conn: shares.add_user(conn, s1.id, "bob"))
        await db.run(lambda conn: shares.add_user(conn, s2.id, "bob"))

        received = await shares.shares_for_user("bob")
        assert [su.share_id for su in received] == [s1.id, s2.id]

    @pytest.mark.asyncio
    async def test_shared_file_ids(self, db, shares):
        await db.run(lambda conn: shares.create(conn, "alice", "f1", ShareType.APP))

        async with db.read() as conn:
            assert shares.shared_file_ids(conn, ["f1", "f2"]) == {"f1"}
            assert shares.shared_file_ids(conn, []) == set()
