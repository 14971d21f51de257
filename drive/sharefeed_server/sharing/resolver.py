"""
Share visibility and mutation mirroring for the ShareFeed server.

This module decides which items each account can see and keeps every
account's change log in step with the items it can see, including
items shared into it by other accounts.

Visibility:
    An account sees the items it owns, its virtual items, and the
    physical items behind those virtual items. A virtual item exists
    only while the account holds an accepted grant for the share that
    produced it, so the presence of the virtual item is the grant check.

Mirroring:
    Every mutation of a physical item appends one change to the owner's
    log and one to the log of every account holding a virtual item for
    it, all inside the transaction that performs the mutation and all
    carrying the same updated_time snapshot.

Invariants:
    - There is exactly one physical row per item; sharees never get a fork
    - If two accounts see an item, their feeds record the same updated_time for it
    - An item inside a share cannot be shared again (single hop only)
    - Unknown and invisible items raise the same NotVisibleError

How to change safely:
    - Route every visibility decision through _view(); do not re-check
      ownership ad hoc in new entry points
    - Keep each public mutation a single Database.run() call
"""

from __future__ import annotations

import logging
import sqlite3

from ..errors import AlreadySharedError, NotVisibleError, ValidationError
from ..models import ChangeType, Item, Share, ShareType, ShareUser
from ..store.change_log import ChangeLogStore
from ..store.database import Database
from ..store.item_repository import ItemRepository
from ..store.share_registry import ShareRegistry

logger = logging.getLogger(__name__)

ROOT_REF = "root"
PATH_PREFIX = "root:/"
MAX_NAME_LENGTH = 255


def parse_path(item_ref: str) -> list[str] | None:
    """Split a "root:/folder/file.txt:" reference into names.

    Returns:
        List of names, or None when item_ref is not a path reference
    """
    if not item_ref.startswith(PATH_PREFIX) or not item_ref.endswith(":"):
        return None
    inner = item_ref[len(PATH_PREFIX) : -1]
    return [part for part in inner.split("/") if part]


def validate_name(name: str) -> None:
    if not name or not name.strip():
        raise ValidationError("Item name must not be empty", field_name="name")
    if "/" in name:
        raise ValidationError(f"Item name must not contain '/': {name}", field_name="name")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Item name longer than {MAX_NAME_LENGTH} characters", field_name="name"
        )


class ShareVisibilityResolver:
    """Visibility checks and mirrored mutations over items and shares.

    Thread safety:
        Stateless apart from the stores; every mutation is one database
        transaction.

    Example:
        >>> resolver = ShareVisibilityResolver(db, items, shares, change_log)
        >>> item = await resolver.create_item("alice", "root", "notes.txt", b"hello")
        >>> share = await resolver.create_share("alice", item.id, ShareType.APP)
        >>> grant = await resolver.grant_share_user("alice", share.id, "bob")
        >>> await resolver.accept_share_user("bob", grant.id)
    """

    def __init__(
        self,
        db: Database,
        items: ItemRepository,
        shares: ShareRegistry,
        change_log: ChangeLogStore,
    ) -> None:
        self.db = db
        self.items = items
        self.shares = shares
        self.change_log = change_log

    # --- Visibility ---

    def _present(self, conn: sqlite3.Connection, row: Item) -> Item | None:
        """Account-facing view of a row the account owns."""
        if not row.is_virtual:
            return row
        physical = self.items.get_row(conn, row.physical_id)
        if physical is None:
            return None
        return physical.as_seen_through(row)

    def _view(self, conn: sqlite3.Connection, account_id: str, item_id: str) -> Item | None:
        """The item as the account sees it, or None when it is not visible."""
        row = self.items.get_row(conn, item_id)
        if row is None:
            return None
        if row.owner_id == account_id:
            return self._present(conn, row)
        if row.is_virtual:
            return None
        link = self.items.link_for(conn, account_id, row.id)
        if link is None:
            return None
        return row.as_seen_through(link)

    def _children_views(self, conn: sqlite3.Connection, folder: Item) -> list[Item]:
        children = []
        for row in self.items.children_rows(conn, folder.id):
            view = self._present(conn, row)
            if view is not None:
                children.append(view)
        return children

    def _root(self, conn: sqlite3.Connection, account_id: str, create: bool) -> Item:
        if create:
            return self.items.ensure_root(conn, account_id)
        root = self.items.find_root(conn, account_id)
        if root is None:
            raise NotVisibleError(account_id, ROOT_REF)
        return root

    def _resolve(
        self,
        conn: sqlite3.Connection,
        account_id: str,
        item_ref: str,
        create_root: bool = True,
    ) -> Item:
        """Resolve an ID, "root" or a "root:/path:" reference.

        Args:
            conn: Open connection
            account_id: Acting account
            item_ref: Reference to resolve
            create_root: Create the account's root when missing; only
                valid inside a write transaction

        Raises:
            NotVisibleError: If the item is unknown or not visible
        """
        if item_ref == ROOT_REF:
            return self._root(conn, account_id, create_root)

        names = parse_path(item_ref)
        if names is not None:
            current = self._root(conn, account_id, create_root)
            for name in names:
                child = self.items.find_child(conn, current.id, name)
                view = self._present(conn, child) if child else None
                if view is None:
                    raise NotVisibleError(account_id, item_ref)
                current = view
            return current

        view = self._view(conn, account_id, item_ref)
        if view is None:
            raise NotVisibleError(account_id, item_ref)
        return view

    async def visibility_set(self, account_id: str) -> set[str]:
        """IDs of every item visible to an account.

        Includes owned physical items, the account's virtual items and
        the physical items those virtual items resolve to.
        """
        async with self.db.read() as conn:
            cursor = conn.execute(
                "SELECT id, source_item_id FROM items WHERE owner_id = ?", (account_id,)
            )
            visible: set[str] = set()
            for row in cursor.fetchall():
                visible.add(row["id"])
                if row["source_item_id"]:
                    visible.add(row["source_item_id"])
            return visible

    async def can_access_item(self, account_id: str, item_id: str) -> bool:
        async with self.db.read() as conn:
            return self._view(conn, account_id, item_id) is not None

    async def resolve_item(self, account_id: str, item_ref: str) -> Item:
        """Get an item as the account sees it.

        Raises:
            NotVisibleError: If the item is unknown or not visible
        """
        await self.items.root_id_for(account_id)
        async with self.db.read() as conn:
            return self._resolve(conn, account_id, item_ref, create_root=False)

    async def list_children(self, account_id: str, folder_ref: str) -> list[Item]:
        await self.items.root_id_for(account_id)
        async with self.db.read() as conn:
            folder = self._resolve(conn, account_id, folder_ref, create_root=False)
            if not folder.is_folder:
                raise ValidationError(f"Not a folder: {folder_ref}", field_name="id")
            return self._children_views(conn, folder)

    async def read_content(self, account_id: str, item_ref: str) -> bytes:
        item = await self.resolve_item(account_id, item_ref)
        if item.is_folder:
            raise ValidationError(f"Folders have no content: {item_ref}", field_name="id")
        return item.content

    async def present_items(self, account_id: str, item_ids: list[str]) -> dict[str, Item]:
        """Current views of items in an account's feed; deleted items are left out."""
        result: dict[str, Item] = {}
        async with self.db.read() as conn:
            for item_id in dict.fromkeys(item_ids):
                row = self.items.get_row(conn, item_id)
                if row is None or row.owner_id != account_id:
                    continue
                view = self._present(conn, row)
                if view is not None:
                    result[item_id] = view
        return result

    # --- Mirroring ---

    def _audience(self, conn: sqlite3.Connection, physical: Item) -> list[tuple[str, str]]:
        """(account, item id) pairs whose feeds must record a mutation of physical."""
        audience = [(physical.owner_id, physical.id)]
        audience.extend((link.owner_id, link.id) for link in self.items.links_to(conn, physical.id))
        return audience

    def _mirror(
        self,
        conn: sqlite3.Connection,
        physical: Item,
        change_type: ChangeType,
        updated_time: int,
    ) -> int:
        audience = self._audience(conn, physical)
        for owner_id, item_id in audience:
            self.change_log.append(
                conn, owner_id, item_id, physical.item_type, change_type, updated_time
            )
        return len(audience)

    def _delete_physical(self, conn: sqlite3.Connection, physical: Item) -> None:
        """Delete an item and everything below it, mirroring a Delete to every feed."""
        subtree = [physical] + self.items.descendants(conn, physical.id)
        deleted_time = self.db.current_time()
        for node in reversed(subtree):
            self._mirror(conn, node, ChangeType.DELETE, max(deleted_time, node.updated_time + 1))
            for link in self.items.links_to(conn, node.id):
                self.items.delete(conn, link.id)
            self.shares.delete_for_file(conn, node.id)
            self.items.delete(conn, node.id)

    def _attach_sharee(self, conn: sqlite3.Connection, account_id: str, physical: Item) -> int:
        """Give an account virtual items for a shared item and its descendants."""
        root = self.items.ensure_root(conn, account_id)
        link_by_source = {physical.parent_id: root.id}
        created = 0
        for node in [physical] + self.items.descendants(conn, physical.id):
            link = self.items.create(
                conn,
                account_id,
                link_by_source[node.parent_id],
                node.name,
                is_folder=node.is_folder,
                source_item_id=node.id,
            )
            link_by_source[node.id] = link.id
            self.change_log.append(
                conn, account_id, link.id, node.item_type, ChangeType.CREATE, node.updated_time
            )
            created += 1
        return created

    def _detach_sharee(self, conn: sqlite3.Connection, account_id: str, share: Share) -> int:
        """Remove an account's virtual items for a share, recording Deletes in its feed only."""
        top = self.items.link_for(conn, account_id, share.file_id)
        if top is None:
            return 0
        subtree = [top] + self.items.descendants(conn, top.id)
        deleted_time = self.db.current_time()
        for node in reversed(subtree):
            self.change_log.append(
                conn, account_id, node.id, node.item_type, ChangeType.DELETE, deleted_time
            )
            self.items.delete(conn, node.id)
        return len(subtree)

    def _check_sibling_name(
        self,
        conn: sqlite3.Connection,
        parent_id: str,
        name: str,
        exclude_id: str | None = None,
    ) -> None:
        existing = self.items.find_child(conn, parent_id, name)
        if existing is not None and existing.id != exclude_id:
            raise ValidationError(f"An item named '{name}' already exists", field_name="name")

    # --- Item mutations ---

    async def create_item(
        self,
        account_id: str,
        parent_ref: str,
        name: str,
        content: bytes = b"",
        is_folder: bool = False,
    ) -> Item:
        """Create a file or folder under a visible folder.

        The physical item belongs to the owner of the physical parent, so
        a sharee writing into a shared folder adds to the sharer's tree and
        every account holding the folder gets the new item.

        Args:
            account_id: Acting account
            parent_ref: Parent folder reference
            name: Item name
            content: File content
            is_folder: Whether to create a folder

        Returns:
            The new item as the acting account sees it
        """
        validate_name(name)

        def work(conn: sqlite3.Connection) -> Item:
            parent = self._resolve(conn, account_id, parent_ref)
            if not parent.is_folder:
                raise ValidationError(f"Parent is not a folder: {parent_ref}", field_name="parent_id")
            self._check_sibling_name(conn, parent.id, name)

            physical_parent = self.items.get_row(conn, parent.physical_id)
            item = self.items.create(
                conn, physical_parent.owner_id, physical_parent.id, name, content, is_folder
            )
            self.change_log.append(
                conn, item.owner_id, item.id, item.item_type, ChangeType.CREATE, item.updated_time
            )

            result = item
            for parent_link in self.items.links_to(conn, physical_parent.id):
                link = self.items.create(
                    conn,
                    parent_link.owner_id,
                    parent_link.id,
                    name,
                    is_folder=is_folder,
                    source_item_id=item.id,
                )
                self.change_log.append(
                    conn, link.owner_id, link.id, item.item_type, ChangeType.CREATE, item.updated_time
                )
                if link.owner_id == account_id:
                    result = item.as_seen_through(link)
            return result

        item = await self.db.run(work)
        logger.debug(
            "Created item",
            extra={"account_id": account_id, "item_id": item.id, "physical_id": item.physical_id},
        )
        return item

    async def update_item(
        self,
        account_id: str,
        item_ref: str,
        content: bytes | None = None,
        name: str | None = None,
    ) -> Item:
        """Change an item's content or name and mirror an Update to every feed that sees it.

        Raises:
            NotVisibleError: If the item is not visible to the account
            ValidationError: If the item is a root folder or the name is taken
        """
        if name is not None:
            validate_name(name)

        def work(conn: sqlite3.Connection) -> Item:
            view = self._resolve(conn, account_id, item_ref)
            if view.parent_id is None:
                raise ValidationError("The root folder cannot be modified", field_name="id")
            if content is not None and view.is_folder:
                raise ValidationError(f"Folders have no content: {item_ref}", field_name="id")
            if name is not None:
                self._check_sibling_name(conn, view.parent_id, name, exclude_id=view.id)
                # the rename lands on the physical row and every link to it
                current = self.items.get_row(conn, view.physical_id)
                for row in [current] + self.items.links_to(conn, current.id):
                    self._check_sibling_name(conn, row.parent_id, name, exclude_id=row.id)

            physical = self.items.update(conn, view.physical_id, content=content, name=name)
            if name is not None:
                self.items.rename_links(conn, physical.id, name)
            self._mirror(conn, physical, ChangeType.UPDATE, physical.updated_time)
            return self._view(conn, account_id, view.id)

        item = await self.db.run(work)
        logger.debug(
            "Updated item",
            extra={
                "account_id": account_id,
                "item_id": item.id,
                "updated_time": item.updated_time,
            },
        )
        return item

    async def write_file(self, account_id: str, item_ref: str, content: bytes) -> Item:
        """Replace a file's content, creating it when a path names a missing file."""
        names = parse_path(item_ref)
        if names is None:
            return await self.update_item(account_id, item_ref, content=content)

        if not names:
            raise ValidationError("Folders have no content: root", field_name="id")
        try:
            return await self.update_item(account_id, item_ref, content=content)
        except NotVisibleError:
            parent_ref = PATH_PREFIX + "/".join(names[:-1]) + ":" if names[:-1] else ROOT_REF
            return await self.create_item(account_id, parent_ref, names[-1], content)

    async def delete_item(self, account_id: str, item_ref: str) -> None:
        """Delete an item.

        Deleting a physical item (or a virtual item inside a shared folder)
        removes it for everyone and records a Delete in every feed that saw
        it. A sharee deleting the top-level virtual item of a share only
        leaves the share: the Delete is recorded in its own feed.
        """

        def work(conn: sqlite3.Connection) -> str:
            view = self._resolve(conn, account_id, item_ref)
            if view.parent_id is None:
                raise ValidationError("The root folder cannot be deleted", field_name="id")

            if view.is_virtual:
                share = self.shares.get_for_file(conn, view.physical_id)
                if share is not None and share.owner_id != account_id:
                    self._detach_sharee(conn, account_id, share)
                    for grant in self.shares.users_rows(conn, share.id):
                        if grant.user_id == account_id:
                            self.shares.delete_user(conn, grant.id)
                    return "left_share"

            self._delete_physical(conn, self.items.get_row(conn, view.physical_id))
            return "deleted"

        outcome = await self.db.run(work)
        logger.debug(
            "Deleted item",
            extra={"account_id": account_id, "item_ref": item_ref, "outcome": outcome},
        )

    # --- Shares ---

    async def create_share(
        self,
        account_id: str,
        item_ref: str,
        share_type: ShareType,
    ) -> Share:
        """Make an item shareable.

        Raises:
            NotVisibleError: If the item is not visible to the account
            AlreadySharedError: If the item, a parent folder or a child item is already shared
            ValidationError: If the item is a root folder or not owned by the account
        """

        def work(conn: sqlite3.Connection) -> Share:
            view = self._resolve(conn, account_id, item_ref)
            if view.parent_id is None:
                raise ValidationError("The root folder cannot be shared", field_name="file_id")

            physical = self.items.get_row(conn, view.physical_id)
            existing = self.shares.get_for_file(conn, physical.id)
            if existing is not None:
                raise AlreadySharedError(physical.id, existing.id)

            related = [a.id for a in self.items.ancestors(conn, physical)]
            related.extend(d.id for d in self.items.descendants(conn, physical.id))
            if self.shares.shared_file_ids(conn, related):
                raise AlreadySharedError(physical.id)

            if physical.owner_id != account_id:
                raise ValidationError("Only the owner can share an item", field_name="file_id")

            return self.shares.create(conn, account_id, physical.id, share_type)

        share = await self.db.run(work)
        logger.info(
            "Created share",
            extra={
                "share_id": share.id,
                "owner_id": account_id,
                "file_id": share.file_id,
                "type": share.type.name,
            },
        )
        return share

    async def get_share(self, account_id: str | None, share_id: str) -> Share:
        """Get a share; link shares are readable by anyone, app shares by owner and grantees."""
        async with self.db.read() as conn:
            share = self.shares.get_row(conn, share_id)
            if share is None:
                raise NotVisibleError(account_id or "", share_id, resource_type="share")
            if share.type == ShareType.LINK or share.owner_id == account_id:
                return share
            grantees = {grant.user_id for grant in self.shares.users_rows(conn, share.id)}
            if account_id not in grantees:
                raise NotVisibleError(account_id or "", share_id, resource_type="share")
            return share

    async def read_link_content(self, share_id: str) -> bytes:
        """Content of a link-shared file, no account required."""
        async with self.db.read() as conn:
            share = self.shares.get_row(conn, share_id)
            if share is None or share.type != ShareType.LINK:
                raise NotVisibleError("", share_id, resource_type="share")
            item = self.items.get_row(conn, share.file_id)
            if item is None:
                raise NotVisibleError("", share_id, resource_type="share")
            if item.is_folder:
                raise ValidationError("Folders have no content", field_name="share_id")
            return item.content

    async def grant_share_user(self, account_id: str, share_id: str, user_id: str) -> ShareUser:
        """Grant an app share to another account (pending until it accepts)."""

        def work(conn: sqlite3.Connection) -> ShareUser:
            share = self.shares.get_row(conn, share_id)
            if share is None or share.owner_id != account_id:
                raise NotVisibleError(account_id, share_id, resource_type="share")
            if share.type != ShareType.APP:
                raise ValidationError(
                    "Only app shares can be granted to users", field_name="share_id"
                )
            if user_id == share.owner_id:
                raise ValidationError("Cannot share an item with its owner", field_name="user_id")
            return self.shares.add_user(conn, share.id, user_id)

        share_user = await self.db.run(work)
        logger.info(
            "Granted share",
            extra={"share_id": share_id, "share_user_id": share_user.id, "user_id": user_id},
        )
        return share_user

    async def accept_share_user(self, account_id: str, share_user_id: str) -> ShareUser:
        """Accept a grant; the first acceptance adds the shared items to the account's feed.

        Accepting again is a no-op.

        Raises:
            NotVisibleError: If the grant does not exist or belongs to another account
        """

        def work(conn: sqlite3.Connection) -> tuple[ShareUser, int]:
            share_user = self.shares.get_user_row(conn, share_user_id)
            if share_user is None or share_user.user_id != account_id:
                raise NotVisibleError(account_id, share_user_id, resource_type="share_user")
            if share_user.is_accepted:
                return share_user, 0

            share = self.shares.get_row(conn, share_user.share_id)
            physical = self.items.get_row(conn, share.file_id)
            self.shares.set_accepted(conn, share_user.id)
            created = self._attach_sharee(conn, account_id, physical)
            share_user.is_accepted = True
            return share_user, created

        share_user, created = await self.db.run(work)
        if created:
            logger.info(
                "Accepted share",
                extra={
                    "share_user_id": share_user.id,
                    "user_id": account_id,
                    "items": created,
                },
            )
        return share_user

    async def revoke_share_user(self, account_id: str, share_user_id: str) -> None:
        """Remove a grant; an accepted grant's items leave the sharee's feed as Deletes.

        Either the share owner or the grantee may revoke.
        """

        def work(conn: sqlite3.Connection) -> int:
            share_user = self.shares.get_user_row(conn, share_user_id)
            share = self.shares.get_row(conn, share_user.share_id) if share_user else None
            if share is None or account_id not in (share.owner_id, share_user.user_id):
                raise NotVisibleError(account_id, share_user_id, resource_type="share_user")

            removed = 0
            if share_user.is_accepted:
                removed = self._detach_sharee(conn, share_user.user_id, share)
            self.shares.delete_user(conn, share_user.id)
            return removed

        removed = await self.db.run(work)
        logger.info(
            "Revoked share",
            extra={"share_user_id": share_user_id, "by": account_id, "items": removed},
        )

    async def list_share_users(self, account_id: str, share_id: str) -> list[ShareUser]:
        share = await self.shares.get(share_id)
        if share is None or share.owner_id != account_id:
            raise NotVisibleError(account_id, share_id, resource_type="share")
        return await self.shares.users_for_share(share_id)

    async def list_received_shares(self, account_id: str) -> list[ShareUser]:
        return await self.shares.shares_for_user(account_id)
