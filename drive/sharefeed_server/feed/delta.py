"""
Delta feed service.

Answers "what changed since my cursor" for one account, covering the
items it owns and the items shared into it. Visibility bookkeeping
already happened when the changes were written; this service only
checks that the requested folder is visible and reads the account's log.
"""

from __future__ import annotations

import logging

from ..models import ChangePage, DeltaEntry
from ..sharing.resolver import ShareVisibilityResolver
from .cursor import CursorPager

logger = logging.getLogger(__name__)


class DeltaFeedService:
    """Facade over the cursor pager and the share resolver.

    Example:
        >>> feed = DeltaFeedService(resolver, pager)
        >>> page = await feed.delta("bob", "root")
        >>> page = await feed.delta("bob", "root", cursor=page.cursor)
    """

    def __init__(self, resolver: ShareVisibilityResolver, pager: CursorPager) -> None:
        self.resolver = resolver
        self.pager = pager

    async def delta(
        self,
        account_id: str,
        root_or_folder_id: str,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> ChangePage:
        """Changes the account has not seen yet.

        Args:
            account_id: Account reading its feed
            root_or_folder_id: Folder the client syncs; must be visible to the account
            cursor: Cursor from the previous page, None for the beginning
            limit: Maximum changes to return

        Returns:
            ChangePage with item snapshots and the cursor to resume from

        Raises:
            NotVisibleError: If the folder is not visible to the account
            ValidationError: If the cursor is invalid
        """
        await self.resolver.resolve_item(account_id, root_or_folder_id)

        log_page = await self.pager.page(account_id, cursor, limit)
        current = await self.resolver.present_items(
            account_id, [change.item_id for change in log_page.changes]
        )

        logger.debug(
            "Served delta page",
            extra={
                "account_id": account_id,
                "changes": len(log_page.changes),
                "has_more": log_page.has_more,
            },
        )

        return ChangePage(
            items=[DeltaEntry(change=change, item=current.get(change.item_id)) for change in log_page.changes],
            cursor=log_page.cursor,
            has_more=log_page.has_more,
        )
