"""
Opaque cursors over per-account change logs.

A cursor names the last change delivered to one account. It is a
URL-safe base64 body plus an HMAC-SHA256 tag, so clients cannot forge a
position or replay another account's cursor.

Invariants:
    - Resuming from a cursor returns only changes with a greater id
    - A missing cursor means "from the beginning"
    - Bad or foreign cursors fail validation; they never reset to the beginning
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field

from ..errors import ValidationError
from ..models import Change
from ..store.change_log import ChangeLogStore

logger = logging.getLogger(__name__)

TAG_LENGTH = 32


@dataclass
class LogPage:
    """Raw changes plus the cursor to resume from."""

    changes: list[Change] = field(default_factory=list)
    cursor: str = ""
    has_more: bool = False


class CursorPager:
    """Encode, decode and page with change log cursors.

    Example:
        >>> pager = CursorPager(change_log, secret="s3cret")
        >>> first = await pager.page("alice", None)
        >>> later = await pager.page("alice", first.cursor)
    """

    def __init__(
        self,
        change_log: ChangeLogStore,
        secret: str,
        default_page_size: int = 100,
        max_page_size: int = 1000,
    ) -> None:
        self.change_log = change_log
        self._secret = secret.encode("utf-8")
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def _tag(self, body: bytes) -> str:
        return hmac.new(self._secret, body, hashlib.sha256).hexdigest()[:TAG_LENGTH]

    def encode(self, account_id: str, change_id: int) -> str:
        body = json.dumps({"a": account_id, "p": change_id}, separators=(",", ":")).encode("utf-8")
        encoded = base64.urlsafe_b64encode(body).decode("ascii").rstrip("=")
        return f"{encoded}.{self._tag(body)}"

    def decode(self, account_id: str, cursor: str | None) -> int:
        """Position encoded in a cursor.

        Args:
            account_id: Account the cursor must belong to
            cursor: Cursor string, or None for the beginning

        Returns:
            Last delivered change id (0 for the beginning)

        Raises:
            ValidationError: If the cursor is malformed, tampered with,
                or was issued to another account
        """
        if not cursor:
            return 0

        encoded, sep, tag = cursor.rpartition(".")
        if not sep or not encoded:
            raise ValidationError("Malformed cursor", field_name="cursor")

        try:
            body = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
        except (binascii.Error, ValueError) as e:
            raise ValidationError("Malformed cursor", field_name="cursor") from e

        if not hmac.compare_digest(tag, self._tag(body)):
            raise ValidationError("Invalid cursor", field_name="cursor")

        try:
            data = json.loads(body)
            owner = data["a"]
            position = data["p"]
        except (ValueError, KeyError, TypeError) as e:
            raise ValidationError("Malformed cursor", field_name="cursor") from e

        if owner != account_id:
            logger.warning("Rejected cursor issued to another account", extra={"account_id": account_id})
            raise ValidationError("Cursor was issued to another account", field_name="cursor")
        if not isinstance(position, int) or position < 0:
            raise ValidationError("Malformed cursor", field_name="cursor")

        return position

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.default_page_size
        if limit < 1:
            raise ValidationError("limit must be >= 1", field_name="limit")
        return min(limit, self.max_page_size)

    async def page(self, account_id: str, cursor: str | None, limit: int | None = None) -> LogPage:
        """Next page of an account's changes after a cursor.

        The returned cursor points at the last change in the page, or
        repeats the given position when nothing new is pending.
        """
        after_id = self.decode(account_id, cursor)
        changes, has_more = await self.change_log.page(account_id, after_id, self.clamp_limit(limit))
        last_id = changes[-1].id if changes else after_id
        return LogPage(changes=changes, cursor=self.encode(account_id, last_id), has_more=has_more)
