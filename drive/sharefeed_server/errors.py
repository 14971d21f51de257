"""
Error types for the ShareFeed server.

This module defines all exception types raised by the stores, the
share resolver and the delta feed:
- ShareFeedError: Base exception
- ValidationError: Bad input, rejected before any mutation
- AlreadySharedError: Attempt to share an item that is already shared
- NotVisibleError: Unknown ID or item outside the caller's visibility (not found)
- TransactionConflictError: Store contention that outlasted the retries

Invariants:
    - All errors inherit from ShareFeedError
    - Every error carries an HTTP status classification for the API layer
    - NotVisibleError never reveals whether the item exists
"""

from __future__ import annotations

from typing import Any


class ShareFeedError(Exception):
    """Base exception for all ShareFeed errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    http_status = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SHAREFEED_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "error_code": self.code, "details": self.details}


class ValidationError(ShareFeedError):
    """Input failed validation.

    Raised when:
    - A cursor is malformed or was issued to another account
    - A share or share grant ID is unknown
    - A request is structurally invalid (duplicate name, wrong share type)
    """

    http_status = 400

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        details.setdefault("field", field_name)
        super().__init__(message, code=code or "VALIDATION_ERROR", details=details)
        self.field_name = field_name


class AlreadySharedError(ValidationError):
    """The item already has a share.

    Sync clients get a plain bad-request classification so they can tell it
    apart from transient failures.
    """

    def __init__(self, file_id: str, share_id: str | None = None) -> None:
        super().__init__(
            f"Item is already shared: {file_id}",
            field_name="file_id",
            code="ALREADY_SHARED",
            details={"file_id": file_id, "share_id": share_id},
        )
        self.file_id = file_id
        self.share_id = share_id


class NotVisibleError(ValidationError):
    """The item does not exist or is not visible to the account.

    Unknown IDs and IDs outside the caller's visibility raise the same
    error so existence is never leaked.
    """

    http_status = 404

    def __init__(self, account_id: str, resource_id: str, resource_type: str = "item") -> None:
        super().__init__(
            f"Not found: {resource_type} {resource_id}",
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.account_id = account_id
        self.resource_id = resource_id
        self.resource_type = resource_type


class TransactionConflictError(ShareFeedError):
    """Concurrent writers kept the store locked past the retry budget.

    The transaction was rolled back entirely; callers may retry.
    """

    http_status = 503

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message, code="TRANSACTION_CONFLICT", details={"attempts": attempts})
        self.attempts = attempts
