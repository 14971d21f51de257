"""
Unit tests for error types.
"""

from drive.sharefeed_server.errors import (
    AlreadySharedError,
    NotVisibleError,
    ShareFeedError,
    TransactionConflictError,
    ValidationError,
)


class TestErrors:
    """Tests for the error hierarchy."""

    def test_hierarchy(self):
        assert issubclass(ValidationError, ShareFeedError)
        assert issubclass(AlreadySharedError, ValidationError)
        assert issubclass(NotVisibleError, ValidationError)
        assert issubclass(TransactionConflictError, ShareFeedError)

    def test_http_status(self):
        assert ValidationError("bad").http_status == 400
        assert AlreadySharedError("f1").http_status == 400
        assert NotVisibleError("bob", "f1").http_status == 404
        assert TransactionConflictError("busy", attempts=4).http_status == 503

    def test_to_dict(self):
        error = AlreadySharedError("f1", share_id="s1")

        assert error.to_dict() == {
            "error": "Item is already shared: f1",
            "error_code": "ALREADY_SHARED",
            "details": {"file_id": "f1", "share_id": "s1", "field": "file_id"},
        }

    def test_not_visible_does_not_name_account(self):
        """The message is the same whoever asks."""
        assert str(NotVisibleError("bob", "f1")) == str(NotVisibleError("carol", "f1"))
