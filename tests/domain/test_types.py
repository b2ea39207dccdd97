"""Tests for domain enums and the error hierarchy."""

import pytest

from bookswap.domain.errors import (
    AuthorizationError,
    BookSwapError,
    BookUnavailableError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PaymentPendingError,
    StateError,
    StorageError,
    ValidationError,
)
from bookswap.domain.types import NotificationType, TransactionKind, TransactionStatus


class TestEnums:
    def test_transaction_kinds(self):
        assert {k.value for k in TransactionKind} == {"exchange", "sell", "borrow"}

    def test_status_values_are_strings(self):
        assert TransactionStatus.RETURNED == "returned"

    def test_notification_types_are_hyphenated(self):
        assert {t.value for t in NotificationType} == {
            "request-received",
            "status-changed",
            "payment-changed",
            "dispute-opened",
            "dispute-resolved",
            "review-received",
        }


class TestErrors:
    """Every error carries a stable kind and a message."""

    @pytest.mark.parametrize(
        ("error", "family", "kind"),
        [
            (ValidationError("bad"), BookSwapError, "validation_error"),
            (AuthorizationError("no"), BookSwapError, "authorization_error"),
            (BookUnavailableError("taken"), ConflictError, "book_unavailable"),
            (PaymentPendingError("unpaid"), StateError, "payment_pending"),
            (StorageError("disk"), BookSwapError, "storage_error"),
        ],
    )
    def test_kind_and_family(self, error: BookSwapError, family: type, kind: str):
        assert isinstance(error, family)
        assert error.kind == kind
        assert error.to_dict() == {"kind": kind, "message": error.message}

    def test_not_found_message(self):
        err = NotFoundError("book", "b1")
        assert err.entity == "book"
        assert err.entity_id == "b1"
        assert "b1" in err.message

    def test_invalid_transition_message(self):
        err = InvalidTransitionError(TransactionStatus.COMPLETED, "accept")
        assert err.current_state == TransactionStatus.COMPLETED
        assert err.kind == "invalid_transition"
        assert "accept" in str(err)
