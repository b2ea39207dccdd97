"""Tests for Pydantic domain models: BookRecord, transaction variants, Dispute, Review."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from bookswap.domain.models import (
    TRANSACTION_ADAPTER,
    BookRecord,
    BorrowTransaction,
    Dispute,
    ExchangeTransaction,
    Identity,
    Review,
    SellTransaction,
)
from bookswap.domain.types import TransactionKind, TransactionStatus, UserRole


class TestBookRecord:
    """Tests for listing validation per mode."""

    def test_sell_listing_with_string_price(self):
        book = BookRecord(owner_id="alice", title="Dune", mode="sell", price="12.50")
        assert book.price == Decimal("12.50")
        assert book.is_available is True
        assert book.status == "active"
        assert book.reserved_by is None

    def test_rejects_float_price(self):
        with pytest.raises(ValidationError, match="Use Decimal or string, not float"):
            BookRecord(owner_id="alice", title="Dune", mode="sell", price=12.5)

    def test_sell_requires_non_negative_price(self):
        with pytest.raises(ValidationError, match="non-negative price"):
            BookRecord(owner_id="alice", title="Dune", mode="sell", price="-1")

    def test_sell_allows_zero_price(self):
        book = BookRecord(owner_id="alice", title="Dune", mode="sell", price="0")
        assert book.price == Decimal("0")

    def test_exchange_requires_desired_exchange(self):
        with pytest.raises(ValidationError, match="desired exchange"):
            BookRecord(owner_id="alice", title="Dune", mode="exchange", desired_exchange="  ")

    def test_borrow_requires_positive_duration(self):
        with pytest.raises(ValidationError, match="at least 1 day"):
            BookRecord(owner_id="alice", title="Dune", mode="borrow", loan_duration_days=0)

    def test_rejects_blank_title(self):
        with pytest.raises(ValidationError, match="title must not be empty"):
            BookRecord(owner_id="alice", title=" ", mode="sell", price="1")


class TestTransactionVariants:
    """Tests for the tagged transaction union."""

    def test_exchange_roles_and_books(self):
        tx = ExchangeTransaction(
            initiator_id="bob",
            counterparty_id="alice",
            owner_book_id="b-owner",
            requester_book_id="b-req",
        )
        assert tx.requester_id == "bob"
        assert tx.owner_id == "alice"
        assert tx.book_ids == ("b-owner", "b-req")
        assert tx.status == TransactionStatus.PENDING

    def test_sell_roles(self):
        tx = SellTransaction(
            initiator_id="bob", counterparty_id="alice", book_id="b1", price="10"
        )
        assert tx.buyer_id == "bob"
        assert tx.seller_id == "alice"
        assert tx.payment_status == "pending"

    def test_borrow_rejects_zero_duration(self):
        with pytest.raises(ValidationError, match="at least 1 day"):
            BorrowTransaction(
                initiator_id="bob", counterparty_id="alice", book_id="b1", requested_duration=0
            )

    def test_borrow_duration_validated_on_assignment(self):
        tx = BorrowTransaction(
            initiator_id="bob", counterparty_id="alice", book_id="b1", requested_duration=7
        )
        with pytest.raises(ValidationError):
            tx.requested_duration = -3

    def test_exchange_message_length_limit(self):
        with pytest.raises(ValidationError):
            ExchangeTransaction(
                initiator_id="bob",
                counterparty_id="alice",
                owner_book_id="b1",
                requester_book_id="b2",
                message="x" * 501,
            )

    def test_adapter_dispatches_on_kind(self):
        tx = BorrowTransaction(
            initiator_id="bob", counterparty_id="alice", book_id="b1", requested_duration=7
        )
        restored = TRANSACTION_ADAPTER.validate_json(tx.model_dump_json())
        assert isinstance(restored, BorrowTransaction)
        assert restored.kind == TransactionKind.BORROW

    def test_participant_helpers(self):
        tx = SellTransaction(initiator_id="bob", counterparty_id="alice", book_id="b1", price="1")
        assert tx.is_participant("alice")
        assert not tx.is_participant("carol")
        assert tx.other_participant("alice") == "bob"
        assert tx.other_participant("bob") == "alice"

    def test_was_accepted_reads_history(self):
        tx = SellTransaction(initiator_id="bob", counterparty_id="alice", book_id="b1", price="1")
        assert tx.was_accepted is False
        tx.history = [(TransactionStatus.PENDING, "accept", TransactionStatus.ACCEPTED)]
        assert tx.was_accepted is True


class TestDisputeAndReview:
    def test_dispute_requires_reason(self):
        with pytest.raises(ValidationError, match="reason must not be empty"):
            Dispute(
                transaction_id="t1",
                transaction_kind="exchange",
                raised_by="bob",
                participants=["bob", "alice"],
                reason="   ",
            )

    def test_dispute_reason_length_limit(self):
        with pytest.raises(ValidationError):
            Dispute(
                transaction_id="t1",
                transaction_kind="exchange",
                raised_by="bob",
                participants=["bob", "alice"],
                reason="x" * 1001,
            )

    @pytest.mark.parametrize("rating", [0, 6])
    def test_review_rating_bounds(self, rating: int):
        with pytest.raises(ValidationError):
            Review(
                transaction_id="t1",
                transaction_kind="sell",
                reviewer_id="bob",
                reviewee_id="alice",
                rating=rating,
            )

    def test_admin_identity_is_arbitrator(self):
        assert Identity(user_id="a", role=UserRole.ADMIN).is_arbitrator
        assert not Identity(user_id="b").is_arbitrator
