"""Tests for the sell lifecycle, payment gate and acceptance races."""

from __future__ import annotations

import threading
from decimal import Decimal

import pytest
import structlog
from prometheus_client import REGISTRY

from bookswap.audit.store import query_audit_trail
from bookswap.domain.errors import (
    AuthorizationError,
    BookUnavailableError,
    ConflictError,
    DuplicateRequestError,
    InvalidBookModeError,
    InvalidTransitionError,
    NotFoundError,
    NotParticipantError,
    PaymentPendingError,
    SelfTradeForbiddenError,
    StateError,
)
from bookswap.domain.models import Identity
from bookswap.domain.types import (
    BookStatus,
    CancellationReason,
    NotificationType,
    PaymentStatus,
    TransactionStatus,
)
from bookswap.engine import Marketplace
from bookswap.identity import acting_as


def _completed_count() -> float:
    return REGISTRY.get_sample_value("bookswap_transactions_completed_total", {"kind": "sell"}) or 0.0


def _accepted_sale(market: Marketplace, as_user, list_book, buyer: str = "bob"):
    book = list_book("alice", "sell")
    with as_user(buyer):
        tx = market.sell.create(book.book_id)
    with as_user("alice"):
        market.sell.accept(tx.transaction_id)
    return book, tx


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreate:
    def test_price_copied_from_listing(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "sell", price="15.00")
        with as_user("bob"):
            tx = market.sell.create(book.book_id)

        assert tx.price == Decimal("15.00")
        assert tx.buyer_id == "bob"
        assert tx.seller_id == "alice"
        assert tx.status == TransactionStatus.PENDING
        assert tx.payment_status == PaymentStatus.PENDING

    def test_request_notifies_seller_and_opens_conversation(
        self, market: Marketplace, as_user, list_book
    ) -> None:
        book = list_book("alice", "sell")
        with as_user("bob"):
            tx = market.sell.create(book.book_id)

        inbox = market.inbox.list_for("alice")
        assert [n.event_type for n in inbox] == [NotificationType.REQUEST_RECEIVED]
        assert inbox[0].related_entity is not None
        assert inbox[0].related_entity.entity_id == tx.transaction_id

        conversation = market.conversations.get(tx.transaction_id)
        assert conversation is not None
        assert conversation.participants == ["alice", "bob"]

    def test_self_trade_forbidden(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "sell")
        with as_user("alice"), pytest.raises(SelfTradeForbiddenError):
            market.sell.create(book.book_id)

    def test_wrong_mode_rejected(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "borrow")
        with as_user("bob"), pytest.raises(InvalidBookModeError):
            market.sell.create(book.book_id)

    def test_duplicate_pending_request(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "sell")
        with as_user("bob"):
            market.sell.create(book.book_id)
            with pytest.raises(DuplicateRequestError):
                market.sell.create(book.book_id)

    def test_unavailable_book_creates_no_record(
        self, market: Marketplace, as_user, list_book
    ) -> None:
        book, _ = _accepted_sale(market, as_user, list_book)

        with as_user("carol"), pytest.raises(BookUnavailableError):
            market.sell.create(book.book_id)

        assert market.transactions_for("carol") == []


# ---------------------------------------------------------------------------
# Sell happy path
# ---------------------------------------------------------------------------


class TestSellHappyPath:
    def test_full_round_trip(self, market: Marketplace, as_user, list_book) -> None:
        before = _completed_count()
        book, tx = _accepted_sale(market, as_user, list_book)
        assert market.listings.get(book.book_id).status == BookStatus.PENDING

        with as_user("bob"), pytest.raises(PaymentPendingError):
            market.sell.confirm_completion(tx.transaction_id)

        with as_user("alice"):
            paid = market.sell.mark_paid(tx.transaction_id)
        assert paid.payment_status == PaymentStatus.PAID

        with as_user("bob"):
            market.sell.confirm_completion(tx.transaction_id)
        with as_user("alice"):
            done = market.sell.confirm_completion(tx.transaction_id)

        assert done.status == TransactionStatus.COMPLETED
        stored_book = market.listings.get(book.book_id)
        assert stored_book.status == BookStatus.COMPLETED
        assert stored_book.is_available is False
        assert _completed_count() == before + 1
        assert market.reviews.is_eligible("bob", tx.transaction_id)
        assert market.reviews.is_eligible("alice", tx.transaction_id)

    def test_payment_pending_leaves_state_unchanged(
        self, market: Marketplace, as_user, list_book
    ) -> None:
        _, tx = _accepted_sale(market, as_user, list_book)

        with as_user("alice"), pytest.raises(PaymentPendingError):
            market.sell.confirm_completion(tx.transaction_id)

        stored = market.sell.get(tx.transaction_id)
        assert stored.counterparty_confirmed is False
        assert stored.status == TransactionStatus.ACCEPTED

    def test_only_seller_marks_paid(self, market: Marketplace, as_user, list_book) -> None:
        _, tx = _accepted_sale(market, as_user, list_book)
        with as_user("bob"), pytest.raises(AuthorizationError):
            market.sell.mark_paid(tx.transaction_id)

    def test_mark_paid_twice(self, market: Marketplace, as_user, list_book) -> None:
        _, tx = _accepted_sale(market, as_user, list_book)
        with as_user("alice"):
            market.sell.mark_paid(tx.transaction_id)
            with pytest.raises(StateError):
                market.sell.mark_paid(tx.transaction_id)

    def test_mark_paid_before_accept(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "sell")
        with as_user("bob"):
            tx = market.sell.create(book.book_id)
        with as_user("alice"), pytest.raises(InvalidTransitionError):
            market.sell.mark_paid(tx.transaction_id)

    def test_buyer_notified_of_payment(self, market: Marketplace, as_user, list_book) -> None:
        _, tx = _accepted_sale(market, as_user, list_book)
        with as_user("alice"):
            market.sell.mark_paid(tx.transaction_id)
        types = [n.event_type for n in market.inbox.list_for("bob")]
        assert NotificationType.PAYMENT_CHANGED in types


# ---------------------------------------------------------------------------
# Confirmation semantics
# ---------------------------------------------------------------------------


class TestConfirm:
    def test_confirm_is_idempotent(self, market: Marketplace, as_user, list_book) -> None:
        _, tx = _accepted_sale(market, as_user, list_book)
        with as_user("alice"):
            market.sell.mark_paid(tx.transaction_id)
        with as_user("bob"):
            first = market.sell.confirm_completion(tx.transaction_id)
            second = market.sell.confirm_completion(tx.transaction_id)

        assert first.initiator_confirmed and second.initiator_confirmed
        assert second.status == TransactionStatus.ACCEPTED
        assert second.version == first.version

    def test_confirm_after_completion_is_noop(
        self, market: Marketplace, as_user, list_book
    ) -> None:
        _, tx = _accepted_sale(market, as_user, list_book)
        with as_user("alice"):
            market.sell.mark_paid(tx.transaction_id)
            market.sell.confirm_completion(tx.transaction_id)
        with as_user("bob"):
            market.sell.confirm_completion(tx.transaction_id)
            again = market.sell.confirm_completion(tx.transaction_id)
        assert again.status == TransactionStatus.COMPLETED

    def test_non_participant_cannot_confirm(self, market: Marketplace, as_user, list_book) -> None:
        _, tx = _accepted_sale(market, as_user, list_book)
        with as_user("mallory"), pytest.raises(NotParticipantError):
            market.sell.confirm_completion(tx.transaction_id)

    def test_confirm_pending_is_invalid(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "sell")
        with as_user("bob"):
            tx = market.sell.create(book.book_id)
            with pytest.raises(InvalidTransitionError):
                market.sell.confirm_completion(tx.transaction_id)

    def test_concurrent_confirmations_complete_exactly_once(
        self, market: Marketplace, as_user, list_book
    ) -> None:
        book, tx = _accepted_sale(market, as_user, list_book)
        with as_user("alice"):
            market.sell.mark_paid(tx.transaction_id)

        barrier = threading.Barrier(2)
        errors: list[Exception] = []

        def confirm(user_id: str) -> None:
            with acting_as(Identity(user_id=user_id)):
                barrier.wait()
                try:
                    market.sell.confirm_completion(tx.transaction_id)
                except Exception as exc:  # noqa: BLE001
                    errors.append(exc)

        threads = [threading.Thread(target=confirm, args=(u,)) for u in ("alice", "bob")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert market.sell.get(tx.transaction_id).status == TransactionStatus.COMPLETED
        completions = query_audit_trail(
            market.db.conn, transaction_id=tx.transaction_id, event_type="transaction_completed"
        )
        assert len(completions) == 1
        assert market.listings.get(book.book_id).status == BookStatus.COMPLETED


# ---------------------------------------------------------------------------
# Two buyers, one book
# ---------------------------------------------------------------------------


class TestTwoBuyers:
    def test_loser_is_auto_cancelled(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "sell")
        with as_user("bob"):
            first = market.sell.create(book.book_id)
        with as_user("carol"):
            second = market.sell.create(book.book_id)

        with as_user("alice"):
            market.sell.accept(first.transaction_id)
            with pytest.raises(BookUnavailableError):
                market.sell.accept(second.transaction_id)

        loser = market.sell.get(second.transaction_id)
        assert loser.status == TransactionStatus.CANCELLED
        assert loser.cancellation_reason == CancellationReason.BOOK_UNAVAILABLE
        assert market.sell.get(first.transaction_id).status == TransactionStatus.ACCEPTED
        assert NotificationType.STATUS_CHANGED in [
            n.event_type for n in market.inbox.list_for("carol")
        ]

    def test_concurrent_accepts_have_one_winner(
        self, market: Marketplace, as_user, list_book
    ) -> None:
        book = list_book("alice", "sell")
        buyers = ["bob", "carol", "dave", "erin"]
        tx_ids = []
        for buyer in buyers:
            with as_user(buyer):
                tx_ids.append(market.sell.create(book.book_id).transaction_id)

        barrier = threading.Barrier(len(tx_ids))
        outcomes: dict[str, str] = {}
        lock = threading.Lock()

        def accept(tx_id: str) -> None:
            with acting_as(Identity(user_id="alice")):
                barrier.wait()
                try:
                    market.sell.accept(tx_id)
                    result = "won"
                except BookUnavailableError:
                    result = "lost"
            with lock:
                outcomes[tx_id] = result

        threads = [threading.Thread(target=accept, args=(t,)) for t in tx_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes.values()) == ["lost", "lost", "lost", "won"]
        statuses = sorted(market.sell.get(t).status for t in tx_ids)
        assert statuses == [
            TransactionStatus.ACCEPTED,
            TransactionStatus.CANCELLED,
            TransactionStatus.CANCELLED,
            TransactionStatus.CANCELLED,
        ]
        winner = next(t for t, r in outcomes.items() if r == "won")
        assert market.listings.get(book.book_id).reserved_by == winner


class TestRepeatedAccept:
    def test_overlapping_accept_of_same_request_does_not_cancel_it(
        self, market: Marketplace, as_user, list_book, monkeypatch
    ) -> None:
        book = list_book("alice", "sell")
        with as_user("bob"):
            tx = market.sell.create(book.book_id)

        guard = market.services.guard
        real_try_reserve = guard.try_reserve
        overlapping: list[Exception] = []
        calls: list[str] = []

        def reserve_then_accept_again(book_ids, transaction_id):
            reservation = real_try_reserve(book_ids, transaction_id)
            calls.append(transaction_id)
            if len(calls) == 1:
                try:
                    market.sell.accept(transaction_id)
                except ConflictError as exc:
                    overlapping.append(exc)
            return reservation

        monkeypatch.setattr(guard, "try_reserve", reserve_then_accept_again)
        with as_user("alice"):
            accepted = market.sell.accept(tx.transaction_id)

        assert len(overlapping) == 1
        assert accepted.status == TransactionStatus.ACCEPTED
        assert market.sell.get(tx.transaction_id).status == TransactionStatus.ACCEPTED
        assert market.listings.get(book.book_id).reserved_by == tx.transaction_id
        assert query_audit_trail(market.db.conn, event_type="reservation_conflict") == []

    def test_second_accept_after_success_is_invalid(
        self, market: Marketplace, as_user, list_book
    ) -> None:
        book, tx = _accepted_sale(market, as_user, list_book)
        with as_user("alice"), pytest.raises(InvalidTransitionError):
            market.sell.accept(tx.transaction_id)

        stored = market.sell.get(tx.transaction_id)
        assert stored.status == TransactionStatus.ACCEPTED
        assert stored.cancellation_reason is None
        assert market.listings.get(book.book_id).reserved_by == tx.transaction_id


# ---------------------------------------------------------------------------
# Reject / cancel
# ---------------------------------------------------------------------------


class TestRejectAndCancel:
    def test_reject_leaves_book_available(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "sell")
        with as_user("bob"):
            tx = market.sell.create(book.book_id)
        with as_user("alice"):
            rejected = market.sell.reject(tx.transaction_id)

        assert rejected.status == TransactionStatus.REJECTED
        assert market.listings.get(book.book_id).is_available is True

    def test_buyer_cannot_reject(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "sell")
        with as_user("bob"):
            tx = market.sell.create(book.book_id)
            with pytest.raises(AuthorizationError):
                market.sell.reject(tx.transaction_id)

    def test_seller_may_cancel_pending_sale(
        self, market: Marketplace, as_user, list_book
    ) -> None:
        book = list_book("alice", "sell")
        with as_user("bob"):
            tx = market.sell.create(book.book_id)
        with as_user("alice"):
            cancelled = market.sell.cancel(tx.transaction_id)
        assert cancelled.cancellation_reason == CancellationReason.BY_PARTICIPANT

    def test_cancel_accepted_releases_book(
        self, market: Marketplace, as_user, list_book
    ) -> None:
        book, tx = _accepted_sale(market, as_user, list_book)
        with as_user("bob"):
            cancelled = market.sell.cancel(tx.transaction_id)

        assert cancelled.status == TransactionStatus.CANCELLED
        stored = market.listings.get(book.book_id)
        assert stored.is_available is True
        assert stored.status == BookStatus.ACTIVE

    def test_accept_after_reject_is_invalid(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "sell")
        with as_user("bob"):
            tx = market.sell.create(book.book_id)
        with as_user("alice"):
            market.sell.reject(tx.transaction_id)
            with pytest.raises(InvalidTransitionError):
                market.sell.accept(tx.transaction_id)

    def test_transition_audited(self, market: Marketplace, as_user, list_book) -> None:
        _, tx = _accepted_sale(market, as_user, list_book)
        rows = query_audit_trail(
            market.db.conn, transaction_id=tx.transaction_id, event_type="state_transition"
        )
        assert [r["metadata"]["event"] for r in rows] == ["accept"]
        assert rows[0]["actor_id"] == "alice"

    def test_transition_logged(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "sell")
        with as_user("bob"):
            tx = market.sell.create(book.book_id)
        with structlog.testing.capture_logs() as logs, as_user("alice"):
            market.sell.accept(tx.transaction_id)

        transitions = [e for e in logs if e["event"] == "transaction_transition"]
        assert len(transitions) == 1
        assert transitions[0]["transition_event"] == "accept"
        assert transitions[0]["from_state"] == "pending"
        assert transitions[0]["to_state"] == "accepted"


class TestOtherKinds:
    def test_sale_operations_refuse_a_loan(self, market: Marketplace, as_user, list_book) -> None:
        book = list_book("alice", "borrow")
        with as_user("bob"):
            loan = market.borrow.create(book.book_id, 7)
        with as_user("alice"):
            market.borrow.accept(loan.transaction_id)
            with pytest.raises(NotFoundError):
                market.sell.mark_paid(loan.transaction_id)

        assert market.transaction(loan.transaction_id).status == TransactionStatus.ACCEPTED
