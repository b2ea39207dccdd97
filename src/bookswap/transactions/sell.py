"""Book-for-cash sales.

Payment is not processed here: the seller asserts it with ``mark_paid``.
Completion requires that assertion.
"""

from __future__ import annotations

from typing import ClassVar

from bookswap.domain.errors import (
    InvalidTransitionError,
    NotFoundError,
    PaymentPendingError,
    StateError,
)
from bookswap.domain.models import AnyTransaction, SellTransaction
from bookswap.domain.types import (
    NotificationType,
    PaymentStatus,
    TransactionKind,
    TransactionStatus,
)
from bookswap.transactions.base import TransactionService
from bookswap.transactions.completion import Precondition
from bookswap.transactions.events import notify, record_transition


def _require_paid(tx: AnyTransaction) -> None:
    if isinstance(tx, SellTransaction) and tx.payment_status != PaymentStatus.PAID:
        raise PaymentPendingError("Payment has not been marked as received")


class SellService(TransactionService):
    """Sell lifecycle: pending -> accepted -> (paid) -> completed."""

    kind: ClassVar[TransactionKind] = TransactionKind.SELL
    model: ClassVar[type[AnyTransaction]] = SellTransaction
    counterparty_cancels_pending: ClassVar[bool] = True

    def create(self, book_id: str) -> AnyTransaction:
        """Ask to buy *book_id* at its listed price."""
        buyer = self._actor()
        book = self._s.books.get(book_id)
        self._check_listing(book, buyer.user_id)
        self._check_no_pending_request(buyer.user_id, book_id)

        tx = self._build(
            initiator_id=buyer.user_id,
            counterparty_id=book.owner_id,
            book_id=book_id,
            price=book.price,
        )
        return self._open(tx, book)

    def mark_paid(self, transaction_id: str) -> AnyTransaction:
        """Record, as the seller, that payment was received.

        Raises:
            AuthorizationError: If the actor is not the seller.
            InvalidTransitionError: If the sale is not accepted.
            StateError: If payment was already marked.
        """
        actor = self._actor()

        def change(tx: AnyTransaction) -> None:
            tx = self._sale(tx)
            self._require_counterparty(tx, actor.user_id, "mark payment for")
            self._check_not_disputed(tx)
            if tx.status != TransactionStatus.ACCEPTED:
                raise InvalidTransitionError(tx.status, "mark_paid")
            if tx.payment_status != PaymentStatus.PENDING:
                raise StateError(f"Payment is already {tx.payment_status}")
            tx.payment_status = PaymentStatus.PAID

        tx, from_state = self._mutate(transaction_id, change)
        record_transition(self._s, tx, from_state, "mark_paid", actor.user_id)
        notify(
            self._s,
            tx.initiator_id,
            NotificationType.PAYMENT_CHANGED,
            "The seller marked your payment as received",
            tx,
        )
        return tx

    @staticmethod
    def _sale(tx: AnyTransaction) -> SellTransaction:
        if not isinstance(tx, SellTransaction):
            raise NotFoundError("sell transaction", tx.transaction_id)
        return tx

    def _confirm_precondition(self) -> Precondition | None:
        return _require_paid
