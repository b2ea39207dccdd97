"""Temporary book loans.

Lifecycle: pending -> accepted -> active (handed over) -> [overdue] ->
returned.  The lister may counter-offer the loan duration when accepting.
Once both parties confirm the return, the book goes back on the shelf.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import ClassVar

import structlog
from pydantic import ValidationError as PydanticValidationError

from bookswap.domain.errors import NotFoundError, StateError, ValidationError
from bookswap.domain.models import AnyTransaction, BorrowTransaction, utcnow
from bookswap.domain.types import NotificationType, TransactionKind, TransactionStatus
from bookswap.resilience.retry import cas_retrying
from bookswap.state_machine import TransactionEvent
from bookswap.transactions.base import TransactionService
from bookswap.transactions.events import apply_event, notify, record_transition

logger = structlog.get_logger()


def _validate_duration(duration: object) -> int:
    if isinstance(duration, bool) or not isinstance(duration, int) or duration < 1:
        raise ValidationError("Loan duration must be a positive whole number of days")
    return duration


class BorrowService(TransactionService):
    """Borrow requests, hand-over, overdue tracking and return."""

    kind: ClassVar[TransactionKind] = TransactionKind.BORROW
    model: ClassVar[type[AnyTransaction]] = BorrowTransaction

    def create(self, book_id: str, requested_duration: int | None) -> AnyTransaction:
        """Ask to borrow *book_id* for *requested_duration* days.

        Raises:
            ValidationError: If the duration is missing or not positive.
        """
        borrower = self._actor()
        if requested_duration is None:
            raise ValidationError("A loan duration is required")
        duration = _validate_duration(requested_duration)

        book = self._s.books.get(book_id)
        self._check_listing(book, borrower.user_id)
        self._check_no_pending_request(borrower.user_id, book_id)

        tx = self._build(
            initiator_id=borrower.user_id,
            counterparty_id=book.owner_id,
            book_id=book_id,
            requested_duration=duration,
        )
        return self._open(tx, book)

    def accept(self, transaction_id: str, duration: int | None = None) -> AnyTransaction:
        """Accept the loan, optionally counter-offering a different duration.

        Raises:
            ValidationError: If the counter-offered duration is not positive.
        """
        if duration is not None:
            _validate_duration(duration)

        def counter_offer(tx: AnyTransaction) -> None:
            if duration is None or not isinstance(tx, BorrowTransaction):
                return
            if duration != tx.requested_duration:
                logger.info(
                    "borrow_duration_counter_offer",
                    transaction_id=tx.transaction_id,
                    requested=tx.requested_duration,
                    offered=duration,
                )
            try:
                tx.requested_duration = duration
            except PydanticValidationError as exc:
                raise ValidationError.from_pydantic(exc) from exc

        return self._accept(transaction_id, prepare=counter_offer)

    def mark_handed_over(self, transaction_id: str) -> AnyTransaction:
        """Record, as the owner, that the book changed hands; starts the loan clock."""
        actor = self._actor()

        def change(tx: AnyTransaction) -> None:
            tx = self._loan(tx)
            self._require_counterparty(tx, actor.user_id, "hand over")
            self._check_not_disputed(tx)
            apply_event(tx, TransactionEvent.HAND_OVER)
            tx.borrow_date = utcnow()
            tx.due_date = tx.borrow_date + timedelta(days=tx.requested_duration)

        tx, from_state = self._mutate(transaction_id, change)
        record_transition(self._s, tx, from_state, TransactionEvent.HAND_OVER, actor.user_id)
        loan = self._loan(tx)
        notify(
            self._s,
            tx.initiator_id,
            NotificationType.STATUS_CHANGED,
            f"Your loan is active; please return the book by {loan.due_date:%Y-%m-%d}",
            loan,
        )
        return tx

    @staticmethod
    def _loan(tx: AnyTransaction) -> BorrowTransaction:
        if not isinstance(tx, BorrowTransaction):
            raise NotFoundError("borrow transaction", tx.transaction_id)
        return tx

    def find_overdue(self, now: datetime | None = None) -> list[AnyTransaction]:
        """Return active loans whose due date has passed."""
        return self._s.transactions.find_overdue(now or utcnow())

    def mark_overdue(self, transaction_id: str, now: datetime | None = None) -> AnyTransaction | None:
        """Flag an active loan past its due date as overdue.

        This is a system operation driven by the overdue sweep and needs no
        acting user.  Loans that left ``active`` in the meantime are skipped.

        Returns:
            The updated transaction, or ``None`` if it was skipped.

        Raises:
            StateError: If the loan is not yet due.
        """
        now = now or utcnow()
        for attempt in cas_retrying(self._s.cas_max_attempts):
            with attempt:
                tx = self._loan(self.get(transaction_id))
                if tx.status != TransactionStatus.ACTIVE or tx.is_disputed:
                    return None
                if tx.due_date is None or tx.due_date >= now:
                    raise StateError("The loan is not overdue yet")
                apply_event(tx, TransactionEvent.MARK_OVERDUE)
                self._s.transactions.save(tx)

        record_transition(self._s, tx, TransactionStatus.ACTIVE, TransactionEvent.MARK_OVERDUE, None)
        for participant in tx.participants:
            notify(
                self._s,
                participant,
                NotificationType.STATUS_CHANGED,
                "The loan is overdue",
                tx,
            )
        return tx
