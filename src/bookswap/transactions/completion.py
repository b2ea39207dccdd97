"""Dual-confirmation completion.

Each participant confirms once the transaction is in its pre-completion
state.  Setting a flag is a compare-and-set on the transaction version, so
when both participants confirm at the same moment exactly one writer sees
both flags set and moves the transaction to its success status.  Only that
writer settles the books, notifies and audits.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog

from bookswap.domain.errors import (
    InvalidTransitionError,
    NotFoundError,
    NotParticipantError,
    TransactionDisputedError,
)
from bookswap.domain.models import AnyTransaction, BorrowTransaction, utcnow
from bookswap.domain.types import NotificationType, TransactionKind, TransactionStatus
from bookswap.observability.metrics import TRANSACTIONS_COMPLETED
from bookswap.resilience.retry import cas_retrying
from bookswap.services import MarketplaceServices
from bookswap.state_machine import CONFIRMABLE_STATES, SUCCESS_STATES, TransactionEvent
from bookswap.transactions.events import apply_event, notify, record_transition, settle_books

logger = structlog.get_logger()

Precondition = Callable[[AnyTransaction], None]


class CompletionProtocol:
    """Symmetric two-party acknowledgment gate."""

    def __init__(self, services: MarketplaceServices) -> None:
        self._s = services

    def confirm(
        self,
        transaction_id: str,
        actor_id: str,
        kind: TransactionKind,
        precondition: Precondition | None = None,
    ) -> AnyTransaction:
        """Record *actor_id*'s confirmation.

        Confirming twice, or after the transaction already finished, is a
        no-op that returns the current transaction.

        Args:
            transaction_id: The transaction to confirm.
            actor_id: The confirming participant.
            kind: The variant the caller expects.
            precondition: Extra check run before the flag is set (e.g. the
                payment check for sales); raising leaves state unchanged.

        Raises:
            NotParticipantError: If *actor_id* is not a participant.
            TransactionDisputedError: If a dispute is open.
            InvalidTransitionError: If not in the pre-completion state.
        """
        success = SUCCESS_STATES[kind]
        from_state: TransactionStatus | None = None

        for attempt in cas_retrying(self._s.cas_max_attempts):
            with attempt:
                from_state = None
                tx = self._s.transactions.get(transaction_id)
                if tx.kind != kind:
                    raise NotFoundError(f"{kind} transaction", transaction_id)
                if not tx.is_participant(actor_id):
                    raise NotParticipantError("Only participants can confirm completion")
                if tx.status == success:
                    return tx
                if tx.is_disputed:
                    raise TransactionDisputedError("The transaction is under dispute")
                if tx.status not in CONFIRMABLE_STATES[kind]:
                    raise InvalidTransitionError(tx.status, "confirm")
                if precondition is not None:
                    precondition(tx)

                flag = (
                    "initiator_confirmed" if actor_id == tx.initiator_id else "counterparty_confirmed"
                )
                if getattr(tx, flag):
                    return tx
                setattr(tx, flag, True)

                if tx.both_confirmed():
                    from_state = tx.status
                    apply_event(tx, TransactionEvent.COMPLETE)
                    if isinstance(tx, BorrowTransaction):
                        tx.return_date = utcnow()

                self._s.transactions.save(tx)

        if from_state is None:
            logger.info("completion_confirmed", transaction_id=transaction_id, actor_id=actor_id)
            notify(
                self._s,
                tx.other_participant(actor_id),
                NotificationType.STATUS_CHANGED,
                f"The other party confirmed completion of your {kind} transaction",
                tx,
            )
            return tx

        self._finalize(tx, from_state, actor_id)
        return tx

    def _finalize(self, tx: AnyTransaction, from_state: TransactionStatus, actor_id: str) -> None:
        settle_books(self._s, tx)
        record_transition(self._s, tx, from_state, TransactionEvent.COMPLETE, actor_id)
        self._s.audit.log_completion(
            transaction_id=tx.transaction_id,
            transaction_kind=tx.kind,
            status=str(tx.status),
            confirmed_by=actor_id,
        )
        TRANSACTIONS_COMPLETED.labels(kind=tx.kind).inc()
        for participant in tx.participants:
            notify(
                self._s,
                participant,
                NotificationType.STATUS_CHANGED,
                f"Your {tx.kind} transaction is {tx.status}",
                tx,
            )
        logger.info(
            "review_eligibility_activated",
            transaction_id=tx.transaction_id,
            participants=list(tx.participants),
        )
