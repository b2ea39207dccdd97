"""Helpers shared by every workflow that moves a transaction.

``apply_event`` runs the variant state machine against a loaded model;
``record_transition`` writes the structured log line and the audit entry;
``notify`` addresses a notification about a transaction; ``settle_books``
applies the book side effect of reaching the success status.
"""

from __future__ import annotations

import structlog

from bookswap.domain.models import AnyTransaction, BorrowTransaction
from bookswap.domain.types import NotificationType, TransactionKind, TransactionStatus
from bookswap.notifications.models import RelatedEntity
from bookswap.services import MarketplaceServices
from bookswap.state_machine import TransactionEvent, TransactionStateMachine

logger = structlog.get_logger()


def apply_event(tx: AnyTransaction, event: TransactionEvent) -> TransactionStatus:
    """Trigger *event* on *tx* in place and return the new status.

    Raises:
        InvalidTransitionError: If *event* is not valid from ``tx.status``.
    """
    sm = TransactionStateMachine.from_snapshot(TransactionKind(tx.kind), tx.status, tx.history)
    new_state = sm.trigger(event)
    tx.status = new_state
    tx.history = sm.history
    return new_state


def record_transition(
    services: MarketplaceServices,
    tx: AnyTransaction,
    from_state: TransactionStatus,
    event: str,
    actor_id: str | None,
    reason: str | None = None,
) -> None:
    logger.info(
        "transaction_transition",
        transaction_id=tx.transaction_id,
        kind=tx.kind,
        from_state=str(from_state),
        to_state=str(tx.status),
        transition_event=str(event),
        actor_id=actor_id,
        reason=reason,
    )
    services.audit.log_state_transition(
        transaction_id=tx.transaction_id,
        transaction_kind=tx.kind,
        actor_id=actor_id,
        from_state=str(from_state),
        to_state=str(tx.status),
        event=str(event),
        reason=reason,
    )


def related(tx: AnyTransaction) -> RelatedEntity:
    return RelatedEntity(entity_type=f"{tx.kind}_transaction", entity_id=tx.transaction_id)


def notify(
    services: MarketplaceServices,
    recipient_id: str,
    event_type: NotificationType,
    message: str,
    tx: AnyTransaction,
) -> None:
    services.notifier.notify(recipient_id, event_type, message, related(tx))


def settle_books(services: MarketplaceServices, tx: AnyTransaction) -> list[str]:
    """Apply the success-status book effect for *tx*.

    Borrowed books go back on the shelf; exchanged and sold books are
    consumed for good.

    Returns:
        The book IDs that changed.
    """
    if isinstance(tx, BorrowTransaction):
        return services.guard.release(tx.book_ids, tx.transaction_id)
    return services.guard.consume(tx.book_ids, tx.transaction_id)
