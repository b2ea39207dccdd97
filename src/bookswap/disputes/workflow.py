"""Dispute workflow: open -> in_progress -> resolved | closed.

A dispute can be raised by either participant against any unfinished
transaction.  While it is open the transaction is frozen: ordinary
transitions are refused, sibling cancellation and the overdue sweep skip
it.  Only an arbitrator can resolve it, and resolution always drives the
transaction to a terminal status:

- ``revert``: the transaction is cancelled and its books released.
- ``complete``: the transaction is forced to its success status; books are
  consumed (a borrowed book is released instead).
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from pydantic import ValidationError as PydanticValidationError

from bookswap.domain.errors import (
    AuthorizationError,
    BookSwapError,
    DisputeAlreadyExistsError,
    DisputeAlreadyResolvedError,
    NotParticipantError,
    StateError,
    ValidationError,
)
from bookswap.domain.models import AnyTransaction, BorrowTransaction, Dispute, Identity, utcnow
from bookswap.domain.types import (
    DISPUTE_FINAL_STATES,
    CancellationReason,
    DisputeDisposition,
    DisputeStatus,
    NotificationType,
    TransactionKind,
    TransactionStatus,
)
from bookswap.identity import require_active
from bookswap.notifications.models import RelatedEntity
from bookswap.observability.metrics import OPEN_DISPUTES, TRANSACTIONS_COMPLETED
from bookswap.resilience.retry import cas_retrying
from bookswap.services import MarketplaceServices
from bookswap.state_machine import TERMINAL_STATES, TransactionEvent
from bookswap.transactions.events import apply_event, record_transition, settle_books

logger = structlog.get_logger()

_ACTIVE_DISPUTE_STATES = frozenset({DisputeStatus.OPEN, DisputeStatus.IN_PROGRESS})


class DisputeWorkflow:
    """Open, review and resolve disputes.

    Args:
        services: Shared marketplace collaborators.
        arbitrator_ids: Users notified when a dispute is opened.
    """

    def __init__(self, services: MarketplaceServices, arbitrator_ids: Sequence[str] = ()) -> None:
        self._s = services
        self._arbitrator_ids = list(arbitrator_ids)

    def get(self, dispute_id: str) -> Dispute:
        return self._s.disputes.get(dispute_id)

    def get_for_transaction(self, transaction_id: str) -> Dispute | None:
        return self._s.disputes.get_by_transaction(transaction_id)

    def list(self, status: DisputeStatus | None = None) -> list[Dispute]:
        return self._s.disputes.list(status)

    def _require_arbitrator(self) -> Identity:
        actor = require_active(self._s.identity)
        if not actor.is_arbitrator:
            raise AuthorizationError("Only an arbitrator can manage disputes")
        return actor

    def _related(self, dispute: Dispute) -> RelatedEntity:
        return RelatedEntity(entity_type="dispute", entity_id=dispute.dispute_id)

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    def open(self, transaction_id: str, reason: str) -> Dispute:
        """Raise a dispute against an unfinished transaction.

        Raises:
            NotParticipantError: If the actor is not a participant.
            StateError: If the transaction already finished.
            DisputeAlreadyExistsError: If a dispute was already raised.
            ValidationError: If the reason is empty or too long.
        """
        actor = require_active(self._s.identity)
        tx = self._s.transactions.get(transaction_id)
        if not tx.is_participant(actor.user_id):
            raise NotParticipantError("Only participants can raise a dispute")

        try:
            dispute = Dispute(
                transaction_id=transaction_id,
                transaction_kind=TransactionKind(tx.kind),
                raised_by=actor.user_id,
                participants=list(tx.participants),
                reason=reason,
            )
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc) from exc

        self._check_disputable(tx)
        # The dispute row is the claim; freezing the transaction follows it.
        self._s.disputes.insert(dispute)
        try:
            tx, from_state = self._freeze(transaction_id)
        except BookSwapError:
            self._s.disputes.delete(dispute.dispute_id)
            raise
        OPEN_DISPUTES.inc()

        record_transition(self._s, tx, from_state, TransactionEvent.OPEN_DISPUTE, actor.user_id)
        self._s.audit.log_dispute_opened(
            dispute_id=dispute.dispute_id,
            transaction_id=transaction_id,
            transaction_kind=tx.kind,
            raised_by=actor.user_id,
            reason=reason,
        )
        logger.info(
            "dispute_opened",
            dispute_id=dispute.dispute_id,
            transaction_id=transaction_id,
            raised_by=actor.user_id,
        )

        message = f"A dispute was raised on {tx.kind} transaction {transaction_id}"
        for recipient in [*self._arbitrator_ids, tx.other_participant(actor.user_id)]:
            self._s.notifier.notify(
                recipient, NotificationType.DISPUTE_OPENED, message, self._related(dispute)
            )
        return dispute

    @staticmethod
    def _check_disputable(tx: AnyTransaction) -> None:
        if tx.is_disputed:
            raise DisputeAlreadyExistsError("A dispute already exists for this transaction")
        if tx.status in TERMINAL_STATES:
            raise StateError("A finished transaction cannot be disputed")

    def _freeze(self, transaction_id: str) -> tuple[AnyTransaction, TransactionStatus]:
        for attempt in cas_retrying(self._s.cas_max_attempts):
            with attempt:
                tx = self._s.transactions.get(transaction_id)
                self._check_disputable(tx)
                from_state = tx.status
                if isinstance(tx, BorrowTransaction):
                    apply_event(tx, TransactionEvent.OPEN_DISPUTE)
                tx.is_disputed = True
                self._s.transactions.save(tx)
        return tx, from_state

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def begin_review(self, dispute_id: str) -> Dispute:
        """Move an open dispute to ``in_progress``."""
        self._require_arbitrator()
        dispute = self._s.disputes.get(dispute_id)
        if dispute.status in DISPUTE_FINAL_STATES:
            raise DisputeAlreadyResolvedError("The dispute is already resolved")
        if dispute.status != DisputeStatus.OPEN:
            raise StateError("The dispute is already under review")

        dispute.status = DisputeStatus.IN_PROGRESS
        if not self._s.disputes.transition(dispute, frozenset({DisputeStatus.OPEN})):
            current = self._s.disputes.get(dispute_id)
            if current.status in DISPUTE_FINAL_STATES:
                raise DisputeAlreadyResolvedError("The dispute is already resolved")
            raise StateError("The dispute is already under review")

        logger.info("dispute_review_started", dispute_id=dispute_id)
        return dispute

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    def resolve(
        self,
        dispute_id: str,
        notes: str,
        outcome: DisputeStatus = DisputeStatus.RESOLVED,
        disposition: DisputeDisposition = DisputeDisposition.REVERT,
    ) -> Dispute:
        """Resolve or close a dispute and settle its transaction.

        Args:
            dispute_id: The dispute to resolve.
            notes: The arbitrator's resolution notes (required).
            outcome: ``resolved`` or ``closed``.
            disposition: ``revert`` cancels the transaction and releases its
                books; ``complete`` forces the success status.

        Raises:
            AuthorizationError: If the actor is not an arbitrator.
            ValidationError: For empty notes or a non-final outcome.
            DisputeAlreadyResolvedError: If already resolved or closed.
            StateError: For ``complete`` on a transaction whose books were
                never reserved.
        """
        arbitrator = self._require_arbitrator()
        if not notes or not notes.strip():
            raise ValidationError("Resolution notes are required")
        if len(notes) > 1000:
            raise ValidationError("Resolution notes must be at most 1000 characters")
        try:
            outcome = DisputeStatus(outcome)
            disposition = DisputeDisposition(disposition)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if outcome not in DISPUTE_FINAL_STATES:
            raise ValidationError("Outcome must be 'resolved' or 'closed'")

        dispute = self._s.disputes.get(dispute_id)
        if dispute.status in DISPUTE_FINAL_STATES:
            raise DisputeAlreadyResolvedError("The dispute is already resolved")

        tx = self._s.transactions.get(dispute.transaction_id)
        if disposition == DisputeDisposition.COMPLETE and not tx.was_accepted:
            raise StateError("Cannot complete a transaction whose books were never reserved")

        dispute.status = outcome
        dispute.resolution = notes
        dispute.disposition = disposition
        dispute.resolved_by = arbitrator.user_id
        dispute.resolved_at = utcnow()
        if not self._s.disputes.transition(dispute, _ACTIVE_DISPUTE_STATES):
            raise DisputeAlreadyResolvedError("The dispute is already resolved")
        OPEN_DISPUTES.dec()

        tx, from_state = self._settle_transaction(dispute.transaction_id, disposition)
        event = (
            TransactionEvent.FORCE_COMPLETE
            if disposition == DisputeDisposition.COMPLETE
            else TransactionEvent.FORCE_CANCEL
        )
        record_transition(
            self._s, tx, from_state, event, arbitrator.user_id, reason=str(disposition)
        )
        self._s.audit.log_dispute_resolved(
            dispute_id=dispute_id,
            transaction_id=tx.transaction_id,
            transaction_kind=tx.kind,
            resolved_by=arbitrator.user_id,
            outcome=str(outcome),
            disposition=str(disposition),
            transaction_status=str(tx.status),
        )
        logger.info(
            "dispute_resolved",
            dispute_id=dispute_id,
            transaction_id=tx.transaction_id,
            outcome=str(outcome),
            disposition=str(disposition),
            transaction_status=str(tx.status),
        )

        for participant in tx.participants:
            self._s.notifier.notify(
                participant,
                NotificationType.DISPUTE_RESOLVED,
                f"The dispute on your {tx.kind} transaction was {outcome}: {notes}",
                self._related(dispute),
            )
        return dispute

    def _settle_transaction(
        self, transaction_id: str, disposition: DisputeDisposition
    ) -> tuple[AnyTransaction, TransactionStatus]:
        """Force the disputed transaction terminal and apply the book effect."""
        for attempt in cas_retrying(self._s.cas_max_attempts):
            with attempt:
                tx = self._s.transactions.get(transaction_id)
                from_state = tx.status
                if disposition == DisputeDisposition.COMPLETE:
                    apply_event(tx, TransactionEvent.FORCE_COMPLETE)
                    if isinstance(tx, BorrowTransaction):
                        tx.return_date = utcnow()
                else:
                    apply_event(tx, TransactionEvent.FORCE_CANCEL)
                    tx.cancellation_reason = CancellationReason.DISPUTE_RESOLUTION
                tx.is_disputed = False
                self._s.transactions.save(tx)

        if disposition == DisputeDisposition.COMPLETE:
            settle_books(self._s, tx)
            self._s.audit.log_completion(
                transaction_id=tx.transaction_id,
                transaction_kind=tx.kind,
                status=str(tx.status),
                confirmed_by="arbitration",
            )
            TRANSACTIONS_COMPLETED.labels(kind=tx.kind).inc()
        else:
            self._s.guard.release(tx.book_ids, tx.transaction_id)
        return tx, from_state

