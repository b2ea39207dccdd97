"""Convenience class for inserting audit trail entries.

Each method creates a properly structured :class:`AuditEntry` for one kind
of marketplace event and inserts it via :func:`insert_audit_entry` while
holding the shared database lock.
"""

from __future__ import annotations

from bookswap.audit.models import AuditEntry, EventType
from bookswap.audit.store import init_audit_table, insert_audit_entry
from bookswap.state.database import Database


class AuditLogger:
    """Typed convenience API for inserting audit entries.

    Args:
        db: The shared marketplace database.  The audit table is created on
            construction if it does not exist.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        with db.session() as conn:
            init_audit_table(conn)

    def _insert(self, entry: AuditEntry) -> int:
        with self._db.session() as conn:
            return insert_audit_entry(conn, entry)

    def log_transaction_created(
        self,
        transaction_id: str,
        transaction_kind: str,
        actor_id: str,
        book_id: str,
        counterparty_id: str,
    ) -> int:
        """Log a new transaction request.

        Args:
            transaction_id: The new transaction.
            transaction_kind: ``exchange``, ``sell`` or ``borrow``.
            actor_id: The requester.
            book_id: The listing requested.
            counterparty_id: The lister receiving the request.

        Returns:
            The row ID of the inserted audit entry.
        """
        entry = AuditEntry(
            event_type=EventType.TRANSACTION_CREATED,
            transaction_id=transaction_id,
            transaction_kind=transaction_kind,
            actor_id=actor_id,
            book_id=book_id,
            status="pending",
            metadata={"counterparty_id": counterparty_id},
        )
        return self._insert(entry)

    def log_state_transition(
        self,
        transaction_id: str,
        transaction_kind: str,
        actor_id: str | None,
        from_state: str,
        to_state: str,
        event: str,
        reason: str | None = None,
    ) -> int:
        """Log a transaction state machine transition.

        Stores from_state, to_state, event and the optional reason in
        metadata.

        Returns:
            The row ID of the inserted audit entry.
        """
        meta = {"from_state": from_state, "to_state": to_state, "event": event}
        if reason is not None:
            meta["reason"] = reason
        entry = AuditEntry(
            event_type=EventType.STATE_TRANSITION,
            transaction_id=transaction_id,
            transaction_kind=transaction_kind,
            actor_id=actor_id,
            status=to_state,
            metadata=meta,
        )
        return self._insert(entry)

    def log_reservation_conflict(
        self,
        transaction_id: str,
        transaction_kind: str,
        actor_id: str,
        book_id: str,
    ) -> int:
        """Log an acceptance that lost the race for a book.

        Returns:
            The row ID of the inserted audit entry.
        """
        entry = AuditEntry(
            event_type=EventType.RESERVATION_CONFLICT,
            transaction_id=transaction_id,
            transaction_kind=transaction_kind,
            actor_id=actor_id,
            book_id=book_id,
            status="cancelled",
        )
        return self._insert(entry)

    def log_completion(
        self,
        transaction_id: str,
        transaction_kind: str,
        status: str,
        confirmed_by: str,
    ) -> int:
        """Log a transaction reaching its success status.

        Args:
            transaction_id: The finished transaction.
            transaction_kind: Its variant.
            status: ``completed`` or ``returned``.
            confirmed_by: The participant whose confirmation completed it.

        Returns:
            The row ID of the inserted audit entry.
        """
        entry = AuditEntry(
            event_type=EventType.TRANSACTION_COMPLETED,
            transaction_id=transaction_id,
            transaction_kind=transaction_kind,
            actor_id=confirmed_by,
            status=status,
        )
        return self._insert(entry)

    def log_dispute_opened(
        self,
        dispute_id: str,
        transaction_id: str,
        transaction_kind: str,
        raised_by: str,
        reason: str,
    ) -> int:
        entry = AuditEntry(
            event_type=EventType.DISPUTE_OPENED,
            transaction_id=transaction_id,
            transaction_kind=transaction_kind,
            actor_id=raised_by,
            status="open",
            metadata={"dispute_id": dispute_id, "reason": reason},
        )
        return self._insert(entry)

    def log_dispute_resolved(
        self,
        dispute_id: str,
        transaction_id: str,
        transaction_kind: str,
        resolved_by: str,
        outcome: str,
        disposition: str,
        transaction_status: str,
    ) -> int:
        """Log an arbitrator's resolution and the state it forced.

        Returns:
            The row ID of the inserted audit entry.
        """
        entry = AuditEntry(
            event_type=EventType.DISPUTE_RESOLVED,
            transaction_id=transaction_id,
            transaction_kind=transaction_kind,
            actor_id=resolved_by,
            status=outcome,
            metadata={
                "dispute_id": dispute_id,
                "disposition": disposition,
                "transaction_status": transaction_status,
            },
        )
        return self._insert(entry)

    def log_review_submitted(
        self,
        review_id: str,
        transaction_id: str,
        transaction_kind: str,
        reviewer_id: str,
        reviewee_id: str,
        rating: int,
    ) -> int:
        entry = AuditEntry(
            event_type=EventType.REVIEW_SUBMITTED,
            transaction_id=transaction_id,
            transaction_kind=transaction_kind,
            actor_id=reviewer_id,
            metadata={
                "review_id": review_id,
                "reviewee_id": reviewee_id,
                "rating": str(rating),
            },
        )
        return self._insert(entry)

    def log_notification_failure(
        self,
        recipient_id: str,
        event_type: str,
        entity_id: str | None,
        error_message: str,
    ) -> int:
        """Log a notification that could not be delivered after every retry.

        Returns:
            The row ID of the inserted audit entry.
        """
        entry = AuditEntry(
            event_type=EventType.NOTIFICATION_FAILED,
            transaction_id=entity_id,
            metadata={
                "recipient_id": recipient_id,
                "notification_type": event_type,
                "error_message": error_message,
            },
        )
        return self._insert(entry)

    def log_error(
        self,
        transaction_id: str | None,
        error_message: str,
        context: str | None = None,
    ) -> int:
        """Log an error encountered during processing.

        Args:
            transaction_id: Transaction identifier (if available).
            error_message: The error message.
            context: Additional context about where the error occurred.

        Returns:
            The row ID of the inserted audit entry.
        """
        meta: dict[str, str] = {"error_message": error_message}
        if context is not None:
            meta["context"] = context

        entry = AuditEntry(
            event_type=EventType.ERROR,
            transaction_id=transaction_id,
            metadata=meta,
        )
        return self._insert(entry)
