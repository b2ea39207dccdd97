"""Audit trail models for tracking every marketplace event.

Each entry names the transaction (when there is one), the acting user, the
book involved and the resulting status, with free-form string metadata for
event-specific detail.
"""

from enum import StrEnum

from pydantic import BaseModel


class EventType(StrEnum):
    """Types of events tracked in the audit trail."""

    TRANSACTION_CREATED = "transaction_created"
    STATE_TRANSITION = "state_transition"
    RESERVATION_CONFLICT = "reservation_conflict"
    TRANSACTION_COMPLETED = "transaction_completed"
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_RESOLVED = "dispute_resolved"
    REVIEW_SUBMITTED = "review_submitted"
    NOTIFICATION_FAILED = "notification_failed"
    ERROR = "error"


class AuditEntry(BaseModel):
    """A single audit trail entry.

    All fields except event_type are optional to accommodate different
    event types (e.g., a notification failure has no actor).
    """

    event_type: EventType
    transaction_id: str | None = None
    transaction_kind: str | None = None
    actor_id: str | None = None
    book_id: str | None = None
    status: str | None = None
    metadata: dict[str, str] | None = None
