"""Domain enumerations for the book marketplace."""

from enum import StrEnum


class TransactionKind(StrEnum):
    """The three ways a listing can change hands.

    A book's listing mode uses the same vocabulary: a book listed for
    ``sell`` can only be the subject of a sell transaction.
    """

    EXCHANGE = "exchange"
    SELL = "sell"
    BORROW = "borrow"


class BookStatus(StrEnum):
    """Lifecycle status of a book listing."""

    ACTIVE = "active"
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransactionStatus(StrEnum):
    """Shared status vocabulary for every transaction variant.

    Exchange and Sell only ever use the first five values.  Borrow adds the
    hand-over (``active``), deadline (``overdue``), success (``returned``) and
    dispute (``disputed``) statuses.
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"
    DISPUTED = "disputed"


class CancellationReason(StrEnum):
    """Why a transaction ended up ``cancelled``."""

    BY_PARTICIPANT = "by_participant"
    BOOK_UNAVAILABLE = "book_unavailable"
    DISPUTE_RESOLUTION = "dispute_resolution"


class PaymentStatus(StrEnum):
    """Manually asserted payment flag on sell transactions."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class DisputeStatus(StrEnum):
    """States of the dispute workflow."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class DisputeDisposition(StrEnum):
    """What a dispute resolution does to the transaction and its books.

    ``revert`` cancels the transaction and hands every book back to its
    lister.  ``complete`` forces the transaction to its success status as if
    both parties had confirmed.
    """

    REVERT = "revert"
    COMPLETE = "complete"


class UserRole(StrEnum):
    """Roles known to the identity provider."""

    USER = "user"
    ADMIN = "admin"


class NotificationType(StrEnum):
    """Outbound event vocabulary understood by notification sinks."""

    REQUEST_RECEIVED = "request-received"
    STATUS_CHANGED = "status-changed"
    PAYMENT_CHANGED = "payment-changed"
    DISPUTE_OPENED = "dispute-opened"
    DISPUTE_RESOLVED = "dispute-resolved"
    REVIEW_RECEIVED = "review-received"


DISPUTE_FINAL_STATES: frozenset[DisputeStatus] = frozenset(
    {DisputeStatus.RESOLVED, DisputeStatus.CLOSED}
)
