"""Domain-specific exception classes for the book marketplace.

Every error carries a stable machine-readable ``kind`` alongside its
human-readable message so callers can branch on failures without parsing
text.  The five families map onto the usual request outcomes: validation,
authorization, not-found, conflict and invalid-state.
"""

from __future__ import annotations

from pydantic import ValidationError as PydanticValidationError

from bookswap.domain.types import TransactionStatus


class BookSwapError(Exception):
    """Base class for all domain errors in the marketplace."""

    kind: str = "error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        """Return the ``{"kind", "message"}`` pair surfaced to callers."""
        return {"kind": self.kind, "message": self.message}


class ValidationError(BookSwapError):
    """Raised for malformed or missing input."""

    kind = "validation_error"

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> ValidationError:
        """Build from the first error of a pydantic ``ValidationError``."""
        err = exc.errors()[0]
        loc = ".".join(str(part) for part in err.get("loc", ()))
        return cls(f"{loc}: {err['msg']}" if loc else str(err["msg"]))


class AuthorizationError(BookSwapError):
    """Raised when the acting identity may not perform the operation."""

    kind = "authorization_error"


class NotFoundError(BookSwapError):
    """Raised when a referenced aggregate does not exist.

    Attributes:
        entity: The aggregate name (``"book"``, ``"transaction"``, ...).
        entity_id: The identifier that was looked up.
    """

    kind = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' not found")


class ConflictError(BookSwapError):
    """Raised when the operation collides with existing state."""

    kind = "conflict"


class StateError(BookSwapError):
    """Raised when an operation is not valid in the current status."""

    kind = "state_error"


class StorageError(BookSwapError):
    """Raised when the persistent store fails underneath an operation."""

    kind = "storage_error"


# -- Validation ----------------------------------------------------------------


class InvalidBookModeError(ValidationError):
    """Raised when a book is not listed for the requested transaction type."""

    kind = "invalid_book_mode"


# -- Authorization -------------------------------------------------------------


class SelfTradeForbiddenError(AuthorizationError):
    """Raised when a user tries to trade with their own listing."""

    kind = "self_trade_forbidden"


class NotParticipantError(AuthorizationError):
    """Raised when the actor is not a participant of the transaction."""

    kind = "not_participant"


class SelfReviewForbiddenError(AuthorizationError):
    """Raised when a user tries to review themselves."""

    kind = "self_review_forbidden"


class UserSuspendedError(AuthorizationError):
    """Raised when a suspended identity attempts a mutating operation."""

    kind = "user_suspended"


# -- Conflict ------------------------------------------------------------------


class BookUnavailableError(ConflictError):
    """Raised when a book is already reserved, consumed or otherwise taken."""

    kind = "book_unavailable"


class DuplicateRequestError(ConflictError):
    """Raised when the requester already has a pending request for the book."""

    kind = "duplicate_request"


class DisputeAlreadyExistsError(ConflictError):
    """Raised when a transaction already has a dispute attached."""

    kind = "dispute_already_exists"


class DisputeAlreadyResolvedError(ConflictError):
    """Raised when resolving a dispute that is already resolved or closed."""

    kind = "dispute_already_resolved"


class AlreadyReviewedError(ConflictError):
    """Raised when a reviewer has already reviewed the transaction."""

    kind = "already_reviewed"


class ConcurrentUpdateError(ConflictError):
    """Raised when a compare-and-set write loses to a concurrent writer."""

    kind = "concurrent_update"


# -- State ---------------------------------------------------------------------


class InvalidTransitionError(StateError):
    """Raised when an invalid state transition is attempted.

    Attributes:
        current_state: The status the transaction was in.
        event: The event that was rejected.
    """

    kind = "invalid_transition"

    def __init__(self, current_state: TransactionStatus, event: str) -> None:
        self.current_state = current_state
        self.event = event
        super().__init__(f"Cannot apply event '{event}' in state '{current_state}'")


class PaymentPendingError(StateError):
    """Raised when confirming a sell transaction before payment is marked."""

    kind = "payment_pending"


class TransactionDisputedError(StateError):
    """Raised when an ordinary transition targets a disputed transaction."""

    kind = "transaction_disputed"
