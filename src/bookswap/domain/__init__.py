"""Domain types, models, and errors for the book marketplace."""

from bookswap.domain.errors import (
    AuthorizationError,
    BookSwapError,
    BookUnavailableError,
    ConflictError,
    DisputeAlreadyExistsError,
    DuplicateRequestError,
    InvalidBookModeError,
    InvalidTransitionError,
    NotFoundError,
    NotParticipantError,
    PaymentPendingError,
    SelfReviewForbiddenError,
    SelfTradeForbiddenError,
    StateError,
    ValidationError,
)
from bookswap.domain.models import (
    AnyTransaction,
    BookRecord,
    BorrowTransaction,
    Dispute,
    ExchangeTransaction,
    Identity,
    Review,
    SellTransaction,
    Transaction,
)
from bookswap.domain.types import (
    BookStatus,
    DisputeDisposition,
    DisputeStatus,
    NotificationType,
    PaymentStatus,
    TransactionKind,
    TransactionStatus,
    UserRole,
)

__all__ = [
    "AnyTransaction",
    "AuthorizationError",
    "BookRecord",
    "BookStatus",
    "BookSwapError",
    "BookUnavailableError",
    "BorrowTransaction",
    "ConflictError",
    "Dispute",
    "DisputeAlreadyExistsError",
    "DisputeDisposition",
    "DisputeStatus",
    "DuplicateRequestError",
    "ExchangeTransaction",
    "Identity",
    "InvalidBookModeError",
    "InvalidTransitionError",
    "NotFoundError",
    "NotParticipantError",
    "NotificationType",
    "PaymentPendingError",
    "PaymentStatus",
    "Review",
    "SelfReviewForbiddenError",
    "SelfTradeForbiddenError",
    "SellTransaction",
    "StateError",
    "Transaction",
    "TransactionKind",
    "TransactionStatus",
    "UserRole",
    "ValidationError",
]
