"""Pydantic v2 models for the marketplace aggregates.

A transaction is modelled as one tagged union over three variant models
sharing a common spine.  The spine stores the two participants as
``initiator_id`` (the user who opened the request) and ``counterparty_id``
(the lister who accepts or rejects it); each variant exposes its own role
names on top of that.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from bookswap.domain.types import (
    BookStatus,
    CancellationReason,
    DisputeDisposition,
    DisputeStatus,
    PaymentStatus,
    TransactionKind,
    TransactionStatus,
    UserRole,
)


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def _reject_float(v: object) -> object:
    if isinstance(v, float):
        raise ValueError("Use Decimal or string, not float, for monetary values")
    return v


class BookRecord(BaseModel):
    """A single book listing and its availability.

    ``is_available`` and ``status`` are only ever changed through the
    exclusivity guard.  ``reserved_by`` names the transaction currently
    holding the book, if any.
    """

    book_id: str = Field(default_factory=new_id)
    owner_id: str
    title: str
    author: str | None = None
    mode: TransactionKind
    price: Decimal | None = None
    desired_exchange: str | None = None
    loan_duration_days: int | None = None
    is_available: bool = True
    status: BookStatus = BookStatus.ACTIVE
    reserved_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("price", mode="before")
    @classmethod
    def reject_float_inputs(cls, v: object) -> object:
        """Reject float inputs for the price to prevent precision errors."""
        return _reject_float(v)

    @field_validator("title")
    @classmethod
    def title_must_not_be_empty(cls, v: str) -> str:
        """Ensure the title is not empty or whitespace-only."""
        if not v.strip():
            raise ValueError("title must not be empty")
        return v

    @model_validator(mode="after")
    def terms_must_match_mode(self) -> BookRecord:
        """Ensure the mode-specific terms are present and sane."""
        if self.mode == TransactionKind.SELL:
            if self.price is None or self.price < 0:
                raise ValueError("sell listings need a non-negative price")
        elif self.mode == TransactionKind.EXCHANGE:
            if not (self.desired_exchange or "").strip():
                raise ValueError("exchange listings need a desired exchange description")
        elif self.mode == TransactionKind.BORROW:
            if self.loan_duration_days is None or self.loan_duration_days < 1:
                raise ValueError("borrow listings need a loan duration of at least 1 day")
        return self


class _TransactionBase(BaseModel):
    """Fields and behaviour shared by every transaction variant."""

    model_config = ConfigDict(validate_assignment=True)

    transaction_id: str = Field(default_factory=new_id)
    initiator_id: str
    counterparty_id: str
    status: TransactionStatus = TransactionStatus.PENDING
    initiator_confirmed: bool = False
    counterparty_confirmed: bool = False
    cancellation_reason: CancellationReason | None = None
    is_disputed: bool = False
    history: list[tuple[TransactionStatus, str, TransactionStatus]] = Field(default_factory=list)
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def participants(self) -> tuple[str, str]:
        """Return ``(initiator_id, counterparty_id)``."""
        return (self.initiator_id, self.counterparty_id)

    @property
    def book_ids(self) -> tuple[str, ...]:
        """Return every book this transaction references."""
        raise NotImplementedError

    @property
    def was_accepted(self) -> bool:
        """Return True once the books were reserved for this transaction."""
        return any(event == "accept" for _, event, _ in self.history)

    def is_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def other_participant(self, user_id: str) -> str:
        """Return the participant that is not *user_id*."""
        return self.counterparty_id if user_id == self.initiator_id else self.initiator_id

    def both_confirmed(self) -> bool:
        return self.initiator_confirmed and self.counterparty_confirmed


class ExchangeTransaction(_TransactionBase):
    """Book-for-book swap between a requester and a book owner."""

    kind: Literal["exchange"] = "exchange"
    requester_book_id: str
    owner_book_id: str
    message: str | None = Field(default=None, max_length=500)

    @property
    def requester_id(self) -> str:
        return self.initiator_id

    @property
    def owner_id(self) -> str:
        return self.counterparty_id

    @property
    def book_ids(self) -> tuple[str, ...]:
        return (self.owner_book_id, self.requester_book_id)


class SellTransaction(_TransactionBase):
    """Book-for-cash sale; payment is a manually asserted flag."""

    kind: Literal["sell"] = "sell"
    book_id: str
    price: Decimal
    payment_status: PaymentStatus = PaymentStatus.PENDING

    @field_validator("price", mode="before")
    @classmethod
    def reject_float_inputs(cls, v: object) -> object:
        """Reject float inputs for the price to prevent precision errors."""
        return _reject_float(v)

    @property
    def buyer_id(self) -> str:
        return self.initiator_id

    @property
    def seller_id(self) -> str:
        return self.counterparty_id

    @property
    def book_ids(self) -> tuple[str, ...]:
        return (self.book_id,)


class BorrowTransaction(_TransactionBase):
    """Temporary loan with a due date set at hand-over."""

    kind: Literal["borrow"] = "borrow"
    book_id: str
    requested_duration: int
    borrow_date: datetime | None = None
    due_date: datetime | None = None
    return_date: datetime | None = None

    @field_validator("requested_duration")
    @classmethod
    def duration_must_be_positive(cls, v: int) -> int:
        """Ensure the loan lasts at least one day."""
        if v < 1:
            raise ValueError("requested_duration must be at least 1 day")
        return v

    @property
    def borrower_id(self) -> str:
        return self.initiator_id

    @property
    def owner_id(self) -> str:
        return self.counterparty_id

    @property
    def book_ids(self) -> tuple[str, ...]:
        return (self.book_id,)


AnyTransaction = ExchangeTransaction | SellTransaction | BorrowTransaction

Transaction = Annotated[AnyTransaction, Field(discriminator="kind")]

TRANSACTION_ADAPTER: TypeAdapter[AnyTransaction] = TypeAdapter(Transaction)


class Dispute(BaseModel):
    """A contested transaction awaiting an arbitrator."""

    dispute_id: str = Field(default_factory=new_id)
    transaction_id: str
    transaction_kind: TransactionKind
    raised_by: str
    participants: list[str]
    reason: str = Field(max_length=1000)
    status: DisputeStatus = DisputeStatus.OPEN
    resolution: str | None = Field(default=None, max_length=1000)
    disposition: DisputeDisposition | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("reason")
    @classmethod
    def reason_must_not_be_empty(cls, v: str) -> str:
        """Ensure a dispute explains itself."""
        if not v.strip():
            raise ValueError("reason must not be empty")
        return v


class Review(BaseModel):
    """One participant's rating of the other after a finished transaction."""

    review_id: str = Field(default_factory=new_id)
    transaction_id: str
    transaction_kind: TransactionKind
    reviewer_id: str
    reviewee_id: str
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow)


class RatingSummary(BaseModel):
    """Aggregate rating for a reviewee."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    average_rating: float
    total_reviews: int


class Identity(BaseModel):
    """The acting user as resolved by the identity provider."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role: UserRole = UserRole.USER
    is_suspended: bool = False

    @property
    def is_arbitrator(self) -> bool:
        return self.role == UserRole.ADMIN
