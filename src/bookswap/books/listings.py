"""Book listing creation and lookup."""

from __future__ import annotations

from decimal import Decimal

import structlog
from pydantic import ValidationError as PydanticValidationError

from bookswap.domain.errors import ValidationError
from bookswap.domain.models import BookRecord
from bookswap.domain.types import TransactionKind
from bookswap.identity import IdentityProvider, require_active
from bookswap.state.store import BookStore

logger = structlog.get_logger()


class ListingService:
    """Create listings on behalf of the acting user."""

    def __init__(self, books: BookStore, identity: IdentityProvider) -> None:
        self._books = books
        self._identity = identity

    def create_listing(
        self,
        title: str,
        mode: TransactionKind | str,
        *,
        author: str | None = None,
        price: Decimal | str | None = None,
        desired_exchange: str | None = None,
        loan_duration_days: int | None = None,
    ) -> BookRecord:
        """List a book for exchange, sale or loan.

        Raises:
            ValidationError: If the terms do not fit the chosen mode.
            UserSuspendedError: If the acting user is suspended.
        """
        owner = require_active(self._identity)
        try:
            book = BookRecord(
                owner_id=owner.user_id,
                title=title,
                author=author,
                mode=mode,
                price=price,
                desired_exchange=desired_exchange,
                loan_duration_days=loan_duration_days,
            )
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc) from exc

        self._books.add(book)
        logger.info("book_listed", book_id=book.book_id, owner_id=owner.user_id, mode=str(book.mode))
        return book

    def get(self, book_id: str) -> BookRecord:
        return self._books.get(book_id)

    def list_by_owner(self, owner_id: str) -> list[BookRecord]:
        return self._books.list_by_owner(owner_id)

