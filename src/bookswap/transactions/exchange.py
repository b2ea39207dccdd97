"""Book-for-book exchange requests."""

from __future__ import annotations

from typing import ClassVar

from bookswap.domain.errors import AuthorizationError, DuplicateRequestError, InvalidBookModeError
from bookswap.domain.models import AnyTransaction, ExchangeTransaction
from bookswap.domain.types import TransactionKind
from bookswap.transactions.base import TransactionService


class ExchangeService(TransactionService):
    """Exchange lifecycle: pending -> accepted -> completed.

    Both books are reserved on acceptance and consumed on completion.  A
    pending request can only be cancelled by its requester; the owner
    rejects it instead.
    """

    kind: ClassVar[TransactionKind] = TransactionKind.EXCHANGE
    model: ClassVar[type[AnyTransaction]] = ExchangeTransaction

    def create(
        self,
        owner_book_id: str,
        requester_book_id: str,
        message: str | None = None,
    ) -> AnyTransaction:
        """Offer *requester_book_id* in exchange for *owner_book_id*.

        Raises:
            InvalidBookModeError: If either book is not listed for exchange.
            SelfTradeForbiddenError: If the requester owns the wanted book.
            AuthorizationError: If the requester does not own the offered book.
            BookUnavailableError: If either book is unavailable.
            DuplicateRequestError: If a pending request already exists for
                these books in either direction.
        """
        requester = self._actor()
        owner_book = self._s.books.get(owner_book_id)
        offered = self._s.books.get(requester_book_id)

        if offered.mode != self.kind:
            raise InvalidBookModeError(f"Book '{offered.book_id}' is not listed for exchange")
        self._check_listing(owner_book, requester.user_id)
        if offered.owner_id != requester.user_id:
            raise AuthorizationError("You can only offer a book you own")
        self._check_listing(offered, owner_book.owner_id)

        self._check_no_pending_request(requester.user_id, owner_book_id)
        reverse = self._s.transactions.find_pending_request(
            self.kind, owner_book.owner_id, requester_book_id, second_book_id=owner_book_id
        )
        if reverse is not None:
            raise DuplicateRequestError("A pending exchange request already exists for these books")

        tx = self._build(
            initiator_id=requester.user_id,
            counterparty_id=owner_book.owner_id,
            owner_book_id=owner_book_id,
            requester_book_id=requester_book_id,
            message=message,
        )
        return self._open(tx, owner_book)
