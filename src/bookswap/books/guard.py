"""Book exclusivity: at most one reserved, unfinished transaction per book.

Every availability flip goes through ``BookStore``'s conditional updates, so
two acceptances racing for the same book cannot both win: the second
``UPDATE ... WHERE is_available = 1`` matches no row.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from pydantic import BaseModel, ConfigDict

from bookswap.state.store import BookStore

logger = structlog.get_logger()


class Reservation(BaseModel):
    """Outcome of ``try_reserve``."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    transaction_id: str
    book_ids: tuple[str, ...] = ()
    conflict_book_id: str | None = None


class BookExclusivityGuard:
    """Reserve, release and consume books on behalf of transactions.

    Args:
        books: The book store performing the compare-and-set updates.
    """

    def __init__(self, books: BookStore) -> None:
        self._books = books

    def try_reserve(self, book_ids: Sequence[str], transaction_id: str) -> Reservation:
        """Reserve every book for *transaction_id*, or none of them.

        Books are flipped one at a time; if a later book is already taken the
        ones reserved so far are released again before returning.

        Returns:
            A ``Reservation`` with ``ok=False`` and the ``conflict_book_id``
            when any book was unavailable.
        """
        reserved: list[str] = []
        for book_id in book_ids:
            if self._books.reserve(book_id, transaction_id):
                reserved.append(book_id)
                continue

            for held in reserved:
                self._books.release(held, transaction_id)
            logger.info(
                "book_reservation_conflict",
                transaction_id=transaction_id,
                book_id=book_id,
                rolled_back=len(reserved),
            )
            return Reservation(ok=False, transaction_id=transaction_id, conflict_book_id=book_id)

        logger.debug("books_reserved", transaction_id=transaction_id, book_ids=reserved)
        return Reservation(ok=True, transaction_id=transaction_id, book_ids=tuple(reserved))

    def release(self, book_ids: Sequence[str], transaction_id: str) -> list[str]:
        """Make the books held by *transaction_id* available again.

        Books held by another transaction, or already consumed, are left
        untouched.

        Returns:
            The IDs that were actually released.
        """
        released = [b for b in book_ids if self._books.release(b, transaction_id)]
        logger.debug("books_released", transaction_id=transaction_id, book_ids=released)
        return released

    def consume(self, book_ids: Sequence[str], transaction_id: str) -> list[str]:
        """Retire the books held by *transaction_id* permanently.

        Returns:
            The IDs that were actually consumed.
        """
        consumed = [b for b in book_ids if self._books.consume(b, transaction_id)]
        logger.debug("books_consumed", transaction_id=transaction_id, book_ids=consumed)
        return consumed
