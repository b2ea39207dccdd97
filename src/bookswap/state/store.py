"""SQLite-backed stores for books, transactions, disputes and reviews.

Mirrors the audit store pattern: parameterized queries exclusively and a
commit after every write.  Every mutation that guards an invariant is a
single conditional ``UPDATE`` (compare-and-set); the returned row count
decides whether the caller won.
"""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from typing import Any

from bookswap.domain.errors import (
    AlreadyReviewedError,
    ConcurrentUpdateError,
    DisputeAlreadyExistsError,
    DuplicateRequestError,
    NotFoundError,
)
from bookswap.domain.models import (
    TRANSACTION_ADAPTER,
    AnyTransaction,
    BookRecord,
    Dispute,
    ExchangeTransaction,
    RatingSummary,
    Review,
    utcnow,
)
from bookswap.domain.types import (
    BookStatus,
    DisputeStatus,
    TransactionKind,
    TransactionStatus,
)
from bookswap.state.database import Database


def format_timestamp(value: datetime) -> str:
    """Render *value* as a fixed-width UTC string that sorts chronologically."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class BookStore:
    """Persist book listings and flip their availability atomically."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def add(self, book: BookRecord) -> BookRecord:
        now = format_timestamp(book.created_at)
        self._db.execute(
            """
            INSERT INTO books (
                book_id, owner_id, title, author, mode, price, desired_exchange,
                loan_duration_days, is_available, status, reserved_by,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                book.book_id,
                book.owner_id,
                book.title,
                book.author,
                book.mode.value,
                str(book.price) if book.price is not None else None,
                book.desired_exchange,
                book.loan_duration_days,
                int(book.is_available),
                book.status.value,
                book.reserved_by,
                now,
                now,
            ),
        )
        return book

    def get(self, book_id: str) -> BookRecord:
        """Load a book by ID.

        Raises:
            NotFoundError: If no such book exists.
        """
        row = self._db.fetch_one("SELECT * FROM books WHERE book_id = ?", (book_id,))
        if row is None:
            raise NotFoundError("book", book_id)
        return BookRecord.model_validate(dict(row))

    def list_by_owner(self, owner_id: str) -> list[BookRecord]:
        rows = self._db.fetch_all(
            "SELECT * FROM books WHERE owner_id = ? ORDER BY created_at DESC", (owner_id,)
        )
        return [BookRecord.model_validate(dict(row)) for row in rows]

    def count_by_status(self, status: BookStatus) -> int:
        row = self._db.fetch_one("SELECT COUNT(*) AS n FROM books WHERE status = ?", (status.value,))
        return int(row["n"]) if row else 0

    # ------------------------------------------------------------------
    # Compare-and-set operations used by the exclusivity guard
    # ------------------------------------------------------------------

    def reserve(self, book_id: str, transaction_id: str) -> bool:
        """Mark an available book as held by *transaction_id*.

        Returns:
            ``True`` if this call flipped the book, ``False`` if it was
            already unavailable.
        """
        return (
            self._db.execute(
                """
                UPDATE books
                SET is_available = 0, status = ?, reserved_by = ?, updated_at = ?
                WHERE book_id = ? AND is_available = 1 AND status = ?
                """,
                (
                    BookStatus.PENDING.value,
                    transaction_id,
                    format_timestamp(utcnow()),
                    book_id,
                    BookStatus.ACTIVE.value,
                ),
            )
            == 1
        )

    def release(self, book_id: str, transaction_id: str) -> bool:
        """Return a book held by *transaction_id* to the available pool."""
        return (
            self._db.execute(
                """
                UPDATE books
                SET is_available = 1, status = ?, reserved_by = NULL, updated_at = ?
                WHERE book_id = ? AND reserved_by = ? AND status = ?
                """,
                (
                    BookStatus.ACTIVE.value,
                    format_timestamp(utcnow()),
                    book_id,
                    transaction_id,
                    BookStatus.PENDING.value,
                ),
            )
            == 1
        )

    def consume(self, book_id: str, transaction_id: str) -> bool:
        """Permanently retire a book held by *transaction_id*."""
        return (
            self._db.execute(
                """
                UPDATE books
                SET is_available = 0, status = ?, updated_at = ?
                WHERE book_id = ? AND reserved_by = ? AND status = ?
                """,
                (
                    BookStatus.COMPLETED.value,
                    format_timestamp(utcnow()),
                    book_id,
                    transaction_id,
                    BookStatus.PENDING.value,
                ),
            )
            == 1
        )


class TransactionStore:
    """Persist transactions of every variant in one table.

    The full model is stored as JSON; the columns alongside it exist for
    lookups and for the optimistic ``version`` check.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _columns(tx: AnyTransaction) -> tuple[str, str | None, str | None]:
        if isinstance(tx, ExchangeTransaction):
            return tx.owner_book_id, tx.requester_book_id, None
        due = getattr(tx, "due_date", None)
        return tx.book_id, None, format_timestamp(due) if due is not None else None

    @staticmethod
    def _load(row: sqlite3.Row) -> AnyTransaction:
        return TRANSACTION_ADAPTER.validate_json(row["data_json"])

    def insert(self, tx: AnyTransaction) -> AnyTransaction:
        """Insert a new transaction.

        Raises:
            DuplicateRequestError: If the initiator already has a pending
                request of this kind for the same book.
        """
        book_id, second_book_id, due = self._columns(tx)
        try:
            self._db.execute(
                """
                INSERT INTO transactions (
                    transaction_id, kind, status, initiator_id, counterparty_id,
                    book_id, second_book_id, due_date, version, data_json,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tx.transaction_id,
                    tx.kind,
                    tx.status.value,
                    tx.initiator_id,
                    tx.counterparty_id,
                    book_id,
                    second_book_id,
                    due,
                    tx.version,
                    tx.model_dump_json(),
                    format_timestamp(tx.created_at),
                    format_timestamp(tx.updated_at),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRequestError(
                "A pending request already exists for this book from you"
            ) from exc
        return tx

    def save(self, tx: AnyTransaction) -> AnyTransaction:
        """Write *tx* back if nobody else changed it since it was loaded.

        Bumps ``tx.version`` on success.

        Raises:
            ConcurrentUpdateError: If the stored version moved on.
        """
        expected = tx.version
        tx.version = expected + 1
        tx.updated_at = utcnow()
        book_id, second_book_id, due = self._columns(tx)
        updated = self._db.execute(
            """
            UPDATE transactions
            SET status = ?, book_id = ?, second_book_id = ?, due_date = ?,
                version = ?, data_json = ?, updated_at = ?
            WHERE transaction_id = ? AND version = ?
            """,
            (
                tx.status.value,
                book_id,
                second_book_id,
                due,
                tx.version,
                tx.model_dump_json(),
                format_timestamp(tx.updated_at),
                tx.transaction_id,
                expected,
            ),
        )
        if updated != 1:
            tx.version = expected
            raise ConcurrentUpdateError(
                f"Transaction '{tx.transaction_id}' was modified concurrently"
            )
        return tx

    def get(self, transaction_id: str) -> AnyTransaction:
        """Load a transaction by ID.

        Raises:
            NotFoundError: If no such transaction exists.
        """
        row = self._db.fetch_one(
            "SELECT data_json FROM transactions WHERE transaction_id = ?", (transaction_id,)
        )
        if row is None:
            raise NotFoundError("transaction", transaction_id)
        return self._load(row)

    def find_pending_request(
        self,
        kind: TransactionKind,
        initiator_id: str,
        book_id: str,
        second_book_id: str | None = None,
        include_disputed: bool = False,
    ) -> AnyTransaction | None:
        """Return the initiator's pending request for a book, if any.

        With *include_disputed*, a request frozen by a dispute while still
        open counts too; the ``uq_tx_open_request`` index enforces the same.
        """
        statuses = [TransactionStatus.PENDING.value]
        if include_disputed:
            statuses.append(TransactionStatus.DISPUTED.value)
        placeholders = ", ".join("?" * len(statuses))
        sql = (
            "SELECT data_json FROM transactions "
            "WHERE kind = ? AND initiator_id = ? AND book_id = ? "
            f"AND status IN ({placeholders})"
        )
        params: list[object] = [kind.value, initiator_id, book_id, *statuses]
        if second_book_id is not None:
            sql += " AND second_book_id = ?"
            params.append(second_book_id)
        rows = self._db.fetch_all(sql, params)
        return self._load(rows[0]) if rows else None

    def find_pending_for_book(
        self, book_id: str, exclude_id: str | None = None
    ) -> list[AnyTransaction]:
        """Return every pending transaction referencing *book_id* on either side."""
        rows = self._db.fetch_all(
            """
            SELECT data_json FROM transactions
            WHERE status = ? AND (book_id = ? OR second_book_id = ?)
            ORDER BY created_at
            """,
            (TransactionStatus.PENDING.value, book_id, book_id),
        )
        found = [self._load(row) for row in rows]
        return [tx for tx in found if tx.transaction_id != exclude_id]

    def list_for_book(self, book_id: str) -> list[AnyTransaction]:
        rows = self._db.fetch_all(
            """
            SELECT data_json FROM transactions
            WHERE book_id = ? OR second_book_id = ?
            ORDER BY created_at DESC
            """,
            (book_id, book_id),
        )
        return [self._load(row) for row in rows]

    def list_for_participant(
        self,
        user_id: str,
        *,
        role: str | None = None,
        kind: TransactionKind | None = None,
        status: TransactionStatus | None = None,
    ) -> list[AnyTransaction]:
        """List a user's transactions, newest first.

        Args:
            user_id: The participant.
            role: ``"sent"`` for requests the user initiated, ``"received"``
                  for requests made to the user, ``None`` for both.
            kind: Optional variant filter.
            status: Optional status filter.
        """
        conditions: list[str] = []
        params: list[object] = []

        if role == "sent":
            conditions.append("initiator_id = ?")
            params.append(user_id)
        elif role == "received":
            conditions.append("counterparty_id = ?")
            params.append(user_id)
        else:
            conditions.append("(initiator_id = ? OR counterparty_id = ?)")
            params.extend([user_id, user_id])

        if kind is not None:
            conditions.append("kind = ?")
            params.append(kind.value)

        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)

        query = (
            "SELECT data_json FROM transactions WHERE "
            + " AND ".join(conditions)
            + " ORDER BY created_at DESC"
        )
        return [self._load(row) for row in self._db.fetch_all(query, params)]

    def find_overdue(self, now: datetime) -> list[AnyTransaction]:
        """Return active borrows whose due date is before *now*."""
        rows = self._db.fetch_all(
            """
            SELECT data_json FROM transactions
            WHERE kind = ? AND status = ? AND due_date IS NOT NULL AND due_date < ?
            ORDER BY due_date
            """,
            (
                TransactionKind.BORROW.value,
                TransactionStatus.ACTIVE.value,
                format_timestamp(now),
            ),
        )
        return [self._load(row) for row in rows]

    def count_by_status(self, kind: TransactionKind, status: TransactionStatus) -> int:
        row = self._db.fetch_one(
            "SELECT COUNT(*) AS n FROM transactions WHERE kind = ? AND status = ?",
            (kind.value, status.value),
        )
        return int(row["n"]) if row else 0


class DisputeStore:
    """Persist disputes; at most one per transaction."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, dispute: Dispute) -> Dispute:
        """Insert a new dispute.

        Raises:
            DisputeAlreadyExistsError: If the transaction already has one.
        """
        now = format_timestamp(dispute.created_at)
        try:
            self._db.execute(
                """
                INSERT INTO disputes (
                    dispute_id, transaction_id, status, raised_by, data_json,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    dispute.dispute_id,
                    dispute.transaction_id,
                    dispute.status.value,
                    dispute.raised_by,
                    dispute.model_dump_json(),
                    now,
                    now,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise DisputeAlreadyExistsError(
                "A dispute already exists for this transaction"
            ) from exc
        return dispute

    def delete(self, dispute_id: str) -> None:
        """Remove a dispute whose transaction could not be frozen."""
        self._db.execute("DELETE FROM disputes WHERE dispute_id = ?", (dispute_id,))

    def get(self, dispute_id: str) -> Dispute:
        row = self._db.fetch_one("SELECT data_json FROM disputes WHERE dispute_id = ?", (dispute_id,))
        if row is None:
            raise NotFoundError("dispute", dispute_id)
        return Dispute.model_validate_json(row["data_json"])

    def get_by_transaction(self, transaction_id: str) -> Dispute | None:
        row = self._db.fetch_one(
            "SELECT data_json FROM disputes WHERE transaction_id = ?", (transaction_id,)
        )
        return Dispute.model_validate_json(row["data_json"]) if row else None

    def list(self, status: DisputeStatus | None = None) -> list[Dispute]:
        if status is None:
            rows = self._db.fetch_all("SELECT data_json FROM disputes ORDER BY created_at DESC")
        else:
            rows = self._db.fetch_all(
                "SELECT data_json FROM disputes WHERE status = ? ORDER BY created_at DESC",
                (status.value,),
            )
        return [Dispute.model_validate_json(row["data_json"]) for row in rows]

    def count_by_status(self, status: DisputeStatus) -> int:
        row = self._db.fetch_one(
            "SELECT COUNT(*) AS n FROM disputes WHERE status = ?", (status.value,)
        )
        return int(row["n"]) if row else 0

    def transition(self, dispute: Dispute, from_states: frozenset[DisputeStatus]) -> bool:
        """Write *dispute* only if its stored status is one of *from_states*.

        Returns:
            ``True`` if the row was updated.
        """
        placeholders = ", ".join("?" for _ in from_states)
        params: list[Any] = [
            dispute.status.value,
            dispute.model_dump_json(),
            format_timestamp(utcnow()),
            dispute.dispute_id,
            *sorted(s.value for s in from_states),
        ]
        updated = self._db.execute(
            f"""
            UPDATE disputes SET status = ?, data_json = ?, updated_at = ?
            WHERE dispute_id = ? AND status IN ({placeholders})
            """,
            tuple(params),
        )
        return updated == 1


class ReviewStore:
    """Persist reviews; one per reviewer per transaction."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, review: Review) -> Review:
        """Insert a review.

        Raises:
            AlreadyReviewedError: If the reviewer already reviewed the transaction.
        """
        try:
            self._db.execute(
                """
                INSERT INTO reviews (
                    review_id, transaction_id, reviewer_id, reviewee_id, rating,
                    data_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    review.review_id,
                    review.transaction_id,
                    review.reviewer_id,
                    review.reviewee_id,
                    review.rating,
                    review.model_dump_json(),
                    format_timestamp(review.created_at),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise AlreadyReviewedError("You have already reviewed this transaction") from exc
        return review

    def exists(self, reviewer_id: str, transaction_id: str) -> bool:
        row = self._db.fetch_one(
            "SELECT 1 FROM reviews WHERE reviewer_id = ? AND transaction_id = ?",
            (reviewer_id, transaction_id),
        )
        return row is not None

    def list_for_reviewee(self, reviewee_id: str) -> list[Review]:
        rows = self._db.fetch_all(
            "SELECT data_json FROM reviews WHERE reviewee_id = ? ORDER BY created_at DESC",
            (reviewee_id,),
        )
        return [Review.model_validate_json(row["data_json"]) for row in rows]

    def rating_summary(self, reviewee_id: str) -> RatingSummary:
        row = self._db.fetch_one(
            "SELECT AVG(rating) AS avg_rating, COUNT(*) AS n FROM reviews WHERE reviewee_id = ?",
            (reviewee_id,),
        )
        count = int(row["n"]) if row else 0
        average = round(float(row["avg_rating"]), 1) if row and count else 0.0
        return RatingSummary(user_id=reviewee_id, average_rating=average, total_reviews=count)
