"""SQLite schema for marketplace state.

Provides the DDL function that creates the books, transactions, disputes and
reviews tables.  Uniqueness rules that guard invariants live in the schema:
one pending request per requester and book, one dispute per transaction and
one review per reviewer and transaction.
"""

from __future__ import annotations

import sqlite3


def init_marketplace_tables(conn: sqlite3.Connection) -> None:
    """Create the marketplace tables and indexes if they do not already exist.

    Args:
        conn: An open sqlite3.Connection (WAL mode recommended).
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS books (
            book_id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            title TEXT NOT NULL,
            author TEXT,
            mode TEXT NOT NULL,
            price TEXT,
            desired_exchange TEXT,
            loan_duration_days INTEGER,
            is_available INTEGER NOT NULL DEFAULT 1,
            status TEXT NOT NULL DEFAULT 'active',
            reserved_by TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_books_owner ON books (owner_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_books_available ON books (is_available)")

    # book_id is the listing the counterparty owns; second_book_id is the
    # requester's offered book for exchanges and NULL otherwise.
    conn.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            transaction_id TEXT PRIMARY KEY,
            kind TEXT NOT NULL,
            status TEXT NOT NULL,
            initiator_id TEXT NOT NULL,
            counterparty_id TEXT NOT NULL,
            book_id TEXT NOT NULL,
            second_book_id TEXT,
            due_date TEXT,
            version INTEGER NOT NULL DEFAULT 0,
            data_json TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_tx_status ON transactions (status)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_tx_initiator ON transactions (initiator_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_tx_counterparty ON transactions (counterparty_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_tx_book ON transactions (book_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_tx_second_book ON transactions (second_book_id)")
    conn.execute("DROP INDEX IF EXISTS uq_tx_pending_request")
    conn.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_tx_open_request
        ON transactions (kind, initiator_id, book_id)
        WHERE status IN ('pending', 'disputed')
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS disputes (
            dispute_id TEXT PRIMARY KEY,
            transaction_id TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL,
            raised_by TEXT NOT NULL,
            data_json TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_disputes_status ON disputes (status)")

    conn.execute("""
        CREATE TABLE IF NOT EXISTS reviews (
            review_id TEXT PRIMARY KEY,
            transaction_id TEXT NOT NULL,
            reviewer_id TEXT NOT NULL,
            reviewee_id TEXT NOT NULL,
            rating INTEGER NOT NULL,
            data_json TEXT NOT NULL,
            created_at TEXT NOT NULL,
            UNIQUE (reviewer_id, transaction_id)
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_reviews_reviewee ON reviews (reviewee_id)")

    conn.commit()
