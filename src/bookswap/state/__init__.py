"""Marketplace state persistence package.

Provides the shared SQLite connection wrapper, the schema DDL and the
per-aggregate stores.
"""

from bookswap.state.database import Database, open_database
from bookswap.state.schema import init_marketplace_tables
from bookswap.state.store import BookStore, DisputeStore, ReviewStore, TransactionStore

__all__ = [
    "BookStore",
    "Database",
    "DisputeStore",
    "ReviewStore",
    "TransactionStore",
    "init_marketplace_tables",
    "open_database",
]
