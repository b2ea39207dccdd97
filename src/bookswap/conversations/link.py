"""One chat conversation per transaction.

Message delivery lives elsewhere; the marketplace only makes sure the
conversation record linking the two participants exists.
"""

from __future__ import annotations

import json
from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from bookswap.domain.models import utcnow
from bookswap.domain.types import TransactionKind
from bookswap.state.database import Database
from bookswap.state.store import format_timestamp

logger = structlog.get_logger()


class Conversation(BaseModel):
    transaction_id: str
    transaction_kind: TransactionKind
    participants: list[str]
    created_at: str = Field(default_factory=lambda: format_timestamp(utcnow()))


class ConversationLink(Protocol):
    """Ensures a conversation exists for a transaction."""

    def ensure(
        self, transaction_id: str, transaction_kind: TransactionKind, participant_ids: list[str]
    ) -> None: ...


class SqliteConversationLink:
    """Conversation link persisted in the marketplace database.

    ``ensure`` is idempotent: the transaction ID is the primary key and a
    second call leaves the existing row untouched.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        with db.session() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    transaction_id TEXT PRIMARY KEY,
                    transaction_kind TEXT NOT NULL,
                    participants TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

    def ensure(
        self, transaction_id: str, transaction_kind: TransactionKind, participant_ids: list[str]
    ) -> None:
        conversation = Conversation(
            transaction_id=transaction_id,
            transaction_kind=transaction_kind,
            participants=sorted(participant_ids),
        )
        created = self._db.execute(
            """
            INSERT OR IGNORE INTO conversations (
                transaction_id, transaction_kind, participants, created_at
            ) VALUES (?, ?, ?, ?)
            """,
            (
                conversation.transaction_id,
                conversation.transaction_kind.value,
                json.dumps(conversation.participants),
                conversation.created_at,
            ),
        )
        if created:
            logger.debug("conversation_created", transaction_id=transaction_id)

    def get(self, transaction_id: str) -> Conversation | None:
        row = self._db.fetch_one(
            "SELECT * FROM conversations WHERE transaction_id = ?", (transaction_id,)
        )
        if row is None:
            return None
        return Conversation(
            transaction_id=row["transaction_id"],
            transaction_kind=TransactionKind(row["transaction_kind"]),
            participants=json.loads(row["participants"]),
            created_at=row["created_at"],
        )
