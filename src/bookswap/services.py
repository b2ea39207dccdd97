"""The bundle of collaborators every marketplace workflow is built from."""

from __future__ import annotations

from dataclasses import dataclass

from bookswap.audit.logger import AuditLogger
from bookswap.books.guard import BookExclusivityGuard
from bookswap.conversations.link import ConversationLink
from bookswap.identity import IdentityProvider
from bookswap.notifications.dispatcher import NotificationDispatcher
from bookswap.state.database import Database
from bookswap.state.store import BookStore, DisputeStore, ReviewStore, TransactionStore


@dataclass
class MarketplaceServices:
    """Stores, guard and external collaborators shared by the workflows."""

    db: Database
    books: BookStore
    transactions: TransactionStore
    disputes: DisputeStore
    reviews: ReviewStore
    guard: BookExclusivityGuard
    identity: IdentityProvider
    notifier: NotificationDispatcher
    conversations: ConversationLink
    audit: AuditLogger
    cas_max_attempts: int = 5
