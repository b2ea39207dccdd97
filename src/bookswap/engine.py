"""Marketplace facade wiring stores, guard, workflows and collaborators.

Usage::

    market = Marketplace.from_settings(get_settings())
    with acting_as(Identity(user_id="alice")):
        book = market.listings.create_listing("Dune", "sell", price="12.50")
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

import structlog

from bookswap.audit.logger import AuditLogger
from bookswap.books.guard import BookExclusivityGuard
from bookswap.books.listings import ListingService
from bookswap.config import Settings
from bookswap.conversations.link import SqliteConversationLink
from bookswap.disputes.workflow import DisputeWorkflow
from bookswap.domain.models import AnyTransaction
from bookswap.domain.types import DisputeStatus, TransactionKind, TransactionStatus
from bookswap.identity import ContextIdentityProvider, IdentityProvider
from bookswap.notifications.dispatcher import NotificationDispatcher
from bookswap.notifications.sink import NotificationSink, SqliteNotificationSink
from bookswap.observability.metrics import OPEN_DISPUTES
from bookswap.reviews.gate import ReviewEligibilityGate
from bookswap.services import MarketplaceServices
from bookswap.state.database import Database, open_database
from bookswap.state.schema import init_marketplace_tables
from bookswap.state.store import BookStore, DisputeStore, ReviewStore, TransactionStore
from bookswap.transactions.base import TransactionService
from bookswap.transactions.borrow import BorrowService
from bookswap.transactions.exchange import ExchangeService
from bookswap.transactions.sell import SellService

logger = structlog.get_logger()


class Marketplace:
    """Entry point for every marketplace operation.

    Args:
        db: The shared database; tables are created if missing.
        identity: Resolves the acting user (defaults to the context-bound one).
        sink: Notification transport (defaults to the SQLite inbox).
        arbitrator_ids: Users notified about new disputes.
        cas_max_attempts: Retries for lost compare-and-set writes.
        synchronous_notifications: Deliver notifications inline.
        notification_workers: Delivery thread pool size.
        notification_max_attempts: Delivery attempts per notification.
        notification_backoff_seconds: Initial delivery backoff.
    """

    def __init__(
        self,
        db: Database,
        *,
        identity: IdentityProvider | None = None,
        sink: NotificationSink | None = None,
        arbitrator_ids: Sequence[str] = (),
        cas_max_attempts: int = 5,
        synchronous_notifications: bool = False,
        notification_workers: int = 2,
        notification_max_attempts: int = 3,
        notification_backoff_seconds: float = 0.5,
    ) -> None:
        with db.session() as conn:
            init_marketplace_tables(conn)

        self.db = db
        self.audit = AuditLogger(db)
        self.inbox = SqliteNotificationSink(db)
        self.conversations = SqliteConversationLink(db)
        self.notifier = NotificationDispatcher(
            sink if sink is not None else self.inbox,
            audit_logger=self.audit,
            max_attempts=notification_max_attempts,
            backoff_seconds=notification_backoff_seconds,
            workers=notification_workers,
            synchronous=synchronous_notifications,
        )

        books = BookStore(db)
        self.services = MarketplaceServices(
            db=db,
            books=books,
            transactions=TransactionStore(db),
            disputes=DisputeStore(db),
            reviews=ReviewStore(db),
            guard=BookExclusivityGuard(books),
            identity=identity or ContextIdentityProvider(),
            notifier=self.notifier,
            conversations=self.conversations,
            audit=self.audit,
            cas_max_attempts=cas_max_attempts,
        )

        self.listings = ListingService(books, self.services.identity)
        self.exchange = ExchangeService(self.services)
        self.sell = SellService(self.services)
        self.borrow = BorrowService(self.services)
        self.disputes = DisputeWorkflow(self.services, arbitrator_ids)
        self.reviews = ReviewEligibilityGate(self.services)

        counts = self.dashboard_counts()
        OPEN_DISPUTES.set(counts["open_disputes"] + counts["disputes_in_progress"])

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> Marketplace:
        """Open the configured database and build a marketplace on it."""
        db_path = settings.database_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db = Database(open_database(db_path))
        options: dict[str, Any] = {
            "arbitrator_ids": settings.arbitrator_ids,
            "cas_max_attempts": settings.cas_max_attempts,
            "notification_workers": settings.notification_workers,
            "notification_max_attempts": settings.notification_max_attempts,
            "notification_backoff_seconds": settings.notification_backoff_seconds,
        }
        options.update(overrides)
        logger.info("marketplace_opened", database_path=str(db_path))
        return cls(db, **options)

    # ------------------------------------------------------------------
    # Cross-variant reads
    # ------------------------------------------------------------------

    def service_for(self, kind: TransactionKind | str) -> TransactionService:
        services: dict[TransactionKind, TransactionService] = {
            TransactionKind.EXCHANGE: self.exchange,
            TransactionKind.SELL: self.sell,
            TransactionKind.BORROW: self.borrow,
        }
        return services[TransactionKind(kind)]

    def transaction(self, transaction_id: str) -> AnyTransaction:
        """Load a transaction of any kind."""
        return self.services.transactions.get(transaction_id)

    def transactions_for(
        self,
        user_id: str,
        *,
        role: str | None = None,
        kind: TransactionKind | None = None,
        status: TransactionStatus | None = None,
    ) -> list[AnyTransaction]:
        """List a user's transactions; ``role`` is ``sent``, ``received`` or ``None``."""
        return self.services.transactions.list_for_participant(
            user_id, role=role, kind=kind, status=status
        )

    def transactions_for_book(self, book_id: str) -> list[AnyTransaction]:
        return self.services.transactions.list_for_book(book_id)

    def find_overdue(self, now: datetime | None = None) -> list[AnyTransaction]:
        return self.borrow.find_overdue(now)

    def dashboard_counts(self) -> dict[str, int]:
        """Counts an arbitrator sees at a glance."""
        tx_store = self.services.transactions
        counts = {
            f"pending_{kind}": tx_store.count_by_status(kind, TransactionStatus.PENDING)
            for kind in TransactionKind
        }
        counts["open_disputes"] = self.services.disputes.count_by_status(DisputeStatus.OPEN)
        counts["disputes_in_progress"] = self.services.disputes.count_by_status(
            DisputeStatus.IN_PROGRESS
        )
        return counts

    def close(self) -> None:
        self.notifier.shutdown(wait=True)
        self.db.close()
        logger.info("marketplace_closed")
