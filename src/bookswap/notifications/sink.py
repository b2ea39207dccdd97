"""Notification sinks: the transport the dispatcher hands messages to.

``SqliteNotificationSink`` keeps an in-app inbox per user (list, unread
count, mark read).  ``LoggingSink`` only writes a structured log line and is
useful when no inbox is wanted.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from bookswap.domain.errors import NotFoundError
from bookswap.domain.types import NotificationType
from bookswap.notifications.models import Notification, RelatedEntity
from bookswap.state.database import Database
from bookswap.state.store import format_timestamp

logger = structlog.get_logger()


class NotificationSink(Protocol):
    """Anything that can deliver a notification to a user."""

    def emit(
        self,
        recipient_id: str,
        event_type: NotificationType,
        message: str,
        related_entity: RelatedEntity | None = None,
    ) -> None: ...


class LoggingSink:
    """Sink that records notifications as log events only."""

    def emit(
        self,
        recipient_id: str,
        event_type: NotificationType,
        message: str,
        related_entity: RelatedEntity | None = None,
    ) -> None:
        logger.info(
            "notification_emitted",
            recipient_id=recipient_id,
            event_type=str(event_type),
            message=message,
            entity_type=related_entity.entity_type if related_entity else None,
            entity_id=related_entity.entity_id if related_entity else None,
        )


def init_notifications_table(db: Database) -> None:
    """Create the ``notifications`` table and its indexes if missing."""
    with db.session() as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS notifications (
                notification_id TEXT PRIMARY KEY,
                recipient_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                message TEXT NOT NULL,
                entity_type TEXT,
                entity_id TEXT,
                is_read INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_notifications_recipient "
            "ON notifications (recipient_id, is_read)"
        )


class SqliteNotificationSink:
    """Sink that persists notifications as a per-user inbox.

    Args:
        db: The shared marketplace database.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        init_notifications_table(db)

    def emit(
        self,
        recipient_id: str,
        event_type: NotificationType,
        message: str,
        related_entity: RelatedEntity | None = None,
    ) -> None:
        notification = Notification(
            recipient_id=recipient_id,
            event_type=event_type,
            message=message,
            related_entity=related_entity,
        )
        self._db.execute(
            """
            INSERT INTO notifications (
                notification_id, recipient_id, event_type, message,
                entity_type, entity_id, is_read, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (
                notification.notification_id,
                notification.recipient_id,
                notification.event_type.value,
                notification.message,
                related_entity.entity_type if related_entity else None,
                related_entity.entity_id if related_entity else None,
                format_timestamp(notification.created_at),
            ),
        )
        logger.debug(
            "notification_stored",
            recipient_id=recipient_id,
            event_type=str(event_type),
            notification_id=notification.notification_id,
        )

    def list_for(self, recipient_id: str, *, unread_only: bool = False) -> list[Notification]:
        """Return a user's notifications, newest first."""
        sql = "SELECT * FROM notifications WHERE recipient_id = ?"
        if unread_only:
            sql += " AND is_read = 0"
        sql += " ORDER BY created_at DESC"
        rows = self._db.fetch_all(sql, (recipient_id,))
        return [
            Notification(
                notification_id=row["notification_id"],
                recipient_id=row["recipient_id"],
                event_type=NotificationType(row["event_type"]),
                message=row["message"],
                related_entity=(
                    RelatedEntity(entity_type=row["entity_type"], entity_id=row["entity_id"])
                    if row["entity_type"]
                    else None
                ),
                is_read=bool(row["is_read"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def unread_count(self, recipient_id: str) -> int:
        row = self._db.fetch_one(
            "SELECT COUNT(*) AS n FROM notifications WHERE recipient_id = ? AND is_read = 0",
            (recipient_id,),
        )
        return int(row["n"]) if row else 0

    def mark_read(self, recipient_id: str, notification_id: str) -> None:
        """Mark one of the recipient's notifications as read.

        Raises:
            NotFoundError: If the notification does not exist or belongs to
                someone else.
        """
        updated = self._db.execute(
            "UPDATE notifications SET is_read = 1 WHERE notification_id = ? AND recipient_id = ?",
            (notification_id, recipient_id),
        )
        if updated == 0:
            raise NotFoundError("notification", notification_id)

    def mark_all_read(self, recipient_id: str) -> int:
        """Mark every unread notification of the recipient as read."""
        return self._db.execute(
            "UPDATE notifications SET is_read = 1 WHERE recipient_id = ? AND is_read = 0",
            (recipient_id,),
        )
