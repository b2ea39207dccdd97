"""Tests for the SQLite inbox and logging notification sinks."""

from __future__ import annotations

import pytest
import structlog

from bookswap.domain.errors import NotFoundError
from bookswap.domain.types import NotificationType
from bookswap.notifications import LoggingSink, RelatedEntity, SqliteNotificationSink
from bookswap.state.database import Database


@pytest.fixture
def inbox(db: Database) -> SqliteNotificationSink:
    return SqliteNotificationSink(db)


class TestSqliteNotificationSink:
    def test_emit_and_list(self, inbox: SqliteNotificationSink) -> None:
        related = RelatedEntity(entity_type="transaction", entity_id="tx-1")
        inbox.emit("alice", NotificationType.REQUEST_RECEIVED, "Bob wants Dune", related)

        [notification] = inbox.list_for("alice")
        assert notification.event_type == NotificationType.REQUEST_RECEIVED
        assert notification.message == "Bob wants Dune"
        assert notification.related_entity == related
        assert notification.is_read is False
        assert inbox.list_for("bob") == []

    def test_related_entity_optional(self, inbox: SqliteNotificationSink) -> None:
        inbox.emit("alice", NotificationType.STATUS_CHANGED, "Something happened")
        assert inbox.list_for("alice")[0].related_entity is None

    def test_unread_count_and_mark_read(self, inbox: SqliteNotificationSink) -> None:
        inbox.emit("alice", NotificationType.REQUEST_RECEIVED, "one")
        inbox.emit("alice", NotificationType.STATUS_CHANGED, "two")
        inbox.emit("alice", NotificationType.PAYMENT_CHANGED, "three")
        assert inbox.unread_count("alice") == 3

        first = inbox.list_for("alice")[0]
        inbox.mark_read("alice", first.notification_id)
        assert inbox.unread_count("alice") == 2
        assert first.notification_id not in [
            n.notification_id for n in inbox.list_for("alice", unread_only=True)
        ]

        assert inbox.mark_all_read("alice") == 2
        assert inbox.unread_count("alice") == 0

    def test_cannot_mark_someone_elses_notification(self, inbox: SqliteNotificationSink) -> None:
        inbox.emit("alice", NotificationType.REQUEST_RECEIVED, "private")
        notification_id = inbox.list_for("alice")[0].notification_id

        with pytest.raises(NotFoundError):
            inbox.mark_read("bob", notification_id)
        with pytest.raises(NotFoundError):
            inbox.mark_read("alice", "missing")
        assert inbox.unread_count("alice") == 1


class TestLoggingSink:
    def test_emits_log_event(self) -> None:
        with structlog.testing.capture_logs() as logs:
            LoggingSink().emit(
                "alice",
                NotificationType.DISPUTE_OPENED,
                "A dispute was opened",
                RelatedEntity(entity_type="dispute", entity_id="d-1"),
            )

        assert logs[0]["event"] == "notification_emitted"
        assert logs[0]["recipient_id"] == "alice"
        assert logs[0]["entity_id"] == "d-1"
