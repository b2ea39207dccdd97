"""Notification models, sinks and the fire-and-forget dispatcher."""

from bookswap.notifications.dispatcher import NotificationDispatcher
from bookswap.notifications.models import Notification, RelatedEntity
from bookswap.notifications.sink import LoggingSink, NotificationSink, SqliteNotificationSink

__all__ = [
    "LoggingSink",
    "Notification",
    "NotificationDispatcher",
    "NotificationSink",
    "RelatedEntity",
    "SqliteNotificationSink",
]
