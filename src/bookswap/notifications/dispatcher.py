"""Fire-and-forget notification delivery with tenacity retry.

Delivery runs on a small thread pool so a slow or failing sink never blocks
the caller, and a notification failure never rolls back the state change
that triggered it.  Each delivery is retried with exponential backoff and
jitter; the final failure is logged and written to the audit trail.
"""

from __future__ import annotations

import contextvars
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

import structlog

from bookswap.domain.errors import StorageError
from bookswap.domain.types import NotificationType
from bookswap.notifications.models import RelatedEntity
from bookswap.notifications.sink import NotificationSink
from bookswap.resilience.retry import delivery_retrying

if TYPE_CHECKING:
    from bookswap.audit.logger import AuditLogger

logger = structlog.get_logger()


class NotificationDispatcher:
    """Deliver notifications through a sink without blocking the caller.

    Args:
        sink: The transport notifications are handed to.
        audit_logger: Records deliveries that failed after every retry.
        max_attempts: Delivery attempts per notification.
        backoff_seconds: Initial backoff; ``0`` retries immediately.
        workers: Size of the delivery thread pool.
        synchronous: Deliver inline on the calling thread (tests, CLI).
    """

    def __init__(
        self,
        sink: NotificationSink,
        *,
        audit_logger: AuditLogger | None = None,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        workers: int = 2,
        synchronous: bool = False,
    ) -> None:
        self._sink = sink
        self._audit_logger = audit_logger
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._executor: ThreadPoolExecutor | None = (
            None
            if synchronous
            else ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bookswap-notify")
        )

    @property
    def sink(self) -> NotificationSink:
        return self._sink

    def notify(
        self,
        recipient_id: str,
        event_type: NotificationType,
        message: str,
        related_entity: RelatedEntity | None = None,
    ) -> None:
        """Queue one notification for delivery and return immediately."""
        if self._executor is None:
            self._deliver(recipient_id, event_type, message, related_entity)
            return
        ctx = contextvars.copy_context()
        self._executor.submit(
            ctx.run, self._deliver, recipient_id, event_type, message, related_entity
        )

    def _deliver(
        self,
        recipient_id: str,
        event_type: NotificationType,
        message: str,
        related_entity: RelatedEntity | None,
    ) -> None:
        retrying = delivery_retrying(self._max_attempts, self._backoff_seconds)
        try:
            retrying(self._sink.emit, recipient_id, event_type, message, related_entity)
        except Exception as exc:
            logger.error(
                "notification_delivery_failed",
                recipient_id=recipient_id,
                event_type=str(event_type),
                attempts=self._max_attempts,
                error=str(exc),
            )
            self._record_failure(recipient_id, event_type, related_entity, str(exc))

    def _record_failure(
        self,
        recipient_id: str,
        event_type: NotificationType,
        related_entity: RelatedEntity | None,
        error_message: str,
    ) -> None:
        if self._audit_logger is None:
            return
        try:
            self._audit_logger.log_notification_failure(
                recipient_id=recipient_id,
                event_type=str(event_type),
                entity_id=related_entity.entity_id if related_entity else None,
                error_message=error_message,
            )
        except StorageError:
            logger.exception("notification_failure_audit_failed", recipient_id=recipient_id)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for queued deliveries."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
