"""Sentry SDK initialization with the structlog-sentry bridge.

Only genuine failures reach Sentry.  Domain errors that describe a refused
request (validation, authorization, not-found, conflict and state errors)
are dropped in ``before_send``; ``StorageError`` is kept.
"""

from __future__ import annotations

import logging
from typing import Any

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration
from structlog_sentry import SentryProcessor

from bookswap.domain.errors import BookSwapError, StorageError


def drop_expected_errors(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """Discard events caused by domain errors other than storage failures."""
    exc_info = hint.get("exc_info")
    if exc_info:
        exc = exc_info[1]
        if isinstance(exc, BookSwapError) and not isinstance(exc, StorageError):
            return None
    return event


def init_sentry(dsn: str, *, environment: str = "development") -> bool:
    """Initialize the Sentry SDK.

    Does nothing when *dsn* is empty, so it is safe to call unconditionally
    at startup.

    Args:
        dsn: Sentry DSN string.  Empty string disables Sentry.
        environment: Reported environment name.

    Returns:
        ``True`` if the SDK was initialized.
    """
    if not dsn:
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1,
        send_default_pii=False,
        before_send=drop_expected_errors,
        integrations=[
            # structlog-sentry reports ERROR events; stdlib logging capture off.
            LoggingIntegration(event_level=None, level=None),
        ],
    )
    return True


def get_sentry_processor() -> structlog.types.Processor:
    """Return a structlog processor that forwards ERROR events to Sentry.

    Goes after ``add_log_level`` and before the renderer.
    """
    return SentryProcessor(event_level=logging.ERROR)
