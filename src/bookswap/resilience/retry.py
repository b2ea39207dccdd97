"""Tenacity retry policies used across the marketplace.

Two policies:

- ``cas_retrying``: re-run a load/modify/compare-and-set cycle when another
  writer moved the version first.  No backoff; the loser simply reloads.
- ``delivery_retrying``: retry an outbound delivery with exponential backoff
  and jitter, logging a warning before each retry.

Both re-raise the last exception once attempts are exhausted.
"""

from __future__ import annotations

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
    wait_none,
)

from bookswap.domain.errors import ConcurrentUpdateError

logger = structlog.get_logger()


def _before_sleep_log(retry_state: RetryCallState) -> None:
    """Log a warning before each retry attempt.

    Args:
        retry_state: Tenacity retry state with attempt info and exception.
    """
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrying_call",
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
        error=str(exception),
    )


def _log_cas_conflict(retry_state: RetryCallState) -> None:
    logger.debug("cas_conflict_retry", attempt=retry_state.attempt_number)


def cas_retrying(max_attempts: int) -> Retrying:
    """Return a retrying controller for compare-and-set write loops.

    Usage::

        for attempt in cas_retrying(5):
            with attempt:
                tx = store.get(tx_id)
                ...
                store.save(tx)

    Args:
        max_attempts: Total attempts before ``ConcurrentUpdateError`` surfaces.
    """
    return Retrying(
        stop=stop_after_attempt(max_attempts),
        retry=retry_if_exception_type(ConcurrentUpdateError),
        wait=wait_none(),
        before_sleep=_log_cas_conflict,
        reraise=True,
    )


def delivery_retrying(max_attempts: int, backoff_seconds: float) -> Retrying:
    """Return a retrying controller for outbound deliveries.

    - ``max_attempts`` attempts maximum
    - Exponential backoff with jitter starting at ``backoff_seconds``
      (capped at 30s); ``0`` disables waiting between attempts
    - Warning log before each retry
    - Original exception re-raised after exhaustion

    Args:
        max_attempts: Total delivery attempts.
        backoff_seconds: Initial backoff in seconds.
    """
    wait = (
        wait_exponential_jitter(initial=backoff_seconds, max=30, jitter=backoff_seconds)
        if backoff_seconds > 0
        else wait_none()
    )
    return Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait,
        before_sleep=_before_sleep_log,
        reraise=True,
    )
