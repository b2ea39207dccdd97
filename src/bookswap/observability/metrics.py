"""Prometheus metrics instrumentation for the marketplace.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus the business metrics.
- ``TRANSACTIONS_CREATED``: Counter of new requests, by kind.
- ``TRANSACTIONS_COMPLETED``: Counter of transactions reaching their success status, by kind.
- ``RESERVATION_CONFLICTS``: Counter of acceptances that lost the race for a book.
- ``OPEN_DISPUTES``: Gauge of disputes not yet resolved or closed.

Business metrics are updated at state transitions (not by polling the database).
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter, Gauge
from prometheus_fastapi_instrumentator import Instrumentator

TRANSACTIONS_CREATED: Counter = Counter(
    "bookswap_transactions_created_total",
    "Total number of transaction requests created",
    ["kind"],
)

TRANSACTIONS_COMPLETED: Counter = Counter(
    "bookswap_transactions_completed_total",
    "Total number of transactions reaching their success status",
    ["kind"],
)

RESERVATION_CONFLICTS: Counter = Counter(
    "bookswap_reservation_conflicts_total",
    "Total number of acceptances auto-cancelled because a book was taken",
    ["kind"],
)

OPEN_DISPUTES: Gauge = Gauge(
    "bookswap_open_disputes",
    "Number of disputes awaiting an arbitrator",
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Excludes health/ready/metrics endpoints from instrumentation to avoid
    noise in dashboards.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)
