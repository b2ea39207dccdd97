"""Overdue loan sweep.

The core runs no timers of its own.  ``sweep_overdue`` flags every active
loan past its due date; the web app runs it on an interval
(``run_overdue_sweeper``) and the CLI runs it once for cron::

    python -m bookswap.scheduler sweep-overdue --db data/bookswap.db
"""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

import structlog

from bookswap.config import get_settings
from bookswap.domain.errors import BookSwapError, ConflictError, StateError
from bookswap.domain.models import utcnow
from bookswap.engine import Marketplace

logger = structlog.get_logger()


def sweep_overdue(marketplace: Marketplace, now: datetime | None = None) -> list[str]:
    """Mark every active loan past its due date as overdue.

    Loans that changed concurrently are skipped and picked up by the next
    sweep.

    Returns:
        The IDs of the loans flagged by this sweep.
    """
    now = now or utcnow()
    flagged: list[str] = []
    for tx in marketplace.find_overdue(now):
        try:
            updated = marketplace.borrow.mark_overdue(tx.transaction_id, now)
        except (ConflictError, StateError) as exc:
            logger.warning(
                "overdue_mark_skipped", transaction_id=tx.transaction_id, error=exc.message
            )
            marketplace.audit.log_error(tx.transaction_id, exc.message, context="overdue_sweep")
            continue
        if updated is not None:
            flagged.append(tx.transaction_id)

    logger.info("overdue_sweep_finished", flagged=len(flagged))
    return flagged


async def run_overdue_sweeper(marketplace: Marketplace, interval_seconds: int) -> None:
    """Run ``sweep_overdue`` every *interval_seconds* until cancelled."""
    if interval_seconds <= 0:
        logger.info("overdue_sweeper_disabled")
        return

    while True:
        try:
            await asyncio.to_thread(sweep_overdue, marketplace)
        except BookSwapError as exc:
            logger.exception("overdue_sweep_failed", error=exc.message)
        await asyncio.sleep(interval_seconds)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Marketplace maintenance tasks")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sweep = subparsers.add_parser("sweep-overdue", help="Flag loans past their due date")
    sweep.add_argument(
        "--db",
        type=str,
        default=None,
        help="Path to the marketplace database (default: DATABASE_PATH setting)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for the ``bookswap-tasks`` command."""
    from bookswap.app import configure_logging

    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(production=settings.production)

    if args.db is not None:
        settings = settings.model_copy(update={"database_path": Path(args.db)})

    marketplace = Marketplace.from_settings(settings, synchronous_notifications=True)
    try:
        if args.command == "sweep-overdue":
            flagged = sweep_overdue(marketplace)
            print(f"Flagged {len(flagged)} overdue loan(s)")
    finally:
        marketplace.close()


if __name__ == "__main__":
    main()
