"""CLI query interface for the marketplace audit trail.

Provides an argparse-based command-line tool for querying audit entries
with filters by user, transaction, date range, event type, and a shorthand
``--last`` duration.  Output formats: table (default) or JSON.

Usage::

    python -m bookswap.audit.cli --user u_123 --last 7d
    python -m bookswap.audit.cli --transaction 9f2c... --format json
"""

from __future__ import annotations

import argparse
import json
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from bookswap.audit.models import EventType
from bookswap.audit.store import init_audit_table, query_audit_trail
from bookswap.state.database import open_database

_DURATION_UNITS = {"d": "days", "h": "hours"}

# (header, row key, width)
_TABLE_COLUMNS: tuple[tuple[str, str, int], ...] = (
    ("Timestamp", "timestamp", 20),
    ("Event", "event_type", 22),
    ("Transaction", "transaction_id", 16),
    ("Kind", "transaction_kind", 8),
    ("Actor", "actor_id", 16),
    ("Status", "status", 10),
)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for audit trail queries.

    Returns:
        A configured :class:`argparse.ArgumentParser`.
    """
    parser = argparse.ArgumentParser(description="Query marketplace audit trail")

    parser.add_argument("--user", type=str, help="Filter by acting user ID")
    parser.add_argument("--transaction", type=str, help="Filter by transaction ID")
    parser.add_argument("--from-date", type=str, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--to-date", type=str, help="End date (YYYY-MM-DD)")
    parser.add_argument(
        "--event-type",
        type=str,
        choices=[e.value for e in EventType],
        help="Filter by event type",
    )
    parser.add_argument(
        "--last",
        type=str,
        help='Shorthand duration (e.g., "7d", "24h", "30d")',
    )
    parser.add_argument(
        "--format",
        type=str,
        choices=["table", "json"],
        default="table",
        dest="output_format",
        help="Output format (default: table)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum results (default: 50)",
    )
    parser.add_argument(
        "--db",
        type=str,
        default="data/bookswap.db",
        help="Path to the marketplace database (default: data/bookswap.db)",
    )

    return parser


def parse_last_duration(last: str, now: datetime | None = None) -> str:
    """Convert a shorthand duration like ``7d`` or ``24h`` to an ISO timestamp.

    Args:
        last: A positive integer followed by ``d`` (days) or ``h`` (hours).
        now: Reference time; defaults to the current UTC time.

    Returns:
        The ``%Y-%m-%dT%H:%M:%SZ`` timestamp *last* before *now*, comparable
        with the ``timestamp`` column of the audit log.

    Raises:
        ValueError: If the format is not recognized.
    """
    amount, unit = last[:-1], last[-1:]
    if unit not in _DURATION_UNITS or not amount.isdigit():
        msg = f"Unrecognized duration format: {last!r}. Use e.g. '7d' or '24h'."
        raise ValueError(msg)

    reference = now or datetime.now(tz=UTC)
    since = reference - timedelta(**{_DURATION_UNITS[unit]: int(amount)})
    return since.strftime("%Y-%m-%dT%H:%M:%SZ")


def _cell(value: Any, width: int) -> str:
    text = "" if value is None else str(value)
    if len(text) > width:
        text = text[: width - 3] + "..."
    return text.ljust(width)


def format_table(results: list[dict[str, Any]]) -> str:
    """Render audit rows as a fixed-width table with a header row."""
    if not results:
        return "No results found."

    header = "  ".join(_cell(title, width) for title, _, width in _TABLE_COLUMNS)
    rows = [
        "  ".join(_cell(row.get(key), width) for _, key, width in _TABLE_COLUMNS)
        for row in results
    ]
    return "\n".join([header, "-" * len(header), *rows])


def format_json(results: list[dict[str, Any]]) -> str:
    """Format audit results as a pretty-printed JSON string."""
    return json.dumps(results, indent=2)


def main(argv: Sequence[str] | None = None) -> None:
    """Parse arguments, query audit trail, and print results."""
    parser = build_parser()
    args = parser.parse_args(argv)

    from_date = args.from_date
    if args.last:
        try:
            from_date = parse_last_duration(args.last)
        except ValueError as exc:
            parser.error(str(exc))

    db_path = Path(args.db)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = open_database(db_path)

    try:
        init_audit_table(conn)
        results = query_audit_trail(
            conn,
            actor_id=args.user,
            transaction_id=args.transaction,
            from_date=from_date,
            to_date=args.to_date,
            event_type=args.event_type,
            limit=args.limit,
        )

        output = format_json(results) if args.output_format == "json" else format_table(results)

        print(output)
    finally:
        conn.close()


if __name__ == "__main__":
    main()
