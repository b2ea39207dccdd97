"""Tests for the CLI query interface for the audit trail."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from bookswap.audit.cli import (
    build_parser,
    format_json,
    format_table,
    main,
    parse_last_duration,
)
from bookswap.audit.logger import AuditLogger
from bookswap.state.database import Database, open_database

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


class TestBuildParser:
    """Tests for argument parser construction."""

    def test_accepts_all_arguments(self) -> None:
        args = build_parser().parse_args([
            "--user",
            "bob",
            "--transaction",
            "tx-1",
            "--from-date",
            "2026-01-01",
            "--to-date",
            "2026-02-01",
            "--event-type",
            "dispute_opened",
            "--last",
            "7d",
            "--format",
            "json",
            "--limit",
            "100",
            "--db",
            "/tmp/test.db",
        ])
        assert args.user == "bob"
        assert args.transaction == "tx-1"
        assert args.event_type == "dispute_opened"
        assert args.output_format == "json"
        assert args.limit == 100
        assert args.db == "/tmp/test.db"

    def test_default_values(self) -> None:
        args = build_parser().parse_args([])
        assert args.user is None
        assert args.output_format == "table"
        assert args.limit == 50

    def test_rejects_unknown_event_type(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--event-type", "email_sent"])


class TestParseLastDuration:
    """Tests for parse_last_duration conversion."""

    def test_days(self) -> None:
        assert parse_last_duration("7d", now=NOW) == "2026-03-08T12:00:00Z"

    def test_hours(self) -> None:
        assert parse_last_duration("24h", now=NOW) == "2026-03-14T12:00:00Z"

    @pytest.mark.parametrize("value", ["", "d", "7w", "xd"])
    def test_raises_on_invalid_format(self, value: str) -> None:
        with pytest.raises(ValueError, match="Unrecognized duration format"):
            parse_last_duration(value, now=NOW)


class TestFormatters:
    ROWS = [
        {
            "timestamp": "2026-03-15T12:00:00Z",
            "event_type": "transaction_created",
            "transaction_id": "0123456789abcdef0123",
            "transaction_kind": "sell",
            "actor_id": "bob",
            "status": "pending",
        }
    ]

    def test_table_has_header_and_truncates(self) -> None:
        lines = format_table(self.ROWS).splitlines()
        assert lines[0].split()[:3] == ["Timestamp", "Event", "Transaction"]
        assert "0123456789abc..." in lines[2]

    def test_empty_table(self) -> None:
        assert format_table([]) == "No results found."

    def test_json(self) -> None:
        assert json.loads(format_json(self.ROWS)) == self.ROWS


class TestMain:
    """End-to-end runs against a temporary database."""

    @pytest.fixture
    def db_path(self, tmp_path: Path) -> Path:
        path = tmp_path / "bookswap.db"
        db = Database(open_database(path))
        audit = AuditLogger(db)
        audit.log_transaction_created("tx-1", "sell", "bob", "book-1", "alice")
        audit.log_transaction_created("tx-2", "borrow", "carol", "book-2", "alice")
        db.close()
        return path

    def test_filter_by_user_json(self, db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["--user", "carol", "--format", "json", "--db", str(db_path)])

        rows = json.loads(capsys.readouterr().out)
        assert [row["transaction_id"] for row in rows] == ["tx-2"]

    def test_table_output(self, db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["--last", "1d", "--db", str(db_path)])

        out = capsys.readouterr().out
        assert "tx-1" in out
        assert "tx-2" in out

    def test_invalid_last_exits(self, db_path: Path) -> None:
        with pytest.raises(SystemExit):
            main(["--last", "7w", "--db", str(db_path)])

    def test_creates_missing_database(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        main(["--db", str(tmp_path / "nested" / "fresh.db")])
        assert "No results found." in capsys.readouterr().out
