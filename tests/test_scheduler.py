"""Tests for the overdue loan sweep and its command-line entry point."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from bookswap.audit.store import query_audit_trail
from bookswap.config import get_settings
from bookswap.domain.errors import StateError
from bookswap.domain.types import TransactionStatus
from bookswap.engine import Marketplace
from bookswap.scheduler import build_parser, main, run_overdue_sweeper, sweep_overdue


def _loan(market: Marketplace, as_user, list_book, borrower: str, days: int):
    book = list_book("alice", "borrow", title=f"Loan for {borrower}")
    with as_user(borrower):
        tx = market.borrow.create(book.book_id, days)
    with as_user("alice"):
        market.borrow.accept(tx.transaction_id)
        return market.borrow.mark_handed_over(tx.transaction_id)


class TestSweepOverdue:
    def test_flags_only_loans_past_due(self, market: Marketplace, as_user, list_book) -> None:
        short = _loan(market, as_user, list_book, "bob", days=1)
        long = _loan(market, as_user, list_book, "carol", days=30)
        now = short.due_date + timedelta(days=1)

        assert sweep_overdue(market, now) == [short.transaction_id]
        assert market.transaction(short.transaction_id).status == TransactionStatus.OVERDUE
        assert market.transaction(long.transaction_id).status == TransactionStatus.ACTIVE

        assert sweep_overdue(market, now) == []

    def test_skipped_loan_is_audited(
        self, market: Marketplace, as_user, list_book, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        loan = _loan(market, as_user, list_book, "bob", days=1)

        def refuse(transaction_id, now):
            raise StateError("Loan changed underneath the sweep")

        monkeypatch.setattr(market.borrow, "mark_overdue", refuse)

        assert sweep_overdue(market, loan.due_date + timedelta(days=1)) == []
        [row] = query_audit_trail(market.db.conn, event_type="error")
        assert row["transaction_id"] == loan.transaction_id
        assert row["metadata"]["context"] == "overdue_sweep"


class TestRunOverdueSweeper:
    def test_disabled_interval_returns_immediately(self, market: Marketplace) -> None:
        asyncio.run(run_overdue_sweeper(market, 0))

    def test_runs_until_cancelled(self, market: Marketplace) -> None:
        async def run_briefly() -> None:
            task = asyncio.create_task(run_overdue_sweeper(market, 3600))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        with patch("bookswap.scheduler.sweep_overdue", return_value=[]) as sweep:
            asyncio.run(run_briefly())
        sweep.assert_called_once_with(market)


class TestCli:
    @pytest.fixture(autouse=True)
    def _clear_settings_cache(self) -> None:
        get_settings.cache_clear()

    def test_requires_command(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_sweep_overdue_prints_count(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        db_path = tmp_path / "market.db"
        with patch("bookswap.app.configure_logging"):
            main(["sweep-overdue", "--db", str(db_path)])

        assert "Flagged 0 overdue loan(s)" in capsys.readouterr().out
        assert db_path.exists()
