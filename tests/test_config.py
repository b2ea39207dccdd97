"""Tests for centralized Settings, the runtime gate, and get_settings cache.

Covers: defaults, env-override, list parsing, invalid values, and the
database-location check in production and development modes.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from bookswap.config import Settings, get_settings, validate_runtime

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    """Clear get_settings lru_cache before each test."""
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_settings_defaults(self) -> None:
        s = Settings(_env_file=None)  # type: ignore[call-arg]

        assert s.production is False
        assert s.http_port == 8000
        assert s.database_path == Path("data/bookswap.db")
        assert s.arbitrator_ids == []
        assert s.sentry_dsn == ""
        assert s.overdue_sweep_interval_seconds == 3600
        assert s.notification_max_attempts == 3

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("PRODUCTION", "true")
        monkeypatch.setenv("HTTP_PORT", "9001")
        monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "market.db"))

        s = Settings(_env_file=None)  # type: ignore[call-arg]

        assert s.production is True
        assert s.http_port == 9001
        assert s.database_path == tmp_path / "market.db"

    def test_arbitrator_ids_parsed_as_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ARBITRATOR_IDS", '["arbiter", "judge"]')
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.arbitrator_ids == ["arbiter", "judge"]

    def test_get_settings_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_invalid_value_exits(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HTTP_PORT", "0")
        with pytest.raises(SystemExit):
            get_settings()


# ---------------------------------------------------------------------------
# validate_runtime
# ---------------------------------------------------------------------------


class TestValidateRuntime:
    def test_passes_for_writable_location(self, tmp_path: Path) -> None:
        s = Settings(_env_file=None, database_path=tmp_path / "sub" / "m.db")  # type: ignore[call-arg]
        validate_runtime(s)

    def test_production_exits_when_not_writable(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        s = Settings(  # type: ignore[call-arg]
            _env_file=None, production=True, database_path=tmp_path / "m.db"
        )
        with patch("bookswap.config.os.access", return_value=False), pytest.raises(SystemExit):
            validate_runtime(s)
        assert "STARTUP FAILED" in capsys.readouterr().err

    def test_development_only_warns(self, tmp_path: Path) -> None:
        s = Settings(_env_file=None, database_path=tmp_path / "m.db")  # type: ignore[call-arg]
        with patch("bookswap.config.os.access", return_value=False):
            validate_runtime(s)
