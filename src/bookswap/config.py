"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables, a cached ``get_settings()`` accessor, and a ``validate_runtime()``
startup gate that checks the database location is usable.

This module has no imports from the rest of the ``bookswap`` package to
prevent circular imports.
"""

from __future__ import annotations

import os
import sys
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    http_port: int = Field(default=8000, ge=1, le=65535)

    # -- Storage ---------------------------------------------------------------
    database_path: Path = Path("data/bookswap.db")
    cas_max_attempts: int = Field(default=5, ge=1)

    # -- Disputes -------------------------------------------------------------
    arbitrator_ids: list[str] = Field(default_factory=list)

    # -- Observability ---------------------------------------------------------
    sentry_dsn: str = ""

    # -- Overdue sweep ---------------------------------------------------------
    overdue_sweep_interval_seconds: int = Field(default=3600, ge=0)

    # -- Notifications ---------------------------------------------------------
    notification_workers: int = Field(default=2, ge=1)
    notification_max_attempts: int = Field(default=3, ge=1)
    notification_backoff_seconds: float = Field(default=0.5, ge=0)


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    The ``@lru_cache`` decorator ensures environment variables are parsed
    exactly once.  Call ``get_settings.cache_clear()`` in tests to reset.
    """
    try:
        return Settings()
    except ValidationError as exc:
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)


def validate_runtime(settings: Settings) -> None:
    """Check that the database file can be created or opened for writing.

    In **production** mode the application exits with a clear error block
    if the check fails.  In **development** mode the problem is logged as a
    warning and startup continues.

    Args:
        settings: The loaded application settings.
    """
    errors: list[str] = []

    db_dir = settings.database_path.expanduser().resolve().parent
    if db_dir.exists():
        if not os.access(db_dir, os.W_OK):
            errors.append(f"Database directory is not writable: {db_dir}")
    elif not os.access(_nearest_existing_parent(db_dir), os.W_OK):
        errors.append(f"Database directory cannot be created: {db_dir}")

    if not errors:
        logger.info("runtime_validation_passed", database_path=str(settings.database_path))
        return

    if settings.production:
        for err in errors:
            logger.error("runtime_check_failed", detail=err)
        print("\n=== STARTUP FAILED ===", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        print("======================\n", file=sys.stderr)
        sys.exit(1)
    else:
        for err in errors:
            logger.warning("runtime_check_failed_dev", detail=err)


def _nearest_existing_parent(path: Path) -> Path:
    for parent in (path, *path.parents):
        if parent.exists():
            return parent
    return Path("/")
