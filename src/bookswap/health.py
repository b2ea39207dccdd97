"""Health and readiness endpoints for container orchestration.

- ``GET /health`` -- Liveness probe.  Returns 200 if the process is alive.
- ``GET /ready``  -- Readiness probe.  Returns 200 only when the marketplace
  database answers a trivial query; 503 with per-check details otherwise.
"""

from __future__ import annotations

import asyncio
import sqlite3
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bookswap.domain.errors import StorageError

logger = structlog.get_logger()


def register_health_routes(app: FastAPI) -> None:
    """Register ``/health`` and ``/ready`` endpoints on *app*."""

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness probe -- always returns 200 if the process is running."""
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        """Readiness probe -- checks the marketplace database."""
        services: dict[str, Any] = request.app.state.services
        checks: dict[str, str] = {}

        marketplace = services.get("marketplace")
        if marketplace is not None:
            try:
                await asyncio.to_thread(marketplace.db.fetch_one, "SELECT 1")
                checks["database"] = "ok"
            except (StorageError, sqlite3.ProgrammingError):
                logger.warning("readiness_database_failed", exc_info=True)
                checks["database"] = "fail"
        else:
            checks["database"] = "fail"

        all_ok = all(v == "ok" for v in checks.values())
        status = "ready" if all_ok else "not_ready"
        code = 200 if all_ok else 503

        return JSONResponse(content={"status": status, "checks": checks}, status_code=code)
