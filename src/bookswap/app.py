"""Application entry point for the marketplace service.

Runs a small FastAPI app exposing health, readiness and Prometheus metrics,
and the periodic overdue-loan sweep, in one long-running process.

Configures:
- **structlog** with JSON rendering (production) or colored console (development)
- **Sentry** error reporting when a DSN is configured
- **Audit logging** and notifications through the marketplace facade
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from bookswap.config import Settings, get_settings, validate_runtime
from bookswap.engine import Marketplace
from bookswap.health import register_health_routes
from bookswap.observability.metrics import setup_metrics
from bookswap.observability.middleware import RequestIdMiddleware
from bookswap.observability.sentry import get_sentry_processor, init_sentry
from bookswap.scheduler import run_overdue_sweeper

logger = structlog.get_logger()


def configure_logging(production: bool = False, sentry_enabled: bool = False) -> None:
    """Configure structlog for production (JSON) or development (console).

    Production mode (*production=True*): JSON rendering at INFO level.
    Development mode: colored console rendering at DEBUG level.

    Args:
        production: Enable production mode if ``True``.
        sentry_enabled: Forward ERROR events to Sentry.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
    ]
    if sentry_enabled:
        shared_processors.append(get_sentry_processor())
    shared_processors += [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service="bookswap")


def initialize_services(settings: Settings | None = None) -> dict[str, Any]:
    """Set up the shared services for the application.

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.

    Returns:
        A dict of initialized service instances keyed by name.
    """
    if settings is None:
        settings = get_settings()

    services: dict[str, Any] = {"_settings": settings}
    services["marketplace"] = Marketplace.from_settings(settings)
    logger.info("services_initialized", database_path=str(settings.database_path))
    return services


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the overdue sweeper on startup; stop it and close the database on shutdown."""
    services = app.state.services
    settings: Settings = app.state.settings
    marketplace: Marketplace | None = services.get("marketplace")

    sweeper: asyncio.Task[None] | None = None
    if marketplace is not None:
        sweeper = asyncio.create_task(
            run_overdue_sweeper(marketplace, settings.overdue_sweep_interval_seconds)
        )
    logger.info("application_starting")
    yield

    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    if marketplace is not None:
        marketplace.close()
        logger.info("database_closed")


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app with lifespan, health routes and metrics.

    Args:
        services: The initialized services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    fastapi_app = FastAPI(title="BookSwap Marketplace", lifespan=lifespan)
    fastapi_app.state.services = services
    fastapi_app.state.settings = services.get("_settings") or get_settings()
    fastapi_app.add_middleware(RequestIdMiddleware)
    register_health_routes(fastapi_app)
    setup_metrics(fastapi_app)
    return fastapi_app


async def main() -> None:
    """Main entry point.

    1. Configure logging and Sentry
    2. Validate the runtime environment
    3. Initialize services and create the FastAPI app
    4. Serve until shutdown
    """
    settings = get_settings()
    sentry_enabled = init_sentry(
        settings.sentry_dsn, environment="production" if settings.production else "development"
    )
    configure_logging(production=settings.production, sentry_enabled=sentry_enabled)
    logger.info("application_boot")

    validate_runtime(settings)

    services = initialize_services(settings)
    fastapi_app = create_app(services)

    config = uvicorn.Config(
        fastapi_app,
        host="0.0.0.0",
        port=settings.http_port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()


def run() -> None:
    """Console-script wrapper around :func:`main`."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
