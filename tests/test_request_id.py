"""Tests for Request ID middleware."""

from __future__ import annotations

import re

import structlog
from fastapi import FastAPI
from fastapi.testclient import TestClient

from bookswap.observability.middleware import REQUEST_ID_HEADER, RequestIdMiddleware

HEX_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def _make_app() -> FastAPI:
    """Create a minimal FastAPI app with RequestIdMiddleware."""
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/test")
    async def test_endpoint():
        return {"request_id": structlog.contextvars.get_contextvars().get("request_id")}

    return app


def test_response_has_generated_request_id() -> None:
    """Without an incoming header the middleware generates a hex ID."""
    client = TestClient(_make_app())
    resp = client.get("/test")
    assert resp.status_code == 200
    request_id = resp.headers.get(REQUEST_ID_HEADER, "")
    assert HEX_ID_PATTERN.match(request_id), f"Expected 32 hex chars, got: {request_id}"


def test_response_echoes_client_request_id() -> None:
    client = TestClient(_make_app())
    resp = client.get("/test", headers={REQUEST_ID_HEADER: "test-123"})
    assert resp.headers[REQUEST_ID_HEADER] == "test-123"


def test_request_id_bound_for_handler_logs() -> None:
    client = TestClient(_make_app())
    resp = client.get("/test", headers={REQUEST_ID_HEADER: "trace-me"})
    assert resp.json() == {"request_id": "trace-me"}


def test_each_request_gets_a_new_id() -> None:
    client = TestClient(_make_app())
    first = client.get("/test").headers[REQUEST_ID_HEADER]
    second = client.get("/test").headers[REQUEST_ID_HEADER]
    assert first != second
