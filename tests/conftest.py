"""Shared pytest fixtures for the marketplace test suite."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from decimal import Decimal
from typing import Any

import pytest

from bookswap.domain.models import BookRecord, Identity
from bookswap.domain.types import UserRole
from bookswap.engine import Marketplace
from bookswap.identity import acting_as
from bookswap.state.database import Database, open_database

ARBITRATOR = Identity(user_id="arbiter", role=UserRole.ADMIN)


@pytest.fixture
def db() -> Iterator[Database]:
    """A fresh in-memory database shared by every store."""
    database = Database(open_database(":memory:"))
    yield database
    database.close()


@pytest.fixture
def market(db: Database) -> Iterator[Marketplace]:
    """A marketplace delivering notifications inline with no retry backoff."""
    marketplace = Marketplace(
        db,
        arbitrator_ids=[ARBITRATOR.user_id],
        synchronous_notifications=True,
        notification_backoff_seconds=0,
    )
    yield marketplace
    marketplace.notifier.shutdown()


@pytest.fixture
def as_user() -> Callable[..., Any]:
    """Return ``acting_as`` for a plain user ID (``as_user("alice")``)."""

    def _as_user(user_id: str, **fields: Any) -> Any:
        return acting_as(Identity(user_id=user_id, **fields))

    return _as_user


@pytest.fixture
def arbitrator() -> Identity:
    return ARBITRATOR


@pytest.fixture
def as_arbitrator() -> Callable[[], Any]:
    return lambda: acting_as(ARBITRATOR)


@pytest.fixture
def list_book(market: Marketplace) -> Callable[..., BookRecord]:
    """Factory listing a book for *owner* with sensible terms per mode."""

    def _list_book(owner: str, mode: str, title: str = "Dune", **terms: Any) -> BookRecord:
        defaults: dict[str, Any] = {
            "sell": {"price": Decimal("12.50")},
            "exchange": {"desired_exchange": "Any Le Guin novel"},
            "borrow": {"loan_duration_days": 14},
        }[mode]
        defaults.update(terms)
        with acting_as(Identity(user_id=owner)):
            return market.listings.create_listing(title, mode, **defaults)

    return _list_book
