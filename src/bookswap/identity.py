"""Acting-user resolution.

The marketplace never authenticates anyone itself; it asks an
``IdentityProvider`` who is calling.  ``ContextIdentityProvider`` reads the
identity from a context variable so each request, thread or task can bind
its own user with ``acting_as``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Protocol

import structlog

from bookswap.domain.errors import AuthorizationError, UserSuspendedError
from bookswap.domain.models import Identity

_current_identity: ContextVar[Identity | None] = ContextVar("bookswap_identity", default=None)


class IdentityProvider(Protocol):
    """Resolves the identity performing the current operation."""

    def current_user(self) -> Identity: ...


class ContextIdentityProvider:
    """Identity provider backed by a ``ContextVar``."""

    def current_user(self) -> Identity:
        """Return the bound identity.

        Raises:
            AuthorizationError: If no identity is bound.
        """
        identity = _current_identity.get()
        if identity is None:
            raise AuthorizationError("No authenticated user for this operation")
        return identity


@contextmanager
def acting_as(identity: Identity) -> Iterator[Identity]:
    """Bind *identity* as the acting user for the enclosed block."""
    token = _current_identity.set(identity)
    with structlog.contextvars.bound_contextvars(user_id=identity.user_id):
        try:
            yield identity
        finally:
            _current_identity.reset(token)


def require_active(provider: IdentityProvider) -> Identity:
    """Return the acting identity, refusing suspended users.

    Raises:
        UserSuspendedError: If the identity is suspended.
    """
    identity = provider.current_user()
    if identity.is_suspended:
        raise UserSuspendedError("Suspended accounts cannot perform this operation")
    return identity
