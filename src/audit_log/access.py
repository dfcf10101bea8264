"""Caller permissions and scoped permission bypass.

Store calls normally run against the roles of the current caller, held in a
request-scoped ``PermissionContext``. Internal code that must read or write
records regardless of those roles acquires an ``AccessGrant`` from
``Authorization.skip()`` and passes it explicitly to each store call. The grant
is revoked when the ``with`` block exits, so it cannot be reused later.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, TypeVar

from audit_log.utils.time import utc_now

T = TypeVar("T")

# Permission token that matches every caller.
ANY_ROLE = "any"


@dataclass(frozen=True)
class PermissionContext:
    """Immutable request-scoped set of roles held by the caller."""

    roles: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", tuple(self.roles))

    def allows(self, permissions: Iterable[str]) -> bool:
        granted = set(permissions)
        if ANY_ROLE in granted:
            return True
        return any(role in granted for role in self.roles)


_EMPTY_CONTEXT = PermissionContext()

_permission_context: ContextVar[PermissionContext | None] = ContextVar(
    "permission_context",
    default=None,
)


def set_permission_context(ctx: PermissionContext) -> Token[PermissionContext | None]:
    """Set context and return reset token."""
    return _permission_context.set(ctx)


def reset_permission_context(token: Token[PermissionContext | None]) -> None:
    """Reset context using token from set_permission_context()."""
    _permission_context.reset(token)


def get_permission_context() -> PermissionContext:
    """Get the caller's context, or a context holding no roles."""
    return _permission_context.get() or _EMPTY_CONTEXT


@dataclass(eq=False)
class AccessGrant:
    """Capability that lets a store call skip per-record permission checks."""

    reason: str
    grant_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    issued_at: datetime = field(default_factory=utc_now)
    revoked: bool = field(default=False, init=False)

    @property
    def active(self) -> bool:
        return not self.revoked

    def revoke(self) -> None:
        self.revoked = True


class Authorization:
    """Issues short-lived access grants."""

    @contextmanager
    def skip(self, reason: str = "internal") -> Iterator[AccessGrant]:
        grant = AccessGrant(reason=reason)
        try:
            yield grant
        finally:
            grant.revoke()

    def with_bypass(
        self,
        block: Callable[[AccessGrant], T],
        reason: str = "internal",
    ) -> T:
        """Run ``block`` with a fresh grant and return its result."""
        with self.skip(reason) as grant:
            return block(grant)
