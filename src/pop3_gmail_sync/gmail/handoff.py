"""Handoff of OAuth authorization codes from the HTTP callback to the waiting session."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pop3_gmail_sync.errors import AuthorizationError
from pop3_gmail_sync.utils.clock import utcnow

logger = logging.getLogger(__name__)


class ConsumeOutcome(StrEnum):
    """Result of handing a callback to the registry."""

    not_found = "not_found"
    fulfilled = "fulfilled"
    rejected = "rejected"


@dataclass
class PendingAuthorization[T]:
    """A suspended authorization request waiting for the browser redirect."""

    exchange: Callable[[str], Awaitable[T]]
    on_fulfilled: Callable[[T], None]
    on_rejected: Callable[[BaseException], None]
    created_at: datetime = field(default_factory=utcnow)


class AuthorizationHandoffRegistry:
    """Callback path → pending authorization, consumed exactly once.

    The session manager registers an entry and awaits it; the status server
    looks up inbound paths and consumes matching entries. Both run on the same
    event loop, so the entry is removed before any await to keep a concurrent
    second request from finding it.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._pending: dict[str, PendingAuthorization[Any]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def register[T](
        self,
        key: str,
        *,
        exchange: Callable[[str], Awaitable[T]],
        on_fulfilled: Callable[[T], None],
        on_rejected: Callable[[BaseException], None],
    ) -> PendingAuthorization[T]:
        """Store a pending authorization, replacing any stale entry for `key`.

        Args:
            key: Callback path (e.g. "/oauth2callback").
            exchange: Coroutine function turning an authorization code into tokens.
            on_fulfilled: Called with the exchanged tokens.
            on_rejected: Called with the error when authorization fails.

        Returns:
            The stored entry.
        """
        if key in self._pending:
            logger.info("Replacing stale pending authorization (path=%s)", key)
        entry = PendingAuthorization(
            exchange=exchange,
            on_fulfilled=on_fulfilled,
            on_rejected=on_rejected,
        )
        self._pending[key] = entry
        return entry

    def lookup(self, key: str) -> PendingAuthorization[Any] | None:
        """Return the pending authorization registered for `key`, if any."""
        return self._pending.get(key)

    async def consume(
        self,
        key: str,
        *,
        code: str | None,
        error: str | None = None,
    ) -> ConsumeOutcome:
        """Resolve the pending authorization for `key` with a callback result.

        Args:
            key: Callback path.
            code: Authorization code from the query string.
            error: Error from the query string (takes precedence over `code`).

        Returns:
            not_found if nothing was registered (or it was already consumed),
            otherwise whether the waiter was fulfilled or rejected.
        """
        entry = self._pending.pop(key, None)
        if entry is None:
            return ConsumeOutcome.not_found
        logger.info(
            "Authorization callback received after %.0fs (path=%s)",
            (utcnow() - entry.created_at).total_seconds(),
            key,
        )

        if error:
            logger.warning(
                "Authorization callback reported an error (path=%s, error=%s)",
                key,
                error,
            )
            entry.on_rejected(AuthorizationError(f"OAuth error: {error}"))
            return ConsumeOutcome.rejected
        if not code:
            logger.warning("Authorization callback carried no code (path=%s)", key)
            entry.on_rejected(AuthorizationError("OAuth callback carried no authorization code"))
            return ConsumeOutcome.rejected

        try:
            tokens = await entry.exchange(code)
        except Exception as exc:
            logger.warning("Authorization code exchange failed (path=%s, error=%r)", key, exc)
            rejection = (
                exc
                if isinstance(exc, AuthorizationError)
                else AuthorizationError(f"Authorization code exchange failed: {exc}")
            )
            entry.on_rejected(rejection)
            return ConsumeOutcome.rejected

        entry.on_fulfilled(tokens)
        return ConsumeOutcome.fulfilled
