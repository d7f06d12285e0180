"""Async wrapper around `poplib` for a single POP3 account."""

from __future__ import annotations

import asyncio
import logging
import poplib
import ssl
from collections.abc import Callable
from typing import Any

from pop3_gmail_sync.config.settings import AccountSettings
from pop3_gmail_sync.errors import (
    MailboxConnectError,
    MailboxOperationError,
    MailboxSessionError,
)

logger = logging.getLogger(__name__)

_POP3_ERRORS: tuple[type[BaseException], ...] = (poplib.error_proto, OSError, EOFError)


class Pop3Mailbox:
    """One POP3 session. Blocking `poplib` calls run in a worker thread.

    Message numbers are 1-based and only valid for the current session.
    Deletions are committed by the server when the session is closed with QUIT.

    A `-ERR` reply leaves the session usable. A timeout or an oversized line
    may leave unread response data on the socket, so the session is marked
    broken: later commands are refused and close() drops the connection
    without QUIT, which discards pending deletions.
    """

    def __init__(self, *, account: AccountSettings) -> None:
        """Initialize the mailbox.

        Args:
            account: Account connection settings.
        """
        self._account = account
        self._pop: poplib.POP3 | None = None
        self._broken = False

    @property
    def connected(self) -> bool:
        """Return True while a session is open."""
        return self._pop is not None

    @property
    def broken(self) -> bool:
        """Return True once the session has lost protocol sync."""
        return self._broken

    async def connect(self) -> None:
        """Open the session and log in.

        Raises:
            MailboxConnectError: If the connection, TLS negotiation or login fails.
        """
        if self._pop is not None:
            return
        try:
            self._pop = await asyncio.to_thread(self._open)
        except _POP3_ERRORS as exc:
            raise MailboxConnectError(
                f"POP3 connect/login failed for {self._account.name}: {_describe(exc)}",
            ) from exc

    async def message_count(self) -> int:
        """Return the number of messages in the maildrop (STAT)."""
        count, _size = await self._call("STAT", self._require().stat)
        return int(count)

    async def fetch(self, index: int) -> bytes:
        """Retrieve message `index` in full (RETR).

        Returns:
            Raw RFC822 bytes with CRLF line endings.
        """
        _resp, lines, _octets = await self._call(f"RETR {index}", self._require().retr, index)
        return b"\r\n".join(lines) + b"\r\n"

    async def delete(self, index: int) -> None:
        """Mark message `index` for deletion (DELE)."""
        await self._call(f"DELE {index}", self._require().dele, index)

    async def close(self) -> None:
        """End the session with QUIT, committing deletions.

        A broken session is dropped without QUIT, so the server discards every
        DELE issued on it.

        Raises:
            MailboxOperationError: If QUIT fails; the socket is closed regardless.
        """
        pop = self._pop
        if pop is None:
            return
        self._pop = None
        if self._broken:
            pop.close()
            logger.warning(
                "POP3 session for %s dropped without QUIT; deletions not committed",
                self._account.name,
            )
            return
        try:
            await asyncio.to_thread(pop.quit)
        except _POP3_ERRORS as exc:
            pop.close()
            raise MailboxOperationError(
                f"POP3 QUIT failed for {self._account.name}: {_describe(exc)}",
            ) from exc

    def _open(self) -> poplib.POP3:
        account = self._account
        context = self._ssl_context()
        pop: poplib.POP3
        if account.ssl:
            pop = poplib.POP3_SSL(
                account.host,
                account.port,
                timeout=account.timeout_seconds,
                context=context,
            )
        else:
            pop = poplib.POP3(account.host, account.port, timeout=account.timeout_seconds)
        try:
            if account.tls and not account.ssl:
                pop.stls(context=context)
            pop.user(account.username)
            pop.pass_(account.password)
        except BaseException:
            pop.close()
            raise
        logger.debug("POP3 session opened (account=%s, host=%s)", account.name, account.host)
        return pop

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self._account.verify_tls:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    async def _call(self, command: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except _POP3_ERRORS as exc:
            message = f"POP3 {command} failed for {self._account.name}: {_describe(exc)}"
            if _is_server_reply(exc):
                raise MailboxOperationError(message) from exc
            self._broken = True
            raise MailboxSessionError(message) from exc

    def _require(self) -> poplib.POP3:
        if self._pop is None:
            raise MailboxOperationError("POP3 session not connected")
        if self._broken:
            raise MailboxSessionError(
                f"POP3 session for {self._account.name} is out of sync",
            )
        return self._pop


def _is_server_reply(exc: BaseException) -> bool:
    """Return True for a complete `-ERR` reply, after which the session is still in sync."""
    if not isinstance(exc, poplib.error_proto) or not exc.args:
        return False
    reply = exc.args[0]
    return isinstance(reply, bytes) and reply.startswith(b"-")


def _describe(exc: BaseException) -> str:
    """Render poplib errors (which carry raw bytes) as text."""
    if isinstance(exc, poplib.error_proto) and exc.args and isinstance(exc.args[0], bytes):
        return exc.args[0].decode("utf-8", errors="replace")
    return str(exc) or type(exc).__name__
