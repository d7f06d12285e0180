"""Main loop: cycle over accounts, sleep, repeat until shutdown."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable
from typing import Protocol

from pop3_gmail_sync.config.settings import AccountSettings, AppSettings
from pop3_gmail_sync.errors import AuthorizationError
from pop3_gmail_sync.gmail.auth import OAuthSessionManager
from pop3_gmail_sync.gmail.credentials import ClientCredential, load_client_credential
from pop3_gmail_sync.gmail.handoff import AuthorizationHandoffRegistry
from pop3_gmail_sync.models.types import SyncStatus
from pop3_gmail_sync.pipeline.account import (
    AccountSyncer,
    DeliveryTarget,
    MailboxFactory,
    pop3_mailbox_factory,
)
from pop3_gmail_sync.server.status import StatusServer, create_status_app
from pop3_gmail_sync.storage.stats_store import StatsStore
from pop3_gmail_sync.storage.token_store import TokenStore

logger = logging.getLogger(__name__)

DEFAULT_STATUS_PORT = 3000


class DeliverySession(Protocol):
    """Source of authorized delivery clients (the OAuth session manager)."""

    async def client(self) -> DeliveryTarget: ...

    def persist_current(self) -> None: ...


def resolve_status_port(configured: int | None, credential: ClientCredential | None) -> int:
    """Pick the status listener port.

    The OAuth redirect must land on this listener, so without an explicit
    port the redirect URI's port is used.

    Args:
        configured: Port from settings, if any.
        credential: OAuth client whose redirect URI may carry a port.

    Returns:
        Port to bind.
    """
    if configured is not None:
        return configured
    if credential is not None:
        return credential.redirect_port
    return DEFAULT_STATUS_PORT


class SyncOrchestrator:
    """Runs sync cycles over all accounts until shutdown is requested."""

    def __init__(
        self,
        *,
        accounts: list[AccountSettings],
        session: DeliverySession,
        stats: StatsStore,
        interval_seconds: float,
        server: StatusServer | None = None,
        mailbox_factory: MailboxFactory = pop3_mailbox_factory,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            accounts: Accounts in processing order.
            session: Provides authorized Gmail clients.
            stats: Statistics store.
            interval_seconds: Sleep between cycles.
            server: Status listener to run alongside the cycles.
            mailbox_factory: Creates mailbox sessions.
        """
        self._accounts = list(accounts)
        self._session = session
        self._stats = stats
        self._interval = interval_seconds
        self._server = server
        self._shutdown = asyncio.Event()
        self._syncer = AccountSyncer(
            stats=stats,
            mailbox_factory=mailbox_factory,
            shutdown=self._shutdown,
        )

    @classmethod
    def from_settings(cls, settings: AppSettings) -> SyncOrchestrator:
        """Wire the service from settings.

        Raises:
            ConfigError: If accounts or Gmail credentials are missing or invalid.
        """
        gmail = settings.require_runnable()
        credential = load_client_credential(gmail.credentials_file)
        registry = AuthorizationHandoffRegistry()
        stats = StatsStore(path=settings.storage.stats_path)
        session = OAuthSessionManager(
            client_credential=credential,
            token_store=TokenStore(path=gmail.token_file),
            registry=registry,
            user_id=gmail.user_id,
            internal_date_source=gmail.internal_date_source,
        )
        app = create_status_app(
            registry=registry,
            stats=stats,
            session=session,
            status_path=settings.status.path,
        )
        server = StatusServer(
            app=app,
            host=settings.status.host,
            port=resolve_status_port(settings.status.port, credential),
        )
        return cls(
            accounts=settings.accounts,
            session=session,
            stats=stats,
            interval_seconds=settings.check_interval_minutes * 60,
            server=server,
        )

    @property
    def shutdown_requested(self) -> bool:
        """Return True once shutdown has been requested."""
        return self._shutdown.is_set()

    def request_shutdown(self, reason: str = "shutdown requested") -> None:
        """Stop after the in-flight unit of work and close the listener."""
        if not self._shutdown.is_set():
            logger.info("%s", reason)
        self._shutdown.set()
        if self._server is not None:
            self._server.close_now()

    async def run(self) -> None:
        """Serve status and run cycles until shutdown."""
        logger.info("Starting pop3-gmail-sync with %d account(s)", len(self._accounts))
        self._install_signal_handlers()
        if self._server is not None:
            await self._server.start()
        try:
            while not self._shutdown.is_set():
                await self.run_cycle()
                if self._shutdown.is_set():
                    break
                logger.info("Sleeping %d minute(s)...", round(self._interval / 60))
                await self._sleep(self._interval)
        finally:
            if self._server is not None:
                await self._server.stop()
            logger.info("Shutting down main loop. Bye.")

    async def run_cycle(self) -> int:
        """Process every account once.

        Returns:
            Number of accounts processed (0 if authorization failed).
        """
        try:
            delivery = await self._until_shutdown(self._session.client())
        except AuthorizationError as exc:
            logger.error("Gmail authorization failed; no accounts processed this cycle: %s", exc)
            return 0
        if delivery is None:
            return 0

        processed = 0
        for account in self._accounts:
            if self._shutdown.is_set():
                break
            try:
                await self._syncer.sync(account=account, delivery=delivery)
            except Exception as exc:
                logger.exception("Error processing account %s", account.name)
                self._stats.record_sync_status(account.name, SyncStatus.fail, str(exc))
            processed += 1

        self._session.persist_current()
        return processed

    async def _until_shutdown[T](self, awaitable: Awaitable[T]) -> T | None:
        """Await `awaitable` unless shutdown is requested first (then return None)."""
        task = asyncio.ensure_future(awaitable)
        stopper = asyncio.ensure_future(self._shutdown.wait())
        try:
            await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
        if task.done():
            return task.result()
        task.cancel()
        return None

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except TimeoutError:
            pass

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, f"{sig.name} received")
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handlers unavailable for %s", sig.name)
