"""Per-account POP3 → Gmail transfer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from pop3_gmail_sync.config.settings import AccountSettings
from pop3_gmail_sync.errors import (
    DeliveryError,
    MailboxConnectError,
    MailboxOperationError,
    MailboxSessionError,
)
from pop3_gmail_sync.gmail.ingest import IngestResult
from pop3_gmail_sync.models.types import SyncStatus
from pop3_gmail_sync.pop3.client import Pop3Mailbox
from pop3_gmail_sync.storage.stats_store import StatsStore

logger = logging.getLogger(__name__)


class Mailbox(Protocol):
    """Source mailbox session."""

    async def connect(self) -> None: ...

    async def message_count(self) -> int: ...

    async def fetch(self, index: int) -> bytes: ...

    async def delete(self, index: int) -> None: ...

    async def close(self) -> None: ...


class DeliveryTarget(Protocol):
    """Target mailbox operations (blocking; run in a worker thread)."""

    def ensure_label(self, name: str) -> str: ...

    def deliver(self, raw_rfc822: bytes, *, label_id: str) -> IngestResult: ...


MailboxFactory = Callable[[AccountSettings], Mailbox]


def pop3_mailbox_factory(account: AccountSettings) -> Mailbox:
    """Create a POP3 session for `account`."""
    return Pop3Mailbox(account=account)


@dataclass
class AccountSyncResult:
    """Summary of one account's cycle."""

    account: str
    status: SyncStatus
    imported: int = 0
    retained: int = 0
    message: str | None = None


class AccountSyncer:
    """Moves every message of one mailbox into Gmail.

    A source message is deleted only after Gmail returned an id for it. Errors
    on one message are logged and the next message is processed, unless the
    POP3 session itself is out of sync; that ends the account for this cycle.
    """

    def __init__(
        self,
        *,
        stats: StatsStore,
        mailbox_factory: MailboxFactory = pop3_mailbox_factory,
        shutdown: asyncio.Event | None = None,
    ) -> None:
        """Initialize the syncer.

        Args:
            stats: Statistics store to record outcomes in.
            mailbox_factory: Creates a mailbox session per account and cycle.
            shutdown: When set, no further messages are started.
        """
        self._stats = stats
        self._mailbox_factory = mailbox_factory
        self._shutdown = shutdown

    async def sync(
        self,
        *,
        account: AccountSettings,
        delivery: DeliveryTarget,
    ) -> AccountSyncResult:
        """Run one cycle for `account`.

        Args:
            account: Account to process.
            delivery: Authorized Gmail client.

        Returns:
            AccountSyncResult for the cycle.
        """
        name = account.name
        logger.info("Processing account: %s", name)
        self._stats.record_sync_status(name, SyncStatus.started)

        label_name = account.delivery_label
        try:
            label_id = await asyncio.to_thread(delivery.ensure_label, label_name)
        except DeliveryError as exc:
            logger.error("Label setup failed for %s: %s", name, exc)
            return self._fail(name, str(exc))
        logger.info("Label %s => %s", label_name, label_id)

        mailbox = self._mailbox_factory(account)
        try:
            await mailbox.connect()
        except MailboxConnectError as exc:
            logger.error("%s", exc)
            return self._fail(name, str(exc))

        result = AccountSyncResult(account=name, status=SyncStatus.started)
        try:
            count = await mailbox.message_count()
            logger.info("Account %s has %d messages.", name, count)
            for index in range(1, count + 1):
                if self._shutdown is not None and self._shutdown.is_set():
                    logger.info("Shutdown requested; stopping %s at POP#%d", name, index)
                    break
                transferred = await self._transfer(
                    mailbox,
                    delivery,
                    account=account,
                    index=index,
                    label_id=label_id,
                )
                if transferred:
                    result.imported += 1
                else:
                    result.retained += 1
        except MailboxOperationError as exc:
            logger.error("POP3 session failed for %s: %s", name, exc)
            result.status = SyncStatus.fail
            result.message = str(exc)
            self._stats.record_sync_status(name, SyncStatus.fail, result.message)
        finally:
            try:
                await mailbox.close()
            except MailboxOperationError as exc:
                logger.warning("%s", exc)

        if result.status == SyncStatus.fail:
            return result

        result.status = SyncStatus.success
        if result.retained:
            result.message = f"{result.retained} message(s) left on server"
        self._stats.record_sync_status(name, SyncStatus.success, result.message)
        logger.info(
            "Account %s done: imported=%d retained=%d",
            name,
            result.imported,
            result.retained,
        )
        return result

    async def _transfer(
        self,
        mailbox: Mailbox,
        delivery: DeliveryTarget,
        *,
        account: AccountSettings,
        index: int,
        label_id: str,
    ) -> bool:
        """Fetch, import and delete one message.

        Returns:
            True if the message was imported and removed from the source.

        Raises:
            MailboxSessionError: If the POP3 session lost sync; no further
                command may be sent on it.
        """
        name = account.name
        try:
            logger.info("Retrieving message #%d from %s", index, name)
            raw = await mailbox.fetch(index)
            ingest: IngestResult = await asyncio.to_thread(delivery.deliver, raw, label_id=label_id)
        except MailboxSessionError:
            raise
        except (MailboxOperationError, DeliveryError) as exc:
            logger.error("Failed processing POP#%d for %s: %s", index, name, exc)
            return False

        if not ingest.gmail_message_id:
            logger.warning(
                "Import returned no id for account %s POP#%d: %r",
                name,
                index,
                ingest.raw_response,
            )
            return False

        logger.info(
            "Imported message => Gmail ID %s. Deleting POP message #%d",
            ingest.gmail_message_id,
            index,
        )
        try:
            await mailbox.delete(index)
        except MailboxSessionError:
            raise
        except MailboxOperationError as exc:
            logger.error("Failed deleting POP#%d for %s: %s", index, name, exc)
            return False

        self._stats.record_import(name)
        return True

    def _fail(self, name: str, message: str) -> AccountSyncResult:
        self._stats.record_sync_status(name, SyncStatus.fail, message)
        return AccountSyncResult(account=name, status=SyncStatus.fail, message=message)
