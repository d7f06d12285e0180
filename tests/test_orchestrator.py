"""Tests for the sync cycle orchestration."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from conftest import FakeDelivery, FakeMailbox, FakeMaildrop, make_account, raw_message

from pop3_gmail_sync.config.settings import AccountSettings, AppSettings
from pop3_gmail_sync.errors import AuthorizationError
from pop3_gmail_sync.gmail.credentials import ClientCredential, ClientKind
from pop3_gmail_sync.models.types import SyncStatus
from pop3_gmail_sync.pipeline.orchestrator import SyncOrchestrator, resolve_status_port
from pop3_gmail_sync.storage.stats_store import StatsStore


class FakeSession:
    """Delivery session that hands out one client, fails, or never resolves."""

    def __init__(
        self,
        delivery: FakeDelivery | None = None,
        *,
        error: Exception | None = None,
        block: bool = False,
    ) -> None:
        self.delivery = delivery or FakeDelivery()
        self.error = error
        self.block = block
        self.persisted = 0

    async def client(self) -> FakeDelivery:
        if self.block:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error
        return self.delivery

    def persist_current(self) -> None:
        self.persisted += 1


class RecordingFactory:
    """Mailbox factory with one maildrop per account name."""

    def __init__(self, drops: dict[str, FakeMaildrop]) -> None:
        self.drops = drops
        self.order: list[str] = []

    def __call__(self, account: AccountSettings) -> FakeMailbox:
        self.order.append(account.name)
        return self.drops[account.name].factory(account)


def _orchestrator(
    stats: StatsStore,
    session: FakeSession,
    factory: RecordingFactory,
    names: list[str],
) -> SyncOrchestrator:
    return SyncOrchestrator(
        accounts=[make_account(name) for name in names],
        session=session,
        stats=stats,
        interval_seconds=3600,
        mailbox_factory=factory,
    )


def test_accounts_processed_in_order(stats: StatsStore) -> None:
    """Each cycle should visit every account once, in configuration order."""
    factory = RecordingFactory(
        {
            "B": FakeMaildrop(messages=[raw_message(1)]),
            "A": FakeMaildrop(messages=[raw_message(2), raw_message(3)]),
        },
    )
    session = FakeSession()
    orchestrator = _orchestrator(stats, session, factory, ["B", "A"])

    processed = asyncio.run(orchestrator.run_cycle())

    assert processed == 2
    assert factory.order == ["B", "A"]
    assert stats.get_account_stats("B").counts.total == 1
    assert stats.get_account_stats("A").counts.total == 2
    assert session.delivery.label_creations == 2
    assert session.persisted == 1


def test_authorization_failure_skips_cycle(stats: StatsStore) -> None:
    """Without Gmail authorization no mailbox should be opened."""
    factory = RecordingFactory({"A": FakeMaildrop(messages=[raw_message(1)])})
    session = FakeSession(error=AuthorizationError("OAuth error: access_denied"))
    orchestrator = _orchestrator(stats, session, factory, ["A"])

    assert asyncio.run(orchestrator.run_cycle()) == 0
    assert factory.order == []
    assert stats.get_all_stats().accounts == {}
    assert session.persisted == 0


def test_unexpected_account_error_does_not_stop_cycle(stats: StatsStore) -> None:
    """An unexpected error on one account should be recorded and the next account run."""

    class _Exploding(RecordingFactory):
        def __call__(self, account: AccountSettings) -> FakeMailbox:
            if account.name == "A":
                raise RuntimeError("boom")
            return super().__call__(account)

    factory = _Exploding({"B": FakeMaildrop(messages=[raw_message(1)])})
    orchestrator = _orchestrator(stats, FakeSession(), factory, ["A", "B"])

    assert asyncio.run(orchestrator.run_cycle()) == 2

    failed = stats.get_account_stats("A").last_sync
    assert failed is not None
    assert failed.status is SyncStatus.fail
    assert failed.message == "boom"
    succeeded = stats.get_account_stats("B").last_sync
    assert succeeded is not None
    assert succeeded.status is SyncStatus.success


def test_shutdown_interrupts_pending_authorization(stats: StatsStore) -> None:
    """A shutdown request should end a cycle still waiting for consent."""
    factory = RecordingFactory({"A": FakeMaildrop()})
    orchestrator = _orchestrator(stats, FakeSession(block=True), factory, ["A"])

    async def _scenario() -> int:
        cycle = asyncio.create_task(orchestrator.run_cycle())
        await asyncio.sleep(0)
        orchestrator.request_shutdown("test shutdown")
        return await asyncio.wait_for(cycle, timeout=5)

    assert asyncio.run(_scenario()) == 0
    assert orchestrator.shutdown_requested
    assert factory.order == []


def test_run_stops_without_sleeping_after_shutdown(stats: StatsStore) -> None:
    """run() should return promptly once shutdown is requested mid-cycle."""
    orchestrator: SyncOrchestrator

    class _StopOnOpen(RecordingFactory):
        def __call__(self, account: AccountSettings) -> FakeMailbox:
            orchestrator.request_shutdown("test shutdown")
            return super().__call__(account)

    factory = _StopOnOpen(
        {
            "A": FakeMaildrop(messages=[raw_message(1)]),
            "B": FakeMaildrop(messages=[raw_message(2)]),
        },
    )
    session = FakeSession()
    orchestrator = _orchestrator(stats, session, factory, ["A", "B"])

    asyncio.run(asyncio.wait_for(orchestrator.run(), timeout=5))

    assert factory.order == ["A"]
    assert session.persisted == 1
    # the session was already open, so no message was started after the request
    assert factory.drops["A"].sessions[0].fetched == []


def test_interruptible_sleep(stats: StatsStore) -> None:
    """The between-cycle sleep should end as soon as shutdown is requested."""
    orchestrator = _orchestrator(stats, FakeSession(), RecordingFactory({}), [])

    async def _scenario() -> None:
        sleeper = asyncio.create_task(orchestrator._sleep(3600))
        await asyncio.sleep(0)
        orchestrator.request_shutdown()
        await asyncio.wait_for(sleeper, timeout=5)

    asyncio.run(_scenario())


def test_resolve_status_port() -> None:
    """Configured port wins, then the redirect URI port, then the default."""
    credential = ClientCredential(
        kind=ClientKind.web,
        client_id="id",
        client_secret="secret",
        redirect_uri="http://localhost:8765/oauth2callback",
    )

    assert resolve_status_port(9000, credential) == 9000
    assert resolve_status_port(None, credential) == 8765
    assert resolve_status_port(None, None) == 3000


def test_from_settings_wires_listener_port(tmp_path: Path) -> None:
    """Without a configured status port the redirect URI port should be used."""
    secrets = tmp_path / "credentials.json"
    secrets.write_text(
        json.dumps(
            {
                "web": {
                    "client_id": "id",
                    "client_secret": "secret",
                    "redirect_uris": ["http://localhost:4321/oauth2callback"],
                },
            },
        ),
        encoding="utf-8",
    )
    settings = AppSettings(
        accounts=[make_account("A")],
        gmail={"credentials_file": secrets, "token_file": tmp_path / "token.json"},
        storage={"root_dir": tmp_path / "data"},
    )

    orchestrator = SyncOrchestrator.from_settings(settings)

    assert orchestrator._server is not None
    assert orchestrator._server._port == 4321
    assert not orchestrator.shutdown_requested
