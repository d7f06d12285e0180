"""Shared fakes for the Gmail service, POP3 maildrops and the clock."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from pop3_gmail_sync.config.settings import AccountSettings
from pop3_gmail_sync.errors import MailboxConnectError, MailboxOperationError
from pop3_gmail_sync.gmail.ingest import IngestResult
from pop3_gmail_sync.storage.stats_store import StatsStore


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class _Request:
    def __init__(self, fn: Callable[[], Any]) -> None:
        self._fn = fn

    def execute(self) -> Any:
        return self._fn()


class FakeGmailService:
    """Mimics the `service.users().labels()/messages()` call chains."""

    def __init__(self, *, labels: dict[str, str] | None = None) -> None:
        self.labels_by_name: dict[str, str] = dict(labels or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.import_response: Any = {"id": "gmail-1", "threadId": "thread-1", "labelIds": []}
        self.created = 0

    def users(self) -> FakeGmailService:
        return self

    def labels(self) -> FakeGmailService:
        return self

    def messages(self) -> FakeGmailService:
        return self

    def list(self, **kwargs: Any) -> _Request:
        self.calls.append(("labels.list", kwargs))
        return _Request(
            lambda: {"labels": [{"name": n, "id": i} for n, i in self.labels_by_name.items()]},
        )

    def create(self, **kwargs: Any) -> _Request:
        self.calls.append(("labels.create", kwargs))

        def _create() -> dict[str, str]:
            self.created += 1
            label_id = f"Label_{self.created}"
            self.labels_by_name[kwargs["body"]["name"]] = label_id
            return {"id": label_id, "name": kwargs["body"]["name"]}

        return _Request(_create)

    def import_(self, **kwargs: Any) -> _Request:
        self.calls.append(("messages.import", kwargs))
        return _Request(lambda: self.import_response)

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


@dataclass
class FakeMaildrop:
    """Server-side message store shared by successive POP3 sessions."""

    messages: list[bytes] = field(default_factory=list)
    connect_error: str | None = None
    stat_error: str | None = None
    close_error: str | None = None
    fetch_errors: set[int] = field(default_factory=set)
    delete_errors: set[int] = field(default_factory=set)
    sessions: list[FakeMailbox] = field(default_factory=list)

    def factory(self, account: AccountSettings) -> FakeMailbox:
        session = FakeMailbox(drop=self)
        self.sessions.append(session)
        return session


class FakeMailbox:
    """One session on a FakeMaildrop; DELE is committed on close, as with QUIT."""

    def __init__(self, *, drop: FakeMaildrop) -> None:
        self.drop = drop
        self.deleted: list[int] = []
        self.fetched: list[int] = []
        self.closed = False

    async def connect(self) -> None:
        if self.drop.connect_error:
            raise MailboxConnectError(self.drop.connect_error)

    async def message_count(self) -> int:
        if self.drop.stat_error:
            raise MailboxOperationError(self.drop.stat_error)
        return len(self.drop.messages)

    async def fetch(self, index: int) -> bytes:
        self.fetched.append(index)
        if index in self.drop.fetch_errors:
            raise MailboxOperationError(f"RETR {index} failed")
        return self.drop.messages[index - 1]

    async def delete(self, index: int) -> None:
        if index in self.drop.delete_errors:
            raise MailboxOperationError(f"DELE {index} failed")
        self.deleted.append(index)

    async def close(self) -> None:
        self.closed = True
        if self.drop.close_error:
            raise MailboxOperationError(self.drop.close_error)
        self.drop.messages = [
            raw for i, raw in enumerate(self.drop.messages, start=1) if i not in self.deleted
        ]


class FakeDelivery:
    """Delivery target returning scripted outcomes (default: sequential ids)."""

    def __init__(self, outcomes: list[IngestResult | Exception] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.delivered: list[tuple[bytes, str]] = []
        self.labels: dict[str, str] = {}
        self.label_creations = 0

    def ensure_label(self, name: str) -> str:
        if name not in self.labels:
            self.label_creations += 1
            self.labels[name] = f"Label_{name}"
        return self.labels[name]

    def deliver(self, raw_rfc822: bytes, *, label_id: str) -> IngestResult:
        self.delivered.append((raw_rfc822, label_id))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return IngestResult(gmail_message_id=f"g{len(self.delivered)}")


def make_account(name: str = "A", **overrides: Any) -> AccountSettings:
    """Build a valid AccountSettings with test defaults."""
    values: dict[str, Any] = {
        "name": name,
        "host": "pop.example.com",
        "username": f"{name.lower()}@example.com",
        "password": "secret",
    }
    values.update(overrides)
    return AccountSettings(**values)


def raw_message(n: int) -> bytes:
    """Return a small RFC822 message numbered `n`."""
    return (
        f"From: sender{n}@example.com\r\nSubject: Message {n}\r\n"
        f"Date: Tue, 1 Jan 2019 10:0{n % 10}:00 +0000\r\n\r\nBody {n}\r\n"
    ).encode()


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at a known instant."""
    return FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def stats(tmp_path: Path, clock: FakeClock) -> StatsStore:
    """Stats store backed by a temp file."""
    return StatsStore(path=tmp_path / "stats.json", clock=clock)
