"""Tests for the JSON statistics store."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest
from conftest import FakeClock

from pop3_gmail_sync.errors import PersistenceError
from pop3_gmail_sync.models.types import SyncStatus
from pop3_gmail_sync.storage import stats_store as stats_module
from pop3_gmail_sync.storage.stats_store import StatsStore
from pop3_gmail_sync.utils.clock import to_epoch_ms


def test_window_counts_are_nested(stats: StatsStore, clock: FakeClock) -> None:
    """Imports should be counted in every window whose start they fall after."""
    now = clock()
    for age in (
        timedelta(hours=1),
        timedelta(days=3),
        timedelta(days=20),
        timedelta(days=200),
        timedelta(days=390),
    ):
        stats.record_import("A", at=now - age)

    counts = stats.get_account_stats("A").counts
    assert (counts.day, counts.week, counts.month, counts.year, counts.total) == (1, 2, 3, 4, 5)
    assert counts.day <= counts.week <= counts.month <= counts.year <= counts.total


def test_window_boundary_is_inclusive(stats: StatsStore, clock: FakeClock) -> None:
    """An import exactly one day old should still count for the day."""
    stats.record_import("A", at=clock() - timedelta(days=1))
    assert stats.get_account_stats("A").counts.day == 1


def test_old_imports_are_pruned(stats: StatsStore, clock: FakeClock) -> None:
    """Imports older than the retention period should be dropped on the next import."""
    stats.record_import("A", at=clock() - timedelta(days=401))
    stats.record_import("A")

    counts = stats.get_account_stats("A").counts
    assert counts.total == 1

    clock.advance(timedelta(days=401))
    stats.record_import("A")
    assert stats.get_account_stats("A").counts.total == 1


def test_unknown_account_is_empty(stats: StatsStore) -> None:
    """Unknown accounts should report zero counts and no last sync."""
    account_stats = stats.get_account_stats("missing")
    assert account_stats.counts.total == 0
    assert account_stats.last_sync is None
    assert stats.get_all_stats().accounts == {}


def test_sync_status_overwrites(stats: StatsStore, clock: FakeClock) -> None:
    """The last sync status should reflect only the latest record."""
    stats.record_sync_status("A", SyncStatus.started)
    clock.advance(timedelta(seconds=5))
    stats.record_sync_status("A", SyncStatus.fail, "connect refused")

    last = stats.get_account_stats("A").last_sync
    assert last is not None
    assert last.status == SyncStatus.fail
    assert last.message == "connect refused"
    assert last.time == to_epoch_ms(clock())

    stats.record_sync_status("A", SyncStatus.success)
    last = stats.get_account_stats("A").last_sync
    assert last is not None
    assert last.status == SyncStatus.success
    assert last.message is None


def test_file_layout_and_reload(tmp_path: Path, clock: FakeClock) -> None:
    """The file should use the documented layout and load back into a new store."""
    path = tmp_path / "nested" / "stats.json"
    store = StatsStore(path=path, clock=clock)
    store.record_import("A")
    store.record_sync_status("A", SyncStatus.success)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["updatedAt"] == to_epoch_ms(clock())
    assert data["accounts"]["A"]["imports"] == [to_epoch_ms(clock())]
    assert data["accounts"]["A"]["last_sync"]["status"] == "success"

    reloaded = StatsStore(path=path, clock=clock)
    snapshot = reloaded.get_all_stats()
    assert snapshot.updated_at == data["updatedAt"]
    assert snapshot.accounts["A"].counts.total == 1


def test_corrupt_file_starts_empty(tmp_path: Path, clock: FakeClock) -> None:
    """An unparseable stats file should be treated as empty and then overwritten."""
    path = tmp_path / "stats.json"
    path.write_text("{not json", encoding="utf-8")

    store = StatsStore(path=path, clock=clock)
    assert store.get_all_stats().accounts == {}

    store.record_import("A")
    assert json.loads(path.read_text(encoding="utf-8"))["accounts"]["A"]["imports"]


def test_write_failure_keeps_memory_state(
    stats: StatsStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failed write should be logged and leave the in-memory counts intact."""

    def _fail(path: Path, payload: object) -> None:
        raise PersistenceError(f"Failed to write {path}: disk full")

    monkeypatch.setattr(stats_module, "write_json_atomic", _fail)
    stats.record_import("A")
    stats.record_sync_status("A", SyncStatus.success)

    assert stats.get_account_stats("A").counts.day == 1
    assert not stats.path.exists()
