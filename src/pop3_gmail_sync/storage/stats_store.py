"""JSON persistence for per-account import history."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from pop3_gmail_sync.errors import PersistenceError
from pop3_gmail_sync.models.stats import (
    AccountHistory,
    AccountStats,
    LastSync,
    StatsDocument,
    StatsSnapshot,
    WindowCounts,
)
from pop3_gmail_sync.models.types import SyncStatus
from pop3_gmail_sync.utils.clock import to_epoch_ms, utcnow
from pop3_gmail_sync.utils.files import write_json_atomic

logger = logging.getLogger(__name__)

RETENTION = timedelta(days=400)

WINDOWS: dict[str, timedelta] = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


class StatsStore:
    """Append-only import log per account, persisted as a single JSON document.

    The in-memory document is the source of truth for the process lifetime.
    Every mutation rewrites the whole file; write failures are logged and
    otherwise ignored.
    """

    def __init__(self, *, path: Path, clock: Callable[[], datetime] = utcnow) -> None:
        """Initialize the store, loading any existing file.

        Args:
            path: Location of the statistics JSON file.
            clock: Source of "now"; injectable for tests.
        """
        self._path = path
        self._clock = clock
        self._doc = _load(path)

    @property
    def path(self) -> Path:
        """Return the statistics file path."""
        return self._path

    def record_import(self, account: str, *, at: datetime | None = None) -> None:
        """Append an import timestamp, prune old entries and persist.

        Args:
            account: Account name.
            at: Import time; defaults to now.
        """
        now = self._clock()
        history = self._ensure_account(account)
        history.imports.append(to_epoch_ms(at or now))
        cutoff = to_epoch_ms(now - RETENTION)
        history.imports = [ts for ts in history.imports if ts >= cutoff]
        self._persist()

    def record_sync_status(
        self,
        account: str,
        status: SyncStatus,
        message: str | None = None,
    ) -> None:
        """Overwrite the account's last sync outcome and persist.

        Args:
            account: Account name.
            status: Sync status.
            message: Optional detail (error text for failures).
        """
        history = self._ensure_account(account)
        history.last_sync = LastSync(
            time=to_epoch_ms(self._clock()),
            status=status,
            message=message or None,
        )
        self._persist()

    def get_account_stats(self, account: str) -> AccountStats:
        """Return windowed counts for one account (unknown accounts are empty)."""
        history = self._doc.accounts.get(account) or AccountHistory()
        return AccountStats(
            account=account,
            last_sync=history.last_sync,
            counts=_window_counts(history.imports, now=self._clock()),
        )

    def get_all_stats(self) -> StatsSnapshot:
        """Return windowed counts for every known account."""
        return StatsSnapshot(
            updated_at=self._doc.updated_at,
            accounts={name: self.get_account_stats(name) for name in self._doc.accounts},
        )

    def _ensure_account(self, account: str) -> AccountHistory:
        history = self._doc.accounts.get(account)
        if history is None:
            history = AccountHistory()
            self._doc.accounts[account] = history
        return history

    def _persist(self) -> None:
        self._doc.updated_at = to_epoch_ms(self._clock())
        try:
            write_json_atomic(self._path, self._doc.model_dump(mode="json", by_alias=True))
        except PersistenceError as exc:
            logger.warning("Failed to persist stats (path=%s, error=%s)", self._path, exc)


def _window_counts(imports: list[int], *, now: datetime) -> WindowCounts:
    """Count imports at or after each window's start.

    Args:
        imports: Import timestamps in epoch milliseconds.
        now: Reference time.

    Returns:
        WindowCounts for day/week/month/year plus the retained total.
    """
    counts = {
        name: sum(1 for ts in imports if ts >= to_epoch_ms(now - span))
        for name, span in WINDOWS.items()
    }
    return WindowCounts(total=len(imports), **counts)


def _load(path: Path) -> StatsDocument:
    """Load the statistics document, starting empty if missing or unreadable."""
    if not path.exists():
        return StatsDocument()
    try:
        raw = path.read_text(encoding="utf-8")
        return StatsDocument.model_validate(json.loads(raw or "{}"))
    except (OSError, ValueError, ValidationError) as exc:
        logger.warning("Failed to load stats file; starting empty (path=%s, error=%r)", path, exc)
        return StatsDocument()
