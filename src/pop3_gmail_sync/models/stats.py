"""Pydantic models for the statistics file and derived snapshots."""

from __future__ import annotations

from pydantic import Field

from pop3_gmail_sync.models.base import AppModel, ExternalModel
from pop3_gmail_sync.models.types import SyncStatus


class LastSync(ExternalModel):
    """Most recent sync outcome for an account."""

    time: int = Field(ge=0)
    status: SyncStatus
    message: str | None = None


class AccountHistory(ExternalModel):
    """Durable per-account record: import timestamps (epoch ms) and last sync."""

    imports: list[int] = Field(default_factory=list)
    last_sync: LastSync | None = None


class StatsDocument(ExternalModel):
    """Top-level layout of the statistics file."""

    updated_at: int = Field(default=0, alias="updatedAt", ge=0)
    accounts: dict[str, AccountHistory] = Field(default_factory=dict)


class WindowCounts(AppModel):
    """Import counts over trailing windows, plus the retained total."""

    day: int = Field(default=0, ge=0)
    week: int = Field(default=0, ge=0)
    month: int = Field(default=0, ge=0)
    year: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)


class AccountStats(AppModel):
    """Snapshot of one account's history at a point in time."""

    account: str
    last_sync: LastSync | None = None
    counts: WindowCounts = Field(default_factory=WindowCounts)


class StatsSnapshot(AppModel):
    """Snapshot of all accounts, computed at read time."""

    updated_at: int = Field(default=0, ge=0)
    accounts: dict[str, AccountStats] = Field(default_factory=dict)
