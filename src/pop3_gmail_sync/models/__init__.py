"""Validated domain models (Pydantic)."""

from __future__ import annotations

from pop3_gmail_sync.models.stats import (
    AccountHistory,
    AccountStats,
    LastSync,
    StatsDocument,
    StatsSnapshot,
    WindowCounts,
)
from pop3_gmail_sync.models.token import PersistedToken
from pop3_gmail_sync.models.types import (
    AuthorizationState,
    GmailInternalDateSource,
    GmailSystemLabelId,
    SyncStatus,
)

__all__ = [
    "AccountHistory",
    "AccountStats",
    "AuthorizationState",
    "GmailInternalDateSource",
    "GmailSystemLabelId",
    "LastSync",
    "PersistedToken",
    "StatsDocument",
    "StatsSnapshot",
    "SyncStatus",
    "WindowCounts",
]
