"""Persisted OAuth token record."""

from __future__ import annotations

from pydantic import Field

from pop3_gmail_sync.models.base import ExternalModel


class PersistedToken(ExternalModel):
    """Token file layout: `{access_token, refresh_token?, expiry_date?}`.

    `expiry_date` is in epoch milliseconds. Extra keys written by other OAuth
    clients (`scope`, `token_type`, `id_token`) are ignored on load.
    """

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expiry_date: int | None = Field(default=None, ge=0)
    scope: str | None = None
    token_type: str | None = "Bearer"
