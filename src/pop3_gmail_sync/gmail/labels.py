"""Gmail label lookup and creation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError

from pop3_gmail_sync.errors import DeliveryError

logger = logging.getLogger(__name__)


class GmailLabelError(DeliveryError):
    """Raised when label operations fail."""


@dataclass
class GmailLabelCache:
    """Caches label name → label id; lists labels lazily, creates only missing ones."""

    service: Any
    user_id: str
    _name_to_id: dict[str, str] = field(default_factory=dict)
    _loaded: bool = False

    def refresh(self) -> None:
        """Refresh the cached label mapping from Gmail.

        Raises:
            GmailLabelError: If the list call fails.
        """
        try:
            resp = self.service.users().labels().list(userId=self.user_id).execute()
        except (HttpError, httplib2.HttpLib2Error, GoogleAuthError, OSError) as exc:
            raise GmailLabelError(f"Gmail labels.list failed: {exc}") from exc
        labels = resp.get("labels", []) if isinstance(resp, dict) else []
        self._name_to_id = {
            str(label["name"]): str(label["id"])
            for label in labels
            if "name" in label and "id" in label
        }
        self._loaded = True

    def ensure(self, *, name: str, refresh: bool = False) -> str:
        """Ensure a label exists and return its ID.

        Args:
            name: Label name.
            refresh: Re-list labels first instead of trusting the cache.

        Returns:
            Gmail label ID.

        Raises:
            GmailLabelError: If the label name is invalid or create fails.
        """
        normalized = name.strip()
        if not normalized:
            raise GmailLabelError("Label name must not be blank")

        if refresh or not self._loaded:
            self.refresh()

        existing = self._name_to_id.get(normalized)
        if existing:
            return existing

        body = {
            "name": normalized,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        try:
            created = (
                self.service.users().labels().create(userId=self.user_id, body=body).execute()
            )
        except (HttpError, httplib2.HttpLib2Error, GoogleAuthError, OSError) as exc:
            msg = f"Gmail labels.create failed for {normalized!r}: {exc}"
            raise GmailLabelError(msg) from exc
        if not isinstance(created, dict) or "id" not in created:
            raise GmailLabelError(f"Unexpected label create response: {created!r}")
        label_id = str(created["id"])
        self._name_to_id[normalized] = label_id
        logger.info("Created Gmail label %s => %s", normalized, label_id)
        return label_id
