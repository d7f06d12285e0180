"""Gmail message import."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaInMemoryUpload

from pop3_gmail_sync.errors import DeliveryError
from pop3_gmail_sync.models.types import GmailInternalDateSource


class GmailIngestError(DeliveryError):
    """Raised when Gmail import calls fail."""


@dataclass(frozen=True)
class IngestResult:
    """Result of a Gmail import call.

    `gmail_message_id` is None when Gmail answered without assigning an id;
    such a message must be treated as not delivered.
    """

    gmail_message_id: str | None
    gmail_thread_id: str | None = None
    label_ids: list[str] = field(default_factory=list)
    raw_response: Any = None


class GmailIngester:
    """Wrapper around the Gmail API `users.messages.import` endpoint."""

    def __init__(self, *, service: Any, user_id: str) -> None:
        """Initialize the ingester.

        Args:
            service: Gmail API service object.
            user_id: Target Gmail user identifier (email or "me").
        """
        self._service = service
        self._user_id = user_id

    def import_raw(
        self,
        *,
        raw_rfc822: bytes,
        label_ids: list[str],
        internal_date_source: GmailInternalDateSource,
    ) -> IngestResult:
        """Import raw RFC822 bytes into the mailbox.

        Args:
            raw_rfc822: Full message bytes as retrieved from the source.
            label_ids: Gmail label IDs to apply.
            internal_date_source: Source for Gmail internalDate.

        Returns:
            IngestResult; its id is None if Gmail returned none.

        Raises:
            GmailIngestError: If the request fails.
        """
        media = MediaInMemoryUpload(
            raw_rfc822,
            mimetype="message/rfc822",
            resumable=True,
        )
        body = {"labelIds": label_ids} if label_ids else {}

        try:
            resp = (
                self._service.users()
                .messages()
                .import_(
                    userId=self._user_id,
                    internalDateSource=internal_date_source.value,
                    body=body,
                    media_body=media,
                )
                .execute()
            )
        except (HttpError, httplib2.HttpLib2Error, GoogleAuthError, OSError) as exc:
            raise GmailIngestError(f"Gmail import failed: {exc}") from exc

        if not isinstance(resp, dict) or not resp.get("id"):
            return IngestResult(gmail_message_id=None, raw_response=resp)

        return IngestResult(
            gmail_message_id=str(resp["id"]),
            gmail_thread_id=str(resp["threadId"]) if resp.get("threadId") else None,
            label_ids=[str(x) for x in (resp.get("labelIds") or [])],
            raw_response=resp,
        )
