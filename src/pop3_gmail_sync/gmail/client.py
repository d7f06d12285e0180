"""Gmail API client creation and the delivery operations used by the sync worker."""

from __future__ import annotations

from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from pop3_gmail_sync.gmail.ingest import GmailIngester, IngestResult
from pop3_gmail_sync.gmail.labels import GmailLabelCache
from pop3_gmail_sync.models.types import GmailInternalDateSource, GmailSystemLabelId


class GmailClient:
    """Gmail service plus label cache and importer bound to one set of credentials."""

    def __init__(
        self,
        *,
        service: Any,
        user_id: str = "me",
        internal_date_source: GmailInternalDateSource = GmailInternalDateSource.date_header,
    ) -> None:
        """Initialize the client.

        Args:
            service: Gmail API service object.
            user_id: Target Gmail user identifier.
            internal_date_source: Source for Gmail internalDate on import.
        """
        self.service = service
        self.user_id = user_id
        self.internal_date_source = internal_date_source
        self.labels = GmailLabelCache(service=service, user_id=user_id)
        self.ingester = GmailIngester(service=service, user_id=user_id)

    @classmethod
    def from_credentials(
        cls,
        creds: Credentials,
        *,
        user_id: str = "me",
        internal_date_source: GmailInternalDateSource = GmailInternalDateSource.date_header,
    ) -> GmailClient:
        """Build a Gmail API service for the given OAuth credentials."""
        service = build("gmail", "v1", credentials=creds, cache_discovery=False)
        return cls(service=service, user_id=user_id, internal_date_source=internal_date_source)

    def ensure_label(self, name: str) -> str:
        """Return the ID of label `name`, creating it if absent.

        The label list is re-read on every call, so a label deleted or renamed
        in Gmail since the last cycle is recreated instead of failing imports.
        """
        return self.labels.ensure(name=name, refresh=True)

    def deliver(self, raw_rfc822: bytes, *, label_id: str) -> IngestResult:
        """Import a message into the inbox as unread, filed under `label_id`."""
        return self.ingester.import_raw(
            raw_rfc822=raw_rfc822,
            label_ids=[label_id, GmailSystemLabelId.inbox.value, GmailSystemLabelId.unread.value],
            internal_date_source=self.internal_date_source,
        )
