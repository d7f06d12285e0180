"""Shared enums."""

from __future__ import annotations

from enum import StrEnum


class GmailInternalDateSource(StrEnum):
    """Sources for Gmail internalDate when importing messages."""

    date_header = "dateHeader"
    received_time = "receivedTime"


class GmailSystemLabelId(StrEnum):
    """Gmail system label identifiers applied to every imported message."""

    inbox = "INBOX"
    unread = "UNREAD"


class SyncStatus(StrEnum):
    """Outcome of the most recent sync cycle for an account."""

    started = "started"
    success = "success"
    fail = "fail"


class AuthorizationState(StrEnum):
    """States of the Gmail authorization lifecycle."""

    no_token = "no_token"
    authorized = "authorized"
    refresh_pending = "refresh_pending"
    awaiting_user_authorization = "awaiting_user_authorization"
    failed = "failed"
