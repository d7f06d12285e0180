"""Error taxonomy shared across the sync service."""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for service errors."""


class ConfigError(SyncError):
    """Raised for fatal configuration problems detected at startup."""


class AuthorizationError(SyncError):
    """Raised when Gmail authorization is denied or cannot be completed."""


class MailboxConnectError(SyncError):
    """Raised when a POP3 session cannot be opened or authenticated."""


class MailboxOperationError(SyncError):
    """Raised when a POP3 command fails on an open session."""


class DeliveryError(SyncError):
    """Raised when a Gmail call fails."""


class PersistenceError(SyncError):
    """Raised when a durable file cannot be written."""


class MailboxSessionError(MailboxOperationError):
    """Raised when a POP3 session is out of sync and must be abandoned.

    Unlike a plain `-ERR` reply, the command/response stream can no longer be
    trusted, so no further command (including QUIT) may be sent on it.
    """
