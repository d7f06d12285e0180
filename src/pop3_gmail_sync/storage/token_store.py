"""Durable storage for the Gmail OAuth token pair."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from pop3_gmail_sync.errors import ConfigError
from pop3_gmail_sync.models.token import PersistedToken
from pop3_gmail_sync.utils.files import write_json_atomic

logger = logging.getLogger(__name__)


class TokenStore:
    """Read and write the token file."""

    def __init__(self, *, path: Path) -> None:
        """Initialize the store.

        Args:
            path: Token file location.

        Raises:
            ConfigError: If the path exists but is not a regular file.
        """
        resolved = path.expanduser().resolve()
        if resolved.exists() and not resolved.is_file():
            raise ConfigError(
                f"token_file is not a file: {resolved}. "
                "Set POP3GMAIL_GMAIL__TOKEN_FILE to a file path.",
            )
        self._path = resolved

    @property
    def path(self) -> Path:
        """Return the resolved token file path."""
        return self._path

    def load(self) -> PersistedToken | None:
        """Load the persisted token.

        Returns:
            The token, or None if the file is missing, empty or unreadable.
        """
        if not self._path.exists():
            return None
        try:
            if self._path.stat().st_size == 0:
                logger.warning("Token file exists but is empty (token_file=%s)", self._path)
                return None
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return PersistedToken.model_validate(data)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning(
                "Failed to load token file; will re-auth (token_file=%s, error=%r)",
                self._path,
                exc,
            )
            return None

    def save(self, token: PersistedToken) -> None:
        """Persist the token.

        Raises:
            PersistenceError: If the file cannot be written.
        """
        write_json_atomic(self._path, token.model_dump(mode="json", exclude_none=True))
        logger.info("Saved token to %s", self._path)
