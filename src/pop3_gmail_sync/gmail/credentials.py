"""OAuth client secrets loading.

Google issues client JSON in two shapes, `{"installed": {...}}` for desktop
clients and `{"web": {...}}` for web clients. Both are normalized here into a
single `ClientCredential`; nothing downstream looks at the original shape.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from pydantic import Field, ValidationError

from pop3_gmail_sync.errors import ConfigError
from pop3_gmail_sync.models.base import ExternalModel

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


class ClientKind(StrEnum):
    """OAuth client type as labelled in the client secrets JSON."""

    installed = "installed"
    web = "web"


class _ClientSecretsEntry(ExternalModel):
    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    redirect_uris: list[str] = Field(default_factory=list)
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI


@dataclass(frozen=True)
class ClientCredential:
    """Canonical OAuth client credential."""

    kind: ClientKind
    client_id: str
    client_secret: str
    redirect_uri: str
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI

    @property
    def callback_path(self) -> str:
        """Return the path component of the redirect URI (the callback route)."""
        return urlsplit(self.redirect_uri).path or "/"

    @property
    def redirect_port(self) -> int:
        """Return the port the redirect URI points at."""
        parts = urlsplit(self.redirect_uri)
        if parts.port is not None:
            return parts.port
        return 80 if parts.scheme == "http" else 443

    def to_client_config(self) -> dict[str, Any]:
        """Return a client config mapping accepted by `google_auth_oauthlib`."""
        return {
            self.kind.value: {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uris": [self.redirect_uri],
                "auth_uri": self.auth_uri,
                "token_uri": self.token_uri,
            },
        }


def parse_client_credential(data: object) -> ClientCredential:
    """Normalize a decoded client secrets document.

    Args:
        data: Decoded JSON.

    Returns:
        ClientCredential using the first redirect URI.

    Raises:
        ConfigError: If neither shape is present or required fields are missing.
    """
    if not isinstance(data, dict):
        raise ConfigError('Invalid credentials JSON (expected "installed" or "web" object)')

    for kind in (ClientKind.installed, ClientKind.web):
        raw = data.get(kind.value)
        if raw is None:
            continue
        try:
            entry = _ClientSecretsEntry.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError(f"Invalid {kind.value!r} client credentials: {exc}") from exc
        if not entry.redirect_uris:
            raise ConfigError("No redirect_uri found in credentials")
        return ClientCredential(
            kind=kind,
            client_id=entry.client_id,
            client_secret=entry.client_secret,
            redirect_uri=entry.redirect_uris[0],
            auth_uri=entry.auth_uri,
            token_uri=entry.token_uri,
        )

    raise ConfigError('Invalid credentials JSON (expected "installed" or "web" object)')


def load_client_credential(path: Path) -> ClientCredential:
    """Read and normalize a client secrets file.

    Raises:
        ConfigError: If the file is missing, unreadable or malformed.
    """
    if not path.exists():
        raise ConfigError(f"Missing credentials file: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Failed to read credentials file {path}: {exc}") from exc
    return parse_client_credential(data)
