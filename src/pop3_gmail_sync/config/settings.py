"""Configuration and environment settings for the sync service."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import AliasChoices, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pop3_gmail_sync.errors import ConfigError
from pop3_gmail_sync.models.base import AppModel
from pop3_gmail_sync.models.types import GmailInternalDateSource


class AccountSettings(AppModel):
    """A source POP3 mailbox."""

    name: Annotated[str, Field(min_length=1)]
    host: Annotated[str, Field(min_length=1, validation_alias=AliasChoices("host", "server"))]
    port: Annotated[int, Field(ge=1, le=65535)] = 995
    username: Annotated[str, Field(min_length=1)]
    password: Annotated[str, Field(min_length=1, repr=False)]

    ssl: bool = True
    tls: bool = False
    verify_tls: bool = True
    timeout_seconds: Annotated[float, Field(gt=0, le=600)] = 30.0

    label: str | None = None

    @property
    def delivery_label(self) -> str:
        """Return the Gmail label messages from this account are filed under."""
        return self.label or self.name


class GmailSettings(BaseSettings):
    """Gmail OAuth and import settings."""

    model_config = SettingsConfigDict(
        env_prefix="POP3GMAIL_GMAIL__",
        extra="forbid",
        populate_by_name=True,
    )

    credentials_file: Path = Field(
        default=Path("credentials.json"),
        validation_alias=AliasChoices("credentials_file", "client_secrets_file"),
    )
    token_file: Path = Path("data/token.json")

    user_id: Annotated[str, Field(min_length=1)] = "me"
    internal_date_source: GmailInternalDateSource = GmailInternalDateSource.date_header

    @field_validator("credentials_file")
    @classmethod
    def _credentials_file_must_exist(cls, value: Path) -> Path:
        """Ensure the credentials file exists and is a file.

        Args:
            value: Path to the OAuth client JSON.

        Returns:
            The validated path.

        Raises:
            ValueError: If the path does not exist or is not a file.
        """
        if not value.exists():
            msg = f"credentials_file does not exist: {value}"
            raise ValueError(msg)
        if not value.is_file():
            msg = f"credentials_file is not a file: {value}"
            raise ValueError(msg)
        return value


class StatusSettings(BaseSettings):
    """Status page / OAuth callback listener settings."""

    model_config = SettingsConfigDict(env_prefix="POP3GMAIL_STATUS__", extra="forbid")

    host: Annotated[str, Field(min_length=1)] = "0.0.0.0"
    port: Annotated[int, Field(ge=0, le=65535)] | None = None
    path: Annotated[str, Field(pattern=r"^/")] = "/status"


class StorageSettings(BaseSettings):
    """Settings for durable state files."""

    model_config = SettingsConfigDict(env_prefix="POP3GMAIL_STORAGE__", extra="forbid")

    root_dir: Path = Path("./data")
    stats_path_override: Path | None = None

    @field_validator("root_dir")
    @classmethod
    def _root_dir_to_absolute(cls, value: Path) -> Path:
        """Resolve the storage root directory to an absolute path."""
        return value.expanduser().resolve()

    @field_validator("stats_path_override")
    @classmethod
    def _paths_to_absolute(cls, value: Path | None) -> Path | None:
        """Resolve optional override paths to absolute paths."""
        return value.expanduser().resolve() if value is not None else None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def stats_path(self) -> Path:
        """Return the resolved statistics file path."""
        return (self.stats_path_override or (self.root_dir / "stats.json")).resolve()


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="POP3GMAIL_LOGGING__", extra="forbid")

    level: Annotated[str, Field(min_length=1)] = "INFO"
    json_logs: bool = False
    log_dir: Path | None = None
    retention_days: Annotated[int, Field(ge=1, le=365)] = 14


class AppSettings(BaseSettings):
    """Top-level application settings."""

    model_config = SettingsConfigDict(
        env_prefix="POP3GMAIL_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="forbid",
    )

    accounts: list[AccountSettings] = Field(default_factory=list)
    check_interval_minutes: Annotated[int, Field(ge=1, le=24 * 60)] = 5

    gmail: GmailSettings | None = None
    status: StatusSettings = Field(default_factory=StatusSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("accounts")
    @classmethod
    def _account_names_unique(cls, value: list[AccountSettings]) -> list[AccountSettings]:
        """Reject duplicate account names; the name keys the stats file."""
        seen: set[str] = set()
        for account in value:
            if account.name in seen:
                raise ValueError(f"Duplicate account name: {account.name!r}")
            seen.add(account.name)
        return value

    def require_runnable(self) -> GmailSettings:
        """Check the settings are complete enough to run the service.

        Returns:
            The Gmail settings.

        Raises:
            ConfigError: If no accounts are configured or Gmail settings are missing.
        """
        if not self.accounts:
            raise ConfigError("No accounts defined in config.")
        if self.gmail is None:
            raise ConfigError(
                "Missing Gmail settings. Set gmail.credentials_file in the config file "
                "or POP3GMAIL_GMAIL__CREDENTIALS_FILE.",
            )
        return self.gmail


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML config file into a mapping.

    Args:
        path: YAML file path.

    Returns:
        Parsed mapping (empty for an empty file).

    Raises:
        ConfigError: If the file cannot be read or is not a mapping.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return data


def load_settings(*, config_file: Path | None = None, env_file: Path | None = None) -> AppSettings:
    """Load validated settings from a YAML file, the environment and an optional .env file.

    Values from the config file take precedence over environment variables.

    Args:
        config_file: Optional YAML config path.
        env_file: Optional .env file path.

    Returns:
        Validated AppSettings instance.
    """
    values = read_config_file(config_file) if config_file is not None else {}
    if env_file is None:
        return AppSettings(**values)
    return AppSettings(_env_file=env_file, **values)  # type: ignore[call-arg]
