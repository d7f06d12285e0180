"""Logging setup: console output plus an optional daily rotating log file."""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pop3_gmail_sync.config.settings import LoggingSettings

LOG_FILE_NAME = "pop3_to_gmail.log"

_RESERVED_LOG_RECORD_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)),
) | {"message", "asctime"}

_NOISY_LOGGERS: dict[str, int] = {
    "googleapiclient.discovery": logging.WARNING,
    "googleapiclient.discovery_cache": logging.ERROR,
    "urllib3": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.WARNING,
}


def _safe_json_value(value: object) -> Any:
    """Return `value` if it is JSON-serializable, otherwise its string form."""
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


class JsonLogFormatter(logging.Formatter):
    """Formatter that emits one JSON object per record.

    Attributes passed through `extra=` are included as top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_LOG_RECORD_KEYS or key.startswith("_"):
                continue
            payload[key] = _safe_json_value(value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def _build_formatter(*, json_logs: bool) -> logging.Formatter:
    if json_logs:
        return JsonLogFormatter()
    return logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def configure_logging(*, settings: LoggingSettings) -> list[logging.Handler]:
    """Configure root logging for a service run.

    Args:
        settings: Level, output format and optional log directory.

    Returns:
        The installed handlers.
    """
    level_name = settings.level.strip().upper() if settings.level else "INFO"
    level = getattr(logging, level_name, logging.INFO)
    formatter = _build_formatter(json_logs=settings.json_logs)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]

    if settings.log_dir is not None:
        handlers.append(
            _rotating_file_handler(
                settings.log_dir,
                level=level,
                formatter=formatter,
                backup_count=settings.retention_days,
            ),
        )

    logging.basicConfig(level=level, handlers=handlers, force=True)
    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, noisy_level))
    return handlers


def _rotating_file_handler(
    log_dir: Path,
    *,
    level: int,
    formatter: logging.Formatter,
    backup_count: int,
) -> logging.Handler:
    """Create a handler that rotates the log file at midnight."""
    directory = log_dir.expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        directory / LOG_FILE_NAME,
        when="midnight",
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler
