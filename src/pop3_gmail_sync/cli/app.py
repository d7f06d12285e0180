"""Typer CLI for the POP3 to Gmail sync service."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from pop3_gmail_sync.config.settings import AppSettings, load_settings
from pop3_gmail_sync.errors import ConfigError
from pop3_gmail_sync.pipeline.orchestrator import SyncOrchestrator
from pop3_gmail_sync.server.pages import render_last_sync
from pop3_gmail_sync.storage.stats_store import StatsStore
from pop3_gmail_sync.utils.logging import configure_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Move mail from POP3 mailboxes into Gmail, deleting only after confirmed import.",
)

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    exists=True,
    dir_okay=False,
    help="YAML config file (accounts, gmail, status, storage, logging).",
)
ENV_FILE_OPTION = typer.Option(
    None,
    "--env-file",
    exists=True,
    dir_okay=False,
    help="Optional path to a .env file (in addition to environment variables).",
)


def load_app_settings(*, config_file: Path | None, env_file: Path | None) -> AppSettings:
    """Load settings, exiting with code 2 on invalid configuration.

    Args:
        config_file: Optional YAML config file.
        env_file: Optional .env file.

    Returns:
        Validated application settings.
    """
    try:
        return load_settings(config_file=config_file, env_file=env_file)
    except (ConfigError, ValidationError) as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=2) from None


@app.command("run")
def run_cmd(
    *,
    config: Path | None = CONFIG_OPTION,
    env_file: Path | None = ENV_FILE_OPTION,
) -> None:
    """Run the sync loop and the status server until interrupted.

    Args:
        config: YAML config file.
        env_file: Optional .env file.
    """
    settings = load_app_settings(config_file=config, env_file=env_file)
    configure_logging(settings=settings.logging)
    if config is not None:
        logger.info("Using config: %s", config)
    if settings.logging.log_dir is not None:
        logger.info("Log directory: %s", settings.logging.log_dir)

    try:
        orchestrator = SyncOrchestrator.from_settings(settings)
    except ConfigError as exc:
        logger.error("%s", exc)
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2) from None

    try:
        asyncio.run(orchestrator.run())
    except KeyboardInterrupt:
        raise typer.Exit(code=130) from None
    except Exception:
        logger.exception("Fatal error")
        raise typer.Exit(code=1) from None


@app.command("stats")
def stats_cmd(
    *,
    config: Path | None = CONFIG_OPTION,
    env_file: Path | None = ENV_FILE_OPTION,
) -> None:
    """Print per-account import counts from the statistics file.

    Args:
        config: YAML config file.
        env_file: Optional .env file.
    """
    settings = load_app_settings(config_file=config, env_file=env_file)
    store = StatsStore(path=settings.storage.stats_path)
    snapshot = store.get_all_stats()

    table = Table(title=f"Statistics ({store.path})")
    table.add_column("Account", style="bold")
    table.add_column("Last Sync")
    for column in ("Day", "Week", "Month", "Year", "Total"):
        table.add_column(column, justify="right")

    for name, stats in snapshot.accounts.items():
        counts = stats.counts
        table.add_row(
            name,
            render_last_sync(stats.last_sync),
            str(counts.day),
            str(counts.week),
            str(counts.month),
            str(counts.year),
            str(counts.total),
        )

    Console().print(table)
