"""Console entrypoint for `pop3-gmail-sync`."""

from __future__ import annotations

from pop3_gmail_sync.cli.app import app


def main() -> int:
    """Run the Typer CLI application.

    Returns:
        Process exit code.
    """
    app()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
