"""HTML pages served by the status listener."""

from __future__ import annotations

from datetime import datetime
from html import escape

from pop3_gmail_sync.models.stats import LastSync, StatsSnapshot
from pop3_gmail_sync.utils.clock import from_epoch_ms, utcnow

_BOOTSTRAP = (
    '<link href="https://cdn.jsdelivr.net/npm/bootstrap@5.3.8/dist/css/bootstrap.min.css" '
    'rel="stylesheet" crossorigin="anonymous">'
)


def _fmt_time(value: datetime) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")


def _redirect_page(body: str, *, target: str, seconds: int = 5) -> str:
    return (
        "<!DOCTYPE html><html>"
        f'<head><meta http-equiv="refresh" content="{seconds}; url={escape(target)}"></head>'
        f"<body>{body}</body></html>"
    )


def render_last_sync(last_sync: LastSync | None) -> str:
    """Render a last-sync cell as plain text (not escaped)."""
    if last_sync is None:
        return "n/a"
    text = f"{_fmt_time(from_epoch_ms(last_sync.time))} ({last_sync.status.value})"
    if last_sync.message:
        text += f" - {last_sync.message}"
    return text


def render_status_page(snapshot: StatsSnapshot, *, authorization_url: str | None) -> str:
    """Render the status page.

    Args:
        snapshot: Windowed statistics for every account.
        authorization_url: Consent URL while Gmail authorization is pending.

    Returns:
        HTML document.
    """
    updated = from_epoch_ms(snapshot.updated_at) if snapshot.updated_at else utcnow()
    parts = [
        "<!DOCTYPE html><html><head><title>POP3-&gt;Gmail status</title>",
        _BOOTSTRAP,
        '</head><body><div class="container">',
        "<h2>Status</h2>",
        f"<p>Updated: {escape(_fmt_time(updated))}</p>",
    ]
    if authorization_url:
        parts.append(
            '<div class="alert alert-primary" role="alert">'
            "<strong>Waiting for OAuth authorization:</strong> "
            f'<a href="{escape(authorization_url)}">Click here</a></div>',
        )
    parts.append(
        '<h2>Statistics</h2><table class="table">'
        "<tr><th>Account</th><th>Last Sync</th><th>Day</th><th>Week</th>"
        "<th>Month</th><th>Year</th><th>Total</th></tr>",
    )
    for name, stats in snapshot.accounts.items():
        counts = stats.counts
        parts.append(
            f"<tr><td>{escape(name)}</td><td>{escape(render_last_sync(stats.last_sync))}</td>"
            f"<td>{counts.day}</td><td>{counts.week}</td><td>{counts.month}</td>"
            f"<td>{counts.year}</td><td>{counts.total}</td></tr>",
        )
    parts.append("</table></div></body></html>")
    return "".join(parts)


def render_authorized(*, status_path: str) -> str:
    """Render the page shown after a successful OAuth callback."""
    link = f'<a href="{escape(status_path)}">status page</a>'
    return _redirect_page(
        f"Authentication successful! Redirecting to the {link}.",
        target=status_path,
    )


def render_authorization_failed(reason: str) -> str:
    """Render the page shown when the OAuth callback reports a failure."""
    return f"<!DOCTYPE html><html><body>Authentication failed: {escape(reason)}</body></html>"


def render_not_found(*, status_path: str) -> str:
    """Render the 404 page with a redirect to the status page."""
    link = f'<a href="{escape(status_path)}">status page</a>'
    return _redirect_page(f"Not found! Redirecting to the {link}.", target=status_path)
