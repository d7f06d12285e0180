"""Status page and OAuth callback listener.

One listener serves both the human-readable status page and the OAuth
redirect target. Every request path is first checked against the
authorization handoff registry; only unregistered paths are routed to the
status page or a 404.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from collections.abc import Iterator
from typing import Protocol

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from pop3_gmail_sync.gmail.handoff import AuthorizationHandoffRegistry, ConsumeOutcome
from pop3_gmail_sync.server.pages import (
    render_authorization_failed,
    render_authorized,
    render_not_found,
    render_status_page,
)
from pop3_gmail_sync.storage.stats_store import StatsStore

logger = logging.getLogger(__name__)

DEFAULT_STATUS_PATH = "/status"


class AuthorizationUrlSource(Protocol):
    """Anything exposing the pending consent URL (the session manager)."""

    @property
    def authorization_url(self) -> str | None: ...


def create_status_app(
    *,
    registry: AuthorizationHandoffRegistry,
    stats: StatsStore | None,
    session: AuthorizationUrlSource | None,
    status_path: str = DEFAULT_STATUS_PATH,
) -> FastAPI:
    """Build the ASGI app for the status listener.

    Args:
        registry: Pending authorizations, keyed by callback path.
        stats: Statistics store; None renders the status page as unavailable.
        session: Source of the pending authorization URL.
        status_path: Path of the status page.

    Returns:
        FastAPI application.
    """
    app = FastAPI(
        title="pop3-gmail-sync status",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.get("/{path:path}", response_class=HTMLResponse)
    async def dispatch(request: Request, path: str) -> Response:
        """Route a request to the OAuth callback, the status page or a 404."""
        route = "/" + path
        if registry.lookup(route) is not None:
            return await _handle_callback(request, route)
        if route == status_path:
            return _handle_status()
        return HTMLResponse(render_not_found(status_path=status_path), status_code=404)

    async def _handle_callback(request: Request, route: str) -> Response:
        code = request.query_params.get("code")
        error = request.query_params.get("error")
        outcome = await registry.consume(route, code=code, error=error)
        if outcome is ConsumeOutcome.fulfilled:
            return HTMLResponse(render_authorized(status_path=status_path))
        if outcome is ConsumeOutcome.rejected:
            reason = error or ("missing authorization code" if not code else "code exchange failed")
            return HTMLResponse(render_authorization_failed(reason), status_code=400)
        # consumed by a concurrent request between lookup and consume
        return HTMLResponse(render_not_found(status_path=status_path), status_code=404)

    def _handle_status() -> Response:
        if stats is None:
            return PlainTextResponse("Stats store not available", status_code=500)
        try:
            snapshot = stats.get_all_stats()
        except Exception:
            logger.exception("Failed to compute stats for the status page")
            return PlainTextResponse("Stats store not available", status_code=500)
        authorization_url = session.authorization_url if session is not None else None
        return HTMLResponse(render_status_page(snapshot, authorization_url=authorization_url))

    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the owning service."""

    def install_signal_handlers(self) -> None:
        return

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class StatusServer:
    """Runs the status app on the current event loop; started at most once."""

    def __init__(self, *, app: FastAPI, host: str, port: int) -> None:
        """Initialize the server.

        Args:
            app: ASGI app to serve.
            host: Bind address.
            port: Bind port (0 picks a free port).
        """
        self._app = app
        self._host = host
        self._port = port
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task[None] | None = None
        self._bound_port: int | None = None

    @property
    def started(self) -> bool:
        """Return True once start() has succeeded."""
        return self._task is not None

    @property
    def port(self) -> int | None:
        """Return the bound port, once started."""
        return self._bound_port

    async def start(self) -> bool:
        """Bind the listener and start serving in a background task.

        Returns:
            True if the listener is running; False if binding failed.
        """
        if self._task is not None:
            return True
        try:
            sock = _bind_socket(self._host, self._port)
        except OSError as exc:
            logger.warning(
                "Failed to start status server on %s:%s: %s",
                self._host,
                self._port,
                exc,
            )
            return False

        self._bound_port = int(sock.getsockname()[1])
        config = uvicorn.Config(
            self._app,
            log_config=None,
            access_log=False,
            lifespan="off",
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]), name="status-server")
        logger.info("Status server listening on %s:%d", self._host, self._bound_port)
        return True

    def close_now(self) -> None:
        """Ask the listener to exit without waiting for open connections."""
        if self._server is not None:
            self._server.should_exit = True
            self._server.force_exit = True

    async def stop(self, *, timeout: float = 5.0) -> None:
        """Force-close the listener and wait for its task to finish."""
        task = self._task
        if task is None:
            return
        self.close_now()
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except TimeoutError:
            logger.warning("Status server did not stop within %.1fs; cancelling", timeout)
            task.cancel()
        finally:
            self._task = None
            self._server = None


def _bind_socket(host: str, port: int) -> socket.socket:
    """Create a listening TCP socket bound to host:port."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(128)
    except OSError:
        sock.close()
        raise
    return sock
