"""Gmail OAuth session management.

`OAuthSessionManager` hands out authorized Gmail clients. It loads the
persisted token, refreshes it when it is about to expire and, when there is
no usable token, runs the web consent flow: it publishes an authorization URL,
registers a pending authorization under the redirect URI's path and suspends
until the status server consumes it with the browser's callback.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from pop3_gmail_sync.errors import AuthorizationError, PersistenceError
from pop3_gmail_sync.gmail.client import GmailClient
from pop3_gmail_sync.gmail.credentials import ClientCredential
from pop3_gmail_sync.gmail.handoff import AuthorizationHandoffRegistry
from pop3_gmail_sync.models.token import PersistedToken
from pop3_gmail_sync.models.types import AuthorizationState, GmailInternalDateSource
from pop3_gmail_sync.storage.token_store import TokenStore
from pop3_gmail_sync.utils.clock import from_epoch_ms, to_epoch_ms

logger = logging.getLogger(__name__)

SCOPES: list[str] = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.labels",
]

REFRESH_HORIZON = timedelta(seconds=60)

FlowFactory = Callable[[], Flow]


class OAuthSessionManager:
    """Owns the Gmail authorization state for the process."""

    def __init__(
        self,
        *,
        client_credential: ClientCredential,
        token_store: TokenStore,
        registry: AuthorizationHandoffRegistry,
        scopes: list[str] | None = None,
        user_id: str = "me",
        internal_date_source: GmailInternalDateSource = GmailInternalDateSource.date_header,
        flow_factory: FlowFactory | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            client_credential: Normalized OAuth client.
            token_store: Durable token storage.
            registry: Registry shared with the status server.
            scopes: OAuth scopes to request.
            user_id: Gmail user the clients act on.
            internal_date_source: Passed through to created clients.
            flow_factory: Builds the OAuth flow for a consent attempt.
        """
        self._client_credential = client_credential
        self._token_store = token_store
        self._registry = registry
        self._scopes = list(scopes or SCOPES)
        self._user_id = user_id
        self._internal_date_source = internal_date_source
        self._flow_factory = flow_factory or self._default_flow

        self._state = AuthorizationState.no_token
        self._credentials: Credentials | None = None
        self._persisted_access_token: str | None = None
        self._authorization_url: str | None = None
        self._pending: asyncio.Future[Credentials] | None = None
        self._client: GmailClient | None = None
        self._client_credentials: Credentials | None = None

    @property
    def state(self) -> AuthorizationState:
        """Return the current authorization state."""
        return self._state

    @property
    def authorization_url(self) -> str | None:
        """Return the consent URL while user authorization is pending."""
        return self._authorization_url

    @property
    def callback_path(self) -> str:
        """Return the registry key the OAuth callback arrives on."""
        return self._client_credential.callback_path

    async def client(self) -> GmailClient:
        """Return a Gmail client built on valid credentials.

        The client is rebuilt only when the credentials object changes.

        Raises:
            AuthorizationError: If user authorization fails.
        """
        creds = await self.credentials()
        if self._client is None or self._client_credentials is not creds:
            self._client = GmailClient.from_credentials(
                creds,
                user_id=self._user_id,
                internal_date_source=self._internal_date_source,
            )
            self._client_credentials = creds
        return self._client

    async def credentials(self) -> Credentials:
        """Return credentials that stay valid for at least the refresh horizon.

        Raises:
            AuthorizationError: If user authorization fails.
        """
        creds = self._credentials
        if creds is not None and not _expires_soon(creds):
            self._state = AuthorizationState.authorized
            return creds

        if self._pending is not None:
            logger.info("Authorization already pending; waiting on the existing request")
            return await asyncio.shield(self._pending)

        if creds is None:
            creds = self._load_persisted()

        if creds is not None:
            if not _expires_soon(creds):
                self._activate(creds)
                return creds
            if creds.refresh_token:
                refreshed = await self._refresh(creds)
                if refreshed is not None:
                    return refreshed
            else:
                logger.info("Stored access token has expired and carries no refresh token")

        return await self._authorize_interactively()

    def persist_current(self) -> None:
        """Persist the in-memory token if it changed since the last write.

        googleapiclient refreshes expired credentials transparently during
        requests; this keeps the token file in step with those refreshes.
        """
        creds = self._credentials
        if creds is None or not creds.refresh_token or not creds.token:
            return
        if creds.token == self._persisted_access_token:
            return
        self._persist(creds)

    def _default_flow(self) -> Flow:
        """Build the OAuth flow for the configured client.

        Returns:
            Flow bound to the registered redirect URI.
        """
        return Flow.from_client_config(
            self._client_credential.to_client_config(),
            scopes=self._scopes,
            redirect_uri=self._client_credential.redirect_uri,
        )

    def _load_persisted(self) -> Credentials | None:
        """Load the token file.

        Returns:
            Credentials built from the file, or None when consent is required.
        """
        token = self._token_store.load()
        if token is None:
            logger.info("No token found; user authorization required")
            return None
        self._persisted_access_token = token.access_token
        return self._to_credentials(token)

    async def _refresh(self, creds: Credentials) -> Credentials | None:
        """Refresh `creds`; on failure drop them so consent is requested again."""
        self._state = AuthorizationState.refresh_pending
        logger.info("Access token is expiring soon; attempting refresh")
        try:
            await asyncio.to_thread(creds.refresh, Request())
        except GoogleAuthError as exc:
            logger.warning("Token refresh failed; user consent required (error=%r)", exc)
            self._credentials = None
            self._state = AuthorizationState.no_token
            return None
        self._persist(creds)
        self._activate(creds)
        logger.info("Token refreshed")
        return creds

    async def _authorize_interactively(self) -> Credentials:
        loop = asyncio.get_running_loop()
        flow = self._flow_factory()
        url, _state = flow.authorization_url(access_type="offline", prompt="consent")

        future: asyncio.Future[Credentials] = loop.create_future()
        # a rejection may arrive after every waiter was cancelled
        future.add_done_callback(_retrieve_exception)
        self._pending = future
        self._authorization_url = url
        self._state = AuthorizationState.awaiting_user_authorization

        async def exchange(code: str) -> Credentials:
            await asyncio.to_thread(flow.fetch_token, code=code)
            return flow.credentials

        def fulfilled(creds: Credentials) -> None:
            if creds.refresh_token:
                self._persist(creds)
            self._activate(creds)
            self._clear_pending()
            if not future.done():
                future.set_result(creds)

        def rejected(exc: BaseException) -> None:
            self._state = AuthorizationState.failed
            self._clear_pending()
            if not future.done():
                future.set_exception(
                    exc if isinstance(exc, AuthorizationError) else AuthorizationError(str(exc)),
                )

        self._registry.register(
            self.callback_path,
            exchange=exchange,
            on_fulfilled=fulfilled,
            on_rejected=rejected,
        )
        logger.info("Please open the following URL in your browser to authorize the application:")
        logger.info("%s", url)

        creds = await asyncio.shield(future)
        logger.info("Gmail authorization completed")
        return creds

    def _activate(self, creds: Credentials) -> None:
        self._credentials = creds
        self._state = AuthorizationState.authorized

    def _clear_pending(self) -> None:
        self._pending = None
        self._authorization_url = None

    def _persist(self, creds: Credentials) -> None:
        """Write `creds` to the token file; failures are logged, not raised.

        Args:
            creds: Credentials to store.
        """
        try:
            self._token_store.save(self._to_persisted(creds))
        except PersistenceError as exc:
            logger.warning("Failed to persist token: %s", exc)
            return
        self._persisted_access_token = creds.token

    def _to_credentials(self, token: PersistedToken) -> Credentials:
        """Convert a stored token record into google-auth credentials.

        Args:
            token: Token record read from disk.

        Returns:
            Credentials carrying this client's id, secret and token URI.
        """
        expiry = None
        if token.expiry_date is not None:
            # google-auth compares expiry as naive UTC
            expiry = from_epoch_ms(token.expiry_date).replace(tzinfo=None)
        scopes = token.scope.split() if token.scope else self._scopes
        return Credentials(
            token=token.access_token,
            refresh_token=token.refresh_token,
            token_uri=self._client_credential.token_uri,
            client_id=self._client_credential.client_id,
            client_secret=self._client_credential.client_secret,
            scopes=scopes,
            expiry=expiry,
        )

    @staticmethod
    def _to_persisted(creds: Credentials) -> PersistedToken:
        scopes = creds.scopes or []
        return PersistedToken(
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expiry_date=to_epoch_ms(creds.expiry) if creds.expiry is not None else None,
            scope=" ".join(scopes) or None,
        )


def _retrieve_exception(future: asyncio.Future[Credentials]) -> None:
    """Mark a rejected authorization as retrieved so asyncio does not report it."""
    if not future.cancelled():
        future.exception()


def _expires_soon(creds: Credentials, *, horizon: timedelta = REFRESH_HORIZON) -> bool:
    """Return True if `creds` has no token or expires within `horizon`."""
    if not creds.token:
        return True
    if creds.expiry is None:
        return False
    now = datetime.now(tz=UTC).replace(tzinfo=None)
    return creds.expiry - now < horizon
