"""OAuth2 credential lifecycle for the Gmail API.

The ``AuthManager`` owns the auth state machine and hands out an
authenticated ``GmailGateway``:

- A still-valid stored token is used as-is.
- An expired stored token is refreshed silently with its refresh token.
- Otherwise an interactive authorization-code flow runs: the authorization
  URL is opened in the browser, a transient local listener captures the
  redirect, the code is exchanged and the resulting token persisted.

Acquisition is serialized by an ``asyncio.Lock``: concurrent callers of
``get_authenticated_client`` wait for the attempt in flight, while a direct
``authorize`` call during an interactive attempt fails fast with
``AuthorizationInProgress``.
"""

from __future__ import annotations

import asyncio
import webbrowser
from collections.abc import Callable
from typing import Any, Protocol

import google.auth
import google.auth.transport.requests
import structlog
from google.auth.credentials import Credentials as BaseCredentials
from google.auth.exceptions import DefaultCredentialsError, RefreshError, TransportError
from google_auth_oauthlib.flow import Flow  # type: ignore[import-untyped]
from pydantic import ValidationError

from mailbridge.auth.callback import CallbackListener, CallbackParams, LocalCallbackServer
from mailbridge.auth.models import GOOGLE_TOKEN_URI, AuthSession, CredentialRecord
from mailbridge.auth.states import AuthState, AuthStateMachine
from mailbridge.auth.store import CredentialStore
from mailbridge.config import GMAIL_SCOPES, OAUTH_REDIRECT_URI, Settings
from mailbridge.errors import (
    AuthorizationError,
    AuthorizationInProgress,
    AuthorizationTimeout,
    ConfigurationError,
    TokenRefreshFailure,
)
from mailbridge.gateway.client import GmailGateway, build_gateway

logger = structlog.get_logger()

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"


class AuthorizationFlow(Protocol):
    """The parts of ``google_auth_oauthlib.flow.Flow`` the manager uses."""

    credentials: Any

    def authorization_url(self, **kwargs: Any) -> tuple[str, str]: ...

    def fetch_token(self, **kwargs: Any) -> Any: ...


FlowFactory = Callable[[str, str, tuple[str, ...], str], AuthorizationFlow]
BrowserOpener = Callable[[str], bool]
CredentialsRefresher = Callable[[BaseCredentials], None]
GatewayFactory = Callable[[BaseCredentials], GmailGateway]


def create_flow(
    client_id: str,
    client_secret: str,
    scopes: tuple[str, ...],
    redirect_uri: str,
) -> AuthorizationFlow:
    """Build an authorization-code ``Flow`` for an installed-app OAuth client."""
    client_config = {
        "installed": {
            "client_id": client_id,
            "client_secret": client_secret,
            "auth_uri": GOOGLE_AUTH_URI,
            "token_uri": GOOGLE_TOKEN_URI,
            "redirect_uris": [redirect_uri],
        }
    }
    flow: AuthorizationFlow = Flow.from_client_config(
        client_config, scopes=list(scopes), redirect_uri=redirect_uri
    )
    return flow


def refresh_credentials(credentials: BaseCredentials) -> None:
    """Refresh ``credentials`` in place (blocking).

    Raises:
        TokenRefreshFailure: If the provider rejects the refresh or the
            token endpoint cannot be reached.
    """
    try:
        credentials.refresh(google.auth.transport.requests.Request())
    except (RefreshError, TransportError) as exc:
        raise TokenRefreshFailure(f"Token refresh failed: {exc}") from exc


class AuthManager:
    """Owns the credential state machine and the authenticated gateway.

    Args:
        settings: Application settings (client id/secret, token path, timeout).
        store: Credential store.  Defaults to ``settings.gmail_token_path``.
        listener: Callback listener for interactive authorization.
        open_browser: Opens the authorization URL; returns False on failure.
        flow_factory: Builds the OAuth flow (injectable for tests).
        refresher: Refreshes credentials in place (injectable for tests).
        gateway_factory: Builds a gateway from credentials.
    """

    def __init__(
        self,
        settings: Settings,
        store: CredentialStore | None = None,
        listener: CallbackListener | None = None,
        open_browser: BrowserOpener = webbrowser.open,
        flow_factory: FlowFactory = create_flow,
        refresher: CredentialsRefresher = refresh_credentials,
        gateway_factory: GatewayFactory = build_gateway,
    ) -> None:
        self._settings = settings
        self._store = store or CredentialStore(settings.gmail_token_path)
        self._listener: CallbackListener = listener or LocalCallbackServer()
        self._open_browser = open_browser
        self._flow_factory = flow_factory
        self._refresher = refresher
        self._gateway_factory = gateway_factory

        self._machine = AuthStateMachine()
        self._lock = asyncio.Lock()
        self._credentials: BaseCredentials | None = None
        self._gateway: GmailGateway | None = None
        self._gateway_credentials: BaseCredentials | None = None
        self._session: AuthSession | None = None

    @property
    def state(self) -> AuthState:
        return self._machine.state

    @property
    def history(self) -> list[tuple[AuthState, AuthState]]:
        return self._machine.history

    @property
    def access_token(self) -> str | None:
        """The access token currently held in memory, if any."""
        return self._credentials.token if self._credentials is not None else None

    @property
    def session(self) -> AuthSession | None:
        """The interactive attempt currently awaiting its callback, if any."""
        return self._session

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_authenticated_client(self) -> GmailGateway:
        """Return a gateway bound to live credentials.

        Suspends until authorization completes on first use.

        Raises:
            ConfigurationError: If GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET is absent.
            AuthorizationError: If interactive authorization fails or times out.
        """
        async with self._lock:
            credentials = await self._ensure_credentials()
            if self._gateway is None or self._gateway_credentials is not credentials:
                self._gateway = self._gateway_factory(credentials)
                self._gateway_credentials = credentials
            return self._gateway

    async def get_credentials(self) -> BaseCredentials:
        """Return live credentials, authorizing or refreshing as needed."""
        async with self._lock:
            return await self._ensure_credentials()

    async def authorize(self) -> BaseCredentials:
        """Run the interactive authorization flow now.

        Discards any credentials held in memory first.

        Raises:
            AuthorizationInProgress: If an interactive attempt is already
                awaiting its callback.
        """
        if self._machine.state is AuthState.AWAITING_CALLBACK:
            raise AuthorizationInProgress()
        self._require_oauth_settings()
        async with self._lock:
            if self._machine.state is AuthState.AUTHENTICATED:
                self._discard_credentials()
                self._machine.transition(AuthState.UNAUTHENTICATED)
            return await self._authorize_locked()

    async def handle_token_rejected(self, rejected_token: str | None = None) -> None:
        """React to the provider rejecting the current access token.

        Refreshes the token, falling back to interactive authorization when the
        refresh fails.  If ``rejected_token`` is given and another caller has
        already replaced it, nothing happens.
        """
        async with self._lock:
            current = self._credentials
            if rejected_token is not None and current is not None and current.token != rejected_token:
                return
            if self._machine.state is not AuthState.AUTHENTICATED or self._credentials is None:
                await self._ensure_credentials()
                return

            logger.info("access_token_rejected")
            self._machine.transition(AuthState.REFRESHING)
            service_identity = self._settings.uses_service_identity
            if await self._try_refresh(self._credentials, persist=not service_identity):
                return
            if service_identity:
                raise TokenRefreshFailure("Service credentials could not be refreshed")
            await self._authorize_locked()

    # ------------------------------------------------------------------
    # State machine steps (callers hold self._lock)
    # ------------------------------------------------------------------

    async def _ensure_credentials(self) -> BaseCredentials:
        if self._settings.uses_service_identity:
            return await self._ensure_service_credentials()

        self._require_oauth_settings()

        if self._machine.state is AuthState.AUTHENTICATED and self._credentials is not None:
            if not self._credentials.expired:
                return self._credentials
            logger.info("access_token_expired")
            self._machine.transition(AuthState.REFRESHING)
            if await self._try_refresh(self._credentials):
                return self._credentials
            return await self._authorize_locked()

        record = self._store.load()
        if record is not None:
            credentials = record.to_credentials(
                self._settings.google_client_id,
                self._settings.google_client_secret.get_secret_value(),
                GMAIL_SCOPES,
            )
            if not record.is_expired():
                logger.info("using_saved_token", path=str(self._store.path))
                self._credentials = credentials
                self._machine.transition(AuthState.AUTHENTICATED)
                return credentials
            if record.refresh_token:
                self._machine.transition(AuthState.REFRESHING)
                if await self._try_refresh(credentials):
                    return credentials
            else:
                logger.warning("saved_token_expired_without_refresh_token")

        return await self._authorize_locked()

    async def _ensure_service_credentials(self) -> BaseCredentials:
        if self._credentials is not None:
            if self._credentials.expired:
                self._machine.transition(AuthState.REFRESHING)
                if not await self._try_refresh(self._credentials, persist=False):
                    raise TokenRefreshFailure("Service credentials could not be refreshed")
            return self._credentials

        path = self._settings.google_application_credentials
        try:
            credentials, _project = await asyncio.to_thread(
                google.auth.load_credentials_from_file, str(path), scopes=list(GMAIL_SCOPES)
            )
        except DefaultCredentialsError as exc:
            raise AuthorizationError(f"Cannot load service credentials from {path}: {exc}") from exc

        logger.info("using_service_identity", path=str(path))
        self._credentials = credentials
        self._machine.transition(AuthState.AUTHENTICATED)
        return credentials

    async def _try_refresh(self, credentials: BaseCredentials, persist: bool = True) -> bool:
        """Refresh ``credentials``; the machine must be in REFRESHING."""
        previous_token = credentials.token
        try:
            await asyncio.to_thread(self._refresher, credentials)
        except TokenRefreshFailure as exc:
            logger.warning("token_refresh_failed", error=str(exc))
            self._discard_credentials()
            self._machine.transition(AuthState.UNAUTHENTICATED)
            return False

        if persist and credentials.token != previous_token:
            self._persist(credentials)
        self._credentials = credentials
        self._machine.transition(AuthState.AUTHENTICATED)
        logger.info("token_refreshed")
        return True

    async def _authorize_locked(self) -> BaseCredentials:
        if self._machine.state is AuthState.AWAITING_CALLBACK:
            raise AuthorizationInProgress()
        self._require_oauth_settings()

        client_id = self._settings.google_client_id
        client_secret = self._settings.google_client_secret.get_secret_value()
        flow = self._flow_factory(client_id, client_secret, GMAIL_SCOPES, OAUTH_REDIRECT_URI)
        auth_url, pending_state = flow.authorization_url(access_type="offline", prompt="consent")
        session = AuthSession(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=OAUTH_REDIRECT_URI,
            requested_scopes=GMAIL_SCOPES,
            pending_state=pending_state,
        )

        rendezvous: asyncio.Future[BaseCredentials] = asyncio.get_running_loop().create_future()

        async def on_callback(params: CallbackParams) -> None:
            if rendezvous.done():
                raise AuthorizationError("This authorization attempt has already completed")
            try:
                credentials = await self._complete_callback(flow, session, params)
            except AuthorizationError as exc:
                if not rendezvous.done():
                    rendezvous.set_exception(exc)
                raise
            if not rendezvous.done():
                rendezvous.set_result(credentials)

        timeout = self._settings.oauth_timeout_seconds
        self._machine.transition(AuthState.AWAITING_CALLBACK)
        self._session = session
        credentials: BaseCredentials | None = None
        try:
            await self._listener.start(on_callback)
            self._announce(auth_url)
            try:
                credentials = await asyncio.wait_for(rendezvous, timeout=timeout)
            except TimeoutError as exc:
                logger.error("oauth_authorization_timeout", timeout_seconds=timeout)
                raise AuthorizationTimeout(timeout) from exc
        finally:
            await self._listener.stop()
            self._session = None
            if credentials is not None:
                self._credentials = credentials
                self._machine.transition(AuthState.AUTHENTICATED)
            else:
                self._machine.transition(AuthState.UNAUTHENTICATED)

        logger.info("oauth_authorization_succeeded")
        return credentials

    async def _complete_callback(
        self,
        flow: AuthorizationFlow,
        session: AuthSession,
        params: CallbackParams,
    ) -> BaseCredentials:
        if params.error:
            raise AuthorizationError(f"Authorization was not granted: {params.error}")
        if not params.code:
            raise AuthorizationError("No authorization code received")
        if params.state != session.pending_state:
            raise AuthorizationError("OAuth state mismatch in callback")

        try:
            await asyncio.to_thread(flow.fetch_token, code=params.code)
        except Exception as exc:
            raise AuthorizationError(f"Token exchange failed: {exc}") from exc

        credentials: BaseCredentials = flow.credentials
        try:
            self._persist(credentials)
        except ValidationError as exc:
            raise AuthorizationError("Token exchange returned no access token") from exc
        return credentials

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_oauth_settings(self) -> None:
        missing = self._settings.missing_oauth_settings()
        if missing:
            raise ConfigurationError(missing)

    def _persist(self, credentials: BaseCredentials) -> None:
        self._store.save(CredentialRecord.from_credentials(credentials))

    def _discard_credentials(self) -> None:
        # Only the in-memory copy; the file stays for a later attempt.
        self._credentials = None
        self._gateway = None
        self._gateway_credentials = None

    def _announce(self, auth_url: str) -> None:
        logger.info("oauth_authorization_required", url=auth_url)
        try:
            opened = self._open_browser(auth_url)
        except (webbrowser.Error, OSError):
            opened = False
        if not opened:
            logger.warning("browser_open_failed", detail="Visit the authorization URL manually")
