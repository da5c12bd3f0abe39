"""
OAuth 2.0 Authorization Code + PKCE engine for remote tool servers.

Per server, ``authenticate`` walks:

    no token -> discover metadata -> authorizing -> token exchange -> authenticated

and an authenticated server whose token expired goes through ``refreshing``
back to ``authenticated``, or back to ``authorizing`` when the refresh
fails. The result is always a copy of the server definition whose headers
carry ``Authorization: <type> <access token>``.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional
from urllib.parse import parse_qs, parse_qsl, urlencode, urlsplit, urlunsplit

import aiohttp
from pydantic import ValidationError

from mcp_hub.auth import http
from mcp_hub.auth.browser import AuthorizationPresenter, SystemBrowserPresenter
from mcp_hub.auth.discovery import MetadataDiscovery
from mcp_hub.auth.models import (
    AuthorizationServerMetadata,
    OAuthErrorResponse,
    OAuthTokenRecord,
    TokenResponse,
)
from mcp_hub.auth.pkce import PKCEPair, generate_state
from mcp_hub.auth.registration import register_client
from mcp_hub.auth.store import TokenStore
from mcp_hub.config.servers import ServerConfig
from mcp_hub.config.settings import HubSettings, get_hub_settings
from mcp_hub.core.exceptions import (
    AuthenticationFailedError,
    ClientRegistrationFailedError,
    InvalidAuthorizationURLError,
    InvalidCallbackError,
    InvalidMetadataError,
    InvalidResponseError,
    InvalidServerURLError,
    OAuthError,
    TokenExchangeFailedError,
    TokenRefreshFailedError,
    UserCancelledError,
)

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    NO_TOKEN = "noToken"
    DISCOVERING = "discoverMetadata"
    AUTHORIZING = "authorizing"
    EXCHANGING = "tokenExchange"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    FAILED = "failed"


AuthStateListener = Callable[[str, AuthState], None]


class OAuthFlowEngine:
    """Obtains, refreshes and persists OAuth tokens per server.

    Args:
        token_store: Persisted token map.
        settings: Hub settings (defaults to the global settings).
        presenter: Authorization session surface (defaults to the system browser).
        discovery: Metadata discovery (defaults to one using discovery_timeout).
    """

    def __init__(
        self,
        token_store: TokenStore,
        settings: Optional[HubSettings] = None,
        presenter: Optional[AuthorizationPresenter] = None,
        discovery: Optional[MetadataDiscovery] = None,
    ) -> None:
        self.settings = settings or get_hub_settings()
        self.token_store = token_store
        self.presenter = presenter or SystemBrowserPresenter()
        self.discovery = discovery or MetadataDiscovery(timeout=self.settings.discovery_timeout)
        self._states: dict[str, AuthState] = {}
        self._listeners: list[AuthStateListener] = []
        self._in_progress: Optional[str] = None
        self._refresh_locks: dict[str, asyncio.Lock] = {}

    # -------------------------------------------------------------------------
    # Observable state
    # -------------------------------------------------------------------------

    @property
    def authentication_in_progress(self) -> Optional[str]:
        """Name of the server currently being authenticated, if any."""
        return self._in_progress

    @property
    def states(self) -> dict[str, AuthState]:
        return dict(self._states)

    def state(self, server_name: str) -> AuthState:
        if server_name in self._states:
            return self._states[server_name]
        record = self.token_store.get(server_name)
        return AuthState.AUTHENTICATED if record is not None else AuthState.NO_TOKEN

    def subscribe(self, listener: AuthStateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, server_name: str, state: AuthState) -> None:
        self._states[server_name] = state
        for listener in list(self._listeners):
            listener(server_name, state)

    # -------------------------------------------------------------------------
    # Token queries
    # -------------------------------------------------------------------------

    def _is_valid(self, record: Optional[OAuthTokenRecord]) -> bool:
        return record is not None and not record.is_expired(
            buffer_seconds=self.settings.token_expiry_buffer
        )

    def get_auth_header(self, server_name: str) -> Optional[str]:
        """``"<type> <token>"`` for an unexpired stored token, else None."""
        record = self.token_store.get(server_name)
        return record.authorization_header if self._is_valid(record) else None

    def clear_token(self, server_name: str) -> None:
        if self.token_store.remove(server_name):
            logger.info(f"Cleared stored OAuth token for {server_name}")
        self._set_state(server_name, AuthState.NO_TOKEN)

    async def requires_authentication(self, config: ServerConfig) -> bool:
        """True when a remote server advertises OAuth and holds no valid token."""
        if not config.url:
            return False
        if self._is_valid(self.token_store.get(config.name)):
            return False
        try:
            await self.discovery.discover(config.url)
        except OAuthError as e:
            logger.debug(f"No OAuth metadata for {config.name}: {e}")
            return False
        return True

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def authenticate(self, config: ServerConfig, interactive: bool = True) -> ServerConfig:
        """Return config with an Authorization header for a valid token.

        Uses the stored token if still valid, else refreshes it, else (when
        interactive) runs the full browser authorization.

        Raises:
            InvalidServerURLError: If config has no usable URL.
            TokenRefreshFailedError: If refresh fails and interactive is False.
            OAuthError: Any other flow failure.
        """
        if not config.url:
            raise InvalidServerURLError(config.name)

        record = self.token_store.get(config.name)
        if self._is_valid(record):
            logger.info(f"Using existing valid token for {config.name}")
            return config.with_auth_header(record.access_token, record.token_type)

        if record is not None and record.refresh_token:
            try:
                record = await self.refresh(config)
                return config.with_auth_header(record.access_token, record.token_type)
            except TokenRefreshFailedError as e:
                if not interactive:
                    raise
                logger.warning(f"Token refresh failed for {config.name}, starting new auth flow: {e}")

        if not interactive:
            raise TokenRefreshFailedError(f"no usable token for {config.name}")

        self._in_progress = config.name
        try:
            record = await self._authorize(config)
        except UserCancelledError:
            logger.info(f"OAuth sign-in cancelled for {config.name}")
            self._set_state(config.name, AuthState.NO_TOKEN)
            raise
        except Exception:
            self._set_state(config.name, AuthState.FAILED)
            raise
        finally:
            self._in_progress = None

        self.token_store.put(config.name, record)
        self._set_state(config.name, AuthState.AUTHENTICATED)
        logger.info(f"OAuth authentication completed for {config.name}")
        return config.with_auth_header(record.access_token, record.token_type)

    async def _authorize(self, config: ServerConfig) -> OAuthTokenRecord:
        self._set_state(config.name, AuthState.DISCOVERING)
        metadata = await self.discovery.discover(config.url)
        if not metadata.has_endpoints:
            raise InvalidMetadataError(config.url)

        redirect_uri = self.settings.redirect_uri
        client_id, client_secret = await self._client_identity(config, metadata)

        pkce = PKCEPair.generate()
        state = generate_state()
        authorization_url = build_authorization_url(
            metadata.authorization_endpoint,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=" ".join(metadata.scopes_supported or []),
            state=state,
            code_challenge=pkce.challenge,
        )

        self._set_state(config.name, AuthState.AUTHORIZING)
        logger.info(f"Starting OAuth flow for {config.name}")
        callback_url = await self.presenter.authorize(authorization_url, self.settings.callback_scheme)
        code = self.validate_callback(callback_url, state)

        self._set_state(config.name, AuthState.EXCHANGING)
        return await self.exchange_code(
            metadata.token_endpoint,
            code=code,
            code_verifier=pkce.verifier,
            redirect_uri=redirect_uri,
            client_id=client_id,
            client_secret=client_secret,
        )

    async def _client_identity(
        self, config: ServerConfig, metadata: AuthorizationServerMetadata
    ) -> tuple[str, Optional[str]]:
        if config.client_id:
            logger.info(f"Using pre-configured OAuth credentials for {config.name}")
            secret = config.client_secret.get_secret_value() if config.client_secret else None
            return config.client_id, secret

        if metadata.registration_endpoint:
            try:
                registration = await register_client(
                    metadata.registration_endpoint,
                    redirect_uri=self.settings.redirect_uri,
                    client_name=self.settings.client_name,
                    timeout=self.settings.http_timeout,
                )
                return registration.client_id, registration.client_secret
            except ClientRegistrationFailedError as e:
                logger.warning(f"Dynamic client registration failed, using default client_id: {e}")

        return self.settings.default_client_id, None

    def validate_callback(self, callback_url: str, expected_state: str) -> str:
        """Return the authorization code from a redirect URL.

        Raises:
            InvalidCallbackError: On a scheme/host mismatch, a missing code or
                a state that does not match expected_state.
            AuthenticationFailedError: If the server redirected with an error.
        """
        parts = urlsplit(callback_url)
        if (
            parts.scheme.lower() != self.settings.callback_scheme.lower()
            or parts.netloc.lower() != self.settings.callback_host.lower()
        ):
            raise InvalidCallbackError("unexpected redirect target")

        query = parse_qs(parts.query)
        state = query.get("state", [""])[0]
        if state != expected_state:
            raise InvalidCallbackError("state mismatch")

        if "error" in query:
            description = query.get("error_description", query["error"])[0]
            raise AuthenticationFailedError(description)

        code = query.get("code", [""])[0]
        if not code:
            raise InvalidCallbackError("missing code")
        return code

    def handle_redirect(self, callback_url: str) -> bool:
        """Entry point for the host's URL-scheme handler."""
        return self.presenter.deliver(callback_url)

    def cancel_authentication(self) -> None:
        self.presenter.cancel()

    # -------------------------------------------------------------------------
    # Token endpoint calls
    # -------------------------------------------------------------------------

    async def exchange_code(
        self,
        token_endpoint: str,
        code: str,
        code_verifier: str,
        redirect_uri: str,
        client_id: str,
        client_secret: Optional[str] = None,
    ) -> OAuthTokenRecord:
        """Exchange an authorization code for tokens.

        Raises:
            TokenExchangeFailedError: On a network error or a non-200 status.
            InvalidResponseError: If a 200 body is not a token response.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": client_id,
            "code_verifier": code_verifier,
        }
        if client_secret:
            data["client_secret"] = client_secret

        try:
            response = await http.post_form(token_endpoint, data, timeout=self.settings.http_timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TokenExchangeFailedError(str(e)) from e

        if response.status != 200:
            raise TokenExchangeFailedError(_error_message(response))

        try:
            token = TokenResponse.model_validate(response.body)
        except ValidationError as e:
            raise InvalidResponseError("token response") from e
        return token.to_record(default_expires_in=self.settings.default_expires_in)

    async def refresh(self, config: ServerConfig) -> OAuthTokenRecord:
        """Renew the stored access token and persist it.

        A response without a new refresh token keeps the previous one.
        Refreshes for one server are serialized; a caller that waited on
        another refresh gets its (still valid) result without a second
        request.

        Raises:
            TokenRefreshFailedError: If there is nothing to refresh or the
                token endpoint rejects the request. Never retried.
        """
        lock = self._refresh_locks.setdefault(config.name, asyncio.Lock())
        async with lock:
            record = self.token_store.get(config.name)
            if self._is_valid(record):
                logger.debug(f"Token for {config.name} already refreshed")
                return record
            return await self._refresh(config, record)

    async def _refresh(
        self, config: ServerConfig, record: Optional[OAuthTokenRecord]
    ) -> OAuthTokenRecord:
        if record is None or not record.refresh_token:
            raise TokenRefreshFailedError(f"no refresh token for {config.name}")

        self._set_state(config.name, AuthState.REFRESHING)
        try:
            metadata = await self.discovery.discover(config.url)
            if not metadata.token_endpoint:
                raise InvalidMetadataError(config.url)

            data = {
                "grant_type": "refresh_token",
                "refresh_token": record.refresh_token,
                "client_id": config.client_id or self.settings.default_client_id,
            }
            if config.client_secret:
                data["client_secret"] = config.client_secret.get_secret_value()

            response = await http.post_form(
                metadata.token_endpoint, data, timeout=self.settings.http_timeout
            )
            if response.status != 200:
                raise TokenRefreshFailedError(_error_message(response))
            token = TokenResponse.model_validate(response.body)
        except TokenRefreshFailedError:
            self._set_state(config.name, AuthState.AUTHORIZING)
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValidationError, OAuthError) as e:
            self._set_state(config.name, AuthState.AUTHORIZING)
            raise TokenRefreshFailedError(str(e)) from e

        refreshed = token.to_record(
            default_expires_in=self.settings.default_expires_in,
            fallback_refresh_token=record.refresh_token,
        )
        self.token_store.put(config.name, refreshed)
        self._set_state(config.name, AuthState.AUTHENTICATED)
        logger.info(f"Refreshed OAuth token for {config.name}")
        return refreshed


def build_authorization_url(
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    code_challenge: str,
) -> str:
    """Append the authorization request parameters to the endpoint URL.

    Raises:
        InvalidAuthorizationURLError: If the endpoint is not an http(s) URL.
    """
    parts = urlsplit(authorization_endpoint)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidAuthorizationURLError(authorization_endpoint)

    params = parse_qsl(parts.query)
    params.extend(
        [
            ("response_type", "code"),
            ("client_id", client_id),
            ("redirect_uri", redirect_uri),
        ]
    )
    if scope:
        params.append(("scope", scope))
    params.extend(
        [
            ("state", state),
            ("code_challenge", code_challenge),
            ("code_challenge_method", "S256"),
        ]
    )
    return urlunsplit(parts._replace(query=urlencode(params)))


def _error_message(response: http.HttpResponse) -> str:
    try:
        return OAuthErrorResponse.model_validate(response.body).message
    except ValidationError:
        return f"HTTP {response.status}"
