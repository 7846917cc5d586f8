"""Google OAuth token cache using Authlib.

This module keeps a single OAuth 2.0 credential on local disk and hands out
a usable one on request:
- A cached token that is still comfortably valid is returned as is
- A stale token with a refresh token is refreshed and saved
- Otherwise the installed-app (out-of-band) authorization flow runs on the
  console, and the resulting token is saved

Example:
    >>> config = ClientConfig.from_file("credentials.json")
    >>> manager = TokenCacheManager(config, TokenStore("token.json"))
    >>> credential = manager.acquire()
    >>> service = manager.build_service("calendar", "v3")
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import parse_qs, urlparse

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session
from google.oauth2.credentials import Credentials as GoogleCredentials
from googleapiclient.discovery import build

from calnow.auth.credential import Credential, utcnow
from calnow.auth.store import TokenStore
from calnow.config import ClientConfig
from calnow.exceptions import (
    CredentialUnavailable,
    ExchangeError,
    GrantExchangeFailed,
    PersistFailed,
    RefreshFailed,
)

logger = logging.getLogger(__name__)

DEFAULT_MARGIN = timedelta(minutes=5)
DEFAULT_TIMEOUT = 30.0

_EXCHANGE_ERRORS = (
    AuthlibBaseError,
    requests.RequestException,
    ValueError,
    KeyError,
    TypeError,
    OverflowError,
)


class TokenCacheManager:
    """Obtain a valid access credential, from disk, by refresh, or by consent.

    Args:
        config: OAuth client configuration.
        store: Where the token is cached between runs.
        margin: A token expiring within this window is treated as stale.
        timeout: Seconds before a token endpoint request is abandoned.
        interactive: Whether the console authorization flow may run. None
            means "if stdin is a terminal".
        prompt: Reads the authorization code (``input`` by default).
        output: Shows the authorization URL (``print`` by default).
        clock: Returns the current aware UTC time.
        grant_on_missing: Run the authorization flow when no token is cached,
            instead of failing with CredentialUnavailable.
        session_factory: Builds the OAuth2Session used for token requests.
    """

    def __init__(
        self,
        config: ClientConfig,
        store: TokenStore,
        margin: timedelta = DEFAULT_MARGIN,
        timeout: float = DEFAULT_TIMEOUT,
        interactive: bool | None = None,
        prompt: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
        clock: Callable[[], datetime] = utcnow,
        grant_on_missing: bool = False,
        session_factory: Callable[..., Any] = OAuth2Session,
    ):
        self.config = config
        self.store = store
        self.margin = margin
        self.timeout = timeout
        self.interactive = interactive
        self.prompt = prompt
        self.output = output
        self.clock = clock
        self.grant_on_missing = grant_on_missing
        self.session_factory = session_factory
        self._last_status: int | None = None

    def _session(self) -> Any:
        session = self.session_factory(
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            scope=" ".join(self.config.scopes),
            redirect_uri=self.config.redirect_uri,
            token_endpoint=self.config.token_uri,
            token_endpoint_auth_method="client_secret_post",
        )
        # Authlib raises OAuthError without the response, so note the status here
        session.register_compliance_hook("access_token_response", self._record_status)
        session.register_compliance_hook("refresh_token_response", self._record_status)
        return session

    def _record_status(self, response: Any) -> Any:
        self._last_status = response.status_code
        return response

    def _status_code(self, error: Exception) -> int | None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
        return status if status is not None else self._last_status

    def _is_interactive(self) -> bool:
        if self.interactive is not None:
            return self.interactive
        return sys.stdin is not None and sys.stdin.isatty()

    # =========================================================================
    # Acquisition
    # =========================================================================

    def acquire(self, force_interactive: bool = False) -> Credential:
        """Return a credential that is valid right now.

        Args:
            force_interactive: Skip the cache and run the authorization flow.

        Raises:
            ConfigInvalid: If the client configuration is incomplete.
            CredentialUnavailable: If nothing is cached (or the cached token
                needs consent) and the authorization flow cannot run.
            RefreshFailed: If a stale token could not be refreshed.
            GrantExchangeFailed: If the authorization code was rejected.
        """
        self.config.validate()

        if force_interactive:
            logger.info("Interactive authorization requested")
            return self._grant()

        credential = self._load()
        if credential is None:
            if self.grant_on_missing:
                return self._grant()
            raise CredentialUnavailable(
                f"No cached token at {self.store.path}. "
                "Run once interactively with --update to authorize."
            )

        now = self.clock()
        if credential.is_valid(now, self.margin):
            logger.debug(f"Cached token valid until {credential.expiry}")
            return credential

        if credential.is_refreshable:
            logger.info("Token stale, refreshing...")
            refreshed = self.refresh(credential)
            self._persist(refreshed)
            return refreshed

        logger.info("Token stale and has no refresh token")
        return self._grant()

    def _load(self) -> Credential | None:
        credential = self.store.load()
        if credential is None:
            return None

        # Tokens written without scope information are trusted as is
        if credential.scopes and not credential.has_scopes(self.config.scopes):
            missing = set(self.config.scopes) - set(credential.scopes)
            logger.warning(f"Cached token missing required scopes: {missing}")
            return None

        return credential

    def _grant(self) -> Credential:
        if not self._is_interactive():
            raise CredentialUnavailable(
                "Authorization is required but no interactive console is available"
            )
        credential = self.authorize()
        self._persist(credential)
        return credential

    def _persist(self, credential: Credential) -> None:
        try:
            self.store.persist(credential)
        except PersistFailed as e:
            logger.warning(f"{e}. The next run will require authorization again.")

    # =========================================================================
    # Token endpoint exchanges
    # =========================================================================

    def refresh(self, credential: Credential) -> Credential:
        """Exchange the refresh token for a new access token.

        The refresh token is kept when the server does not rotate it.

        Raises:
            RefreshFailed: On network errors, timeouts, OAuth errors, malformed
                responses, or a token that is already expired.
        """
        if not credential.refresh_token:
            raise RefreshFailed("Token has no refresh token", endpoint=self.config.token_uri)

        session = self._session()
        self._last_status = None
        try:
            token = session.refresh_token(
                self.config.token_uri,
                refresh_token=credential.refresh_token,
                timeout=self.timeout,
            )
            refreshed = Credential.from_token_response(token, self.clock(), previous=credential)
        except _EXCHANGE_ERRORS as e:
            raise RefreshFailed(
                f"Failed to refresh token: {e}",
                endpoint=self.config.token_uri,
                status_code=self._status_code(e),
            ) from e

        self._check_fresh(refreshed, RefreshFailed)
        logger.info("Token refreshed")
        return refreshed

    def authorization_url(self) -> tuple[str, str]:
        """Build the consent URL.

        Returns:
            The URL for the user to visit and the anti-forgery state value.
        """
        session = self._session()
        url, state = session.create_authorization_url(
            self.config.auth_uri,
            access_type="offline",
            prompt="consent",
        )
        return url, state

    def authorize(self) -> Credential:
        """Run the console authorization flow without saving the result.

        Raises:
            GrantExchangeFailed: If no code was entered, the state does not
                match, or the code exchange fails.
        """
        url, state = self.authorization_url()
        self.output(
            "Go to the following link in your browser. After completing the "
            "authorization flow, enter the authorization code on the command line:\n"
            f"{url}"
        )

        try:
            response = self.prompt("Authorization code: ")
        except EOFError as e:
            raise GrantExchangeFailed("No authorization code entered") from e

        code = self._extract_code(response.strip(), state)
        return self.exchange_code(code)

    def _extract_code(self, response: str, state: str) -> str:
        if not response:
            raise GrantExchangeFailed("No authorization code entered")

        if "code=" not in response and "error=" not in response:
            return response

        # A pasted redirect URL instead of a bare code
        params = parse_qs(urlparse(response).query)
        if "error" in params:
            raise GrantExchangeFailed(f"Authorization denied: {params['error'][0]}")
        returned_state = params.get("state", [None])[0]
        if returned_state is not None and returned_state != state:
            raise GrantExchangeFailed("Authorization state mismatch")
        code = params.get("code", [""])[0]
        if not code:
            raise GrantExchangeFailed("No authorization code in redirect URL")
        return code

    def exchange_code(self, code: str) -> Credential:
        """Exchange an authorization code for a credential.

        Raises:
            GrantExchangeFailed: If the exchange fails or returns no usable token.
        """
        session = self._session()
        self._last_status = None
        try:
            token = session.fetch_token(
                self.config.token_uri,
                code=code,
                timeout=self.timeout,
            )
            credential = Credential.from_token_response(token, self.clock())
        except _EXCHANGE_ERRORS as e:
            raise GrantExchangeFailed(
                f"Unable to retrieve token: {e}",
                endpoint=self.config.token_uri,
                status_code=self._status_code(e),
            ) from e

        if not credential.scopes:
            credential = credential.replace(scopes=self.config.scopes)

        self._check_fresh(credential, GrantExchangeFailed)
        logger.info("Authorization code exchanged for token")
        return credential

    def _check_fresh(self, credential: Credential, error: type[ExchangeError]) -> None:
        if credential.is_expired(self.clock()):
            raise error(
                "Token endpoint returned an already expired token",
                endpoint=self.config.token_uri,
            )

    # =========================================================================
    # Consumers
    # =========================================================================

    def token_info(self) -> dict[str, Any]:
        """Describe the cached token without touching the network.

        Returns:
            Dictionary with status, scopes, expiry and refresh token presence.
        """
        credential = self.store.load()
        if credential is None:
            return {"status": "no_token"}

        now = self.clock()
        remaining = credential.expires_in(now)
        if credential.is_valid(now, self.margin):
            status = "valid"
        elif credential.is_expired(now):
            status = "expired"
        else:
            status = "stale"

        if remaining is None:
            expires_str = "unknown"
        else:
            expires_str = str(max(remaining, timedelta(0))).split(".")[0]

        return {
            "status": status,
            "scopes": list(credential.scopes),
            "expiry": credential.expiry.isoformat() if credential.expiry else None,
            "expires_in": expires_str,
            "has_refresh_token": credential.is_refreshable,
        }

    def google_credentials(self, credential: Credential) -> GoogleCredentials:
        """Wrap a credential for Google API client libraries."""
        expiry = credential.expiry
        if expiry is not None:
            # google-auth compares against naive UTC
            expiry = expiry.replace(tzinfo=None)
        return GoogleCredentials(
            token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_uri=self.config.token_uri,
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            scopes=list(self.config.scopes),
            expiry=expiry,
        )

    def build_service(
        self,
        service_name: str = "calendar",
        version: str = "v3",
        force_interactive: bool = False,
    ):
        """Build a Google API service with a freshly acquired credential."""
        credential = self.acquire(force_interactive=force_interactive)
        return build(
            service_name,
            version,
            credentials=self.google_credentials(credential),
            cache_discovery=False,
        )
