"""Authorization session: the host application's entry point.

``AuthSession`` wires the loopback flow, the token endpoint client and the
lifecycle manager together:

    login   -> LoopbackAuthFlow -> TokenExchangeClient.exchange_code
            -> TokenLifecycleManager.save_tokens
    access  -> TokenLifecycleManager.get_valid_access_token(session.refresh)
    logout  -> TokenExchangeClient.revoke_token -> clear_tokens
"""

from __future__ import annotations

import logging
import threading

from gmail_loopback.auth.exchange import TokenExchangeClient
from gmail_loopback.auth.flow import BrowserOpener, LoopbackAuthFlow, open_in_browser
from gmail_loopback.auth.lifecycle import TokenLifecycleManager
from gmail_loopback.auth.models import PersistedCredential, TokenPair
from gmail_loopback.auth.storage import SecureTokenStore
from gmail_loopback.config import OAuthConfig
from gmail_loopback.middleware.audit_logger import AuditLogger, audit_logger
from gmail_loopback.utils.errors import AuthenticationError, FlowStateError, RevokeError

logger = logging.getLogger(__name__)

DEFAULT_LOGIN_TIMEOUT = 120


class AuthSession:
    """Authorization and token access for one mailbox.

    Example:
        >>> session = AuthSession(OAuthConfig.from_env(), EncryptedFileTokenStore())
        >>> if not session.is_authorized():
        ...     session.login()
        >>> token = session.get_access_token()
    """

    def __init__(
        self,
        config: OAuthConfig,
        store: SecureTokenStore,
        exchange: TokenExchangeClient | None = None,
        browser: BrowserOpener = open_in_browser,
        audit: AuditLogger = audit_logger,
    ) -> None:
        self._config = config
        self._exchange = exchange or TokenExchangeClient()
        self._browser = browser
        self._audit = audit
        self._tokens = TokenLifecycleManager(store)
        self._flow_lock = threading.Lock()
        self._active_flow: LoopbackAuthFlow | None = None
        self._cancel_requested = threading.Event()

    @property
    def tokens(self) -> TokenLifecycleManager:
        return self._tokens

    @property
    def active_flow(self) -> LoopbackAuthFlow | None:
        return self._active_flow

    def login(self, timeout: float | None = DEFAULT_LOGIN_TIMEOUT) -> PersistedCredential:
        """Run the loopback flow, exchange the code and store the tokens.

        Raises:
            FlowStateError: If a login is already running on this session.
            BindError, AuthorizationDeniedError, MissingCodeError,
            FlowCancelledError: From the flow.
            ExchangeError: If the code exchange fails.
        """
        flow = LoopbackAuthFlow(self._config, browser=self._browser)
        with self._flow_lock:
            if self._active_flow is not None:
                raise FlowStateError("A login is already in progress")
            self._active_flow = flow
            self._cancel_requested.clear()

        try:
            flow.begin_flow()
            # A cancel that arrived before the listener was bound found nothing to stop
            if self._cancel_requested.is_set():
                flow.shutdown()
            code = flow.wait_for_code(timeout=timeout)
            pair = self._exchange.exchange_code(
                code,
                self._config.client_id,
                self._config.client_secret,
                flow.redirect_uri,
            )
            credential = self._tokens.save_tokens(pair)
        except AuthenticationError as e:
            self._audit.log_auth_event("login", success=False, error=e)
            raise
        finally:
            flow.shutdown()
            with self._flow_lock:
                self._active_flow = None

        self._audit.log_auth_event(
            "login",
            details={"scopes": credential.scopes, "expires_at": credential.expires_at},
        )
        return credential

    def cancel_login(self) -> None:
        """Cancel a login in progress; a no-op when none is running."""
        with self._flow_lock:
            flow = self._active_flow
            if flow is None:
                return
            self._cancel_requested.set()
        logger.info("Cancelling login in progress")
        flow.shutdown()

    def refresh(self, refresh_token: str) -> TokenPair:
        """Refresh callback handed to the lifecycle manager."""
        try:
            pair = self._exchange.refresh_token(
                refresh_token,
                self._config.client_id,
                self._config.client_secret,
            )
        except AuthenticationError as e:
            self._audit.log_auth_event("refresh", success=False, error=e)
            raise
        self._audit.log_auth_event("refresh", details={"expires_at": pair.expires_at})
        return pair

    def get_access_token(self, rejected_token: str | None = None) -> str:
        """Return a currently valid access token, refreshing if needed."""
        return self._tokens.get_valid_access_token(self.refresh, rejected_token)

    def is_authorized(self) -> bool:
        return self._tokens.is_authorized()

    def logout(self, revoke: bool = True) -> bool:
        """Forget the stored credential, revoking it at the provider first.

        The local record is cleared even when revocation fails; the
        revocation error is then re-raised.

        Returns:
            True if a credential was stored.

        Raises:
            RevokeError: If the provider rejected the revocation.
        """
        credential = self._tokens.load()
        if credential is None:
            logger.debug("Logout called but no credentials were stored")
            return False

        try:
            if revoke:
                # Revoking the refresh token also invalidates its access tokens
                self._exchange.revoke_token(credential.refresh_token or credential.access_token)
                self._audit.log_auth_event("revoke")
        except RevokeError as e:
            self._audit.log_auth_event("revoke", success=False, error=e)
            raise
        finally:
            self._tokens.clear_tokens()
            self._audit.log_auth_event("logout")

        logger.info("Logged out successfully")
        return True


__all__ = [
    "AuthSession",
    "DEFAULT_LOGIN_TIMEOUT",
]
