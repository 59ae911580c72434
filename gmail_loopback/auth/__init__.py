"""Authorization and token lifecycle for the Gmail API.

This module provides:

- The loopback authorization-code flow (RFC 8252) with a single-use local
  redirect listener
- The token endpoint client (code exchange, refresh, revocation)
- The token lifecycle manager (persistence, expiry-aware refresh with
  de-duplication)
- Secure token store backends

Usage:
    >>> from gmail_loopback.auth import AuthSession, EncryptedFileTokenStore
    >>> from gmail_loopback.config import OAuthConfig
    >>>
    >>> session = AuthSession(OAuthConfig.from_env(), EncryptedFileTokenStore())
    >>> session.login()              # opens the browser
    >>> token = session.get_access_token()
"""

from gmail_loopback.auth.exchange import TokenExchangeClient
from gmail_loopback.auth.flow import (
    AuthorizationRequest,
    FlowState,
    LoopbackAuthFlow,
    RequestState,
    build_authorization_url,
)
from gmail_loopback.auth.lifecycle import (
    EXPIRY_BUFFER,
    TOKEN_STORE_KEY,
    TokenLifecycleManager,
)
from gmail_loopback.auth.models import PersistedCredential, TokenPair
from gmail_loopback.auth.session import AuthSession
from gmail_loopback.auth.storage import (
    EncryptedFileTokenStore,
    InMemoryTokenStore,
    SecureTokenStore,
)

__all__ = [
    # Flow
    "LoopbackAuthFlow",
    "AuthorizationRequest",
    "FlowState",
    "RequestState",
    "build_authorization_url",
    # Token endpoint
    "TokenExchangeClient",
    # Lifecycle
    "TokenLifecycleManager",
    "TOKEN_STORE_KEY",
    "EXPIRY_BUFFER",
    "TokenPair",
    "PersistedCredential",
    # Session
    "AuthSession",
    # Token stores
    "SecureTokenStore",
    "InMemoryTokenStore",
    "EncryptedFileTokenStore",
]
