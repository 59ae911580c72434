"""Utility functions and helpers for gmail_loopback.

This module provides the exception hierarchy and the encryption helpers
used by the default token store.
"""

from gmail_loopback.utils.encryption import TokenCipher, generate_key_hex, key_from_hex
from gmail_loopback.utils.errors import (
    AuthenticationError,
    AuthorizationDeniedError,
    BindError,
    ExchangeError,
    FlowCancelledError,
    FlowStateError,
    GmailAPIError,
    GmailLoopbackError,
    MissingCodeError,
    NotAuthorizedError,
    RefreshError,
    RevokeError,
    TokenEndpointError,
    TokenError,
    ValidationError,
)

__all__ = [
    # Encryption utilities
    "TokenCipher",
    "generate_key_hex",
    "key_from_hex",
    # Exception hierarchy
    "GmailLoopbackError",
    "AuthenticationError",
    "BindError",
    "AuthorizationDeniedError",
    "MissingCodeError",
    "FlowCancelledError",
    "FlowStateError",
    "NotAuthorizedError",
    "TokenEndpointError",
    "ExchangeError",
    "RefreshError",
    "RevokeError",
    "TokenError",
    "GmailAPIError",
    "ValidationError",
]
