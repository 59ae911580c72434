"""Custom exception hierarchy for the Gmail loopback OAuth client.

This module defines a structured exception hierarchy for the authorization
flow, the token endpoint exchanges, token persistence and Gmail API calls.
Every error carries a human-readable message plus a ``details`` dictionary
so callers can tell "retry" apart from "re-authenticate" apart from "fatal".
"""

from __future__ import annotations


class GmailLoopbackError(Exception):
    """Base exception for all gmail_loopback errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary containing additional error context.
    """

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            details: Optional dictionary containing additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class AuthenticationError(GmailLoopbackError):
    """Exception raised for OAuth and credential-related errors.

    Base class for every failure of the authorization flow, the token
    endpoint and the token store.
    """

    pass


# =============================================================================
# Authorization flow
# =============================================================================


class BindError(AuthenticationError):
    """The loopback listener could not bind its port.

    Raised when the port is in use by another process or is already held by
    another flow in this process. Fatal to the flow attempt; the caller may
    retry with a different port.

    Attributes:
        port: The port that could not be bound.
    """

    def __init__(
        self,
        message: str,
        port: int,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, {"port": port, **(details or {})})
        self.port = port


class AuthorizationDeniedError(AuthenticationError):
    """The provider redirected back with an ``error`` parameter.

    Usually the user declined consent. Surfaced verbatim and never retried
    automatically.

    Attributes:
        error: The ``error`` value from the redirect (e.g. ``access_denied``).
    """

    def __init__(
        self,
        error: str,
        message: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(
            message or f"Authorization denied: {error}",
            {"oauth_error": error, **(details or {})},
        )
        self.error = error


class MissingCodeError(AuthorizationDeniedError):
    """The redirect carried neither ``code`` nor ``error``."""

    def __init__(self, details: dict[str, object] | None = None) -> None:
        super().__init__(
            "missing_code",
            message="No authorization code received",
            details=details,
        )


class FlowCancelledError(AuthenticationError):
    """The pending flow was shut down before a redirect arrived."""

    pass


class FlowStateError(AuthenticationError):
    """An operation was attempted in a flow state that does not allow it.

    A coordinator runs exactly one flow; starting a second one on the same
    instance raises this error.
    """

    pass


class NotAuthorizedError(AuthenticationError):
    """No usable credential is stored; the authorization flow must run."""

    pass


# =============================================================================
# Token endpoint
# =============================================================================


class TokenEndpointError(AuthenticationError):
    """Non-2xx or unusable response from the provider's token endpoint.

    The raw status and body are kept for diagnostics. ``status`` is None when
    the request never produced a response (network failure).

    Attributes:
        status: HTTP status code, or None for transport failures.
        body: Raw response body text (may be empty).
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        body: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, {"status": status, "body": body, **(details or {})})
        self.status = status
        self.body = body

    @property
    def retryable(self) -> bool:
        """True for failures a plain retry may fix (network, 429, 5xx)."""
        return self.status is None or self.status == 429 or self.status >= 500


class ExchangeError(TokenEndpointError):
    """Authorization code exchange failed."""

    pass


class RefreshError(TokenEndpointError):
    """Refresh token grant failed."""

    @property
    def requires_reauthorization(self) -> bool:
        """True when the refresh token was rejected (revoked or expired)."""
        if "invalid_grant" in self.body:
            return True
        return self.status in (400, 401)


class RevokeError(TokenEndpointError):
    """Token revocation failed."""

    pass


class TokenError(AuthenticationError):
    """Exception raised for token encryption, decryption or storage errors.

    Examples:
        - Token decryption failed due to invalid key
        - Token storage/retrieval failed
        - Invalid or corrupted token data
    """

    pass


# =============================================================================
# Gmail API
# =============================================================================


class GmailAPIError(GmailLoopbackError):
    """Exception raised for errors from Gmail API calls.

    Attributes:
        status_code: HTTP status code from the API response.
        error_code: Gmail API-specific error code, if available.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Initialize the Gmail API error exception.

        Args:
            message: Human-readable error description.
            status_code: HTTP status code from the API response.
            error_code: Gmail API-specific error code, if available.
            details: Optional dictionary containing additional error context.
        """
        super().__init__(message, details)
        self.status_code = status_code
        self.error_code = error_code


class ValidationError(GmailLoopbackError):
    """Exception raised for input validation errors.

    Attributes:
        field: The name of the field that failed validation, if applicable.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Initialize the validation error exception.

        Args:
            message: Human-readable error description.
            field: The name of the field that failed validation.
            details: Optional dictionary containing additional error context.
        """
        super().__init__(message, details)
        self.field = field


__all__ = [
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
