"""Token endpoint client.

Converts an authorization code into an access/refresh token pair, converts a
refresh token into a new access token, and revokes tokens. All calls are
form-encoded POSTs over TLS. Any non-2xx response raises an error that keeps
the raw status and body.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import requests
from pydantic import ValidationError as PydanticValidationError

from gmail_loopback.auth.models import TokenPair
from gmail_loopback.config import GOOGLE_REVOKE_URI, GOOGLE_TOKEN_URI
from gmail_loopback.utils.errors import (
    ExchangeError,
    RefreshError,
    RevokeError,
    TokenEndpointError,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenExchangeClient:
    """Client for the provider's token and revoke endpoints.

    Example:
        >>> client = TokenExchangeClient()
        >>> pair = client.exchange_code(code, client_id, client_secret, redirect_uri)
        >>> later = client.refresh_token(pair.refresh_token, client_id, client_secret)
    """

    def __init__(
        self,
        token_uri: str = GOOGLE_TOKEN_URI,
        revoke_uri: str = GOOGLE_REVOKE_URI,
        session: requests.Session | None = None,
        timeout: float = 30,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._token_uri = token_uri
        self._revoke_uri = revoke_uri
        self._session = session or requests.Session()
        self._timeout = timeout
        self._clock = clock

    def exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
    ) -> TokenPair:
        """Exchange an authorization code for tokens.

        Raises:
            ExchangeError: On transport failure, non-2xx response or a body
                without an access token.
        """
        data = {
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        pair = self._request_tokens(data, ExchangeError, "Token exchange")
        logger.info("Successfully exchanged authorization code for tokens")
        return pair

    def refresh_token(
        self,
        refresh_token: str,
        client_id: str,
        client_secret: str,
    ) -> TokenPair:
        """Mint a new access token from a refresh token.

        The returned pair has ``refresh_token`` set only when the provider
        sent a new one.

        Raises:
            RefreshError: On transport failure, non-2xx response or a body
                without an access token.
        """
        data = {
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        pair = self._request_tokens(data, RefreshError, "Token refresh")
        logger.info("Successfully refreshed access token")
        return pair

    def revoke_token(self, token: str) -> None:
        """Revoke an access or refresh token at the provider.

        Raises:
            RevokeError: On transport failure or non-2xx response.
        """
        response = self._post(self._revoke_uri, {"token": token}, RevokeError, "Token revocation")
        if not 200 <= response.status_code < 300:
            logger.error("Token revocation failed with status %d", response.status_code)
            raise RevokeError(
                f"Token revocation failed: {response.status_code} {response.reason}",
                status=response.status_code,
                body=response.text,
            )
        logger.info("Revoked token at provider")

    def _post(
        self,
        url: str,
        data: dict[str, str],
        error_cls: type[TokenEndpointError],
        action: str,
    ) -> requests.Response:
        try:
            return self._session.post(
                url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.error("Network error during %s: %s", action.lower(), e)
            raise error_cls(
                f"{action} failed: {e}",
                details={"error_type": type(e).__name__},
            ) from e

    def _request_tokens(
        self,
        data: dict[str, str],
        error_cls: type[TokenEndpointError],
        action: str,
    ) -> TokenPair:
        response = self._post(self._token_uri, data, error_cls, action)
        # Single clock read once the response is in hand; expiry is
        # measured from here.
        received_at = self._clock()

        if not 200 <= response.status_code < 300:
            logger.error("%s failed with status %d", action, response.status_code)
            raise error_cls(
                f"{action} failed: {response.status_code} {response.reason}",
                status=response.status_code,
                body=response.text,
            )

        try:
            payload: dict[str, Any] = response.json()
            expires_in = int(payload["expires_in"])
            scope = payload.get("scope")
            return TokenPair(
                access_token=payload["access_token"],
                refresh_token=payload.get("refresh_token") or None,
                expires_at=received_at + timedelta(seconds=expires_in),
                expires_in=expires_in,
                token_type=payload.get("token_type") or "Bearer",
                scopes=scope.split() if isinstance(scope, str) and scope else None,
            )
        except (ValueError, KeyError, TypeError, AttributeError, PydanticValidationError) as e:
            logger.error("%s returned an unusable body: %s", action, e)
            raise error_cls(
                f"{action} returned an unusable response",
                status=response.status_code,
                body=response.text,
                details={"error_type": type(e).__name__},
            ) from e


__all__ = [
    "TokenExchangeClient",
]
