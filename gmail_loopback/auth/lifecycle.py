"""Token lifecycle management.

The lifecycle manager is the only writer of the token store. It decides when
the stored access token needs refreshing and guarantees callers always get a
token that will not expire mid-request.

Concurrent callers share one refresh: the first caller that finds the token
near expiry publishes an in-flight future and performs the refresh outside
the lock; everyone else waits on that future and gets the same result or
the same exception.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from gmail_loopback.auth.models import PersistedCredential, TokenPair
from gmail_loopback.auth.storage import SecureTokenStore
from gmail_loopback.utils.errors import NotAuthorizedError, TokenError

logger = logging.getLogger(__name__)

TOKEN_STORE_KEY = "oauth_tokens"
EXPIRY_BUFFER = timedelta(minutes=5)

RefreshFn = Callable[[str], TokenPair]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenLifecycleManager:
    """Owns the persisted credential and hands out valid access tokens.

    Attributes:
        _store: Backend holding the credential record.
        _key: Store key of the record.
        _refresh_inflight: Future of the refresh currently running, if any.

    Example:
        >>> manager = TokenLifecycleManager(InMemoryTokenStore())
        >>> manager.save_tokens(pair)
        >>> token = manager.get_valid_access_token(session.refresh)
    """

    def __init__(
        self,
        store: SecureTokenStore,
        key: str = TOKEN_STORE_KEY,
        expiry_buffer: timedelta = EXPIRY_BUFFER,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._key = key
        self._expiry_buffer = expiry_buffer
        self._clock = clock
        self._lock = threading.Lock()
        self._refresh_inflight: Future[str] | None = None

    def load(self) -> PersistedCredential | None:
        """Read the stored credential, or None when there is none.

        Raises:
            TokenError: If the stored record is not a valid credential.
        """
        record = self._store.get(self._key)
        if record is None:
            return None
        try:
            return PersistedCredential.model_validate(record)
        except PydanticValidationError as e:
            logger.error("Stored credential record is invalid: %s", e)
            raise TokenError(
                "Stored credential record is invalid",
                details={"key": self._key, "errors": e.error_count()},
            ) from e

    def save_tokens(self, token_pair: TokenPair) -> PersistedCredential:
        """Persist a freshly exchanged token pair.

        The record is handed to the store as one complete dict.
        """
        credential = PersistedCredential(
            access_token=token_pair.access_token,
            refresh_token=token_pair.refresh_token,
            expires_at=token_pair.expires_at,
            token_type=token_pair.token_type,
            scopes=token_pair.scopes,
            saved_at=self._clock(),
        )
        with self._lock:
            self._write(credential)
        logger.info("Saved credential (expires at %s)", credential.expires_at.isoformat())
        return credential

    def clear_tokens(self) -> None:
        """Delete the stored credential (logout)."""
        with self._lock:
            self._store.delete(self._key)
        logger.info("Cleared stored credential")

    def is_authorized(self) -> bool:
        """True iff a credential record exists. Expiry is not checked."""
        return self._store.get(self._key) is not None

    def get_valid_access_token(
        self,
        refresh_fn: RefreshFn,
        rejected_token: str | None = None,
    ) -> str:
        """Return an access token that is valid for at least the buffer.

        Args:
            refresh_fn: Called with the stored refresh token when a refresh
                is due; returns the new token pair.
            rejected_token: An access token the API just answered 401 to.
                If it is still the stored token, a refresh is forced.

        Raises:
            NotAuthorizedError: If no credential is stored, or it has no
                refresh token and needs refreshing.
            RefreshError: Propagated from ``refresh_fn``.
        """
        with self._lock:
            inflight = self._refresh_inflight
            if inflight is None:
                credential = self.load()
                if credential is None:
                    raise NotAuthorizedError(
                        "No stored credential. Run the authorization flow first.",
                        details={"key": self._key},
                    )

                if not self._needs_refresh(credential, rejected_token):
                    return credential.access_token

                if not credential.refresh_token:
                    raise NotAuthorizedError(
                        "Stored credential has expired and has no refresh token",
                        details={"hint": "Re-run the authorization flow"},
                    )

                owner: Future[str] = Future()
                self._refresh_inflight = owner

        if inflight is not None:
            logger.debug("Waiting for in-flight token refresh")
            return inflight.result()

        return self._run_refresh(owner, credential, refresh_fn)

    def _needs_refresh(
        self, credential: PersistedCredential, rejected_token: str | None
    ) -> bool:
        if rejected_token is not None and credential.access_token == rejected_token:
            logger.info("Access token was rejected by the API, forcing refresh")
            return True
        return credential.expires_within(
            self._expiry_buffer.total_seconds(), self._clock()
        )

    def _run_refresh(
        self,
        owner: Future[str],
        credential: PersistedCredential,
        refresh_fn: RefreshFn,
    ) -> str:
        """Refresh outside the lock, write back, then settle the future."""
        logger.info("Access token expired or expiring, refreshing...")
        try:
            refreshed = refresh_fn(credential.refresh_token or "")
            updated = PersistedCredential(
                access_token=refreshed.access_token,
                # Refresh responses usually omit the refresh token; keep ours.
                refresh_token=refreshed.refresh_token or credential.refresh_token,
                expires_at=refreshed.expires_at,
                token_type=refreshed.token_type,
                scopes=refreshed.scopes or credential.scopes,
                saved_at=self._clock(),
            )
            with self._lock:
                # A logout during the refresh wins; don't resurrect the record.
                if self._store.get(self._key) is None:
                    raise NotAuthorizedError(
                        "Credential was cleared while refreshing",
                        details={"key": self._key},
                    )
                self._write(updated)
                self._refresh_inflight = None
        except BaseException as e:
            with self._lock:
                self._refresh_inflight = None
            owner.set_exception(e)
            logger.warning("Token refresh failed: %s", e)
            raise

        owner.set_result(updated.access_token)
        logger.info("Refreshed access token (expires at %s)", updated.expires_at.isoformat())
        return updated.access_token

    def _write(self, credential: PersistedCredential) -> None:
        record: dict[str, Any] = credential.model_dump(mode="json")
        self._store.set(self._key, record)


__all__ = [
    "TokenLifecycleManager",
    "RefreshFn",
    "TOKEN_STORE_KEY",
    "EXPIRY_BUFFER",
]
