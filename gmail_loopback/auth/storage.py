"""Secure token store backends.

The lifecycle manager talks to any object implementing ``SecureTokenStore``
(``get``/``set``/``delete`` of a whole record under a key). Two backends are
provided:

- ``InMemoryTokenStore``: process-local, for tests and short-lived hosts.
- ``EncryptedFileTokenStore``: AES-256-GCM encrypted file per key.

Storage location (file backend): ~/.gmail-loopback/tokens/{key}.token.enc

Security considerations:
- Records are encrypted at rest using AES-256-GCM
- File permissions are set to 0600 (owner read/write only)
- Keys are sanitized to prevent path traversal attacks
- Writes go to a temporary file that is atomically renamed into place,
  so a reader never observes a partial record
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from gmail_loopback.utils.encryption import TokenCipher
from gmail_loopback.utils.errors import TokenError

logger = logging.getLogger(__name__)


@runtime_checkable
class SecureTokenStore(Protocol):
    """Key-value backend holding whole credential records."""

    def get(self, key: str) -> dict[str, Any] | None: ...

    def set(self, key: str, record: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryTokenStore:
    """Dictionary-backed store.

    Records are deep-copied on the way in and out so callers can never
    mutate the stored copy.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._records.get(key)
            return copy.deepcopy(record) if record is not None else None

    def set(self, key: str, record: dict[str, Any]) -> None:
        with self._lock:
            self._records[key] = copy.deepcopy(record)

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)


class EncryptedFileTokenStore:
    """File-based encrypted token store.

    Attributes:
        _base_dir: Directory where encrypted token files are stored.

    Example:
        >>> store = EncryptedFileTokenStore()
        >>> store.set("oauth_tokens", {"access_token": "ya29..."})
        >>> store.get("oauth_tokens")["access_token"]
        'ya29...'
    """

    def __init__(
        self,
        base_dir: Path | None = None,
        cipher: TokenCipher | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            base_dir: Directory for token files. Defaults to
                ~/.gmail-loopback/tokens/
            cipher: Cipher used to seal records. Defaults to one built from
                TOKEN_ENCRYPTION_KEY on first use.
        """
        if base_dir is None:
            base_dir = Path.home() / ".gmail-loopback" / "tokens"

        self._base_dir = base_dir
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._cipher = cipher
        logger.info("EncryptedFileTokenStore initialized at %s", self._base_dir)

    def _get_cipher(self) -> TokenCipher:
        if self._cipher is None:
            self._cipher = TokenCipher.from_env()
        return self._cipher

    def _token_path(self, key: str) -> Path:
        """Get the file path for a key, keeping only safe characters."""
        safe_key = "".join(c for c in key if c.isalnum() or c in "-_.")
        safe_key = safe_key.strip(".")

        if not safe_key:
            raise TokenError(
                "Invalid store key - contains no valid characters",
                details={"original_key": key[:50]},
            )

        return self._base_dir / f"{safe_key}.token.enc"

    def get(self, key: str) -> dict[str, Any] | None:
        """Load and decrypt the record for ``key``.

        Returns:
            The decrypted record, or None if no record exists.

        Raises:
            TokenError: If the file cannot be read or decrypted.
        """
        path = self._token_path(key)

        if not path.exists():
            logger.debug("No token record for key %s", key)
            return None

        try:
            envelope = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in token file for %s: %s", key, e)
            raise TokenError(
                "Token file contains invalid JSON",
                details={"key": key, "error": str(e)},
            ) from e
        except OSError as e:
            logger.error("Failed to read token file for %s: %s", key, e)
            raise TokenError(
                f"Failed to read token file: {e}",
                details={"key": key, "error_type": type(e).__name__},
            ) from e

        record = self._get_cipher().open(envelope)
        logger.debug("Loaded token record for key %s", key)
        return record

    def set(self, key: str, record: dict[str, Any]) -> None:
        """Encrypt ``record`` and atomically replace the file for ``key``.

        Raises:
            TokenError: If encryption or writing fails.
        """
        path = self._token_path(key)
        envelope = self._get_cipher().seal(record)

        fd, tmp_name = tempfile.mkstemp(dir=self._base_dir, prefix=".tmp-", suffix=".enc")
        try:
            with os.fdopen(fd, "w") as tmp:
                json.dump(envelope, tmp, indent=2)
            # Restrict permissions to owner read/write only (0600)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except PermissionError as e:
            logger.error("Permission denied writing token file: %s", e)
            Path(tmp_name).unlink(missing_ok=True)
            raise TokenError(
                "Permission denied writing token file",
                details={"path": str(path), "error": str(e)},
            ) from e
        except OSError as e:
            logger.error("Failed to save token record for %s: %s", key, e)
            Path(tmp_name).unlink(missing_ok=True)
            raise TokenError(
                f"Failed to save token: {e}",
                details={"key": key, "error_type": type(e).__name__},
            ) from e

        logger.info("Saved encrypted token record for key %s", key)

    def delete(self, key: str) -> None:
        """Delete the record for ``key``; missing records are ignored.

        Raises:
            TokenError: If file deletion fails.
        """
        path = self._token_path(key)

        try:
            path.unlink()
            logger.info("Deleted token record for key %s", key)
        except FileNotFoundError:
            logger.debug("No token record to delete for key %s", key)
        except OSError as e:
            logger.error("Failed to delete token record for %s: %s", key, e)
            raise TokenError(
                f"Failed to delete token: {e}",
                details={"path": str(path), "error_type": type(e).__name__},
            ) from e


__all__ = [
    "SecureTokenStore",
    "InMemoryTokenStore",
    "EncryptedFileTokenStore",
]
