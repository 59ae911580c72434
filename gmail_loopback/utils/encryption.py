"""AES-256-GCM sealing of credential records.

The default file-backed token store keeps each credential record as a JSON
envelope ``{"iv": <hex>, "ciphertext": <hex>}``. GCM provides both
confidentiality and integrity, so a tampered file fails to open instead of
yielding a corrupted record.

Security considerations:
- Keys are 256 bits, supplied as 64 hex characters (TOKEN_ENCRYPTION_KEY)
- A fresh 96-bit IV is drawn for every seal and never reused
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from gmail_loopback.utils.errors import TokenError, ValidationError

logger = logging.getLogger(__name__)

KEY_SIZE_BITS = 256
KEY_SIZE_BYTES = KEY_SIZE_BITS // 8
IV_SIZE_BYTES = 12  # 96 bits, recommended for GCM
HEX_KEY_LENGTH = KEY_SIZE_BYTES * 2

ENCRYPTION_KEY_ENV = "TOKEN_ENCRYPTION_KEY"


def generate_key_hex() -> str:
    """Generate a new random key as a 64-character hex string.

    Suitable as a value for TOKEN_ENCRYPTION_KEY.
    """
    return AESGCM.generate_key(bit_length=KEY_SIZE_BITS).hex()


def key_from_hex(hex_key: str) -> bytes:
    """Convert a 64-character hex string to a 32-byte key.

    Raises:
        ValidationError: If the string has the wrong length or is not hex.
    """
    hex_key = hex_key.strip()

    if len(hex_key) != HEX_KEY_LENGTH:
        raise ValidationError(
            f"Invalid hex key length: expected {HEX_KEY_LENGTH} characters, "
            f"got {len(hex_key)}",
            field="hex_key",
            details={"expected_length": HEX_KEY_LENGTH, "actual_length": len(hex_key)},
        )

    try:
        return bytes.fromhex(hex_key)
    except ValueError as e:
        raise ValidationError(
            "Invalid hex key: contains non-hexadecimal characters",
            field="hex_key",
            details={"error_message": str(e)},
        ) from e


class TokenCipher:
    """Seals and opens credential records with a single AES-256-GCM key.

    Example:
        >>> cipher = TokenCipher.from_hex(generate_key_hex())
        >>> envelope = cipher.seal({"access_token": "ya29..."})
        >>> cipher.open(envelope)["access_token"]
        'ya29...'
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE_BYTES:
            raise ValidationError(
                f"Invalid key length: expected {KEY_SIZE_BYTES} bytes, got {len(key)}",
                field="key",
                details={"expected_length": KEY_SIZE_BYTES, "actual_length": len(key)},
            )
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_hex(cls, hex_key: str) -> TokenCipher:
        return cls(key_from_hex(hex_key))

    @classmethod
    def from_env(cls) -> TokenCipher:
        """Build a cipher from the TOKEN_ENCRYPTION_KEY environment variable.

        Raises:
            TokenError: If the variable is unset or not a valid key.
        """
        hex_key = os.getenv(ENCRYPTION_KEY_ENV)
        if not hex_key:
            logger.error("%s environment variable not set", ENCRYPTION_KEY_ENV)
            raise TokenError(
                f"{ENCRYPTION_KEY_ENV} environment variable not set",
                details={"hint": f"Set {ENCRYPTION_KEY_ENV} to a 64-character hex string"},
            )

        try:
            return cls.from_hex(hex_key)
        except ValidationError as e:
            logger.error("Invalid %s: %s", ENCRYPTION_KEY_ENV, e)
            raise TokenError(
                f"Invalid {ENCRYPTION_KEY_ENV} format",
                details={"error": e.message},
            ) from e

    def seal(self, record: dict[str, Any]) -> dict[str, str]:
        """Serialize ``record`` as JSON and encrypt it.

        Returns:
            Envelope with hex-encoded ``iv`` and ``ciphertext``.
        """
        iv = os.urandom(IV_SIZE_BYTES)
        plaintext = json.dumps(record).encode("utf-8")
        ciphertext = self._aesgcm.encrypt(iv, plaintext, None)
        return {"iv": iv.hex(), "ciphertext": ciphertext.hex()}

    def open(self, envelope: dict[str, str]) -> dict[str, Any]:
        """Decrypt an envelope produced by :meth:`seal`.

        Raises:
            TokenError: If the envelope is malformed, the key is wrong or the
                ciphertext has been tampered with.
        """
        try:
            iv = bytes.fromhex(envelope["iv"])
            ciphertext = bytes.fromhex(envelope["ciphertext"])
        except KeyError as e:
            raise TokenError(
                "Invalid encrypted token format - missing required field",
                details={"missing_field": str(e)},
            ) from e
        except (TypeError, ValueError) as e:
            raise TokenError(
                "Invalid encrypted token format - invalid hex encoding",
                details={"error_message": str(e)},
            ) from e

        if len(iv) != IV_SIZE_BYTES:
            raise TokenError(
                f"Invalid IV length: expected {IV_SIZE_BYTES} bytes, got {len(iv)}",
                details={"expected_length": IV_SIZE_BYTES, "actual_length": len(iv)},
            )

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext, None)
        except InvalidTag as e:
            raise TokenError(
                "Failed to decrypt token data - invalid key or corrupted ciphertext",
                details={"error_type": type(e).__name__},
            ) from e

        try:
            record: dict[str, Any] = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise TokenError(
                "Decrypted data is not valid JSON",
                details={"error_message": str(e)},
            ) from e
        return record


__all__ = [
    "ENCRYPTION_KEY_ENV",
    "TokenCipher",
    "generate_key_hex",
    "key_from_hex",
]
