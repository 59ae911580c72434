"""Audit trail of authorization events.

Each login, refresh, revoke and logout becomes one JSON line on stderr.
Credential material never reaches the trail: any value whose key names a
token, secret or code is replaced before the entry is built.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"


class AuditEntry(BaseModel):
    """One authorization event."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    event: str = Field(..., description="login, refresh, revoke or logout")
    result_status: str = Field(default="success", description="success or error")
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = Field(
        default=None, description="Exception type of the failure"
    )


class AuditLogger:
    """Writes ``AuditEntry`` records as JSON lines to stderr."""

    # Exact key names that always hold credential material
    SENSITIVE_KEYS = frozenset(
        {"code", "authorization", "bearer", "password", "assertion"}
    )
    # Any key containing one of these is treated as sensitive
    SENSITIVE_FRAGMENTS = ("token", "secret")

    def __init__(self, enabled: bool = True, stream: Any = None):
        self._enabled = enabled
        self._stream = stream

    @property
    def enabled(self) -> bool:
        return self._enabled

    @classmethod
    def is_sensitive(cls, key: str) -> bool:
        lowered = key.lower()
        return lowered in cls.SENSITIVE_KEYS or any(
            fragment in lowered for fragment in cls.SENSITIVE_FRAGMENTS
        )

    def redact(self, value: Any) -> Any:
        """Return ``value`` with sensitive keys masked at any depth."""
        if isinstance(value, dict):
            return {
                k: REDACTED if self.is_sensitive(str(k)) else self.redact(v)
                for k, v in value.items()
            }
        if isinstance(value, list | tuple):
            return [self.redact(item) for item in value]
        return value

    def log(self, entry: AuditEntry) -> None:
        if not self._enabled:
            return

        stream = self._stream or sys.stderr
        try:
            line = json.dumps({"audit": entry.model_dump(mode="json")}, default=str)
            print(line, file=stream, flush=True)
        except (TypeError, ValueError, OSError) as e:
            logger.error("Failed to write audit entry for %s: %s", entry.event, e)

    def log_auth_event(
        self,
        event: str,
        success: bool = True,
        details: dict[str, Any] | None = None,
        error: BaseException | None = None,
    ) -> None:
        """Record an authorization event.

        Args:
            event: login, refresh, revoke or logout.
            success: False when the event failed.
            details: Extra context. Redacted before writing.
            error: The failure. Only its type name is recorded.
        """
        self.log(
            AuditEntry(
                event=event,
                result_status="success" if success else "error",
                details=self.redact(details or {}),
                error_message=type(error).__name__ if error is not None else None,
            )
        )


audit_logger = AuditLogger()


__all__ = [
    "AuditEntry",
    "AuditLogger",
    "audit_logger",
    "REDACTED",
]
