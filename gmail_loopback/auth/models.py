"""Token data models.

``TokenPair`` is what the token endpoint hands back; it is transient and
goes straight to the lifecycle manager. ``PersistedCredential`` is the
durable record the lifecycle manager writes to the token store.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


class TokenPair(BaseModel):
    """Access/refresh token pair returned by the token endpoint."""

    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = Field(
        default=None,
        description="Absent when the provider does not rotate it on refresh",
    )
    expires_at: datetime = Field(..., description="Absolute expiry (UTC)")
    expires_in: int = Field(..., ge=0, description="Declared lifetime in seconds")
    token_type: str = Field(default="Bearer")
    scopes: list[str] | None = Field(
        default=None,
        description="Granted scopes, when the provider reports them",
    )


class PersistedCredential(BaseModel):
    """Credential record stored under the single token store key."""

    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    expires_at: datetime
    token_type: str = "Bearer"
    scopes: list[str] | None = None
    saved_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def expires_within(self, buffer_seconds: float, now: datetime) -> bool:
        """True when ``now`` is past ``expires_at`` minus the buffer."""
        return now.timestamp() > self.expires_at.timestamp() - buffer_seconds


__all__ = [
    "TokenPair",
    "PersistedCredential",
]
