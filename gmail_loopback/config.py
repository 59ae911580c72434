"""OAuth client configuration.

Configuration comes from environment variables (optionally loaded from a
``.env`` file by the entry point):

- GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET: installed-app OAuth client
- OAUTH_PORT: loopback redirect port (default 8888)
- GMAIL_SCOPES: space separated scope override
- READ_ONLY: request only the read-only Gmail scope
"""

from __future__ import annotations

import logging
import os

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Gmail API scopes requested by default (read, modify labels, send)
GMAIL_SCOPES_FULL = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
]

GMAIL_SCOPES_READONLY = [
    "https://www.googleapis.com/auth/gmail.readonly",
]

DEFAULT_REDIRECT_PORT = 8888

# Google OAuth endpoints
GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URI = "https://oauth2.googleapis.com/revoke"


def is_read_only() -> bool:
    """Check if the client should request read-only access."""
    return os.getenv("READ_ONLY", "").lower() in ("true", "1", "yes")


def get_gmail_scopes() -> list[str]:
    """Get the scopes to request.

    GMAIL_SCOPES wins when set; otherwise READ_ONLY picks between the
    read-only and the full scope set.
    """
    override = os.getenv("GMAIL_SCOPES", "").split()
    if override:
        return override
    if is_read_only():
        return list(GMAIL_SCOPES_READONLY)
    return list(GMAIL_SCOPES_FULL)


class OAuthConfig(BaseModel):
    """Installed-app OAuth client settings for one authorization flow."""

    client_id: str = Field(..., min_length=1, description="OAuth client ID")
    client_secret: str = Field(..., min_length=1, description="OAuth client secret")
    redirect_port: int = Field(
        default=DEFAULT_REDIRECT_PORT,
        ge=0,
        le=65535,
        description="Loopback port for the redirect listener (0 picks a free port)",
    )
    scopes: list[str] = Field(
        default_factory=lambda: list(GMAIL_SCOPES_FULL),
        min_length=1,
        description="Ordered scopes requested at consent",
    )

    @classmethod
    def from_env(cls) -> OAuthConfig:
        """Build a config from environment variables.

        Raises:
            pydantic.ValidationError: If the client ID or secret is missing
                or OAUTH_PORT is not a valid port.
        """
        client_id = os.getenv("GOOGLE_CLIENT_ID", "")
        client_secret = os.getenv("GOOGLE_CLIENT_SECRET", "")
        if not client_id or not client_secret:
            logger.warning(
                "OAuth credentials not configured. Set GOOGLE_CLIENT_ID and "
                "GOOGLE_CLIENT_SECRET environment variables."
            )
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            redirect_port=int(os.getenv("OAUTH_PORT", str(DEFAULT_REDIRECT_PORT))),
            scopes=get_gmail_scopes(),
        )


__all__ = [
    "OAuthConfig",
    "get_gmail_scopes",
    "is_read_only",
    "DEFAULT_REDIRECT_PORT",
    "GMAIL_SCOPES_FULL",
    "GMAIL_SCOPES_READONLY",
    "GOOGLE_AUTH_URI",
    "GOOGLE_TOKEN_URI",
    "GOOGLE_REVOKE_URI",
]
