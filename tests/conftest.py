"""Pytest configuration and fixtures for gmail_loopback tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from gmail_loopback.auth.models import TokenPair
from gmail_loopback.auth.storage import InMemoryTokenStore
from gmail_loopback.config import OAuthConfig
from gmail_loopback.middleware.audit_logger import AuditLogger


@pytest.fixture
def oauth_config() -> OAuthConfig:
    """OAuth config bound to an ephemeral port."""
    return OAuthConfig(
        client_id="test-client-id.apps.googleusercontent.com",
        client_secret="test-client-secret",
        redirect_port=0,
        scopes=["https://www.googleapis.com/auth/gmail.readonly"],
    )


@pytest.fixture
def make_pair() -> Callable[..., TokenPair]:
    """Factory for token pairs expiring ``expires_in`` seconds from now."""

    def _make(
        access_token: str = "mock-access-token",
        refresh_token: str | None = "mock-refresh-token",
        expires_in: int = 3600,
    ) -> TokenPair:
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
            expires_in=max(expires_in, 0),
            token_type="Bearer",
        )

    return _make


@pytest.fixture
def memory_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def quiet_audit() -> AuditLogger:
    """Audit logger that writes nothing."""
    return AuditLogger(enabled=False)


@pytest.fixture
def sample_email() -> dict[str, object]:
    """Fixture providing sample email data for testing."""
    return {
        "id": "18abc123def",
        "threadId": "18abc123def",
        "labelIds": ["INBOX", "UNREAD"],
        "snippet": "This is a test email snippet...",
        "payload": {
            "headers": [
                {"name": "From", "value": "sender@example.com"},
                {"name": "To", "value": "recipient@example.com"},
                {"name": "Subject", "value": "Test Email Subject"},
                {"name": "Date", "value": "Mon, 20 Jan 2026 10:00:00 -0500"},
            ],
            "mimeType": "text/plain",
            "body": {
                "data": "VGhpcyBpcyB0aGUgZW1haWwgYm9keSBjb250ZW50Lg==",
            },
        },
    }
