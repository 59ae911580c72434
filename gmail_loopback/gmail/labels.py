"""Gmail label and mailbox-level operations."""

from __future__ import annotations

import logging
from typing import Any

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from gmail_loopback.gmail.messages import api_error

logger = logging.getLogger(__name__)


def list_labels(service: Resource) -> list[dict[str, Any]]:
    """List all labels in the mailbox."""
    try:
        response = service.users().labels().list(userId="me").execute()
        labels = response.get("labels", [])
        logger.debug("Listed %d labels", len(labels))
        return labels
    except HttpError as e:
        logger.error("Failed to list labels: %s", e)
        raise api_error("Failed to list labels", e) from e


def create_label(
    service: Resource,
    name: str,
    label_list_visibility: str = "labelShow",
) -> dict[str, Any]:
    """Create a new label."""
    try:
        body = {"name": name, "labelListVisibility": label_list_visibility}
        label = service.users().labels().create(userId="me", body=body).execute()
        logger.info("Created label %s (%s)", label.get("id"), name)
        return label
    except HttpError as e:
        logger.error("Failed to create label %s: %s", name, e)
        raise api_error(f"Failed to create label {name}", e) from e


def get_profile(service: Resource) -> dict[str, Any]:
    """Get the mailbox profile (email address, message totals)."""
    try:
        return service.users().getProfile(userId="me").execute()
    except HttpError as e:
        logger.error("Failed to get profile: %s", e)
        raise api_error("Failed to get profile", e) from e


def watch(
    service: Resource,
    topic_name: str,
    label_ids: list[str] | None = None,
) -> dict[str, Any]:
    """Start push notifications for the mailbox to a Pub/Sub topic."""
    try:
        body = {"topicName": topic_name, "labelIds": label_ids or ["INBOX"]}
        response = service.users().watch(userId="me", body=body).execute()
        logger.info("Watching mailbox (history id %s)", response.get("historyId"))
        return response
    except HttpError as e:
        logger.error("Failed to start watch: %s", e)
        raise api_error("Failed to start watch", e) from e
