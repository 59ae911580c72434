"""Gmail message operations and MIME/base64url helpers."""

from __future__ import annotations

import base64
import logging
from email.mime.text import MIMEText
from typing import Any

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from gmail_loopback.utils.errors import GmailAPIError

logger = logging.getLogger(__name__)


def api_error(action: str, e: Exception) -> GmailAPIError:
    """Wrap a Gmail API failure, keeping the HTTP status when there is one."""
    if isinstance(e, HttpError):
        status = e.resp.status
        reason = e.reason
        return GmailAPIError(
            f"{action}: {status} {reason}",
            status_code=int(status),
            error_code=str(reason),
            details={"body": e.content.decode("utf-8", errors="replace")},
        )
    return GmailAPIError(f"{action}: {e}", details={"error_type": type(e).__name__})


def list_messages(
    service: Resource,
    query: str = "in:inbox",
    max_results: int = 10,
    page_token: str | None = None,
) -> dict[str, Any]:
    """List one page of messages matching ``query``.

    Returns:
        The API response: ``messages`` (ids) and ``nextPageToken`` if any.
    """
    kwargs: dict[str, Any] = {"userId": "me", "q": query, "maxResults": min(max_results, 500)}
    if page_token:
        kwargs["pageToken"] = page_token
    try:
        response = service.users().messages().list(**kwargs).execute()
        logger.debug("Listed %d messages", len(response.get("messages", [])))
        return response
    except HttpError as e:
        logger.error("Failed to list messages: %s", e)
        raise api_error("Failed to list messages", e) from e


def get_message(
    service: Resource, message_id: str, format: str = "full"
) -> dict[str, Any]:
    """Get a specific message by ID."""
    try:
        message = (
            service.users()
            .messages()
            .get(userId="me", id=message_id, format=format)
            .execute()
        )
        logger.debug("Retrieved message %s", message_id)
        return message
    except HttpError as e:
        logger.error("Failed to get message %s: %s", message_id, e)
        raise api_error(f"Failed to get message {message_id}", e) from e


def send_message(
    service: Resource,
    to: str,
    subject: str,
    body: str,
    sender: str = "me",
    thread_id: str | None = None,
) -> dict[str, Any]:
    """Send a plain-text email."""
    body_dict: dict[str, Any] = {"raw": encode_message(to, subject, body, sender=sender)}
    if thread_id:
        body_dict["threadId"] = thread_id
    try:
        sent = service.users().messages().send(userId="me", body=body_dict).execute()
        logger.info("Sent message %s", sent.get("id"))
        return sent
    except HttpError as e:
        logger.error("Failed to send message: %s", e)
        raise api_error("Failed to send message", e) from e


def modify_message(
    service: Resource,
    message_id: str,
    add_labels: list[str] | None = None,
    remove_labels: list[str] | None = None,
) -> dict[str, Any]:
    """Modify message labels."""
    try:
        body = {"addLabelIds": add_labels or [], "removeLabelIds": remove_labels or []}
        modified = (
            service.users()
            .messages()
            .modify(userId="me", id=message_id, body=body)
            .execute()
        )
        logger.debug("Modified labels on message %s", message_id)
        return modified
    except HttpError as e:
        logger.error("Failed to modify message %s: %s", message_id, e)
        raise api_error(f"Failed to modify message {message_id}", e) from e


def delete_message(service: Resource, message_id: str) -> None:
    """Permanently delete a message."""
    try:
        service.users().messages().delete(userId="me", id=message_id).execute()
        logger.info("Permanently deleted message %s", message_id)
    except HttpError as e:
        logger.error("Failed to delete message %s: %s", message_id, e)
        raise api_error(f"Failed to delete message {message_id}", e) from e


# =============================================================================
# Codec helpers
# =============================================================================


def encode_message(to: str, subject: str, body: str, sender: str = "me") -> str:
    """Build an RFC 2822 text message and base64url-encode it (no padding)."""
    message = MIMEText(body, "plain", "utf-8")
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")


def parse_headers(message: dict[str, Any]) -> dict[str, str]:
    """Map lower-cased header names to values."""
    headers: dict[str, str] = {}
    for header in message.get("payload", {}).get("headers", []):
        headers[header.get("name", "").lower()] = header.get("value", "")
    return headers


def _safe_base64_decode(data: str) -> str:
    """Decode base64url data, tolerating missing padding.

    Returns:
        Decoded string, or empty string if decoding fails.
    """
    try:
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except ValueError as e:
        logger.warning("Failed to decode base64 body data: %s", e)
        return ""


def decode_body(message: dict[str, Any]) -> str:
    """Decode message body, preferring text/plain over text/html."""
    payload = message.get("payload", {})

    # Simple message
    if payload.get("body", {}).get("data"):
        return _safe_base64_decode(payload["body"]["data"])

    parts = payload.get("parts", [])
    for mime_type in ("text/plain", "text/html"):
        for part in parts:
            if part.get("mimeType") == mime_type and part.get("body", {}).get("data"):
                return _safe_base64_decode(part["body"]["data"])

    # Nested multipart
    for part in parts:
        if "parts" in part:
            result = decode_body({"payload": part})
            if result:
                return result

    return ""


def parse_message(message: dict[str, Any]) -> dict[str, Any]:
    """Flatten a full-format message into the fields a mail UI shows."""
    headers = parse_headers(message)
    return {
        "id": message.get("id"),
        "thread_id": message.get("threadId"),
        "labels": message.get("labelIds", []),
        "subject": headers.get("subject") or "(no subject)",
        "from": headers.get("from", ""),
        "to": headers.get("to", ""),
        "date": headers.get("date", ""),
        "snippet": message.get("snippet", ""),
        "body": decode_body(message) or "(no body)",
        "internal_date": message.get("internalDate"),
        "size_estimate": message.get("sizeEstimate"),
    }
