"""Gmail API operations module."""

from gmail_loopback.gmail.client import GmailClient
from gmail_loopback.gmail.labels import create_label, get_profile, list_labels, watch
from gmail_loopback.gmail.messages import (
    decode_body,
    delete_message,
    encode_message,
    get_message,
    list_messages,
    modify_message,
    parse_headers,
    parse_message,
    send_message,
)

__all__ = [
    "GmailClient",
    "list_messages",
    "get_message",
    "send_message",
    "modify_message",
    "delete_message",
    "parse_headers",
    "parse_message",
    "decode_body",
    "encode_message",
    "list_labels",
    "create_label",
    "get_profile",
    "watch",
]
