"""Authenticated Gmail API client.

Every request carries ``Authorization: Bearer <token>`` where the token comes
from the auth session, never from anywhere else. A 401 from the API forces
one refresh of the rejected token and one retry; a second 401 is raised.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Concatenate, ParamSpec, TypeVar

import google_auth_httplib2
import httplib2
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import Resource, build
from googleapiclient.errors import Error as GoogleAPIClientError

from gmail_loopback.auth.session import AuthSession
from gmail_loopback.gmail import labels, messages
from gmail_loopback.utils.errors import GmailAPIError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class GmailClient:
    """Gmail API client bound to an ``AuthSession``.

    The built API service is cached per access token and rebuilt whenever
    the session hands out a different one.
    """

    def __init__(self, session: AuthSession, timeout: float = 30) -> None:
        self._session = session
        self._timeout = timeout
        self._lock = threading.Lock()
        self._service: Resource | None = None
        self._service_token: str | None = None

    def _service_for(self, access_token: str) -> Resource:
        with self._lock:
            if self._service is not None and self._service_token == access_token:
                return self._service

            # Bearer-only credentials: refresh belongs to the session, so the
            # transport must not try to refresh on 401 by itself.
            creds = Credentials(token=access_token)  # type: ignore[no-untyped-call]
            http = google_auth_httplib2.AuthorizedHttp(
                creds,
                http=httplib2.Http(timeout=self._timeout),
                refresh_status_codes=(),
            )
            try:
                service = build("gmail", "v1", http=http, cache_discovery=False)
            except (GoogleAPIClientError, httplib2.HttpLib2Error, OSError) as e:
                logger.error("Failed to build Gmail service: %s", e)
                raise messages.api_error("Failed to build Gmail service", e) from e
            self._service = service
            self._service_token = access_token
            logger.debug("Built Gmail service for a new access token")
            return service

    def invalidate(self) -> None:
        """Drop the cached service."""
        with self._lock:
            self._service = None
            self._service_token = None

    def call(
        self,
        operation: Callable[Concatenate[Resource, P], T],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Run ``operation(service, ...)`` with a valid token, retrying once on 401."""
        token = self._session.get_access_token()
        try:
            return operation(self._service_for(token), *args, **kwargs)
        except GmailAPIError as e:
            if e.status_code != 401:
                raise
            logger.info("Gmail API rejected the access token, refreshing and retrying")

        token = self._session.get_access_token(rejected_token=token)
        return operation(self._service_for(token), *args, **kwargs)

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def list_messages(
        self,
        query: str = "in:inbox",
        max_results: int = 10,
        page_token: str | None = None,
    ) -> dict[str, Any]:
        return self.call(messages.list_messages, query, max_results, page_token)

    def search(self, query: str, max_results: int = 10) -> dict[str, Any]:
        return self.call(messages.list_messages, query, max_results)

    def get_message(self, message_id: str) -> dict[str, Any]:
        return self.call(messages.get_message, message_id)

    def get_message_parsed(self, message_id: str) -> dict[str, Any]:
        """Get a message flattened to subject/from/to/date/body fields."""
        return messages.parse_message(self.get_message(message_id))

    def modify_message(
        self,
        message_id: str,
        add_labels: list[str] | None = None,
        remove_labels: list[str] | None = None,
    ) -> dict[str, Any]:
        return self.call(messages.modify_message, message_id, add_labels, remove_labels)

    def archive_message(self, message_id: str) -> dict[str, Any]:
        """Remove the message from the inbox."""
        return self.modify_message(message_id, remove_labels=["INBOX"])

    def spam_message(self, message_id: str) -> dict[str, Any]:
        return self.modify_message(
            message_id, add_labels=["SPAM"], remove_labels=["INBOX", "UNREAD"]
        )

    def mark_as_read(self, message_id: str) -> dict[str, Any]:
        return self.modify_message(message_id, remove_labels=["UNREAD"])

    def mark_as_unread(self, message_id: str) -> dict[str, Any]:
        return self.modify_message(message_id, add_labels=["UNREAD"])

    def delete_message(self, message_id: str) -> None:
        self.call(messages.delete_message, message_id)

    def send_message(
        self,
        to: str,
        subject: str,
        body: str,
        sender: str = "me",
        thread_id: str | None = None,
    ) -> dict[str, Any]:
        return self.call(messages.send_message, to, subject, body, sender, thread_id)

    # -------------------------------------------------------------------------
    # Labels and mailbox
    # -------------------------------------------------------------------------

    def get_labels(self) -> list[dict[str, Any]]:
        return self.call(labels.list_labels)

    def create_label(
        self, name: str, label_list_visibility: str = "labelShow"
    ) -> dict[str, Any]:
        return self.call(labels.create_label, name, label_list_visibility)

    def get_profile(self) -> dict[str, Any]:
        return self.call(labels.get_profile)

    def watch(self, topic_name: str, label_ids: list[str] | None = None) -> dict[str, Any]:
        return self.call(labels.watch, topic_name, label_ids)
