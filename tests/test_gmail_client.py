"""Tests for the authenticated Gmail client."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError
from pytest_mock import MockerFixture

from gmail_loopback.auth.session import AuthSession
from gmail_loopback.gmail.client import GmailClient
from gmail_loopback.utils.errors import GmailAPIError, NotAuthorizedError


def _http_error(status: int, content: bytes = b"{}") -> HttpError:
    return HttpError(httplib2.Response({"status": str(status)}), content)


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock(spec=AuthSession)
    session.get_access_token.return_value = "ya29.first"
    return session


@pytest.fixture
def build(mocker: MockerFixture) -> MagicMock:
    return mocker.patch("gmail_loopback.gmail.client.build")


@pytest.fixture
def service(build: MagicMock) -> MagicMock:
    service = MagicMock()
    build.return_value = service
    return service


class TestServiceConstruction:
    """Tests for bearer-token service construction."""

    def test_builds_with_session_token(self, session: MagicMock, build: MagicMock) -> None:
        client = GmailClient(session)
        client.get_profile()

        args, kwargs = build.call_args
        assert args == ("gmail", "v1")
        assert kwargs["cache_discovery"] is False
        http = kwargs["http"]
        assert http.credentials.token == "ya29.first"
        assert tuple(http._refresh_status_codes) == ()

    def test_service_cached_per_token(self, session: MagicMock, build: MagicMock) -> None:
        client = GmailClient(session)
        client.get_profile()
        client.get_profile()
        assert build.call_count == 1

        session.get_access_token.return_value = "ya29.second"
        client.get_profile()
        assert build.call_count == 2

    def test_invalidate_forces_rebuild(self, session: MagicMock, build: MagicMock) -> None:
        client = GmailClient(session)
        client.get_profile()
        client.invalidate()
        client.get_profile()
        assert build.call_count == 2

    def test_build_failure_is_wrapped(self, session: MagicMock, build: MagicMock) -> None:
        build.side_effect = _http_error(503, b"discovery unavailable")

        with pytest.raises(GmailAPIError) as exc_info:
            GmailClient(session).get_profile()

        assert exc_info.value.status_code == 503
        assert exc_info.value.details["body"] == "discovery unavailable"

    def test_build_transport_error_is_wrapped(
        self, session: MagicMock, build: MagicMock
    ) -> None:
        build.side_effect = httplib2.ServerNotFoundError("Unable to find the server")

        with pytest.raises(GmailAPIError) as exc_info:
            GmailClient(session).list_messages()

        assert exc_info.value.status_code is None
        assert exc_info.value.details["error_type"] == "ServerNotFoundError"

    def test_not_authorized_propagates(self, session: MagicMock, build: MagicMock) -> None:
        session.get_access_token.side_effect = NotAuthorizedError("No stored credential")
        with pytest.raises(NotAuthorizedError):
            GmailClient(session).list_messages()
        build.assert_not_called()


class TestUnauthorizedRetry:
    """A 401 forces one refresh and one retry."""

    def test_retries_once_with_refreshed_token(
        self, session: MagicMock, service: MagicMock
    ) -> None:
        session.get_access_token.side_effect = ["ya29.first", "ya29.second"]
        execute = service.users().messages().list().execute
        execute.side_effect = [_http_error(401), {"messages": [{"id": "m1"}]}]

        result = GmailClient(session).list_messages()

        assert result == {"messages": [{"id": "m1"}]}
        assert session.get_access_token.call_args_list[1].kwargs == {
            "rejected_token": "ya29.first"
        }

    def test_second_401_is_raised(self, session: MagicMock, service: MagicMock) -> None:
        session.get_access_token.side_effect = ["ya29.first", "ya29.second"]
        service.users().getProfile().execute.side_effect = [
            _http_error(401),
            _http_error(401),
        ]

        with pytest.raises(GmailAPIError) as exc_info:
            GmailClient(session).get_profile()

        assert exc_info.value.status_code == 401
        assert session.get_access_token.call_count == 2

    def test_other_errors_are_not_retried(
        self, session: MagicMock, service: MagicMock
    ) -> None:
        service.users().messages().get().execute.side_effect = _http_error(
            404, b'{"error": {"code": 404, "message": "Not Found"}}'
        )

        with pytest.raises(GmailAPIError) as exc_info:
            GmailClient(session).get_message("missing")

        assert exc_info.value.status_code == 404
        session.get_access_token.assert_called_once_with()


class TestOperations:
    """Tests for the message and label wrappers."""

    def test_list_messages_params(self, session: MagicMock, service: MagicMock) -> None:
        GmailClient(session).list_messages("from:boss", max_results=900, page_token="p2")
        service.users().messages().list.assert_called_with(
            userId="me", q="from:boss", maxResults=500, pageToken="p2"
        )

    def test_archive_removes_inbox(self, session: MagicMock, service: MagicMock) -> None:
        GmailClient(session).archive_message("m1")
        service.users().messages().modify.assert_called_with(
            userId="me", id="m1", body={"addLabelIds": [], "removeLabelIds": ["INBOX"]}
        )

    def test_mark_as_read(self, session: MagicMock, service: MagicMock) -> None:
        GmailClient(session).mark_as_read("m1")
        service.users().messages().modify.assert_called_with(
            userId="me", id="m1", body={"addLabelIds": [], "removeLabelIds": ["UNREAD"]}
        )

    def test_send_message_in_thread(self, session: MagicMock, service: MagicMock) -> None:
        service.users().messages().send().execute.return_value = {"id": "sent1"}

        result = GmailClient(session).send_message(
            "to@example.com", "Hi", "Body", thread_id="t1"
        )

        assert result == {"id": "sent1"}
        body: dict[str, Any] = service.users().messages().send.call_args.kwargs["body"]
        assert body["threadId"] == "t1"
        assert "=" not in body["raw"]

    def test_get_message_parsed(
        self, session: MagicMock, service: MagicMock, sample_email: dict[str, Any]
    ) -> None:
        service.users().messages().get().execute.return_value = sample_email

        parsed = GmailClient(session).get_message_parsed("18abc123def")

        assert parsed["subject"] == "Test Email Subject"
        assert parsed["body"] == "This is the email body content."

    def test_get_labels(self, session: MagicMock, service: MagicMock) -> None:
        service.users().labels().list().execute.return_value = {
            "labels": [{"id": "INBOX", "name": "INBOX"}]
        }
        assert GmailClient(session).get_labels() == [{"id": "INBOX", "name": "INBOX"}]

    def test_delete_message(self, session: MagicMock, service: MagicMock) -> None:
        GmailClient(session).delete_message("m1")
        service.users().messages().delete.assert_called_with(userId="me", id="m1")
