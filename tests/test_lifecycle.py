"""Tests for the token lifecycle manager."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from pytest_mock import MockerFixture

from gmail_loopback.auth.lifecycle import TOKEN_STORE_KEY, TokenLifecycleManager
from gmail_loopback.auth.models import TokenPair
from gmail_loopback.auth.storage import InMemoryTokenStore
from gmail_loopback.utils.errors import NotAuthorizedError, RefreshError, TokenError

NOW = datetime(2026, 1, 20, 12, 0, 0, tzinfo=UTC)


def _pair(
    access_token: str,
    refresh_token: str | None,
    expires_at: datetime,
    scopes: list[str] | None = None,
) -> TokenPair:
    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
        expires_in=max(int((expires_at - NOW).total_seconds()), 0),
        scopes=scopes,
    )


@pytest.fixture
def manager(memory_store: InMemoryTokenStore) -> TokenLifecycleManager:
    return TokenLifecycleManager(memory_store, clock=lambda: NOW)


class TestSaveAndLoad:
    """Tests for persisting credentials."""

    def test_load_without_record(self, manager: TokenLifecycleManager) -> None:
        assert manager.load() is None
        assert not manager.is_authorized()

    def test_save_writes_single_record(
        self, manager: TokenLifecycleManager, memory_store: InMemoryTokenStore
    ) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW + timedelta(hours=1), ["scope-a"]))

        record = memory_store.get(TOKEN_STORE_KEY)
        assert record is not None
        assert record["access_token"] == "a1"
        assert record["refresh_token"] == "r1"
        assert record["scopes"] == ["scope-a"]
        assert manager.is_authorized()

        credential = manager.load()
        assert credential is not None
        assert credential.expires_at == NOW + timedelta(hours=1)
        assert credential.saved_at == NOW

    def test_clear_tokens(self, manager: TokenLifecycleManager) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW + timedelta(hours=1)))
        manager.clear_tokens()
        assert not manager.is_authorized()
        with pytest.raises(NotAuthorizedError):
            manager.get_valid_access_token(MagicMock())

    def test_invalid_record_raises_token_error(
        self, manager: TokenLifecycleManager, memory_store: InMemoryTokenStore
    ) -> None:
        memory_store.set(TOKEN_STORE_KEY, {"refresh_token": "r1"})
        with pytest.raises(TokenError):
            manager.load()


class TestGetValidAccessToken:
    """Tests for expiry checks and refresh."""

    def test_not_authorized_without_record(self, manager: TokenLifecycleManager) -> None:
        refresh = MagicMock()
        with pytest.raises(NotAuthorizedError):
            manager.get_valid_access_token(refresh)
        refresh.assert_not_called()

    def test_fresh_token_returned_without_refresh(
        self, manager: TokenLifecycleManager
    ) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW + timedelta(hours=1)))
        refresh = MagicMock()

        assert manager.get_valid_access_token(refresh) == "a1"
        refresh.assert_not_called()

    def test_token_outside_buffer_is_not_refreshed(
        self, manager: TokenLifecycleManager
    ) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW + timedelta(minutes=5, seconds=1)))
        refresh = MagicMock()
        assert manager.get_valid_access_token(refresh) == "a1"
        refresh.assert_not_called()

    def test_token_inside_buffer_is_refreshed(
        self, manager: TokenLifecycleManager
    ) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW + timedelta(minutes=4)))
        refresh = MagicMock(return_value=_pair("a2", None, NOW + timedelta(hours=1)))

        assert manager.get_valid_access_token(refresh) == "a2"
        refresh.assert_called_once_with("r1")

    def test_refresh_keeps_old_refresh_token_when_omitted(
        self, manager: TokenLifecycleManager
    ) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW - timedelta(minutes=1), ["scope-a"]))
        refresh = MagicMock(return_value=_pair("a2", None, NOW + timedelta(hours=1)))

        manager.get_valid_access_token(refresh)

        credential = manager.load()
        assert credential is not None
        assert credential.access_token == "a2"
        assert credential.refresh_token == "r1"
        assert credential.scopes == ["scope-a"]
        assert credential.expires_at == NOW + timedelta(hours=1)

    def test_refresh_stores_rotated_refresh_token(
        self, manager: TokenLifecycleManager
    ) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW - timedelta(minutes=1)))
        refresh = MagicMock(return_value=_pair("a2", "r2", NOW + timedelta(hours=1)))

        manager.get_valid_access_token(refresh)

        credential = manager.load()
        assert credential is not None
        assert credential.refresh_token == "r2"

    def test_expired_without_refresh_token(self, manager: TokenLifecycleManager) -> None:
        manager.save_tokens(_pair("a1", None, NOW - timedelta(minutes=1)))
        refresh = MagicMock()
        with pytest.raises(NotAuthorizedError):
            manager.get_valid_access_token(refresh)
        refresh.assert_not_called()

    def test_rejected_token_forces_refresh(self, manager: TokenLifecycleManager) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW + timedelta(hours=1)))
        refresh = MagicMock(return_value=_pair("a2", None, NOW + timedelta(hours=1)))

        assert manager.get_valid_access_token(refresh, rejected_token="a1") == "a2"
        refresh.assert_called_once_with("r1")

    def test_stale_rejected_token_does_not_refresh_again(
        self, manager: TokenLifecycleManager
    ) -> None:
        manager.save_tokens(_pair("a2", "r1", NOW + timedelta(hours=1)))
        refresh = MagicMock()

        assert manager.get_valid_access_token(refresh, rejected_token="a1") == "a2"
        refresh.assert_not_called()

    def test_refresh_failure_propagates_and_keeps_record(
        self, manager: TokenLifecycleManager
    ) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW - timedelta(minutes=1)))
        refresh = MagicMock(side_effect=RefreshError("refresh failed", status=400, body="invalid_grant"))

        with pytest.raises(RefreshError):
            manager.get_valid_access_token(refresh)

        credential = manager.load()
        assert credential is not None
        assert credential.access_token == "a1"

    def test_failed_refresh_does_not_block_next_attempt(
        self, manager: TokenLifecycleManager
    ) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW - timedelta(minutes=1)))
        refresh = MagicMock(
            side_effect=[
                RefreshError("temporarily unavailable", status=503),
                _pair("a2", None, NOW + timedelta(hours=1)),
            ]
        )

        with pytest.raises(RefreshError):
            manager.get_valid_access_token(refresh)
        assert manager.get_valid_access_token(refresh) == "a2"
        assert refresh.call_count == 2

    def test_logout_during_refresh_wins(self, manager: TokenLifecycleManager) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW - timedelta(minutes=1)))

        def refresh(_: str) -> TokenPair:
            manager.clear_tokens()
            return _pair("a2", None, NOW + timedelta(hours=1))

        with pytest.raises(NotAuthorizedError):
            manager.get_valid_access_token(refresh)
        assert not manager.is_authorized()


class TestConcurrentRefresh:
    """Concurrent callers share a single refresh."""

    @staticmethod
    def _blocking_refresh(
        started: threading.Event, release: threading.Event, result: Callable[[], TokenPair]
    ) -> MagicMock:
        def _refresh(_: str) -> TokenPair:
            started.set()
            assert release.wait(5)
            return result()

        return MagicMock(side_effect=_refresh)

    def test_one_refresh_for_many_callers(
        self, manager: TokenLifecycleManager, mocker: MockerFixture
    ) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW - timedelta(minutes=1)))
        started = threading.Event()
        release = threading.Event()
        refresh = self._blocking_refresh(
            started, release, lambda: _pair("a2", None, NOW + timedelta(hours=1))
        )

        waiters = 0
        waiters_lock = threading.Lock()
        all_waiting = threading.Event()

        class _CountingFuture(Future):
            def result(self, timeout: float | None = None) -> str:
                nonlocal waiters
                with waiters_lock:
                    waiters += 1
                    if waiters == 4:
                        all_waiting.set()
                return super().result(timeout)

        mocker.patch("gmail_loopback.auth.lifecycle.Future", _CountingFuture)

        with ThreadPoolExecutor(max_workers=5) as pool:
            first = pool.submit(manager.get_valid_access_token, refresh)
            assert started.wait(5)
            others = [pool.submit(manager.get_valid_access_token, refresh) for _ in range(4)]
            # Every other caller is parked on the shared refresh before it finishes
            assert all_waiting.wait(5)
            release.set()
            results = [first.result(5)] + [f.result(5) for f in others]

        assert results == ["a2"] * 5
        assert refresh.call_count == 1
        assert waiters == 4

    def test_waiters_see_the_same_failure(self, manager: TokenLifecycleManager) -> None:
        manager.save_tokens(_pair("a1", "r1", NOW - timedelta(minutes=1)))
        started = threading.Event()
        release = threading.Event()
        waiting = threading.Event()

        def _refresh(_: str) -> TokenPair:
            started.set()
            assert release.wait(5)
            raise RefreshError("refresh failed", status=400, body="invalid_grant")

        refresh = MagicMock(side_effect=_refresh)

        def _second_caller() -> str:
            waiting.set()
            return manager.get_valid_access_token(refresh)

        with ThreadPoolExecutor(max_workers=2) as pool:
            first = pool.submit(manager.get_valid_access_token, refresh)
            assert started.wait(5)
            second = pool.submit(_second_caller)
            assert waiting.wait(5)
            release.set()
            with pytest.raises(RefreshError):
                first.result(5)
            # The second caller either joined the failed refresh or started
            # its own after the marker was cleared; both end in RefreshError.
            with pytest.raises(RefreshError):
                second.result(5)

        assert 1 <= refresh.call_count <= 2
