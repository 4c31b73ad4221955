"""Tests for takeout session lifecycle."""

from __future__ import annotations

import pytest

from chat_archive.core.errors import AuthExpiredError, RemoteError, TakeoutError
from chat_archive.core.retry import RetryPolicy
from chat_archive.fetch.takeout import TakeoutSessionManager
from conftest import FakeProvider, make_message


def _manager(provider: FakeProvider, sleep, retries: int = 3) -> TakeoutSessionManager:
    return TakeoutSessionManager(
        provider,
        quota=1024,
        finish_policy=RetryPolicy(max_attempts=retries, base_delay=5.0, max_delay=5.0, sleep=sleep),
    )


def test_open_query_finish_cycle(sleep) -> None:
    provider = FakeProvider({7: [make_message(7, mid) for mid in range(1, 4)]})
    manager = _manager(provider, sleep)
    session = manager.open()
    assert manager.state == "open"
    assert session.file_size_quota == 1024
    page = manager.run_query(session, 7, 0, 10)
    assert [m.platform_message_id for m in page] == [3, 2, 1]
    assert manager.finish(session, success=True) is True
    assert manager.state == "closed"
    assert provider.finished == [(session.session_id, True)]


def test_open_failure_fails_closed_without_queries(sleeps, sleep) -> None:
    provider = FakeProvider({7: [make_message(7, 1)]})
    provider.open_error = RemoteError("boom")
    manager = _manager(provider, sleep)
    with pytest.raises(TakeoutError):
        manager.open()
    assert manager.state == "closed"
    assert provider.calls == []
    assert sleeps == []


def test_open_propagates_auth_errors_unwrapped(sleep) -> None:
    provider = FakeProvider()
    provider.open_error = AuthExpiredError("session revoked")
    manager = _manager(provider, sleep)
    with pytest.raises(AuthExpiredError):
        manager.open()
    assert manager.state == "closed"


def test_query_requires_open_session(sleep) -> None:
    provider = FakeProvider({7: [make_message(7, 1)]})
    manager = _manager(provider, sleep)
    session = manager.open()
    manager.finish(session, success=True)
    with pytest.raises(TakeoutError):
        manager.run_query(session, 7, 0, 10)


def test_finish_retries_busy_session_then_succeeds(sleeps, sleep) -> None:
    provider = FakeProvider()
    provider.finish_errors = [TakeoutError("busy", retryable=True)]
    manager = _manager(provider, sleep)
    session = manager.open()
    assert manager.finish(session, success=True) is True
    assert sleeps == [5.0]
    assert len(provider.finished) == 1


def test_finish_failure_is_logged_not_raised(sleep) -> None:
    provider = FakeProvider()
    provider.finish_errors = [TakeoutError("busy", retryable=True) for _ in range(3)]
    manager = _manager(provider, sleep)
    session = manager.open()
    assert manager.finish(session, success=False) is False
    assert isinstance(manager.finish_error, TakeoutError)
    assert manager.state == "closed"


def test_session_scope_finishes_on_error(sleep) -> None:
    provider = FakeProvider()
    manager = _manager(provider, sleep)
    with pytest.raises(RuntimeError):
        with manager.session_scope():
            raise RuntimeError("body failed")
    assert provider.finished == [(1, False)]
    assert manager.state == "closed"


def test_cannot_open_twice(sleep) -> None:
    manager = _manager(FakeProvider(), sleep)
    manager.open()
    with pytest.raises(TakeoutError):
        manager.open()
