from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest

from diamondstore.sessions import SessionManager


def test_create_and_resolve_session() -> None:
    sessions = SessionManager(ttl=timedelta(minutes=5))
    token = sessions.create(7)

    assert sessions.resolve(token) == 7
    assert sessions.resolve("not-a-token") is None
    assert sessions.resolve(None) is None
    assert sessions.cookie_max_age == 300


def test_expired_session_is_discarded() -> None:
    sessions = SessionManager(ttl=timedelta(minutes=5))
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)

    with mock.patch.object(SessionManager, "_now", return_value=start):
        token = sessions.create(1)

    with mock.patch.object(SessionManager, "_now", return_value=start + timedelta(minutes=4)):
        assert sessions.resolve(token) == 1

    # The previous resolve extended the deadline to start + 9 minutes.
    with mock.patch.object(SessionManager, "_now", return_value=start + timedelta(minutes=8)):
        assert sessions.resolve(token) == 1

    with mock.patch.object(SessionManager, "_now", return_value=start + timedelta(minutes=20)):
        assert sessions.resolve(token) is None
    assert len(sessions) == 0


def test_destroy_user_revokes_every_session() -> None:
    sessions = SessionManager()
    first = sessions.create(1)
    second = sessions.create(1)
    other = sessions.create(2)

    assert sessions.destroy_user(1) == 2
    assert sessions.resolve(first) is None
    assert sessions.resolve(second) is None
    assert sessions.resolve(other) == 2

    sessions.destroy(other)
    assert sessions.resolve(other) is None


def test_clear_and_invalid_ttl() -> None:
    sessions = SessionManager()
    sessions.create(3)
    sessions.clear()
    assert len(sessions) == 0

    with pytest.raises(ValueError):
        SessionManager(ttl=timedelta(0))
