"""
tests/test_typing.py — Typing Indicator Tests
===============================================
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func, select

from conftest import T0

from pulse.database.models import TypingIndicator
from pulse.services import typing_service


def _ms(n: int):
    return T0 + timedelta(milliseconds=n)


def _row_count(store) -> int:
    return store.read(
        lambda s: s.scalar(select(func.count()).select_from(TypingIndicator))
    )


class TestStartStop:
    def test_start_creates_then_refreshes(self, store):
        assert typing_service.start_typing(store, "c1", "u1", now=T0) == "created"
        assert typing_service.start_typing(store, "c1", "u1", now=_ms(1000)) == "updated"
        assert _row_count(store) == 1

    def test_refresh_extends_expiry(self, store):
        typing_service.start_typing(store, "c1", "u1", now=T0)
        typing_service.start_typing(store, "c1", "u1", now=_ms(4000))
        assert typing_service.is_typing(store, "c1", "u1", now=_ms(8000)) is True

    def test_one_indicator_per_conversation_and_actor(self, store):
        typing_service.start_typing(store, "c1", "u1", now=T0)
        typing_service.start_typing(store, "c2", "u1", now=T0)
        typing_service.start_typing(store, "c1", "u2", now=T0)
        assert _row_count(store) == 3

    def test_stop_typing(self, store):
        typing_service.start_typing(store, "c1", "u1", now=T0)
        assert typing_service.stop_typing(store, "c1", "u1") is True
        assert typing_service.stop_typing(store, "c1", "u1") is False

    def test_stop_all_typing(self, store):
        typing_service.start_typing(store, "c1", "u1", now=T0)
        typing_service.start_typing(store, "c2", "u1", now=T0)
        typing_service.start_typing(store, "c1", "u2", now=T0)
        assert typing_service.stop_all_typing(store, "u1") == 2
        assert _row_count(store) == 1


class TestExpiry:
    def test_visible_just_before_expiry(self, store):
        typing_service.start_typing(store, "c1", "u1", now=T0)
        assert len(typing_service.get_typing(store, "c1", now=_ms(4999))) == 1

    def test_hidden_just_after_expiry(self, store):
        typing_service.start_typing(store, "c1", "u1", now=T0)
        assert typing_service.get_typing(store, "c1", now=_ms(5001)) == []
        assert typing_service.is_typing(store, "c1", "u1", now=_ms(5001)) is False

    def test_cleanup_removes_expired(self, store):
        typing_service.start_typing(store, "c1", "u1", now=T0)
        typing_service.start_typing(store, "c1", "u2", now=_ms(3000))
        assert typing_service.cleanup_expired(store, now=_ms(6000)) == 1
        assert _row_count(store) == 1

    def test_custom_ttl(self, store):
        typing_service.start_typing(store, "c1", "u1", now=T0, ttl=timedelta(seconds=1))
        assert typing_service.get_typing(store, "c1", now=_ms(1500)) == []


class TestReads:
    def test_get_typing_excludes_viewer(self, store):
        typing_service.start_typing(store, "c1", "u1", display_name="Ana", now=T0)
        typing_service.start_typing(store, "c1", "u2", now=_ms(10))
        typing = typing_service.get_typing(store, "c1", exclude_actor_id="u2", now=_ms(100))
        assert [t["actor_id"] for t in typing] == ["u1"]
        assert typing[0]["display_name"] == "Ana"

    def test_typing_in_many(self, store):
        typing_service.start_typing(store, "c1", "u1", now=T0)
        typing_service.start_typing(store, "c2", "u2", now=T0)
        result = typing_service.get_typing_in_many(store, ["c1", "c2", "c3"], now=_ms(100))
        assert [t["actor_id"] for t in result["c1"]] == ["u1"]
        assert [t["actor_id"] for t in result["c2"]] == ["u2"]
        assert result["c3"] == []

    def test_typing_count(self, store):
        typing_service.start_typing(store, "c1", "u1", now=T0)
        typing_service.start_typing(store, "c1", "u2", now=T0)
        assert typing_service.get_typing_count(store, "c1", now=_ms(100)) == 2
        assert typing_service.get_typing_count(
            store, "c1", exclude_actor_id="u1", now=_ms(100),
        ) == 1


class TestSubscriptions:
    def test_subscription_follows_start_and_stop(self, store, recorder):
        typing_service.subscribe_typing(store, "c1", recorder, exclude_actor_id="me")
        assert recorder.values == [[]]

        typing_service.start_typing(store, "c1", "u1")
        assert [t["actor_id"] for t in recorder.last] == ["u1"]

        typing_service.stop_typing(store, "c1", "u1")
        assert recorder.last == []

    def test_viewer_typing_is_not_redelivered(self, store, recorder):
        typing_service.subscribe_typing(store, "c1", recorder, exclude_actor_id="me")
        typing_service.start_typing(store, "c1", "me")
        assert recorder.values == [[]]

    def test_other_conversation_ignored(self, store, recorder):
        typing_service.subscribe_typing(store, "c1", recorder)
        typing_service.start_typing(store, "c2", "u1")
        assert len(recorder.values) == 1
