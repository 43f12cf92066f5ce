"""
tests/test_presence.py — Presence Service Tests
=================================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import T0

from pulse.services import presence_service


class TestHeartbeat:
    def test_first_heartbeat_creates_then_updates(self, store):
        assert presence_service.heartbeat(store, "u1", now=T0) == "created"
        assert presence_service.heartbeat(store, "u1", now=T0) == "updated"

    def test_heartbeat_is_idempotent(self, store):
        presence_service.heartbeat(store, "u1", context="feed", now=T0)
        first = presence_service.get_my_presence(store, "u1")
        presence_service.heartbeat(store, "u1", context="feed", now=T0)
        assert presence_service.get_my_presence(store, "u1") == first

    def test_heartbeat_forces_online(self, store):
        presence_service.update_presence(store, "u1", "away", now=T0)
        presence_service.heartbeat(store, "u1", now=T0 + timedelta(seconds=30))
        assert presence_service.get_my_presence(store, "u1")["status"] == "online"

    def test_heartbeat_without_context_keeps_context(self, store):
        presence_service.heartbeat(store, "u1", context="chat:c1", now=T0)
        presence_service.heartbeat(store, "u1", now=T0 + timedelta(seconds=30))
        assert presence_service.get_my_presence(store, "u1")["current_context"] == "chat:c1"


class TestUpdatePresence:
    def test_sets_status_and_device(self, store):
        action = presence_service.update_presence(
            store, "u1", "away", context="map", device_id="d1", device_class="ios", now=T0,
        )
        assert action == "created"
        raw = presence_service.get_my_presence(store, "u1")
        assert raw["status"] == "away"
        assert raw["device_class"] == "ios"
        assert raw["device_id"] == "d1"
        assert raw["current_context"] == "map"

    def test_rejects_unknown_status(self, store):
        with pytest.raises(ValueError, match="Invalid status"):
            presence_service.update_presence(store, "u1", "busy")
        assert presence_service.get_my_presence(store, "u1") is None

    def test_rejects_unknown_device_class(self, store):
        with pytest.raises(ValueError, match="Invalid device_class"):
            presence_service.update_presence(store, "u1", "online", device_class="fridge")


class TestSetOffline:
    def test_marks_offline_and_clears_context(self, store):
        presence_service.heartbeat(store, "u1", context="feed", now=T0)
        assert presence_service.set_offline(store, "u1", now=T0) is True
        raw = presence_service.get_my_presence(store, "u1")
        assert raw["status"] == "offline"
        assert raw["current_context"] is None

    def test_unknown_actor(self, store):
        assert presence_service.set_offline(store, "ghost") is False


class TestStaleness:
    def test_fresh_heartbeat_reads_online(self, store):
        presence_service.heartbeat(store, "u1", now=T0)
        view = presence_service.get_presence(store, "u1", now=T0 + timedelta(seconds=119))
        assert view["status"] == "online"
        assert view["is_online"] is True

    def test_stale_heartbeat_reads_offline(self, store):
        presence_service.heartbeat(store, "u1", now=T0)
        view = presence_service.get_presence(store, "u1", now=T0 + timedelta(seconds=121))
        assert view["status"] == "offline"
        assert view["is_online"] is False
        # The stored record is untouched until the sweep runs.
        assert presence_service.get_my_presence(store, "u1")["status"] == "online"

    def test_unknown_actor_reads_offline(self, store):
        view = presence_service.get_presence(store, "nobody", now=T0)
        assert view == {
            "actor_id": "nobody",
            "status": "offline",
            "is_online": False,
            "last_seen_at": None,
            "current_context": None,
            "device_class": None,
        }

    def test_cleanup_stale_flips_only_old_records(self, store):
        presence_service.heartbeat(store, "old", now=T0)
        presence_service.heartbeat(store, "fresh", now=T0 + timedelta(seconds=100))
        presence_service.update_presence(store, "gone", "offline", now=T0)

        flipped = presence_service.cleanup_stale(store, now=T0 + timedelta(seconds=121))

        assert flipped == 1
        assert presence_service.get_my_presence(store, "old")["status"] == "offline"
        assert presence_service.get_my_presence(store, "fresh")["status"] == "online"

    def test_cleanup_stale_is_idempotent(self, store):
        presence_service.heartbeat(store, "u1", now=T0)
        later = T0 + timedelta(minutes=5)
        assert presence_service.cleanup_stale(store, now=later) == 1
        assert presence_service.cleanup_stale(store, now=later) == 0


class TestReads:
    def test_batch_includes_unknown_actors(self, store):
        presence_service.heartbeat(store, "u1", now=T0)
        batch = presence_service.get_batch_presence(store, ["u1", "u2"], now=T0)
        assert batch["u1"]["status"] == "online"
        assert batch["u2"]["status"] == "offline"

    def test_online_friends_excludes_offline_and_stale(self, store):
        presence_service.heartbeat(store, "a", now=T0)
        presence_service.update_presence(store, "b", "away", now=T0)
        presence_service.heartbeat(store, "c", now=T0 - timedelta(minutes=10))
        presence_service.update_presence(store, "d", "offline", now=T0)

        friends = presence_service.get_online_friends(store, ["a", "b", "c", "d", "e"], now=T0)
        assert sorted(f["actor_id"] for f in friends) == ["a", "b"]

    def test_online_count(self, store):
        presence_service.heartbeat(store, "a", now=T0)
        presence_service.heartbeat(store, "b", now=T0 - timedelta(minutes=10))
        presence_service.update_presence(store, "c", "away", now=T0)
        assert presence_service.get_online_count(store, now=T0) == {"online": 1, "total": 2}


class TestSubscriptions:
    def test_presence_subscription_sees_transition(self, store, recorder):
        sub = presence_service.subscribe_presence(store, ["u1"], recorder)
        assert recorder.last["u1"]["status"] == "offline"

        presence_service.heartbeat(store, "u1")
        assert recorder.last["u1"]["status"] == "online"

        presence_service.set_offline(store, "u1")
        assert recorder.last["u1"]["status"] == "offline"
        sub.cancel()

    def test_other_actor_does_not_wake_subscription(self, store, recorder):
        presence_service.subscribe_presence(store, ["u1"], recorder)
        presence_service.heartbeat(store, "u2")
        assert len(recorder.values) == 1

    def test_online_friends_subscription(self, store, recorder):
        presence_service.subscribe_online_friends(store, ["a", "b"], recorder)
        presence_service.heartbeat(store, "a")
        assert [f["actor_id"] for f in recorder.last] == ["a"]
