"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Integration tests for the public and maintenance API routes using the
FastAPI TestClient against an in-memory store.

These tests verify:
- Auth guards (missing/invalid tokens, maintenance-only endpoints)
- Error mapping (validation → 422, refused mutations → 403/404)
- Basic response structure of each router
"""

from __future__ import annotations

import jwt
import pytest

from conftest import auth, make_token

from pulse.api.deps import JWT_ALGORITHM, JWT_SECRET
from pulse.config import PulseConfig


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAuthGuards:
    USER_ENDPOINTS = [
        "/api/presence/me",
        "/api/notifications",
        "/api/notifications/unread-count",
        "/api/activity/feed",
        "/api/shared-posts/conversations",
        "/api/leaderboard/all_time",
    ]

    MAINTENANCE_ENDPOINTS = [
        ("get", "/api/maintenance/sweeps"),
        ("post", "/api/maintenance/sweeps/all"),
        ("get", "/api/maintenance/stats"),
    ]

    @pytest.mark.parametrize("endpoint", USER_ENDPOINTS)
    def test_rejects_missing_token(self, client, endpoint):
        assert client.get(endpoint).status_code == 401

    @pytest.mark.parametrize("endpoint", USER_ENDPOINTS)
    def test_rejects_invalid_token(self, client, endpoint):
        resp = client.get(endpoint, headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401

    def test_rejects_token_without_subject(self, client):
        token = jwt.encode({"username": "x"}, JWT_SECRET, algorithm=JWT_ALGORITHM)
        resp = client.get("/api/presence/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_query_token_accepted(self, client):
        resp = client.get("/api/notifications/unread-count", params={"token": make_token("u1")})
        assert resp.status_code == 200

    @pytest.mark.parametrize("method, endpoint", MAINTENANCE_ENDPOINTS)
    def test_maintenance_forbidden_for_users(self, client, method, endpoint):
        resp = getattr(client, method)(endpoint, headers=auth("u1"))
        assert resp.status_code == 403

    @pytest.mark.parametrize("claim", ["is_admin", "is_scheduler"])
    def test_maintenance_allowed_for_admin_and_scheduler(self, client, claim):
        resp = client.get("/api/maintenance/sweeps", headers=auth("ops", **{claim: True}))
        assert resp.status_code == 200
        assert "cleanup_stale_presence" in resp.json()["sweeps"]


# ===========================================================================
# Presence & typing
# ===========================================================================
class TestPresenceRoutes:
    def test_heartbeat_then_read(self, client):
        resp = client.post("/api/presence/heartbeat", headers=auth("u1"))
        assert resp.json() == {"action": "created"}

        resp = client.get("/api/presence/u1", headers=auth("u2"))
        assert resp.status_code == 200
        assert resp.json()["status"] == "online"

    def test_heartbeat_with_context(self, client):
        client.post("/api/presence/heartbeat", json={"context": "feed"}, headers=auth("u1"))
        body = client.get("/api/presence/me", headers=auth("u1")).json()
        assert body["presence"]["current_context"] == "feed"

    def test_invalid_status_is_422(self, client):
        resp = client.put("/api/presence", json={"status": "busy"}, headers=auth("u1"))
        assert resp.status_code == 422
        assert "Invalid status" in resp.json()["detail"]

    def test_online_friends(self, client):
        client.post("/api/presence/heartbeat", headers=auth("a"))
        client.post("/api/presence/heartbeat", headers=auth("b"))
        client.post("/api/presence/offline", headers=auth("b"))
        resp = client.get(
            "/api/presence/online-friends",
            params=[("friend_id", "a"), ("friend_id", "b")],
            headers=auth("u1"),
        )
        assert [f["actor_id"] for f in resp.json()] == ["a"]


class TestTypingRoutes:
    def test_start_and_list(self, client):
        resp = client.post(
            "/api/typing/c1/start", json={"display_name": "Ana"}, headers=auth("u1"),
        )
        assert resp.json() == {"action": "created"}

        others = client.get("/api/typing/c1", headers=auth("u2")).json()
        assert [t["actor_id"] for t in others] == ["u1"]
        assert client.get("/api/typing/c1", headers=auth("u1")).json() == []

    def test_stop(self, client):
        client.post("/api/typing/c1/start", headers=auth("u1"))
        assert client.post("/api/typing/c1/stop", headers=auth("u1")).json() == {"ok": True}
        resp = client.get("/api/typing/c1/users/u1", headers=auth("u2"))
        assert resp.json() == {"is_typing": False}


# ===========================================================================
# Notifications
# ===========================================================================
class TestNotificationRoutes:
    PAYLOAD = {
        "recipient_id": "r1",
        "kind": "FOLLOW",
        "title": "New follower",
        "body": "Ana followed you",
        "source_id": "n-1",
    }

    def test_push_requires_maintenance(self, client):
        resp = client.post("/api/notifications", json=self.PAYLOAD, headers=auth("u1"))
        assert resp.status_code == 403

    def test_push_deduplicates_on_source(self, client):
        admin = auth("backend", is_admin=True)
        first = client.post("/api/notifications", json=self.PAYLOAD, headers=admin)
        again = client.post("/api/notifications", json=self.PAYLOAD, headers=admin)
        assert first.status_code == 201
        assert first.json()["created"] is True
        assert again.json() == {"id": first.json()["id"], "created": False}

        count = client.get("/api/notifications/unread-count", headers=auth("r1")).json()
        assert count == {"count": 1}

    def test_unknown_kind_is_422(self, client):
        payload = {**self.PAYLOAD, "kind": "SPAM"}
        resp = client.post("/api/notifications", json=payload, headers=auth("b", is_admin=True))
        assert resp.status_code == 422

    def test_read_flow(self, client):
        admin = auth("backend", is_admin=True)
        nid = client.post("/api/notifications", json=self.PAYLOAD, headers=admin).json()["id"]

        # Another user cannot mark someone else's notification.
        assert client.post(f"/api/notifications/{nid}/read", headers=auth("r2")).json() == {"ok": False}
        assert client.post(f"/api/notifications/{nid}/read", headers=auth("r1")).json() == {"ok": True}
        assert client.get("/api/notifications/unread", headers=auth("r1")).json() == []

    def test_delete_missing_is_404(self, client):
        assert client.delete("/api/notifications/999", headers=auth("r1")).status_code == 404


# ===========================================================================
# Receipts & gatherings
# ===========================================================================
class TestReceiptRoutes:
    def test_mark_and_check(self, client):
        url = "/api/receipts/c1/messages/m1"
        assert client.post(url, headers=auth("bob")).json() == {"status": "marked_read"}
        assert client.post(url, headers=auth("bob")).json() == {"status": "already_read"}
        resp = client.get("/api/receipts/messages/m1/readers/bob", headers=auth("alice"))
        assert resp.json()["has_read"] is True

    def test_unread_count(self, client):
        body = {"message_ids": ["m1", "m2"], "author_ids": ["alice", "alice"]}
        resp = client.post("/api/receipts/c1/unread-count", json=body, headers=auth("bob"))
        assert resp.json() == {"count": 2}

    def test_mismatched_lists_is_422(self, client):
        body = {"message_ids": ["m1", "m2"], "author_ids": ["alice"]}
        resp = client.post("/api/receipts/c1/unread-count", json=body, headers=auth("bob"))
        assert resp.status_code == 422


class TestGatheringRoutes:
    def test_vote_and_leader(self, client):
        vote = {"category": "venue", "option_id": "pizza"}
        assert client.post("/api/gatherings/g1/votes", json=vote, headers=auth("v1")).json() == {
            "action": "created",
        }
        resp = client.get("/api/gatherings/g1/leader?category=venue", headers=auth("v2"))
        assert resp.json()["leader"]["option_id"] == "pizza"

        mine = client.get("/api/gatherings/g1/votes/me", headers=auth("v1")).json()
        assert mine["venue"] == "pizza"

    def test_bad_category_is_422(self, client):
        vote = {"category": "dessert", "option_id": "cake"}
        resp = client.post("/api/gatherings/g1/votes", json=vote, headers=auth("v1"))
        assert resp.status_code == 422

    def test_bad_category_stream_is_422(self, client):
        resp = client.get("/api/gatherings/g1/leader/stream?category=dessert", headers=auth("v1"))
        assert resp.status_code == 422


# ===========================================================================
# Activity, leaderboard, shared posts
# ===========================================================================
class TestActivityRoutes:
    def test_record_undo(self, client):
        body = {"kind": "liked_post", "target_id": "p1", "target_kind": "post"}
        resp = client.post("/api/activity", json=body, headers=auth("a1"))
        assert resp.status_code == 201
        assert resp.json()["created"] is True

        feed = client.get("/api/activity/feed?friend_id=a1", headers=auth("u1")).json()
        assert [f["kind"] for f in feed] == ["liked_post"]

        resp = client.post(
            "/api/activity/undo", json={"kind": "liked_post", "target_id": "p1"}, headers=auth("a1"),
        )
        assert resp.json() == {"deleted_count": 1}

    def test_fan_out(self, client):
        body = {
            "kind": "followed",
            "target_id": "u9",
            "target_kind": "user",
            "recipient_ids": ["u9"],
            "notification_kind": "FOLLOW",
            "title": "New follower",
            "body": "a1 followed you",
            "source_id": "follow-1",
        }
        resp = client.post("/api/activity/fan-out", json=body, headers=auth("a1"))
        assert resp.status_code == 201
        assert resp.json()["notified"] == 1


class TestLeaderboardRoutes:
    def test_referral_requires_maintenance(self, client):
        body = {"actor_id": "ana", "display_name": "Ana"}
        assert client.post("/api/leaderboard/referrals", json=body, headers=auth("ana")).status_code == 403

    def test_board_and_rank(self, client):
        body = {"actor_id": "ana", "display_name": "Ana"}
        client.post("/api/leaderboard/referrals", json=body, headers=auth("b", is_scheduler=True))

        board = client.get("/api/leaderboard/weekly", headers=auth("u1")).json()
        assert [(e["actor_id"], e["rank"]) for e in board] == [("ana", 1)]
        assert client.get("/api/leaderboard/me", headers=auth("ana")).json()["rank"] == 1
        assert client.get("/api/leaderboard/me", headers=auth("bo")).status_code == 404

    def test_unknown_period_is_422(self, client):
        assert client.get("/api/leaderboard/daily", headers=auth("u1")).status_code == 422
        assert client.get("/api/leaderboard/daily/stream", headers=auth("u1")).status_code == 422


class TestSharedPostRoutes:
    def _share(self, client):
        resp = client.post(
            "/api/shared-posts",
            json={"recipient_id": "bo", "post_id": "p1", "sender_name": "Ana"},
            headers=auth("ana"),
        )
        assert resp.status_code == 201
        return resp.json()["shared_post_id"]

    def test_share_shows_in_conversation(self, client):
        self._share(client)
        convo = client.get("/api/shared-posts/conversations/ana", headers=auth("bo")).json()
        assert [c["post_id"] for c in convo] == ["p1"]
        assert client.get("/api/shared-posts/unread-count", headers=auth("bo")).json() == {"count": 1}

    def test_share_with_self_is_422(self, client):
        resp = client.post(
            "/api/shared-posts", json={"recipient_id": "ana", "post_id": "p1"}, headers=auth("ana"),
        )
        assert resp.status_code == 422

    def test_delete_by_outsider_is_403(self, client):
        sid = self._share(client)
        resp = client.delete(f"/api/shared-posts/{sid}", headers=auth("eve"))
        assert resp.status_code == 403
        assert resp.json() == {"ok": False, "error": "not_authorized"}

    def test_delete_missing_is_404(self, client):
        resp = client.delete("/api/shared-posts/999", headers=auth("ana"))
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    def test_resend_notification_is_idempotent(self, client):
        sid = self._share(client)
        resp = client.post(f"/api/shared-posts/{sid}/notify", headers=auth("ana"))
        assert resp.status_code == 200
        assert resp.json()["created"] is False
        assert len(client.get("/api/notifications", headers=auth("bo")).json()) == 1

    def test_resend_by_non_sender_is_404(self, client):
        sid = self._share(client)
        resp = client.post(f"/api/shared-posts/{sid}/notify", headers=auth("bo"))
        assert resp.status_code == 404


class TestConfiguredFeedLimit:
    @pytest.fixture
    def test_config(self):
        return PulseConfig(service_name="Pulse Test", api_port=8000, default_feed_limit=2)

    def test_notification_feed_uses_configured_default(self, client):
        admin = auth("backend", is_admin=True)
        for i in range(3):
            client.post(
                "/api/notifications",
                json={"recipient_id": "r1", "kind": "GENERAL", "title": "t", "body": f"b{i}"},
                headers=admin,
            )
        assert len(client.get("/api/notifications", headers=auth("r1")).json()) == 2
        assert len(client.get("/api/notifications/unread", headers=auth("r1")).json()) == 2
        resp = client.get("/api/notifications?limit=3", headers=auth("r1"))
        assert len(resp.json()) == 3

    def test_conversation_uses_configured_default(self, client):
        for post in ("p1", "p2", "p3"):
            client.post(
                "/api/shared-posts", json={"recipient_id": "bo", "post_id": post}, headers=auth("ana"),
            )
        convo = client.get("/api/shared-posts/conversations/bo", headers=auth("ana")).json()
        assert [c["post_id"] for c in convo] == ["p2", "p3"]


# ===========================================================================
# Maintenance
# ===========================================================================
class TestMaintenanceRoutes:
    def test_run_single_sweep(self, client):
        client.post("/api/typing/c1/start", headers=auth("u1"))
        resp = client.post(
            "/api/maintenance/sweeps/cleanup_expired_indicators",
            headers=auth("cron", is_scheduler=True),
        )
        assert resp.status_code == 200
        assert resp.json()["sweep"] == "cleanup_expired_indicators"

    def test_unknown_sweep_is_422(self, client):
        resp = client.post("/api/maintenance/sweeps/nope", headers=auth("cron", is_scheduler=True))
        assert resp.status_code == 422

    def test_stats(self, client):
        resp = client.get("/api/maintenance/stats", headers=auth("root", is_admin=True))
        assert resp.json() == {
            "subscriptions": 0,
            "listener_healthy": False,
            "listener_failed": False,
        }
