"""
tests/test_receipts.py — Read Receipt Tests
=============================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import T0

from pulse.services import receipt_service

MESSAGES = ["m1", "m2", "m3", "m4"]
AUTHORS = ["alice", "bob", "alice", "alice"]


class TestMarkRead:
    def test_mark_read_is_idempotent(self, store):
        assert receipt_service.mark_read(store, "m1", "c1", "bob", now=T0) == "marked_read"
        assert receipt_service.mark_read(store, "m1", "c1", "bob", now=T0) == "already_read"
        assert len(receipt_service.receipts_for(store, "m1")) == 1

    def test_second_mark_keeps_original_time(self, store):
        receipt_service.mark_read(store, "m1", "c1", "bob", now=T0)
        receipt_service.mark_read(store, "m1", "c1", "bob", now=T0 + timedelta(hours=1))
        assert receipt_service.has_read(store, "m1", "bob") == {
            "has_read": True,
            "read_at": T0.isoformat(),
        }

    def test_mark_many_counts_only_new(self, store):
        receipt_service.mark_read(store, "m1", "c1", "bob", now=T0)
        assert receipt_service.mark_many_read(store, ["m1", "m2", "m2", "m3"], "c1", "bob") == 2

    def test_mark_conversation_read(self, store):
        assert receipt_service.mark_conversation_read(store, "c1", "bob", MESSAGES) == 4
        assert receipt_service.mark_conversation_read(store, "c1", "bob", MESSAGES) == 0


class TestReads:
    def test_receipts_for_lists_readers_in_order(self, store):
        receipt_service.mark_read(store, "m1", "c1", "carol", now=T0 + timedelta(seconds=5))
        receipt_service.mark_read(store, "m1", "c1", "bob", now=T0)
        readers = receipt_service.receipts_for(store, "m1")
        assert [r["reader_id"] for r in readers] == ["bob", "carol"]

    def test_batch_receipts_includes_unread_messages(self, store):
        receipt_service.mark_read(store, "m1", "c1", "bob", now=T0)
        batch = receipt_service.batch_receipts_for(store, ["m1", "m2"])
        assert len(batch["m1"]) == 1
        assert batch["m2"] == []

    def test_has_read_when_absent(self, store):
        assert receipt_service.has_read(store, "m1", "bob") == {"has_read": False, "read_at": None}

    def test_unread_count_skips_own_messages(self, store):
        assert receipt_service.unread_count_in(store, "c1", "bob", MESSAGES, AUTHORS) == 3
        receipt_service.mark_read(store, "m1", "c1", "bob", now=T0)
        assert receipt_service.unread_count_in(store, "c1", "bob", MESSAGES, AUTHORS) == 2

    def test_unread_count_rejects_mismatched_lists(self, store):
        with pytest.raises(ValueError, match="same length"):
            receipt_service.unread_count_in(store, "c1", "bob", MESSAGES, AUTHORS[:2])

    def test_last_read_message(self, store):
        assert receipt_service.last_read_message(store, "c1", "bob") == {
            "last_read_message_id": None,
            "last_read_at": None,
        }
        receipt_service.mark_read(store, "m1", "c1", "bob", now=T0)
        receipt_service.mark_read(store, "m3", "c1", "bob", now=T0 + timedelta(seconds=9))
        assert receipt_service.last_read_message(store, "c1", "bob")["last_read_message_id"] == "m3"

    def test_conversation_read_status(self, store):
        receipt_service.mark_read(store, "m1", "c1", "bob", now=T0)
        receipt_service.mark_read(store, "m1", "c1", "carol", now=T0)
        receipt_service.mark_read(store, "m9", "c2", "bob", now=T0)
        status = receipt_service.conversation_read_status(store, "c1")
        assert set(status) == {"m1"}
        assert set(status["m1"]) == {"bob", "carol"}


class TestSubscriptions:
    def test_receipts_subscription(self, store, recorder):
        receipt_service.subscribe_receipts(store, "c1", ["m1", "m2"], recorder)
        assert recorder.last == {"m1": [], "m2": []}
        receipt_service.mark_read(store, "m2", "c1", "bob")
        assert [r["reader_id"] for r in recorder.last["m2"]] == ["bob"]

    def test_repeat_mark_publishes_nothing(self, store, recorder):
        receipt_service.mark_read(store, "m1", "c1", "bob")
        receipt_service.subscribe_receipts(store, "c1", ["m1"], recorder)
        receipt_service.mark_read(store, "m1", "c1", "bob")
        assert len(recorder.values) == 1

    def test_unread_count_subscription(self, store, recorder):
        receipt_service.subscribe_unread_count(store, "c1", "bob", MESSAGES, AUTHORS, recorder)
        receipt_service.mark_many_read(store, ["m1", "m3"], "c1", "bob")
        assert recorder.values == [3, 1]
