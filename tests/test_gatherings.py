"""
tests/test_gatherings.py — Gathering Vote Service Tests
=========================================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import T0

from pulse.services import gathering_service


def _vote(store, voter, option, category="venue", minutes=0, name=None):
    return gathering_service.cast_vote(
        store, "g1", voter, category, option,
        voter_name=name, now=T0 + timedelta(minutes=minutes),
    )


class TestCastVote:
    def test_cast_then_switch(self, store):
        assert _vote(store, "v1", "pizza") == "created"
        assert _vote(store, "v1", "tacos", minutes=1) == "updated"
        assert gathering_service.get_user_vote(store, "g1", "v1", "venue") == "tacos"

    def test_switching_moves_the_vote(self, store):
        _vote(store, "v1", "pizza")
        _vote(store, "v2", "pizza", minutes=1)
        _vote(store, "v1", "tacos", minutes=2)

        tallies = gathering_service.get_tallies(store, "g1")
        assert tallies["venue"]["pizza"]["count"] == 1
        assert tallies["venue"]["tacos"]["count"] == 1
        assert tallies["total_voters"] == 2

    def test_repeat_vote_counts_once(self, store):
        _vote(store, "v1", "pizza")
        _vote(store, "v1", "pizza", minutes=1)
        assert gathering_service.get_tallies(store, "g1")["venue"]["pizza"]["count"] == 1

    def test_categories_are_independent(self, store):
        _vote(store, "v1", "pizza")
        _vote(store, "v1", "fri", category="date")
        _vote(store, "v1", "19:00", category="time")
        assert gathering_service.get_user_votes(store, "g1", "v1") == {
            "venue": "pizza", "date": "fri", "time": "19:00",
        }

    def test_rejects_unknown_category(self, store):
        with pytest.raises(ValueError, match="Invalid category"):
            _vote(store, "v1", "pizza", category="dessert")

    def test_rejects_empty_option(self, store):
        with pytest.raises(ValueError):
            _vote(store, "v1", "")


class TestRemoval:
    def test_remove_vote(self, store):
        _vote(store, "v1", "pizza")
        assert gathering_service.remove_vote(store, "g1", "v1", "venue") is True
        assert gathering_service.remove_vote(store, "g1", "v1", "venue") is False
        assert gathering_service.get_leader(store, "g1", "venue") is None

    def test_clear_gathering(self, store):
        _vote(store, "v1", "pizza")
        _vote(store, "v2", "fri", category="date")
        gathering_service.cast_vote(store, "g2", "v1", "venue", "sushi", now=T0)
        assert gathering_service.clear_gathering(store, "g1") == 2
        assert gathering_service.get_user_vote(store, "g2", "v1", "venue") == "sushi"


class TestLeader:
    def test_leader_with_tie_break(self, store):
        _vote(store, "v1", "tacos", minutes=5)
        _vote(store, "v2", "pizza", minutes=1)
        assert gathering_service.get_leader(store, "g1", "venue") == {
            "option_id": "pizza", "count": 1, "tied_with": ["tacos"],
        }

    def test_leader_by_category_map(self, store):
        _vote(store, "v1", "pizza")
        result = gathering_service.get_leader(store, "g1")
        assert result["venue"]["option_id"] == "pizza"
        assert result["date"] is None

    def test_switched_ballot_keeps_original_place_for_ties(self, store):
        _vote(store, "v1", "pizza", minutes=0)
        _vote(store, "v2", "tacos", minutes=1)
        # v1 switches to sushi later but still holds the earliest ballot.
        _vote(store, "v1", "sushi", minutes=2)
        assert gathering_service.get_leader(store, "g1", "venue") == {
            "option_id": "sushi", "count": 1, "tied_with": ["tacos"],
        }

    def test_recast_does_not_lose_place(self, store):
        _vote(store, "v1", "pizza", minutes=0)
        _vote(store, "v2", "tacos", minutes=1)
        _vote(store, "v1", "pizza", minutes=2)
        assert gathering_service.get_leader(store, "g1", "venue")["option_id"] == "pizza"

    def test_votes_by_option(self, store):
        _vote(store, "v1", "pizza", name="Ana")
        _vote(store, "v2", "pizza", minutes=1)
        by_option = gathering_service.get_votes_by_option(store, "g1", "venue")
        assert [v["voter_id"] for v in by_option["pizza"]] == ["v1", "v2"]
        assert by_option["pizza"][0]["voter_name"] == "Ana"


class TestSubscriptions:
    def test_tallies_subscription(self, store, recorder):
        gathering_service.subscribe_tallies(store, "g1", recorder)
        gathering_service.cast_vote(store, "g1", "v1", "venue", "pizza")
        assert recorder.last["venue"]["pizza"]["count"] == 1

    def test_leader_subscription_only_on_change(self, store, recorder):
        gathering_service.subscribe_leader(store, "g1", recorder, category="venue")
        gathering_service.cast_vote(store, "g1", "v1", "venue", "pizza")
        # A second pizza vote changes the count, so the leader payload changes.
        gathering_service.cast_vote(store, "g1", "v2", "venue", "pizza")
        # A date vote leaves the venue leader untouched.
        gathering_service.cast_vote(store, "g1", "v2", "date", "fri")

        assert recorder.values[0] is None
        assert [v["count"] for v in recorder.values[1:]] == [1, 2]

    def test_leader_subscription_rejects_bad_category(self, store):
        with pytest.raises(ValueError):
            gathering_service.subscribe_leader(store, "g1", lambda _: None, category="nope")
        assert store.subscription_count == 0
