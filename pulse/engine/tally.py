"""
pulse.engine.tally — Gathering Vote Tallies & Leader Selection
===============================================================

Pure functions over a gathering's current ballots; no database access.
The gathering service loads the ballots and hands them here.

Leader rule
-----------
Per category the leader is the option with the highest count.  Ties go to
the option holding the earliest-created current ballot (``created_at``, then
ballot id), so the result does not depend on row order from the database.
A ballot keeps its ``created_at`` when the voter switches options, so a
switched vote carries the voter's original place in line to the new option.
A category with no ballots has no leader.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pulse.constants import as_utc, iso
from pulse.database.models import VoteCategory


@dataclass(frozen=True, slots=True)
class Ballot:
    """One voter's current choice in one category."""

    id: int
    voter_id: str
    voter_name: str | None
    category: str
    option_id: str
    cast_at: datetime
    created_at: datetime


def _option_order(ballots: list[Ballot]) -> dict[tuple[str, str], tuple[datetime, int]]:
    """(category, option) → earliest (created_at, ballot id) among current ballots."""
    first: dict[tuple[str, str], tuple[datetime, int]] = {}
    for b in ballots:
        key = (b.category, b.option_id)
        stamp = (as_utc(b.created_at), b.id)
        if key not in first or stamp < first[key]:
            first[key] = stamp
    return first


def compute_tallies(ballots: list[Ballot]) -> dict[str, Any]:
    """Group *ballots* by category then option.

    Returns::

        {
          "venue": {"opt_a": {"count": 2, "voters": [...], "voter_names": [...]}},
          "date": {...},
          "time": {...},
          "total_voters": 3,
          "last_updated": "2026-10-19T18:00:00+00:00" | None,
        }

    Options inside a category are listed in first-ballot order.
    """
    order = _option_order(ballots)
    tallies: dict[str, Any] = {c.value: {} for c in VoteCategory}

    for b in sorted(ballots, key=lambda b: (order[(b.category, b.option_id)], as_utc(b.created_at), b.id)):
        bucket = tallies.setdefault(b.category, {}).setdefault(
            b.option_id, {"count": 0, "voters": [], "voter_names": []},
        )
        bucket["count"] += 1
        bucket["voters"].append(b.voter_id)
        bucket["voter_names"].append(b.voter_name or "Anonymous")

    latest = max((as_utc(b.cast_at) for b in ballots), default=None)
    tallies["total_voters"] = len({b.voter_id for b in ballots})
    tallies["last_updated"] = iso(latest)
    return tallies


def select_leader(ballots: list[Ballot], category: str) -> dict[str, Any] | None:
    """Return ``{"option_id", "count", "tied_with"}`` for *category*, or None.

    ``tied_with`` lists the other options sharing the top count (empty when
    the lead is strict).
    """
    scoped = [b for b in ballots if b.category == category]
    if not scoped:
        return None

    order = _option_order(scoped)
    counts: dict[str, int] = {}
    for b in scoped:
        counts[b.option_id] = counts.get(b.option_id, 0) + 1

    top = max(counts.values())
    tied = sorted(
        (opt for opt, n in counts.items() if n == top),
        key=lambda opt: order[(category, opt)],
    )
    return {"option_id": tied[0], "count": top, "tied_with": tied[1:]}


def leaders(ballots: list[Ballot]) -> dict[str, dict[str, Any] | None]:
    """Leader per category (``None`` where nobody has voted)."""
    return {c.value: select_leader(ballots, c.value) for c in VoteCategory}
