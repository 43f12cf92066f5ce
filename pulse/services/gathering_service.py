"""
pulse.services.gathering_service — Group Decision Voting
=========================================================

Friends deciding where, which day, and what time to meet.  Each voter
holds at most one *current* ballot per (gathering, category); voting again
overwrites it, so nobody is ever counted twice.  Tallies and the leader
are derived from the ballots on every read (see :mod:`pulse.engine.tally`).
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import partial
from typing import Any, Callable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from pulse.constants import iso, parse_choice, utcnow
from pulse.database.models import GatheringVote, VoteCategory
from pulse.engine.store import ReactiveStore, Subscription
from pulse.engine.tally import Ballot, compute_tallies, leaders, select_leader

logger = logging.getLogger(__name__)

TABLE = GatheringVote.__tablename__


def _ballots(session: Session, gathering_id: str) -> list[Ballot]:
    rows = session.scalars(
        select(GatheringVote).where(GatheringVote.gathering_id == gathering_id)
    )
    return [
        Ballot(
            id=r.id,
            voter_id=r.voter_id,
            voter_name=r.voter_name,
            category=r.category,
            option_id=r.option_id,
            cast_at=r.updated_at,
            created_at=r.created_at,
        )
        for r in rows
    ]


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def cast_vote(
    store: ReactiveStore,
    gathering_id: str,
    voter_id: str,
    category: str,
    option_id: str,
    *,
    voter_name: str | None = None,
    now: datetime | None = None,
) -> str:
    """Cast or switch *voter_id*'s ballot.  Returns ``"created"`` or ``"updated"``."""
    parsed = parse_choice(VoteCategory, category, "category")
    if not option_id:
        raise ValueError("option_id must not be empty")
    now = now or utcnow()

    with store.transaction() as ctx:
        created = ctx.upsert(
            GatheringVote,
            key={
                "gathering_id": gathering_id,
                "voter_id": voter_id,
                "category": parsed.value,
            },
            values={"option_id": option_id, "voter_name": voter_name, "updated_at": now},
            on_insert={"created_at": now},
        )
        ctx.touch(TABLE, gathering_id)
    return "created" if created else "updated"


def remove_vote(
    store: ReactiveStore, gathering_id: str, voter_id: str, category: str,
) -> bool:
    """Withdraw a ballot.  False if there was none."""
    parsed = parse_choice(VoteCategory, category, "category")
    with store.transaction() as ctx:
        result = ctx.session.execute(
            delete(GatheringVote).where(
                GatheringVote.gathering_id == gathering_id,
                GatheringVote.voter_id == voter_id,
                GatheringVote.category == parsed.value,
            )
        )
        if result.rowcount:
            ctx.touch(TABLE, gathering_id)
    return bool(result.rowcount)


def clear_gathering(store: ReactiveStore, gathering_id: str) -> int:
    """Delete every ballot (the gathering was deleted upstream)."""
    with store.transaction() as ctx:
        result = ctx.session.execute(
            delete(GatheringVote).where(GatheringVote.gathering_id == gathering_id)
        )
        if result.rowcount:
            ctx.touch(TABLE, gathering_id)
    logger.info("Gathering %s: cleared %d ballots", gathering_id, result.rowcount)
    return result.rowcount


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _query_tallies(session: Session, gathering_id: str) -> dict[str, Any]:
    return compute_tallies(_ballots(session, gathering_id))


def _query_leader(
    session: Session, gathering_id: str, category: str | None = None,
) -> Any:
    ballots = _ballots(session, gathering_id)
    if category is None:
        return leaders(ballots)
    return select_leader(ballots, category)


def get_tallies(store: ReactiveStore, gathering_id: str) -> dict[str, Any]:
    return store.read(_query_tallies, gathering_id)


def get_leader(
    store: ReactiveStore, gathering_id: str, category: str | None = None,
) -> Any:
    """Leader for *category*, or a ``{category: leader}`` map when omitted.

    A leader is ``{"option_id", "count", "tied_with"}``; ``None`` means no
    ballots in that category.
    """
    if category is not None:
        category = parse_choice(VoteCategory, category, "category").value
    return store.read(_query_leader, gathering_id, category)


def get_user_votes(
    store: ReactiveStore, gathering_id: str, voter_id: str,
) -> dict[str, str | None]:
    """``{"venue": option | None, "date": ..., "time": ...}``."""
    def _query(session: Session) -> dict[str, str | None]:
        votes: dict[str, str | None] = {c.value: None for c in VoteCategory}
        rows = session.execute(
            select(GatheringVote.category, GatheringVote.option_id).where(
                GatheringVote.gathering_id == gathering_id,
                GatheringVote.voter_id == voter_id,
            )
        )
        for category, option_id in rows:
            votes[category] = option_id
        return votes

    return store.read(_query)


def get_user_vote(
    store: ReactiveStore, gathering_id: str, voter_id: str, category: str,
) -> str | None:
    parsed = parse_choice(VoteCategory, category, "category")
    return store.read(
        lambda s: s.scalar(
            select(GatheringVote.option_id).where(
                GatheringVote.gathering_id == gathering_id,
                GatheringVote.voter_id == voter_id,
                GatheringVote.category == parsed.value,
            )
        )
    )


def get_votes_by_option(
    store: ReactiveStore, gathering_id: str, category: str,
) -> dict[str, list[dict[str, Any]]]:
    """``{option_id: [{"voter_id", "voter_name", "voted_at"}, ...]}``."""
    parsed = parse_choice(VoteCategory, category, "category")

    def _query(session: Session) -> dict[str, list[dict[str, Any]]]:
        out: dict[str, list[dict[str, Any]]] = {}
        rows = session.scalars(
            select(GatheringVote)
            .where(
                GatheringVote.gathering_id == gathering_id,
                GatheringVote.category == parsed.value,
            )
            .order_by(GatheringVote.updated_at, GatheringVote.id)
        )
        for r in rows:
            out.setdefault(r.option_id, []).append({
                "voter_id": r.voter_id,
                "voter_name": r.voter_name,
                "voted_at": iso(r.updated_at),
            })
        return out

    return store.read(_query)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------
def subscribe_tallies(
    store: ReactiveStore,
    gathering_id: str,
    callback: Callable[[dict[str, Any]], None],
) -> Subscription:
    return store.subscribe(
        partial(_query_tallies, gathering_id=gathering_id),
        depends_on=[(TABLE, gathering_id)],
        callback=callback,
        name=f"tallies:{gathering_id}",
    )


def subscribe_leader(
    store: ReactiveStore,
    gathering_id: str,
    callback: Callable[[Any], None],
    *,
    category: str | None = None,
) -> Subscription:
    """Redelivers only when the leader actually changes."""
    if category is not None:
        category = parse_choice(VoteCategory, category, "category").value
    return store.subscribe(
        partial(_query_leader, gathering_id=gathering_id, category=category),
        depends_on=[(TABLE, gathering_id)],
        callback=callback,
        name=f"leader:{gathering_id}:{category or '*'}",
    )
