"""
pulse.services.leaderboard_service — Referral Leaderboard
==========================================================

All-time, weekly, and monthly referral counts per actor.

Window counters are reset two ways:

1. **Lazily** on write: :func:`record_referral` zeroes a counter whose
   stored window id is not the current one before incrementing.
2. **On schedule**: :func:`reset_weekly` / :func:`reset_monthly` zero every
   stale counter so idle actors drop off the board too.

Reads ignore counters from a stale window, so the board is correct even
if the scheduled reset is late.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime
from functools import partial
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from pulse.constants import DEFAULT_LEADERBOARD_LIMIT, clamp_limit, iso, parse_choice, utcnow
from pulse.database.models import LeaderboardEntry
from pulse.engine.store import ReactiveStore, Subscription
from pulse.engine.windows import month_id, week_id

logger = logging.getLogger(__name__)

TABLE = LeaderboardEntry.__tablename__


class LeaderboardPeriod(enum.StrEnum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"


def _count_column(period: LeaderboardPeriod):
    return {
        LeaderboardPeriod.WEEKLY: LeaderboardEntry.weekly_count,
        LeaderboardPeriod.MONTHLY: LeaderboardEntry.monthly_count,
        LeaderboardPeriod.ALL_TIME: LeaderboardEntry.total_count,
    }[period]


def _current_window_filter(period: LeaderboardPeriod, now: datetime):
    if period is LeaderboardPeriod.WEEKLY:
        return LeaderboardEntry.week_id == week_id(now)
    if period is LeaderboardPeriod.MONTHLY:
        return LeaderboardEntry.month_id == month_id(now)
    return None


def _view(row: LeaderboardEntry, now: datetime) -> dict[str, Any]:
    return {
        "actor_id": row.actor_id,
        "display_name": row.display_name,
        "display_image": row.display_image,
        "total_count": row.total_count,
        "weekly_count": row.weekly_count if row.week_id == week_id(now) else 0,
        "monthly_count": row.monthly_count if row.month_id == month_id(now) else 0,
        "last_updated_at": iso(row.last_updated_at),
    }


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def record_referral(
    store: ReactiveStore,
    actor_id: str,
    display_name: str,
    *,
    display_image: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Credit *actor_id* with one successful referral.  Returns the entry."""
    now = now or utcnow()
    week, month = week_id(now), month_id(now)

    with store.transaction() as ctx:
        ctx.insert_if_absent(
            LeaderboardEntry,
            key={"actor_id": actor_id},
            values={
                "display_name": display_name,
                "total_count": 0,
                "weekly_count": 0,
                "monthly_count": 0,
                "week_id": week,
                "month_id": month,
                "last_updated_at": now,
            },
        )
        entry = ctx.session.scalars(
            select(LeaderboardEntry)
            .where(LeaderboardEntry.actor_id == actor_id)
            .with_for_update()
        ).one()

        weekly = entry.weekly_count if entry.week_id == week else 0
        monthly = entry.monthly_count if entry.month_id == month else 0

        entry.display_name = display_name
        if display_image is not None:
            entry.display_image = display_image
        entry.total_count += 1
        entry.weekly_count = weekly + 1
        entry.monthly_count = monthly + 1
        entry.week_id = week
        entry.month_id = month
        entry.last_updated_at = now
        ctx.session.flush()
        view = _view(entry, now)
        ctx.touch(TABLE, actor_id)
    return view


def _reset(store: ReactiveStore, period: LeaderboardPeriod, now: datetime | None) -> int:
    now = now or utcnow()
    if period is LeaderboardPeriod.WEEKLY:
        id_col, count_col, current = LeaderboardEntry.week_id, "weekly_count", week_id(now)
    else:
        id_col, count_col, current = LeaderboardEntry.month_id, "monthly_count", month_id(now)

    with store.transaction() as ctx:
        actor_ids = ctx.session.scalars(
            select(LeaderboardEntry.actor_id).where(id_col != current)
        ).all()
        if actor_ids:
            ctx.session.execute(
                update(LeaderboardEntry)
                .where(LeaderboardEntry.actor_id.in_(actor_ids))
                .values({count_col: 0, id_col.key: current})
            )
            for actor_id in actor_ids:
                ctx.touch(TABLE, actor_id)

    logger.info(
        "Leaderboard: reset %s counters for %d actors (window=%s)",
        period.value, len(actor_ids), current,
    )
    return len(actor_ids)


def reset_weekly(store: ReactiveStore, *, now: datetime | None = None) -> int:
    """Zero weekly counters left over from a previous week.  Returns the reset count."""
    return _reset(store, LeaderboardPeriod.WEEKLY, now)


def reset_monthly(store: ReactiveStore, *, now: datetime | None = None) -> int:
    return _reset(store, LeaderboardPeriod.MONTHLY, now)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _query_board(
    session: Session,
    period: LeaderboardPeriod,
    limit: int = DEFAULT_LEADERBOARD_LIMIT,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    now = now or utcnow()
    count_col = _count_column(period)
    stmt = select(LeaderboardEntry).where(count_col > 0)
    window = _current_window_filter(period, now)
    if window is not None:
        stmt = stmt.where(window)
    stmt = stmt.order_by(
        count_col.desc(), LeaderboardEntry.last_updated_at, LeaderboardEntry.actor_id,
    ).limit(limit)

    board = []
    for rank, row in enumerate(session.scalars(stmt), start=1):
        view = _view(row, now)
        view["rank"] = rank
        view["count"] = getattr(row, count_col.key)
        board.append(view)
    return board


def get_leaderboard(
    store: ReactiveStore,
    period: str = LeaderboardPeriod.ALL_TIME,
    *,
    limit: int | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Top referrers for *period* (``weekly``, ``monthly``, ``all_time``)."""
    parsed = parse_choice(LeaderboardPeriod, period, "period")
    return store.read(
        _query_board, parsed, clamp_limit(limit, DEFAULT_LEADERBOARD_LIMIT), now,
    )


def get_user_rank(
    store: ReactiveStore,
    actor_id: str,
    period: str = LeaderboardPeriod.ALL_TIME,
    *,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """``{"rank", "count", ...entry}`` for *actor_id*, or None if never credited.

    Rank is one more than the number of actors with a strictly higher count.
    """
    parsed = parse_choice(LeaderboardPeriod, period, "period")
    now = now or utcnow()
    count_col = _count_column(parsed)
    window = _current_window_filter(parsed, now)

    def _query(session: Session) -> dict[str, Any] | None:
        row = session.get(LeaderboardEntry, actor_id)
        if row is None:
            return None
        view = _view(row, now)
        count = {
            LeaderboardPeriod.WEEKLY: view["weekly_count"],
            LeaderboardPeriod.MONTHLY: view["monthly_count"],
            LeaderboardPeriod.ALL_TIME: view["total_count"],
        }[parsed]
        stmt = select(func.count()).select_from(LeaderboardEntry).where(count_col > count)
        if window is not None:
            stmt = stmt.where(window)
        higher = session.scalar(stmt) or 0
        view.update(rank=higher + 1, count=count, period=parsed.value)
        return view

    return store.read(_query)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------
def subscribe_leaderboard(
    store: ReactiveStore,
    callback: Callable[[list[dict[str, Any]]], None],
    *,
    period: str = LeaderboardPeriod.ALL_TIME,
    limit: int | None = None,
) -> Subscription:
    parsed = parse_choice(LeaderboardPeriod, period, "period")
    return store.subscribe(
        partial(
            _query_board,
            period=parsed,
            limit=clamp_limit(limit, DEFAULT_LEADERBOARD_LIMIT),
        ),
        depends_on=[(TABLE, None)],
        callback=callback,
        name=f"leaderboard:{parsed.value}",
    )
