"""
pulse.services.presence_service — Presence & Heartbeats
========================================================

One ``presence`` row per actor, overwritten on every heartbeat or status
change.  Clients heartbeat every ~30 s; an actor whose last heartbeat is
older than the stale threshold (120 s) *reads* as offline whatever the
stored status says.  :func:`cleanup_stale` later makes the stored status
agree so subscribers see the transition.

All public functions are synchronous; call them from async code with
``await run_db(presence_service.heartbeat, store, actor_id)``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from pulse.constants import PRESENCE_STALE_AFTER, as_utc, iso, parse_choice, utcnow
from pulse.database.models import DeviceClass, Presence, PresenceStatus
from pulse.engine.store import ReactiveStore, Subscription

logger = logging.getLogger(__name__)

TABLE = Presence.__tablename__


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------
def _effective_status(row: Presence, now: datetime, stale_after: timedelta) -> str:
    if now - as_utc(row.last_seen_at) > stale_after:
        return PresenceStatus.OFFLINE.value
    return row.status


def _view(
    actor_id: str,
    row: Presence | None,
    now: datetime,
    stale_after: timedelta,
) -> dict[str, Any]:
    if row is None:
        return {
            "actor_id": actor_id,
            "status": PresenceStatus.OFFLINE.value,
            "is_online": False,
            "last_seen_at": None,
            "current_context": None,
            "device_class": None,
        }
    status = _effective_status(row, now, stale_after)
    return {
        "actor_id": actor_id,
        "status": status,
        "is_online": status == PresenceStatus.ONLINE.value,
        "last_seen_at": iso(row.last_seen_at),
        "current_context": row.current_context,
        "device_class": row.device_class,
    }


def _load(session: Session, actor_ids: list[str]) -> dict[str, Presence]:
    if not actor_ids:
        return {}
    rows = session.scalars(
        select(Presence).where(Presence.actor_id.in_(actor_ids))
    ).all()
    return {r.actor_id: r for r in rows}


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def update_presence(
    store: ReactiveStore,
    actor_id: str,
    status: str,
    *,
    context: str | None = None,
    device_id: str | None = None,
    device_class: str | None = None,
    now: datetime | None = None,
) -> str:
    """Set *actor_id*'s status explicitly.  Returns ``"created"`` or ``"updated"``.

    Raises :class:`ValueError` for an unknown status or device class.
    """
    parsed = parse_choice(PresenceStatus, status, "status")
    values: dict[str, Any] = {
        "status": parsed.value,
        "last_seen_at": now or utcnow(),
        "current_context": context,
    }
    if device_id is not None:
        values["device_id"] = device_id
    if device_class is not None:
        values["device_class"] = parse_choice(DeviceClass, device_class, "device_class").value

    created = store.write(Presence, {"actor_id": actor_id}, values, partition=actor_id)
    return "created" if created else "updated"


def heartbeat(
    store: ReactiveStore,
    actor_id: str,
    *,
    context: str | None = None,
    now: datetime | None = None,
) -> str:
    """Refresh ``last_seen_at`` and force status online.

    Creates the record on first contact.  Returns ``"created"`` or
    ``"updated"``.
    """
    values: dict[str, Any] = {
        "status": PresenceStatus.ONLINE.value,
        "last_seen_at": now or utcnow(),
    }
    if context is not None:
        values["current_context"] = context
    created = store.write(Presence, {"actor_id": actor_id}, values, partition=actor_id)
    return "created" if created else "updated"


def set_offline(
    store: ReactiveStore, actor_id: str, *, now: datetime | None = None,
) -> bool:
    """Mark *actor_id* offline and clear its context.

    Returns False if the actor never sent a heartbeat.
    """
    with store.transaction() as ctx:
        result = ctx.session.execute(
            update(Presence)
            .where(Presence.actor_id == actor_id)
            .values(
                status=PresenceStatus.OFFLINE.value,
                last_seen_at=now or utcnow(),
                current_context=None,
            )
        )
        if result.rowcount:
            ctx.touch(TABLE, actor_id)
    if not result.rowcount:
        logger.debug("set_offline: no presence record for %s", actor_id)
    return bool(result.rowcount)


def cleanup_stale(
    store: ReactiveStore,
    *,
    now: datetime | None = None,
    stale_after: timedelta = PRESENCE_STALE_AFTER,
) -> int:
    """Flip non-offline records whose heartbeat is older than *stale_after*.

    Returns the number of records transitioned.
    """
    cutoff = (now or utcnow()) - stale_after
    with store.transaction() as ctx:
        actor_ids = ctx.session.scalars(
            select(Presence.actor_id).where(
                Presence.status != PresenceStatus.OFFLINE.value,
                Presence.last_seen_at < cutoff,
            )
        ).all()
        if actor_ids:
            ctx.session.execute(
                update(Presence)
                .where(Presence.actor_id.in_(actor_ids))
                .values(status=PresenceStatus.OFFLINE.value)
            )
            for actor_id in actor_ids:
                ctx.touch(TABLE, actor_id)

    if actor_ids:
        logger.info("Presence: %d stale actors marked offline", len(actor_ids))
    return len(actor_ids)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _query_presence(
    session: Session, actor_id: str, stale_after: timedelta, now: datetime | None = None,
) -> dict[str, Any]:
    row = _load(session, [actor_id]).get(actor_id)
    return _view(actor_id, row, now or utcnow(), stale_after)


def _query_batch(
    session: Session,
    actor_ids: list[str],
    stale_after: timedelta,
    now: datetime | None = None,
) -> dict[str, dict[str, Any]]:
    now = now or utcnow()
    rows = _load(session, actor_ids)
    return {a: _view(a, rows.get(a), now, stale_after) for a in actor_ids}


def _query_online_friends(
    session: Session,
    friend_ids: list[str],
    stale_after: timedelta,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    now = now or utcnow()
    rows = _load(session, friend_ids)
    views = [
        _view(a, rows[a], now, stale_after) for a in friend_ids if a in rows
    ]
    return [v for v in views if v["status"] != PresenceStatus.OFFLINE.value]


def get_presence(
    store: ReactiveStore,
    actor_id: str,
    *,
    now: datetime | None = None,
    stale_after: timedelta = PRESENCE_STALE_AFTER,
) -> dict[str, Any]:
    """Effective presence for one actor (unknown actors read as offline)."""
    return store.read(_query_presence, actor_id, stale_after, now)


def get_batch_presence(
    store: ReactiveStore,
    actor_ids: list[str],
    *,
    now: datetime | None = None,
    stale_after: timedelta = PRESENCE_STALE_AFTER,
) -> dict[str, dict[str, Any]]:
    return store.read(_query_batch, list(actor_ids), stale_after, now)


def get_online_friends(
    store: ReactiveStore,
    friend_ids: list[str],
    *,
    now: datetime | None = None,
    stale_after: timedelta = PRESENCE_STALE_AFTER,
) -> list[dict[str, Any]]:
    """Friends whose effective status is online or away."""
    return store.read(_query_online_friends, list(friend_ids), stale_after, now)


def get_online_count(
    store: ReactiveStore,
    *,
    now: datetime | None = None,
    stale_after: timedelta = PRESENCE_STALE_AFTER,
) -> dict[str, int]:
    """``{"online": fresh online actors, "total": stored-online actors}``."""
    cutoff = (now or utcnow()) - stale_after

    def _count(session: Session) -> dict[str, int]:
        total = session.scalar(
            select(func.count()).select_from(Presence)
            .where(Presence.status == PresenceStatus.ONLINE.value)
        ) or 0
        online = session.scalar(
            select(func.count()).select_from(Presence)
            .where(
                Presence.status == PresenceStatus.ONLINE.value,
                Presence.last_seen_at >= cutoff,
            )
        ) or 0
        return {"online": online, "total": total}

    return store.read(_count)


def get_my_presence(store: ReactiveStore, actor_id: str) -> dict[str, Any] | None:
    """The stored record as written, without staleness applied."""
    def _raw(session: Session) -> dict[str, Any] | None:
        row = session.get(Presence, actor_id)
        if row is None:
            return None
        return {
            "actor_id": row.actor_id,
            "status": row.status,
            "last_seen_at": iso(row.last_seen_at),
            "current_context": row.current_context,
            "device_id": row.device_id,
            "device_class": row.device_class,
        }

    return store.read(_raw)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------
def subscribe_presence(
    store: ReactiveStore,
    actor_ids: list[str],
    callback: Callable[[dict[str, dict[str, Any]]], None],
    *,
    stale_after: timedelta = PRESENCE_STALE_AFTER,
) -> Subscription:
    """Live ``{actor_id: presence}`` map for *actor_ids*."""
    actor_ids = list(actor_ids)
    return store.subscribe(
        partial(_query_batch, actor_ids=actor_ids, stale_after=stale_after),
        depends_on=[(TABLE, a) for a in actor_ids],
        callback=callback,
        name=f"presence:{len(actor_ids)}",
    )


def subscribe_online_friends(
    store: ReactiveStore,
    friend_ids: list[str],
    callback: Callable[[list[dict[str, Any]]], None],
    *,
    stale_after: timedelta = PRESENCE_STALE_AFTER,
) -> Subscription:
    friend_ids = list(friend_ids)
    return store.subscribe(
        partial(_query_online_friends, friend_ids=friend_ids, stale_after=stale_after),
        depends_on=[(TABLE, a) for a in friend_ids],
        callback=callback,
        name=f"online-friends:{len(friend_ids)}",
    )
