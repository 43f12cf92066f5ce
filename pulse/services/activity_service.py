"""
pulse.services.activity_service — Friend Activity Feed
=======================================================

Short-lived "what are my friends up to" entries: posted, liked, commented,
followed, joined a gathering, shared a place.  Every entry expires 24 h
after it was recorded.  Undoing the action (unlike, unfollow) deletes the
matching entry by (actor, kind, target).

Fan-out
-------
One social action usually produces an activity entry *and* notifications.
:func:`fan_out_activity` performs those as independent writes.  Both halves
are idempotent (the activity by actor/kind/target, the notifications by
``source_id``), so a failed fan-out can simply be re-run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from pulse.constants import (
    ACTIVITY_TTL,
    DEFAULT_ACTIVITY_LIMIT,
    clamp_limit,
    iso,
    parse_choice,
    utcnow,
)
from pulse.database.models import (
    ActivityKind,
    FriendActivity,
    NotificationKind,
    TargetKind,
)
from pulse.engine.store import ReactiveStore, Subscription
from pulse.services import notification_service

logger = logging.getLogger(__name__)

TABLE = FriendActivity.__tablename__


def _view(row: FriendActivity) -> dict[str, Any]:
    return {
        "id": row.id,
        "actor_id": row.actor_id,
        "actor_name": row.actor_name,
        "actor_image": row.actor_image,
        "kind": row.kind,
        "target_id": row.target_id,
        "target_kind": row.target_kind,
        "preview": row.preview,
        "created_at": iso(row.created_at),
        "expires_at": iso(row.expires_at),
    }


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def record_activity(
    store: ReactiveStore,
    actor_id: str,
    kind: str,
    *,
    target_id: str | None = None,
    target_kind: str | None = None,
    preview: str | None = None,
    actor_name: str | None = None,
    actor_image: str | None = None,
    now: datetime | None = None,
    ttl: timedelta = ACTIVITY_TTL,
) -> dict[str, Any]:
    """Record a social action.  Returns ``{"id", "created"}``.

    An unexpired entry with the same actor, kind, and target is reused
    rather than duplicated.
    """
    parsed_kind = parse_choice(ActivityKind, kind, "activity kind")
    parsed_target = (
        parse_choice(TargetKind, target_kind, "target kind").value
        if target_kind is not None else None
    )
    now = now or utcnow()

    with store.transaction() as ctx:
        if target_id is not None:
            existing = ctx.session.scalar(
                select(FriendActivity.id).where(
                    FriendActivity.actor_id == actor_id,
                    FriendActivity.kind == parsed_kind.value,
                    FriendActivity.target_id == target_id,
                    FriendActivity.expires_at > now,
                )
            )
            if existing is not None:
                logger.debug(
                    "Activity %s/%s/%s already recorded", actor_id, kind, target_id,
                )
                return {"id": existing, "created": False}

        row = FriendActivity(
            actor_id=actor_id,
            actor_name=actor_name,
            actor_image=actor_image,
            kind=parsed_kind.value,
            target_id=target_id,
            target_kind=parsed_target,
            preview=preview,
            created_at=now,
            expires_at=now + ttl,
        )
        ctx.session.add(row)
        ctx.session.flush()
        activity_id = row.id
        ctx.touch(TABLE, actor_id)
    return {"id": activity_id, "created": True}


def delete_activity(
    store: ReactiveStore, activity_id: int, *, actor_id: str | None = None,
) -> bool:
    with store.transaction() as ctx:
        stmt = select(FriendActivity.actor_id).where(FriendActivity.id == activity_id)
        if actor_id is not None:
            stmt = stmt.where(FriendActivity.actor_id == actor_id)
        owner = ctx.session.scalar(stmt)
        if owner is None:
            return False
        ctx.session.execute(delete(FriendActivity).where(FriendActivity.id == activity_id))
        ctx.touch(TABLE, owner)
    return True


def undo_activity(
    store: ReactiveStore, actor_id: str, kind: str, target_id: str,
) -> int:
    """Delete the entries for an undone action.  Returns how many were removed."""
    parsed = parse_choice(ActivityKind, kind, "activity kind")
    with store.transaction() as ctx:
        result = ctx.session.execute(
            delete(FriendActivity).where(
                FriendActivity.actor_id == actor_id,
                FriendActivity.kind == parsed.value,
                FriendActivity.target_id == target_id,
            )
        )
        if result.rowcount:
            ctx.touch(TABLE, actor_id)
    return result.rowcount


def cleanup_expired(store: ReactiveStore, *, now: datetime | None = None) -> int:
    now = now or utcnow()
    with store.transaction() as ctx:
        rows = ctx.session.execute(
            select(FriendActivity.id, FriendActivity.actor_id)
            .where(FriendActivity.expires_at < now)
        ).all()
        if rows:
            ctx.session.execute(
                delete(FriendActivity).where(FriendActivity.id.in_([r.id for r in rows]))
            )
            for actor_id in {r.actor_id for r in rows}:
                ctx.touch(TABLE, actor_id)

    if rows:
        logger.info("Activity: removed %d expired entries", len(rows))
    return len(rows)


def fan_out_activity(
    store: ReactiveStore,
    actor_id: str,
    kind: str,
    *,
    recipient_ids: Iterable[str] = (),
    notification_kind: str | None = None,
    title: str | None = None,
    body: str | None = None,
    source_id: str | None = None,
    target_id: str | None = None,
    target_kind: str | None = None,
    preview: str | None = None,
    actor_name: str | None = None,
    actor_image: str | None = None,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Record the activity, then notify each recipient.

    Notifications are sent only when *notification_kind*, *title* and
    *body* are all given.  With *source_id*, each recipient's notification
    is deduplicated on ``"{source_id}:{recipient_id}"``.

    Returns ``{"activity_id", "activity_created", "notified"}`` where
    ``notified`` counts notifications actually created.
    """
    if notification_kind is not None:
        parse_choice(NotificationKind, notification_kind, "notification kind")

    activity = record_activity(
        store, actor_id, kind,
        target_id=target_id, target_kind=target_kind, preview=preview,
        actor_name=actor_name, actor_image=actor_image, now=now,
    )

    notified = 0
    if notification_kind and title and body:
        for recipient_id in dict.fromkeys(recipient_ids):
            if recipient_id == actor_id:
                continue
            common = {
                "actor_id": actor_id,
                "actor_name": actor_name,
                "actor_image": actor_image,
                "metadata": metadata,
                "now": now,
            }
            if source_id is not None:
                _, created = notification_service.push_once(
                    store, recipient_id, notification_kind, title, body,
                    source_id=f"{source_id}:{recipient_id}", **common,
                )
            else:
                notification_service.push(
                    store, recipient_id, notification_kind, title, body, **common,
                )
                created = True
            notified += int(created)

    return {
        "activity_id": activity["id"],
        "activity_created": activity["created"],
        "notified": notified,
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _live(stmt, now: datetime):
    return stmt.where(FriendActivity.expires_at > now)


def _query_feed(
    session: Session,
    actor_ids: list[str],
    limit: int = DEFAULT_ACTIVITY_LIMIT,
    kind: str | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    if not actor_ids:
        return []
    stmt = _live(
        select(FriendActivity).where(FriendActivity.actor_id.in_(actor_ids)),
        now or utcnow(),
    )
    if kind is not None:
        stmt = stmt.where(FriendActivity.kind == kind)
    stmt = stmt.order_by(FriendActivity.created_at.desc(), FriendActivity.id.desc())
    return [_view(r) for r in session.scalars(stmt.limit(limit))]


def get_friend_feed(
    store: ReactiveStore,
    friend_ids: list[str],
    *,
    limit: int | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Unexpired activity from *friend_ids*, newest first."""
    return store.read(
        _query_feed, list(friend_ids), clamp_limit(limit, DEFAULT_ACTIVITY_LIMIT), None, now,
    )


def get_user_activity(
    store: ReactiveStore,
    actor_id: str,
    *,
    limit: int | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    return store.read(
        _query_feed, [actor_id], clamp_limit(limit, DEFAULT_ACTIVITY_LIMIT), None, now,
    )


def get_activity_by_kind(
    store: ReactiveStore,
    friend_ids: list[str],
    kind: str,
    *,
    limit: int | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    parsed = parse_choice(ActivityKind, kind, "activity kind")
    return store.read(
        _query_feed, list(friend_ids),
        clamp_limit(limit, DEFAULT_ACTIVITY_LIMIT), parsed.value, now,
    )


def get_activity_count(
    store: ReactiveStore,
    friend_ids: list[str],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """``{"total": n, "by_kind": {kind: n}}`` over unexpired friend activity."""
    friend_ids = list(friend_ids)
    now = now or utcnow()

    def _query(session: Session) -> dict[str, Any]:
        by_kind = {k.value: 0 for k in ActivityKind}
        if friend_ids:
            rows = session.execute(
                _live(
                    select(FriendActivity.kind, func.count())
                    .where(FriendActivity.actor_id.in_(friend_ids)),
                    now,
                ).group_by(FriendActivity.kind)
            )
            for kind, count in rows:
                by_kind[kind] = count
        return {"total": sum(by_kind.values()), "by_kind": by_kind}

    return store.read(_query)


def has_new_activity(
    store: ReactiveStore,
    friend_ids: list[str],
    since: datetime,
    *,
    now: datetime | None = None,
) -> bool:
    """True if any friend recorded unexpired activity after *since*."""
    friend_ids = list(friend_ids)
    if not friend_ids:
        return False
    now = now or utcnow()
    found = store.read(
        lambda s: s.scalar(
            _live(
                select(FriendActivity.id).where(
                    FriendActivity.actor_id.in_(friend_ids),
                    FriendActivity.created_at > since,
                ),
                now,
            ).limit(1)
        )
    )
    return found is not None


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------
def subscribe_friend_feed(
    store: ReactiveStore,
    friend_ids: list[str],
    callback: Callable[[list[dict[str, Any]]], None],
    *,
    limit: int | None = None,
) -> Subscription:
    friend_ids = list(friend_ids)
    return store.subscribe(
        partial(
            _query_feed,
            actor_ids=friend_ids,
            limit=clamp_limit(limit, DEFAULT_ACTIVITY_LIMIT),
        ),
        depends_on=[(TABLE, a) for a in friend_ids],
        callback=callback,
        name=f"activity-feed:{len(friend_ids)}",
    )
