"""
pulse.services.notification_service — Live Notification Feed
=============================================================

The in-app notification feed per recipient.  The durable store owns the
canonical notification; this feed is the fast, subscribable copy the app
renders.  Records are immutable except for ``is_read``.

Duplicate suppression
---------------------
Upstream events may be delivered more than once.  Each record can carry
the durable notification's id in ``source_id``; callers check
:func:`get_by_source_id` before pushing, or use :func:`push_once` which
does exactly that.  The check is not atomic across writers, so a racing
duplicate is possible but harmless (delivery is at-least-once).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from pulse.constants import (
    DEFAULT_FEED_LIMIT,
    NOTIFICATION_RETENTION,
    clamp_limit,
    iso,
    parse_choice,
    utcnow,
)
from pulse.database.models import LiveNotification, NotificationKind
from pulse.engine.store import ReactiveStore, Subscription

logger = logging.getLogger(__name__)

TABLE = LiveNotification.__tablename__

# Rows removed per transaction by the age sweep
BATCH_SIZE = 1_000


def _view(row: LiveNotification) -> dict[str, Any]:
    return {
        "id": row.id,
        "recipient_id": row.recipient_id,
        "actor_id": row.actor_id,
        "actor_name": row.actor_name,
        "actor_image": row.actor_image,
        "kind": row.kind,
        "title": row.title,
        "body": row.body,
        "metadata": row.metadata_ or {},
        "is_read": row.is_read,
        "source_id": row.source_id,
        "created_at": iso(row.created_at),
    }


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def push(
    store: ReactiveStore,
    recipient_id: str,
    kind: str,
    title: str,
    body: str,
    *,
    actor_id: str | None = None,
    actor_name: str | None = None,
    actor_image: str | None = None,
    metadata: dict[str, Any] | None = None,
    source_id: str | None = None,
    now: datetime | None = None,
) -> int:
    """Append a notification to *recipient_id*'s feed.  Returns its id.

    Raises :class:`ValueError` for an unknown *kind* before anything is
    written.
    """
    parsed = parse_choice(NotificationKind, kind, "notification kind")
    with store.transaction() as ctx:
        row = LiveNotification(
            recipient_id=recipient_id,
            actor_id=actor_id,
            actor_name=actor_name,
            actor_image=actor_image,
            kind=parsed.value,
            title=title,
            body=body,
            metadata_=metadata or {},
            is_read=False,
            source_id=source_id,
            created_at=now or utcnow(),
        )
        ctx.session.add(row)
        ctx.session.flush()
        notification_id = row.id
        ctx.touch(TABLE, recipient_id)
    return notification_id


def get_by_source_id(store: ReactiveStore, source_id: str) -> dict[str, Any] | None:
    """Return the notification created for durable id *source_id*, if any."""
    def _query(session: Session) -> dict[str, Any] | None:
        row = session.scalars(
            select(LiveNotification)
            .where(LiveNotification.source_id == source_id)
            .order_by(LiveNotification.id)
            .limit(1)
        ).first()
        return _view(row) if row is not None else None

    return store.read(_query)


def push_once(
    store: ReactiveStore,
    recipient_id: str,
    kind: str,
    title: str,
    body: str,
    *,
    source_id: str,
    **kwargs: Any,
) -> tuple[int, bool]:
    """Push unless a notification for *source_id* already exists.

    Returns ``(notification_id, created)``.
    """
    existing = get_by_source_id(store, source_id)
    if existing is not None:
        logger.debug("Notification for source %s already delivered", source_id)
        return existing["id"], False
    notification_id = push(
        store, recipient_id, kind, title, body, source_id=source_id, **kwargs,
    )
    return notification_id, True


def _mark(
    store: ReactiveStore,
    ids: list[int],
    recipient_id: str | None,
) -> int:
    if not ids:
        return 0
    with store.transaction() as ctx:
        stmt = select(LiveNotification.id, LiveNotification.recipient_id).where(
            LiveNotification.id.in_(ids),
            LiveNotification.is_read.is_(False),
        )
        if recipient_id is not None:
            stmt = stmt.where(LiveNotification.recipient_id == recipient_id)
        rows = ctx.session.execute(stmt).all()
        if rows:
            ctx.session.execute(
                update(LiveNotification)
                .where(LiveNotification.id.in_([r.id for r in rows]))
                .values(is_read=True)
            )
            for r in rows:
                ctx.touch(TABLE, r.recipient_id)
    return len(rows)


def mark_read(
    store: ReactiveStore, notification_id: int, *, recipient_id: str | None = None,
) -> bool:
    """Flip one notification to read.

    With *recipient_id*, only that recipient's notification matches.
    Returns False if nothing was unread.
    """
    return _mark(store, [notification_id], recipient_id) == 1


def mark_many_read(
    store: ReactiveStore, notification_ids: list[int], *, recipient_id: str | None = None,
) -> int:
    return _mark(store, list(notification_ids), recipient_id)


def mark_all_read(store: ReactiveStore, recipient_id: str) -> int:
    """Mark every unread notification for *recipient_id*.  Returns the count."""
    with store.transaction() as ctx:
        result = ctx.session.execute(
            update(LiveNotification)
            .where(
                LiveNotification.recipient_id == recipient_id,
                LiveNotification.is_read.is_(False),
            )
            .values(is_read=True)
        )
        if result.rowcount:
            ctx.touch(TABLE, recipient_id)
    return result.rowcount


def delete_notification(
    store: ReactiveStore, notification_id: int, *, recipient_id: str | None = None,
) -> bool:
    with store.transaction() as ctx:
        stmt = select(LiveNotification.recipient_id).where(
            LiveNotification.id == notification_id
        )
        if recipient_id is not None:
            stmt = stmt.where(LiveNotification.recipient_id == recipient_id)
        owner = ctx.session.scalar(stmt)
        if owner is None:
            return False
        ctx.session.execute(
            delete(LiveNotification).where(LiveNotification.id == notification_id)
        )
        ctx.touch(TABLE, owner)
    return True


def clear_all(store: ReactiveStore, recipient_id: str) -> int:
    """Delete *recipient_id*'s whole feed.  Returns the number removed."""
    with store.transaction() as ctx:
        result = ctx.session.execute(
            delete(LiveNotification).where(LiveNotification.recipient_id == recipient_id)
        )
        if result.rowcount:
            ctx.touch(TABLE, recipient_id)
    return result.rowcount


def cleanup_old(
    store: ReactiveStore,
    *,
    now: datetime | None = None,
    retention_days: int = NOTIFICATION_RETENTION.days,
) -> int:
    """Delete notifications older than *retention_days*, in batches."""
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    deleted = 0

    while True:
        with store.transaction() as ctx:
            rows = ctx.session.execute(
                select(LiveNotification.id, LiveNotification.recipient_id)
                .where(LiveNotification.created_at < cutoff)
                .limit(BATCH_SIZE)
            ).all()
            if not rows:
                break
            ctx.session.execute(
                delete(LiveNotification)
                .where(LiveNotification.id.in_([r.id for r in rows]))
            )
            for recipient_id in {r.recipient_id for r in rows}:
                ctx.touch(TABLE, recipient_id)
        deleted += len(rows)
        if len(rows) < BATCH_SIZE:
            break

    if deleted:
        logger.info(
            "Notifications: removed %d older than %d days (cutoff=%s)",
            deleted, retention_days, cutoff.isoformat(),
        )
    return deleted


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _query_feed(
    session: Session,
    recipient_id: str,
    limit: int = DEFAULT_FEED_LIMIT,
    unread_only: bool = False,
    kind: str | None = None,
) -> list[dict[str, Any]]:
    stmt = select(LiveNotification).where(LiveNotification.recipient_id == recipient_id)
    if unread_only:
        stmt = stmt.where(LiveNotification.is_read.is_(False))
    if kind is not None:
        stmt = stmt.where(LiveNotification.kind == kind)
    stmt = stmt.order_by(
        LiveNotification.created_at.desc(), LiveNotification.id.desc()
    ).limit(limit)
    return [_view(r) for r in session.scalars(stmt)]


def _query_unread_count(session: Session, recipient_id: str) -> int:
    return session.scalar(
        select(func.count()).select_from(LiveNotification).where(
            LiveNotification.recipient_id == recipient_id,
            LiveNotification.is_read.is_(False),
        )
    ) or 0


def get_feed(
    store: ReactiveStore, recipient_id: str, *, limit: int | None = None,
) -> list[dict[str, Any]]:
    """Newest-first feed, capped at *limit* (default 50)."""
    return store.read(_query_feed, recipient_id, clamp_limit(limit))


def get_unread(
    store: ReactiveStore, recipient_id: str, *, limit: int | None = None,
) -> list[dict[str, Any]]:
    return store.read(_query_feed, recipient_id, clamp_limit(limit), True)


def unread_count(store: ReactiveStore, recipient_id: str) -> int:
    return store.read(_query_unread_count, recipient_id)


def by_kind(
    store: ReactiveStore, recipient_id: str, kind: str, *, limit: int | None = None,
) -> list[dict[str, Any]]:
    parsed = parse_choice(NotificationKind, kind, "notification kind")
    return store.read(_query_feed, recipient_id, clamp_limit(limit), False, parsed.value)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------
def subscribe_feed(
    store: ReactiveStore,
    recipient_id: str,
    callback: Callable[[list[dict[str, Any]]], None],
    *,
    limit: int | None = None,
) -> Subscription:
    return store.subscribe(
        partial(_query_feed, recipient_id=recipient_id, limit=clamp_limit(limit)),
        depends_on=[(TABLE, recipient_id)],
        callback=callback,
        name=f"notifications:{recipient_id}",
    )


def subscribe_unread(
    store: ReactiveStore,
    recipient_id: str,
    callback: Callable[[list[dict[str, Any]]], None],
    *,
    limit: int | None = None,
) -> Subscription:
    return store.subscribe(
        partial(
            _query_feed, recipient_id=recipient_id,
            limit=clamp_limit(limit), unread_only=True,
        ),
        depends_on=[(TABLE, recipient_id)],
        callback=callback,
        name=f"notifications-unread:{recipient_id}",
    )


def subscribe_unread_count(
    store: ReactiveStore,
    recipient_id: str,
    callback: Callable[[int], None],
) -> Subscription:
    """Live badge count.  Only redelivered when the number changes."""
    return store.subscribe(
        partial(_query_unread_count, recipient_id=recipient_id),
        depends_on=[(TABLE, recipient_id)],
        callback=callback,
        name=f"notifications-count:{recipient_id}",
    )
