"""
pulse.services.shared_post_service — Posts Shared Between Friends
==================================================================

A lightweight "sent you a post" thread between two friends.  Sharing
writes the shared post and then a MESSAGE notification for the recipient;
the two writes are independent, so a failure between them leaves a share
without a notification rather than a half-written share.  The notification
is keyed on the share id, so :func:`notify_share` can re-send it alone.

Deleting a share is allowed only for its sender or recipient.  Refusals
come back as a :class:`MutationResult` rather than an exception so the
client can show a message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any, Callable

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import Session

from pulse.constants import DEFAULT_FEED_LIMIT, clamp_limit, iso, utcnow
from pulse.database.models import NotificationKind, SharedPost
from pulse.engine.store import ReactiveStore, Subscription
from pulse.services import notification_service

logger = logging.getLogger(__name__)

TABLE = SharedPost.__tablename__


@dataclass(frozen=True, slots=True)
class MutationResult:
    """Outcome of a mutation that can be refused."""

    ok: bool
    error: str | None = None

    NOT_FOUND = "not_found"
    NOT_AUTHORIZED = "not_authorized"


def _view(row: SharedPost) -> dict[str, Any]:
    return {
        "id": row.id,
        "sender_id": row.sender_id,
        "sender_name": row.sender_name,
        "sender_image": row.sender_image,
        "recipient_id": row.recipient_id,
        "post_id": row.post_id,
        "preview": row.preview or {},
        "is_read": row.is_read,
        "created_at": iso(row.created_at),
    }


def _between(a: str, b: str):
    return or_(
        and_(SharedPost.sender_id == a, SharedPost.recipient_id == b),
        and_(SharedPost.sender_id == b, SharedPost.recipient_id == a),
    )


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def share_post(
    store: ReactiveStore,
    sender_id: str,
    recipient_id: str,
    post_id: str,
    *,
    sender_name: str | None = None,
    sender_image: str | None = None,
    preview: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Share *post_id* with *recipient_id*.

    Returns ``{"shared_post_id", "notification_id"}``.
    """
    if sender_id == recipient_id:
        raise ValueError("Cannot share a post with yourself")
    now = now or utcnow()

    with store.transaction() as ctx:
        row = SharedPost(
            sender_id=sender_id,
            sender_name=sender_name,
            sender_image=sender_image,
            recipient_id=recipient_id,
            post_id=post_id,
            preview=preview or {},
            is_read=False,
            created_at=now,
        )
        ctx.session.add(row)
        ctx.session.flush()
        shared_post_id = row.id
        ctx.touch(TABLE, recipient_id)
        ctx.touch(TABLE, sender_id)

    notification_id, _ = notify_share(store, shared_post_id, now=now)
    return {"shared_post_id": shared_post_id, "notification_id": notification_id}


def notify_share(
    store: ReactiveStore,
    shared_post_id: int,
    *,
    sender_id: str | None = None,
    now: datetime | None = None,
) -> tuple[int | None, bool]:
    """Send the recipient's MESSAGE notification for an existing share.

    Safe to re-run after a failure: the notification is keyed on
    ``shared_post:{id}`` so a second call returns the first one.  With
    *sender_id*, only that sender's shares match.

    Returns ``(notification_id, created)``; ``(None, False)`` if the share
    does not exist.
    """
    def _load(session: Session) -> dict[str, Any] | None:
        row = session.get(SharedPost, shared_post_id)
        return _view(row) if row is not None else None

    share = store.read(_load)
    if share is None or (sender_id is not None and share["sender_id"] != sender_id):
        return None, False
    return notification_service.push_once(
        store,
        share["recipient_id"],
        NotificationKind.MESSAGE,
        "New Post Share",
        f"{share['sender_name'] or 'Someone'} shared a post with you",
        source_id=f"shared_post:{shared_post_id}",
        actor_id=share["sender_id"],
        actor_name=share["sender_name"],
        actor_image=share["sender_image"],
        metadata={
            "post_id": share["post_id"],
            "user_id": share["sender_id"],
            "shared_post_id": shared_post_id,
        },
        now=now,
    )


def mark_read(
    store: ReactiveStore, shared_post_id: int, *, recipient_id: str | None = None,
) -> bool:
    with store.transaction() as ctx:
        stmt = select(SharedPost).where(SharedPost.id == shared_post_id)
        if recipient_id is not None:
            stmt = stmt.where(SharedPost.recipient_id == recipient_id)
        row = ctx.session.scalars(stmt).first()
        if row is None:
            return False
        if not row.is_read:
            row.is_read = True
            ctx.touch(TABLE, row.recipient_id)
            ctx.touch(TABLE, row.sender_id)
    return True


def mark_conversation_read(store: ReactiveStore, recipient_id: str, sender_id: str) -> int:
    """Mark everything *sender_id* shared with *recipient_id*.  Returns the count."""
    with store.transaction() as ctx:
        result = ctx.session.execute(
            update(SharedPost)
            .where(
                SharedPost.recipient_id == recipient_id,
                SharedPost.sender_id == sender_id,
                SharedPost.is_read.is_(False),
            )
            .values(is_read=True)
        )
        if result.rowcount:
            ctx.touch(TABLE, recipient_id)
            ctx.touch(TABLE, sender_id)
    return result.rowcount


def delete_shared_post(
    store: ReactiveStore, shared_post_id: int, actor_id: str,
) -> MutationResult:
    """Delete a share on behalf of *actor_id* (sender or recipient only)."""
    with store.transaction() as ctx:
        row = ctx.session.get(SharedPost, shared_post_id)
        if row is None:
            return MutationResult(False, MutationResult.NOT_FOUND)
        if actor_id not in (row.sender_id, row.recipient_id):
            logger.warning(
                "Refused delete of shared post %d by %s", shared_post_id, actor_id,
            )
            return MutationResult(False, MutationResult.NOT_AUTHORIZED)
        ctx.session.execute(delete(SharedPost).where(SharedPost.id == shared_post_id))
        ctx.touch(TABLE, row.recipient_id)
        ctx.touch(TABLE, row.sender_id)
    return MutationResult(True)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _query_conversation(
    session: Session, actor_id: str, friend_id: str, limit: int = DEFAULT_FEED_LIMIT,
) -> list[dict[str, Any]]:
    """The last *limit* shares between the two, oldest first."""
    rows = session.scalars(
        select(SharedPost)
        .where(_between(actor_id, friend_id))
        .order_by(SharedPost.created_at.desc(), SharedPost.id.desc())
        .limit(limit)
    ).all()
    return [_view(r) for r in reversed(rows)]


def get_conversation(
    store: ReactiveStore, actor_id: str, friend_id: str, *, limit: int | None = None,
) -> list[dict[str, Any]]:
    return store.read(_query_conversation, actor_id, friend_id, clamp_limit(limit))


def get_conversations_list(store: ReactiveStore, actor_id: str) -> list[dict[str, Any]]:
    """One entry per friend: latest share plus unread count, newest first."""
    def _query(session: Session) -> list[dict[str, Any]]:
        rows = session.scalars(
            select(SharedPost)
            .where(or_(SharedPost.sender_id == actor_id, SharedPost.recipient_id == actor_id))
            .order_by(SharedPost.created_at, SharedPost.id)
        )
        conversations: dict[str, dict[str, Any]] = {}
        for r in rows:
            received = r.recipient_id == actor_id
            friend_id = r.sender_id if received else r.recipient_id
            convo = conversations.setdefault(friend_id, {
                "friend_id": friend_id,
                "friend_name": None,
                "friend_image": None,
                "last_post": None,
                "unread_count": 0,
            })
            convo["last_post"] = _view(r)
            if received:
                convo["friend_name"] = r.sender_name
                convo["friend_image"] = r.sender_image
                if not r.is_read:
                    convo["unread_count"] += 1
        return sorted(
            conversations.values(),
            key=lambda c: (c["last_post"]["created_at"], c["last_post"]["id"]),
            reverse=True,
        )

    return store.read(_query)


def unread_count(store: ReactiveStore, recipient_id: str) -> int:
    return store.read(
        lambda s: s.scalar(
            select(func.count()).select_from(SharedPost).where(
                SharedPost.recipient_id == recipient_id,
                SharedPost.is_read.is_(False),
            )
        ) or 0
    )


def unread_count_from(store: ReactiveStore, recipient_id: str, sender_id: str) -> int:
    return store.read(
        lambda s: s.scalar(
            select(func.count()).select_from(SharedPost).where(
                SharedPost.recipient_id == recipient_id,
                SharedPost.sender_id == sender_id,
                SharedPost.is_read.is_(False),
            )
        ) or 0
    )


def has_shared_post(
    store: ReactiveStore, sender_id: str, recipient_id: str, post_id: str,
) -> bool:
    found = store.read(
        lambda s: s.scalar(
            select(SharedPost.id).where(
                SharedPost.sender_id == sender_id,
                SharedPost.recipient_id == recipient_id,
                SharedPost.post_id == post_id,
            ).limit(1)
        )
    )
    return found is not None


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------
def subscribe_conversation(
    store: ReactiveStore,
    actor_id: str,
    friend_id: str,
    callback: Callable[[list[dict[str, Any]]], None],
    *,
    limit: int | None = None,
) -> Subscription:
    return store.subscribe(
        partial(
            _query_conversation,
            actor_id=actor_id,
            friend_id=friend_id,
            limit=clamp_limit(limit),
        ),
        depends_on=[(TABLE, actor_id)],
        callback=callback,
        name=f"shared-posts:{actor_id}:{friend_id}",
    )
