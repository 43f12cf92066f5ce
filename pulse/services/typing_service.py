"""
pulse.services.typing_service — Typing Indicators
==================================================

At most one indicator per (conversation, actor).  Every keystroke burst
refreshes it with ``expires_at = now + 5 s``; reads drop anything already
expired, and :func:`cleanup_expired` deletes the leftovers.  Stop-typing is
best effort: a client that vanishes mid-sentence simply ages out.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from pulse.constants import TYPING_TTL, iso, utcnow
from pulse.database.models import TypingIndicator
from pulse.engine.store import ReactiveStore, Subscription

logger = logging.getLogger(__name__)

TABLE = TypingIndicator.__tablename__


def _view(row: TypingIndicator) -> dict[str, Any]:
    return {
        "conversation_id": row.conversation_id,
        "actor_id": row.actor_id,
        "display_name": row.display_name,
        "display_image": row.display_image,
        "started_at": iso(row.started_at),
        "expires_at": iso(row.expires_at),
    }


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def start_typing(
    store: ReactiveStore,
    conversation_id: str,
    actor_id: str,
    *,
    display_name: str | None = None,
    display_image: str | None = None,
    now: datetime | None = None,
    ttl: timedelta = TYPING_TTL,
) -> str:
    """Create or refresh the indicator.  Returns ``"created"`` or ``"updated"``."""
    now = now or utcnow()
    values: dict[str, Any] = {
        "started_at": now,
        "expires_at": now + ttl,
        "display_name": display_name,
        "display_image": display_image,
    }
    with store.transaction() as ctx:
        created = ctx.upsert(
            TypingIndicator,
            key={"conversation_id": conversation_id, "actor_id": actor_id},
            values=values,
        )
        ctx.touch(TABLE, conversation_id)
    return "created" if created else "updated"


def stop_typing(store: ReactiveStore, conversation_id: str, actor_id: str) -> bool:
    """Delete the indicator.  False if there was none."""
    with store.transaction() as ctx:
        result = ctx.session.execute(
            delete(TypingIndicator).where(
                TypingIndicator.conversation_id == conversation_id,
                TypingIndicator.actor_id == actor_id,
            )
        )
        if result.rowcount:
            ctx.touch(TABLE, conversation_id)
    return bool(result.rowcount)


def stop_all_typing(store: ReactiveStore, actor_id: str) -> int:
    """Clear *actor_id*'s indicators in every conversation (sign-out, app close)."""
    with store.transaction() as ctx:
        rows = ctx.session.execute(
            select(TypingIndicator.id, TypingIndicator.conversation_id)
            .where(TypingIndicator.actor_id == actor_id)
        ).all()
        if rows:
            ctx.session.execute(
                delete(TypingIndicator).where(TypingIndicator.id.in_([r.id for r in rows]))
            )
            for r in rows:
                ctx.touch(TABLE, r.conversation_id)
    return len(rows)


def cleanup_expired(store: ReactiveStore, *, now: datetime | None = None) -> int:
    """Delete indicators whose ``expires_at`` has passed."""
    now = now or utcnow()
    with store.transaction() as ctx:
        rows = ctx.session.execute(
            select(TypingIndicator.id, TypingIndicator.conversation_id)
            .where(TypingIndicator.expires_at < now)
        ).all()
        if rows:
            ctx.session.execute(
                delete(TypingIndicator).where(TypingIndicator.id.in_([r.id for r in rows]))
            )
            for conversation_id in {r.conversation_id for r in rows}:
                ctx.touch(TABLE, conversation_id)

    if rows:
        logger.info("Typing: removed %d expired indicators", len(rows))
    return len(rows)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _live_rows(
    session: Session,
    conversation_ids: list[str],
    exclude_actor_id: str | None,
    now: datetime,
) -> list[TypingIndicator]:
    stmt = select(TypingIndicator).where(
        TypingIndicator.conversation_id.in_(conversation_ids),
        TypingIndicator.expires_at > now,
    )
    if exclude_actor_id is not None:
        stmt = stmt.where(TypingIndicator.actor_id != exclude_actor_id)
    return list(session.scalars(stmt.order_by(TypingIndicator.started_at, TypingIndicator.id)))


def _query_typing(
    session: Session,
    conversation_id: str,
    exclude_actor_id: str | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    rows = _live_rows(session, [conversation_id], exclude_actor_id, now or utcnow())
    return [_view(r) for r in rows]


def get_typing(
    store: ReactiveStore,
    conversation_id: str,
    *,
    exclude_actor_id: str | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Unexpired indicators in *conversation_id*, oldest first."""
    return store.read(_query_typing, conversation_id, exclude_actor_id, now)


def get_typing_in_many(
    store: ReactiveStore,
    conversation_ids: list[str],
    *,
    exclude_actor_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, list[dict[str, Any]]]:
    """Typing indicators for a conversation list screen."""
    conversation_ids = list(conversation_ids)

    def _query(session: Session) -> dict[str, list[dict[str, Any]]]:
        out: dict[str, list[dict[str, Any]]] = {c: [] for c in conversation_ids}
        if not conversation_ids:
            return out
        for row in _live_rows(session, conversation_ids, exclude_actor_id, now or utcnow()):
            out[row.conversation_id].append(_view(row))
        return out

    return store.read(_query)


def is_typing(
    store: ReactiveStore,
    conversation_id: str,
    actor_id: str,
    *,
    now: datetime | None = None,
) -> bool:
    now = now or utcnow()
    found = store.read(
        lambda s: s.scalar(
            select(TypingIndicator.id).where(
                TypingIndicator.conversation_id == conversation_id,
                TypingIndicator.actor_id == actor_id,
                TypingIndicator.expires_at > now,
            )
        )
    )
    return found is not None


def get_typing_count(
    store: ReactiveStore,
    conversation_id: str,
    *,
    exclude_actor_id: str | None = None,
    now: datetime | None = None,
) -> int:
    now = now or utcnow()
    stmt = select(func.count()).select_from(TypingIndicator).where(
        TypingIndicator.conversation_id == conversation_id,
        TypingIndicator.expires_at > now,
    )
    if exclude_actor_id is not None:
        stmt = stmt.where(TypingIndicator.actor_id != exclude_actor_id)
    return store.read(lambda s: s.scalar(stmt) or 0)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------
def subscribe_typing(
    store: ReactiveStore,
    conversation_id: str,
    callback: Callable[[list[dict[str, Any]]], None],
    *,
    exclude_actor_id: str | None = None,
) -> Subscription:
    """Live list of who is typing in *conversation_id* (viewer excluded)."""
    return store.subscribe(
        partial(
            _query_typing,
            conversation_id=conversation_id,
            exclude_actor_id=exclude_actor_id,
        ),
        depends_on=[(TABLE, conversation_id)],
        callback=callback,
        name=f"typing:{conversation_id}",
    )
