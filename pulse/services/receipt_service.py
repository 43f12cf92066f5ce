"""
pulse.services.receipt_service — Message Read Receipts
=======================================================

A receipt is an insert-only ``(message_id, reader_id)`` row; "unread" is the
absence of one.  Marking twice is a no-op, so clients can resend freely.

Messages themselves live in the durable store.  Functions that need to
know which messages exist (unread counts, mark-whole-conversation) take the
message ids, and where relevant their authors, as arguments.
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import partial
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from pulse.constants import iso, utcnow
from pulse.database.models import ReadReceipt
from pulse.engine.store import ReactiveStore, Subscription, WriteContext

logger = logging.getLogger(__name__)

TABLE = ReadReceipt.__tablename__


def _insert(
    ctx: WriteContext, message_id: str, conversation_id: str, reader_id: str, now: datetime,
) -> bool:
    return ctx.insert_if_absent(
        ReadReceipt,
        key={"message_id": message_id, "reader_id": reader_id},
        values={"conversation_id": conversation_id, "read_at": now},
    )


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def mark_read(
    store: ReactiveStore,
    message_id: str,
    conversation_id: str,
    reader_id: str,
    *,
    now: datetime | None = None,
) -> str:
    """Record that *reader_id* saw *message_id*.

    Returns ``"marked_read"`` on first call and ``"already_read"`` after.
    """
    with store.transaction() as ctx:
        inserted = _insert(ctx, message_id, conversation_id, reader_id, now or utcnow())
        if inserted:
            ctx.touch(TABLE, conversation_id)
    return "marked_read" if inserted else "already_read"


def mark_many_read(
    store: ReactiveStore,
    message_ids: list[str],
    conversation_id: str,
    reader_id: str,
    *,
    now: datetime | None = None,
) -> int:
    """Mark several messages.  Returns how many were newly marked."""
    now = now or utcnow()
    newly_marked = 0
    with store.transaction() as ctx:
        for message_id in dict.fromkeys(message_ids):
            if _insert(ctx, message_id, conversation_id, reader_id, now):
                newly_marked += 1
        if newly_marked:
            ctx.touch(TABLE, conversation_id)
    return newly_marked


def mark_conversation_read(
    store: ReactiveStore,
    conversation_id: str,
    reader_id: str,
    message_ids: list[str],
    *,
    now: datetime | None = None,
) -> int:
    """Mark every message in *message_ids* (the conversation's messages)."""
    count = mark_many_read(store, message_ids, conversation_id, reader_id, now=now)
    logger.debug(
        "Receipts: %s read %d new messages in %s", reader_id, count, conversation_id,
    )
    return count


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _query_receipts(
    session: Session, message_ids: list[str],
) -> dict[str, list[dict[str, Any]]]:
    out: dict[str, list[dict[str, Any]]] = {m: [] for m in message_ids}
    if not message_ids:
        return out
    rows = session.scalars(
        select(ReadReceipt)
        .where(ReadReceipt.message_id.in_(message_ids))
        .order_by(ReadReceipt.read_at, ReadReceipt.id)
    )
    for r in rows:
        out[r.message_id].append({"reader_id": r.reader_id, "read_at": iso(r.read_at)})
    return out


def _query_unread_count(
    session: Session,
    conversation_id: str,
    reader_id: str,
    message_ids: list[str],
    author_ids: list[str],
) -> int:
    read = set(
        session.scalars(
            select(ReadReceipt.message_id).where(
                ReadReceipt.conversation_id == conversation_id,
                ReadReceipt.reader_id == reader_id,
            )
        )
    )
    return sum(
        1
        for message_id, author_id in zip(message_ids, author_ids)
        if author_id != reader_id and message_id not in read
    )


def receipts_for(store: ReactiveStore, message_id: str) -> list[dict[str, Any]]:
    """Who has read *message_id*, earliest first."""
    return store.read(_query_receipts, [message_id])[message_id]


def batch_receipts_for(
    store: ReactiveStore, message_ids: list[str],
) -> dict[str, list[dict[str, Any]]]:
    return store.read(_query_receipts, list(dict.fromkeys(message_ids)))


def has_read(store: ReactiveStore, message_id: str, reader_id: str) -> dict[str, Any]:
    """``{"has_read": bool, "read_at": iso | None}``."""
    read_at = store.read(
        lambda s: s.scalar(
            select(ReadReceipt.read_at).where(
                ReadReceipt.message_id == message_id,
                ReadReceipt.reader_id == reader_id,
            )
        )
    )
    return {"has_read": read_at is not None, "read_at": iso(read_at)}


def _check_parallel(message_ids: list[str], author_ids: list[str]) -> None:
    if len(message_ids) != len(author_ids):
        raise ValueError(
            f"message_ids and author_ids must be the same length "
            f"({len(message_ids)} != {len(author_ids)})"
        )


def unread_count_in(
    store: ReactiveStore,
    conversation_id: str,
    reader_id: str,
    message_ids: list[str],
    author_ids: list[str],
) -> int:
    """Messages not authored by *reader_id* that it has no receipt for.

    ``message_ids[i]`` was written by ``author_ids[i]``.
    """
    _check_parallel(message_ids, author_ids)
    return store.read(
        _query_unread_count, conversation_id, reader_id, list(message_ids), list(author_ids),
    )


def last_read_message(
    store: ReactiveStore, conversation_id: str, reader_id: str,
) -> dict[str, Any]:
    """The most recent receipt *reader_id* left in *conversation_id*."""
    def _query(session: Session) -> dict[str, Any]:
        row = session.scalars(
            select(ReadReceipt)
            .where(
                ReadReceipt.conversation_id == conversation_id,
                ReadReceipt.reader_id == reader_id,
            )
            .order_by(ReadReceipt.read_at.desc(), ReadReceipt.id.desc())
            .limit(1)
        ).first()
        if row is None:
            return {"last_read_message_id": None, "last_read_at": None}
        return {"last_read_message_id": row.message_id, "last_read_at": iso(row.read_at)}

    return store.read(_query)


def conversation_read_status(
    store: ReactiveStore, conversation_id: str,
) -> dict[str, dict[str, str]]:
    """``{message_id: {reader_id: read_at}}`` for the whole conversation."""
    def _query(session: Session) -> dict[str, dict[str, str]]:
        status: dict[str, dict[str, str]] = {}
        rows = session.scalars(
            select(ReadReceipt).where(ReadReceipt.conversation_id == conversation_id)
        )
        for r in rows:
            status.setdefault(r.message_id, {})[r.reader_id] = iso(r.read_at)
        return status

    return store.read(_query)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------
def subscribe_receipts(
    store: ReactiveStore,
    conversation_id: str,
    message_ids: list[str],
    callback: Callable[[dict[str, list[dict[str, Any]]]], None],
) -> Subscription:
    """Live "seen by" lists for *message_ids*."""
    return store.subscribe(
        partial(_query_receipts, message_ids=list(dict.fromkeys(message_ids))),
        depends_on=[(TABLE, conversation_id)],
        callback=callback,
        name=f"receipts:{conversation_id}",
    )


def subscribe_unread_count(
    store: ReactiveStore,
    conversation_id: str,
    reader_id: str,
    message_ids: list[str],
    author_ids: list[str],
    callback: Callable[[int], None],
) -> Subscription:
    _check_parallel(message_ids, author_ids)
    return store.subscribe(
        partial(
            _query_unread_count,
            conversation_id=conversation_id,
            reader_id=reader_id,
            message_ids=list(message_ids),
            author_ids=list(author_ids),
        ),
        depends_on=[(TABLE, conversation_id)],
        callback=callback,
        name=f"receipts-unread:{conversation_id}:{reader_id}",
    )
