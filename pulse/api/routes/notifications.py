"""
pulse.api.routes.notifications — Live notification feed
=========================================================

Reads and read-state changes are scoped to the caller's own feed.  Pushing
a notification *to someone else* is a server-side action (the backend
calls :mod:`pulse.services.notification_service` directly or uses the
maintenance-scoped ``POST /notifications``).
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from pulse.api.deps import Actor, Config, Store, require_maintenance
from pulse.api.streaming import sse_response
from pulse.services import notification_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationCreate(BaseModel):
    recipient_id: str
    kind: str
    title: str = Field(..., max_length=200)
    body: str
    actor_id: str | None = None
    actor_name: str | None = Field(None, max_length=100)
    actor_image: str | None = Field(None, max_length=500)
    metadata: dict[str, Any] | None = None
    source_id: str | None = Field(None, max_length=128)


class MarkMany(BaseModel):
    ids: list[int] = Field(..., max_length=500)


@router.get("")
def get_feed(
    actor_id: Actor, store: Store, config: Config, limit: int | None = Query(None, ge=1),
):
    return notification_service.get_feed(
        store, actor_id, limit=limit or config.default_feed_limit,
    )


@router.get("/unread")
def get_unread(
    actor_id: Actor, store: Store, config: Config, limit: int | None = Query(None, ge=1),
):
    return notification_service.get_unread(
        store, actor_id, limit=limit or config.default_feed_limit,
    )


@router.get("/unread-count")
def unread_count(actor_id: Actor, store: Store):
    return {"count": notification_service.unread_count(store, actor_id)}


@router.get("/kind/{kind}")
def by_kind(
    kind: str,
    actor_id: Actor,
    store: Store,
    config: Config,
    limit: int | None = Query(None, ge=1),
):
    return notification_service.by_kind(
        store, actor_id, kind, limit=limit or config.default_feed_limit,
    )


@router.get("/stream")
async def stream_feed(request: Request, actor_id: Actor, store: Store):
    return await sse_response(
        request, lambda cb: notification_service.subscribe_feed(store, actor_id, cb),
    )


@router.get("/unread-count/stream")
async def stream_unread_count(request: Request, actor_id: Actor, store: Store):
    return await sse_response(
        request,
        lambda cb: notification_service.subscribe_unread_count(store, actor_id, cb),
    )


@router.post("/{notification_id}/read")
def mark_read(notification_id: int, actor_id: Actor, store: Store):
    return {"ok": notification_service.mark_read(store, notification_id, recipient_id=actor_id)}


@router.post("/read")
def mark_many_read(body: MarkMany, actor_id: Actor, store: Store):
    return {
        "count": notification_service.mark_many_read(store, body.ids, recipient_id=actor_id)
    }


@router.post("/read-all")
def mark_all_read(actor_id: Actor, store: Store):
    return {"count": notification_service.mark_all_read(store, actor_id)}


@router.delete("/{notification_id}")
def delete_notification(notification_id: int, actor_id: Actor, store: Store):
    deleted = notification_service.delete_notification(
        store, notification_id, recipient_id=actor_id,
    )
    if not deleted:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Notification not found")
    return {"ok": True}


@router.delete("")
def clear_all(actor_id: Actor, store: Store):
    return {"count": notification_service.clear_all(store, actor_id)}


@router.post("", status_code=201)
def push(
    body: NotificationCreate,
    _: Annotated[dict, Depends(require_maintenance)],
    store: Store,
):
    """Server-side fan-out.  Deduplicates on ``source_id`` when given."""
    fields = body.model_dump(exclude={"recipient_id", "kind", "title", "body", "source_id"})
    if body.source_id:
        notification_id, created = notification_service.push_once(
            store, body.recipient_id, body.kind, body.title, body.body,
            source_id=body.source_id, **fields,
        )
    else:
        notification_id = notification_service.push(
            store, body.recipient_id, body.kind, body.title, body.body, **fields,
        )
        created = True
    return {"id": notification_id, "created": created}
