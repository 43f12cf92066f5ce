"""
pulse.api.routes.shared_posts — Posts shared between friends
==============================================================
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pulse.api.deps import Actor, Config, Store
from pulse.api.streaming import sse_response
from pulse.services import shared_post_service
from pulse.services.shared_post_service import MutationResult

router = APIRouter(prefix="/shared-posts", tags=["shared-posts"])

_ERROR_STATUS = {
    MutationResult.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    MutationResult.NOT_AUTHORIZED: status.HTTP_403_FORBIDDEN,
}


class ShareBody(BaseModel):
    recipient_id: str
    post_id: str
    sender_name: str | None = Field(None, max_length=100)
    sender_image: str | None = Field(None, max_length=500)
    preview: dict[str, Any] | None = None


@router.post("", status_code=201)
def share_post(body: ShareBody, actor_id: Actor, store: Store):
    return shared_post_service.share_post(
        store, actor_id, body.recipient_id, body.post_id,
        sender_name=body.sender_name,
        sender_image=body.sender_image,
        preview=body.preview,
    )


@router.post("/{shared_post_id}/notify")
def notify_share(shared_post_id: int, actor_id: Actor, store: Store):
    """Re-send the recipient's notification for one of the caller's shares."""
    notification_id, created = shared_post_service.notify_share(
        store, shared_post_id, sender_id=actor_id,
    )
    if notification_id is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Shared post not found")
    return {"notification_id": notification_id, "created": created}


@router.post("/{shared_post_id}/read")
def mark_read(shared_post_id: int, actor_id: Actor, store: Store):
    if not shared_post_service.mark_read(store, shared_post_id, recipient_id=actor_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Shared post not found")
    return {"ok": True}


@router.post("/conversations/{friend_id}/read")
def mark_conversation_read(friend_id: str, actor_id: Actor, store: Store):
    return {"count": shared_post_service.mark_conversation_read(store, actor_id, friend_id)}


@router.delete("/{shared_post_id}")
def delete_shared_post(shared_post_id: int, actor_id: Actor, store: Store):
    result = shared_post_service.delete_shared_post(store, shared_post_id, actor_id)
    if not result.ok:
        return JSONResponse(
            {"ok": False, "error": result.error},
            status_code=_ERROR_STATUS.get(result.error, status.HTTP_400_BAD_REQUEST),
        )
    return {"ok": True}


@router.get("/conversations")
def get_conversations_list(actor_id: Actor, store: Store):
    return shared_post_service.get_conversations_list(store, actor_id)


@router.get("/conversations/{friend_id}")
def get_conversation(
    friend_id: str,
    actor_id: Actor,
    store: Store,
    config: Config,
    limit: int | None = Query(None, ge=1),
):
    return shared_post_service.get_conversation(
        store, actor_id, friend_id, limit=limit or config.default_feed_limit,
    )


@router.get("/conversations/{friend_id}/stream")
async def stream_conversation(friend_id: str, request: Request, actor_id: Actor, store: Store):
    return await sse_response(
        request,
        lambda cb: shared_post_service.subscribe_conversation(store, actor_id, friend_id, cb),
    )


@router.get("/unread-count")
def unread_count(actor_id: Actor, store: Store, friend_id: str | None = None):
    if friend_id is not None:
        return {"count": shared_post_service.unread_count_from(store, actor_id, friend_id)}
    return {"count": shared_post_service.unread_count(store, actor_id)}


@router.get("/exists")
def has_shared_post(actor_id: Actor, store: Store, recipient_id: str, post_id: str):
    return {
        "has_shared": shared_post_service.has_shared_post(
            store, actor_id, recipient_id, post_id,
        )
    }
