"""
pulse.api.routes.receipts — Message read receipts
===================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from pulse.api.deps import Actor, Store
from pulse.api.streaming import sse_response
from pulse.services import receipt_service

router = APIRouter(prefix="/receipts", tags=["receipts"])


class MarkMessages(BaseModel):
    message_ids: list[str] = Field(..., max_length=500)


class UnreadQuery(BaseModel):
    message_ids: list[str] = Field(..., max_length=1000)
    author_ids: list[str] = Field(..., max_length=1000)


@router.post("/{conversation_id}/messages/{message_id}")
def mark_read(conversation_id: str, message_id: str, actor_id: Actor, store: Store):
    return {"status": receipt_service.mark_read(store, message_id, conversation_id, actor_id)}


@router.post("/{conversation_id}/messages")
def mark_many_read(conversation_id: str, body: MarkMessages, actor_id: Actor, store: Store):
    count = receipt_service.mark_many_read(store, body.message_ids, conversation_id, actor_id)
    return {"newly_marked": count}


@router.post("/{conversation_id}/read-all")
def mark_conversation_read(
    conversation_id: str, body: MarkMessages, actor_id: Actor, store: Store,
):
    count = receipt_service.mark_conversation_read(
        store, conversation_id, actor_id, body.message_ids,
    )
    return {"newly_marked": count}


@router.get("/messages/{message_id}")
def receipts_for(message_id: str, _: Actor, store: Store):
    return receipt_service.receipts_for(store, message_id)


@router.get("/messages")
def batch_receipts_for(_: Actor, store: Store, message_id: list[str] = Query([])):
    return receipt_service.batch_receipts_for(store, message_id)


@router.get("/messages/{message_id}/readers/{reader_id}")
def has_read(message_id: str, reader_id: str, _: Actor, store: Store):
    return receipt_service.has_read(store, message_id, reader_id)


@router.post("/{conversation_id}/unread-count")
def unread_count_in(conversation_id: str, body: UnreadQuery, actor_id: Actor, store: Store):
    count = receipt_service.unread_count_in(
        store, conversation_id, actor_id, body.message_ids, body.author_ids,
    )
    return {"count": count}


@router.get("/{conversation_id}/last-read")
def last_read_message(conversation_id: str, actor_id: Actor, store: Store):
    return receipt_service.last_read_message(store, conversation_id, actor_id)


@router.get("/{conversation_id}/status")
def conversation_read_status(conversation_id: str, _: Actor, store: Store):
    return receipt_service.conversation_read_status(store, conversation_id)


@router.get("/{conversation_id}/stream")
async def stream_receipts(
    conversation_id: str,
    request: Request,
    _: Actor,
    store: Store,
    message_id: list[str] = Query([]),
):
    return await sse_response(
        request,
        lambda cb: receipt_service.subscribe_receipts(store, conversation_id, message_id, cb),
    )
