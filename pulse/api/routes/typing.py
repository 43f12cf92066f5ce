"""
pulse.api.routes.typing — Typing indicators
=============================================
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from pulse.api.deps import Actor, Config, Store
from pulse.api.streaming import sse_response
from pulse.services import typing_service

router = APIRouter(prefix="/typing", tags=["typing"])


class StartTyping(BaseModel):
    display_name: str | None = Field(None, max_length=100)
    display_image: str | None = Field(None, max_length=500)


@router.post("/{conversation_id}/start")
def start_typing(
    conversation_id: str,
    actor_id: Actor,
    store: Store,
    config: Config,
    body: StartTyping | None = None,
):
    action = typing_service.start_typing(
        store, conversation_id, actor_id,
        display_name=body.display_name if body else None,
        display_image=body.display_image if body else None,
        ttl=timedelta(milliseconds=config.typing_ttl_ms),
    )
    return {"action": action}


@router.post("/{conversation_id}/stop")
def stop_typing(conversation_id: str, actor_id: Actor, store: Store):
    return {"ok": typing_service.stop_typing(store, conversation_id, actor_id)}


@router.post("/stop-all")
def stop_all_typing(actor_id: Actor, store: Store):
    return {"count": typing_service.stop_all_typing(store, actor_id)}


@router.get("")
def get_typing_in_many(
    actor_id: Actor,
    store: Store,
    conversation_id: list[str] = Query([]),
):
    return typing_service.get_typing_in_many(store, conversation_id, exclude_actor_id=actor_id)


@router.get("/{conversation_id}")
def get_typing(conversation_id: str, actor_id: Actor, store: Store):
    return typing_service.get_typing(store, conversation_id, exclude_actor_id=actor_id)


@router.get("/{conversation_id}/count")
def get_typing_count(conversation_id: str, actor_id: Actor, store: Store):
    return {
        "count": typing_service.get_typing_count(
            store, conversation_id, exclude_actor_id=actor_id,
        )
    }


@router.get("/{conversation_id}/users/{user_id}")
def is_typing(conversation_id: str, user_id: str, _: Actor, store: Store):
    return {"is_typing": typing_service.is_typing(store, conversation_id, user_id)}


@router.get("/{conversation_id}/stream")
async def stream_typing(conversation_id: str, request: Request, actor_id: Actor, store: Store):
    return await sse_response(
        request,
        lambda cb: typing_service.subscribe_typing(
            store, conversation_id, cb, exclude_actor_id=actor_id,
        ),
    )
