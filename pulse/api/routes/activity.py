"""
pulse.api.routes.activity — Friend activity feed
==================================================

The friend list lives in the durable store, so feed reads take the
friend ids as repeated ``friend_id`` query parameters.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from pulse.api.deps import Actor, Config, Store
from pulse.api.streaming import sse_response
from pulse.services import activity_service

router = APIRouter(prefix="/activity", tags=["activity"])


class ActivityCreate(BaseModel):
    kind: str
    target_id: str | None = Field(None, max_length=64)
    target_kind: str | None = None
    preview: str | None = Field(None, max_length=500)
    actor_name: str | None = Field(None, max_length=100)
    actor_image: str | None = Field(None, max_length=500)


class FanOut(ActivityCreate):
    recipient_ids: list[str] = Field(default_factory=list, max_length=1000)
    notification_kind: str | None = None
    title: str | None = Field(None, max_length=200)
    body: str | None = None
    source_id: str | None = Field(None, max_length=100)
    metadata: dict[str, Any] | None = None


class UndoBody(BaseModel):
    kind: str
    target_id: str


@router.post("", status_code=201)
def record_activity(body: ActivityCreate, actor_id: Actor, store: Store, config: Config):
    return activity_service.record_activity(
        store, actor_id, body.kind,
        target_id=body.target_id,
        target_kind=body.target_kind,
        preview=body.preview,
        actor_name=body.actor_name,
        actor_image=body.actor_image,
        ttl=timedelta(hours=config.activity_ttl_hours),
    )


@router.post("/fan-out", status_code=201)
def fan_out_activity(body: FanOut, actor_id: Actor, store: Store):
    return activity_service.fan_out_activity(
        store, actor_id, body.kind, **body.model_dump(exclude={"kind"}),
    )


@router.post("/undo")
def undo_activity(body: UndoBody, actor_id: Actor, store: Store):
    count = activity_service.undo_activity(store, actor_id, body.kind, body.target_id)
    return {"deleted_count": count}


@router.delete("/{activity_id}")
def delete_activity(activity_id: int, actor_id: Actor, store: Store):
    if not activity_service.delete_activity(store, activity_id, actor_id=actor_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Activity not found")
    return {"ok": True}


@router.get("/feed")
def get_friend_feed(
    _: Actor,
    store: Store,
    friend_id: list[str] = Query([]),
    limit: int | None = Query(None, ge=1),
):
    return activity_service.get_friend_feed(store, friend_id, limit=limit)


@router.get("/feed/kind/{kind}")
def get_activity_by_kind(
    kind: str,
    _: Actor,
    store: Store,
    friend_id: list[str] = Query([]),
    limit: int | None = Query(None, ge=1),
):
    return activity_service.get_activity_by_kind(store, friend_id, kind, limit=limit)


@router.get("/feed/count")
def get_activity_count(_: Actor, store: Store, friend_id: list[str] = Query([])):
    return activity_service.get_activity_count(store, friend_id)


@router.get("/feed/has-new")
def has_new_activity(
    _: Actor, store: Store, since: datetime, friend_id: list[str] = Query([]),
):
    return {"has_new": activity_service.has_new_activity(store, friend_id, since)}


@router.get("/feed/stream")
async def stream_friend_feed(
    request: Request, _: Actor, store: Store, friend_id: list[str] = Query([]),
):
    return await sse_response(
        request, lambda cb: activity_service.subscribe_friend_feed(store, friend_id, cb),
    )


@router.get("/users/{user_id}")
def get_user_activity(
    user_id: str, _: Actor, store: Store, limit: int | None = Query(None, ge=1),
):
    return activity_service.get_user_activity(store, user_id, limit=limit)
