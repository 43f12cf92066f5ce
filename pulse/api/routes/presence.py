"""
pulse.api.routes.presence — Heartbeats & online status
========================================================
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from pulse.api.deps import Actor, Config, Store
from pulse.api.streaming import sse_response
from pulse.services import presence_service

router = APIRouter(prefix="/presence", tags=["presence"])


class HeartbeatBody(BaseModel):
    context: str | None = Field(None, max_length=100)


class PresenceUpdate(BaseModel):
    status: str
    context: str | None = Field(None, max_length=100)
    device_id: str | None = Field(None, max_length=128)
    device_class: str | None = None


def _stale(config) -> timedelta:
    return timedelta(seconds=config.presence_stale_seconds)


@router.post("/heartbeat")
def heartbeat(actor_id: Actor, store: Store, body: HeartbeatBody | None = None):
    context = body.context if body else None
    return {"action": presence_service.heartbeat(store, actor_id, context=context)}


@router.put("")
def update_presence(body: PresenceUpdate, actor_id: Actor, store: Store):
    action = presence_service.update_presence(
        store, actor_id, body.status,
        context=body.context, device_id=body.device_id, device_class=body.device_class,
    )
    return {"action": action}


@router.post("/offline")
def set_offline(actor_id: Actor, store: Store):
    return {"ok": presence_service.set_offline(store, actor_id)}


@router.get("/me")
def get_my_presence(actor_id: Actor, store: Store):
    return {"presence": presence_service.get_my_presence(store, actor_id)}


@router.get("/online-count")
def get_online_count(_: Actor, store: Store, config: Config):
    return presence_service.get_online_count(store, stale_after=_stale(config))


@router.get("/online-friends")
def get_online_friends(
    _: Actor,
    store: Store,
    config: Config,
    friend_id: list[str] = Query([]),
):
    return presence_service.get_online_friends(store, friend_id, stale_after=_stale(config))


@router.get("/batch")
def get_batch_presence(
    _: Actor,
    store: Store,
    config: Config,
    actor_id: list[str] = Query([]),
):
    return presence_service.get_batch_presence(store, actor_id, stale_after=_stale(config))


@router.get("/stream")
async def stream_presence(
    request: Request,
    _: Actor,
    store: Store,
    config: Config,
    actor_id: list[str] = Query([]),
):
    """Live ``{actor_id: presence}`` for the listed actors."""
    return await sse_response(
        request,
        lambda cb: presence_service.subscribe_presence(
            store, actor_id, cb, stale_after=_stale(config),
        ),
    )


@router.get("/{actor_id}")
def get_presence(actor_id: str, _: Actor, store: Store, config: Config):
    return presence_service.get_presence(store, actor_id, stale_after=_stale(config))
