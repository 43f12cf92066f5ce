"""
pulse.api.routes.gatherings — Group decision voting
=====================================================
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from pulse.api.deps import Actor, Store, require_maintenance
from pulse.api.streaming import sse_response
from pulse.services import gathering_service

router = APIRouter(prefix="/gatherings", tags=["gatherings"])


class VoteBody(BaseModel):
    category: str
    option_id: str = Field(..., min_length=1, max_length=64)
    voter_name: str | None = Field(None, max_length=100)


@router.post("/{gathering_id}/votes")
def cast_vote(gathering_id: str, body: VoteBody, actor_id: Actor, store: Store):
    action = gathering_service.cast_vote(
        store, gathering_id, actor_id, body.category, body.option_id,
        voter_name=body.voter_name,
    )
    return {"action": action}


@router.delete("/{gathering_id}/votes/{category}")
def remove_vote(gathering_id: str, category: str, actor_id: Actor, store: Store):
    return {"ok": gathering_service.remove_vote(store, gathering_id, actor_id, category)}


@router.delete("/{gathering_id}")
def clear_gathering(
    gathering_id: str,
    _: Annotated[dict, Depends(require_maintenance)],
    store: Store,
):
    """Called by the backend when the gathering itself is deleted."""
    return {"count": gathering_service.clear_gathering(store, gathering_id)}


@router.get("/{gathering_id}/tallies")
def get_tallies(gathering_id: str, _: Actor, store: Store):
    return gathering_service.get_tallies(store, gathering_id)


@router.get("/{gathering_id}/leader")
def get_leader(gathering_id: str, _: Actor, store: Store, category: str | None = None):
    return {"leader": gathering_service.get_leader(store, gathering_id, category)}


@router.get("/{gathering_id}/votes/me")
def get_user_votes(gathering_id: str, actor_id: Actor, store: Store):
    return gathering_service.get_user_votes(store, gathering_id, actor_id)


@router.get("/{gathering_id}/votes/{category}")
def get_votes_by_option(gathering_id: str, category: str, _: Actor, store: Store):
    return gathering_service.get_votes_by_option(store, gathering_id, category)


@router.get("/{gathering_id}/tallies/stream")
async def stream_tallies(gathering_id: str, request: Request, _: Actor, store: Store):
    return await sse_response(
        request, lambda cb: gathering_service.subscribe_tallies(store, gathering_id, cb),
    )


@router.get("/{gathering_id}/leader/stream")
async def stream_leader(
    gathering_id: str, request: Request, _: Actor, store: Store, category: str | None = None,
):
    return await sse_response(
        request,
        lambda cb: gathering_service.subscribe_leader(
            store, gathering_id, cb, category=category,
        ),
    )
