"""
pulse.api.routes.leaderboard — Referral leaderboard
=====================================================
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from pulse.api.deps import Actor, Store, require_maintenance
from pulse.api.streaming import sse_response
from pulse.services import leaderboard_service

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


class ReferralBody(BaseModel):
    actor_id: str
    display_name: str = Field(..., max_length=100)
    display_image: str | None = Field(None, max_length=500)


@router.post("/referrals")
def record_referral(
    body: ReferralBody,
    _: Annotated[dict, Depends(require_maintenance)],
    store: Store,
):
    """Credited by the backend once a referred user finishes signing up."""
    return leaderboard_service.record_referral(
        store, body.actor_id, body.display_name, display_image=body.display_image,
    )


@router.get("/me")
def get_my_rank(actor_id: Actor, store: Store, period: str = "all_time"):
    rank = leaderboard_service.get_user_rank(store, actor_id, period)
    if rank is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "No referrals yet")
    return rank


@router.get("/{period}")
def get_leaderboard(
    period: str, _: Actor, store: Store, limit: int | None = Query(None, ge=1),
):
    return leaderboard_service.get_leaderboard(store, period, limit=limit)


@router.get("/{period}/stream")
async def stream_leaderboard(period: str, request: Request, _: Actor, store: Store):
    return await sse_response(
        request,
        lambda cb: leaderboard_service.subscribe_leaderboard(store, cb, period=period),
    )
