"""
pulse.api.routes.maintenance — Sweep endpoints for the scheduler
==================================================================

Requires an admin token or the scheduler's service token
(``is_scheduler`` claim).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from pulse.api.deps import Config, Store, require_maintenance
from pulse.services import sweep_service

router = APIRouter(
    prefix="/maintenance",
    tags=["maintenance"],
    dependencies=[Depends(require_maintenance)],
)


@router.get("/sweeps")
def list_sweeps():
    return {"sweeps": list(sweep_service.SWEEPS)}


@router.post("/sweeps/all")
def run_all_sweeps(store: Store, config: Config):
    return sweep_service.run_all_sweeps(store, config=config)


@router.post("/sweeps/{name}")
def run_sweep(name: str, store: Store, config: Config):
    return sweep_service.run_sweep(store, name, config=config)


@router.get("/stats")
def stats(store: Store):
    return {
        "subscriptions": store.subscription_count,
        "listener_healthy": store.listener_healthy,
        "listener_failed": store.listener_failed,
    }
