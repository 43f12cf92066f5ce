"""
pulse.services.sweep_service — Scheduled Cleanup Entry Points
==============================================================

The engine has no timers of its own.  An external scheduler (cron, a
platform job runner, ``python -m pulse sweep``) calls these periodically.

Suggested cadence:

==============================  ==========
cleanup_expired_indicators      every 10 s
cleanup_stale_presence          every 1 min
cleanup_expired_activities      every 1 h
cleanup_old_notifications       daily
reset_weekly_leaderboard        Monday 00:00 UTC
reset_monthly_leaderboard       1st of month 00:00 UTC
==============================  ==========

Every sweep is an ordinary mutation: safe to run late, twice, or
concurrently with normal traffic.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from pulse.config import PulseConfig
from pulse.constants import (
    NOTIFICATION_RETENTION,
    PRESENCE_STALE_AFTER,
    utcnow,
)
from pulse.engine.store import ReactiveStore
from pulse.services import (
    activity_service,
    leaderboard_service,
    notification_service,
    presence_service,
    typing_service,
)

logger = logging.getLogger(__name__)

Sweep = Callable[[ReactiveStore, PulseConfig | None, datetime], int]


def _stale_after(config: PulseConfig | None) -> timedelta:
    if config is None:
        return PRESENCE_STALE_AFTER
    return timedelta(seconds=config.presence_stale_seconds)


def _retention_days(config: PulseConfig | None) -> int:
    if config is None:
        return NOTIFICATION_RETENTION.days
    return config.notification_retention_days


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
SWEEPS: dict[str, Sweep] = {
    "cleanup_expired_indicators": lambda store, cfg, now: typing_service.cleanup_expired(
        store, now=now,
    ),
    "cleanup_stale_presence": lambda store, cfg, now: presence_service.cleanup_stale(
        store, now=now, stale_after=_stale_after(cfg),
    ),
    "cleanup_expired_activities": lambda store, cfg, now: activity_service.cleanup_expired(
        store, now=now,
    ),
    "cleanup_old_notifications": lambda store, cfg, now: notification_service.cleanup_old(
        store, now=now, retention_days=_retention_days(cfg),
    ),
    "reset_weekly_leaderboard": lambda store, cfg, now: leaderboard_service.reset_weekly(
        store, now=now,
    ),
    "reset_monthly_leaderboard": lambda store, cfg, now: leaderboard_service.reset_monthly(
        store, now=now,
    ),
}


def run_sweep(
    store: ReactiveStore,
    name: str,
    *,
    config: PulseConfig | None = None,
    now: datetime | None = None,
) -> dict[str, object]:
    """Run one sweep by name.

    Returns ``{"sweep": name, "affected": n, "duration_ms": ms}``.

    Raises
    ------
    ValueError
        If *name* is not a registered sweep.
    """
    sweep = SWEEPS.get(name)
    if sweep is None:
        raise ValueError(f"Unknown sweep: {name!r}. Allowed: {', '.join(SWEEPS)}")

    started = time.monotonic()
    affected = sweep(store, config, now or utcnow())
    duration_ms = round((time.monotonic() - started) * 1000, 1)
    logger.info("Sweep %s complete — %d affected in %.1f ms", name, affected, duration_ms)
    return {"sweep": name, "affected": affected, "duration_ms": duration_ms}


def run_all_sweeps(
    store: ReactiveStore,
    *,
    config: PulseConfig | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Run every sweep in registry order.  Returns ``{name: affected}``."""
    now = now or utcnow()
    return {
        name: run_sweep(store, name, config=config, now=now)["affected"]
        for name in SWEEPS
    }
