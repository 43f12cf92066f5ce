"""
pulse.engine.windows — Leaderboard Window Identifiers
======================================================

Weekly and monthly referral counters are tagged with the window they
belong to.  Identifiers are ISO-week (``2026-W42``) and calendar month
(``2026-10``) strings, both computed in UTC, so they never collide across
years and compare equal only inside the same window.
"""

from __future__ import annotations

from datetime import datetime

from pulse.constants import as_utc, utcnow


def week_id(now: datetime | None = None) -> str:
    """ISO 8601 week identifier, e.g. ``"2026-W42"``.

    Uses the ISO year, so 2027-01-01 (a Friday) belongs to ``"2026-W53"``.
    """
    now = as_utc(now) or utcnow()
    year, week, _ = now.isocalendar()
    return f"{year}-W{week:02d}"


def month_id(now: datetime | None = None) -> str:
    """Calendar month identifier, e.g. ``"2026-10"``."""
    now = as_utc(now) or utcnow()
    return f"{now.year}-{now.month:02d}"
