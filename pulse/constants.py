"""
pulse.constants — Shared Constants & Helpers
=============================================

Single source of truth for record lifetimes, read limits, and the small
time/enum helpers every service needs.  Import from here instead of
duplicating thresholds across services, routes, and sweeps.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime, timedelta
from typing import TypeVar

E = TypeVar("E", bound=enum.Enum)

# ---------------------------------------------------------------------------
# Record lifetimes
# ---------------------------------------------------------------------------
PRESENCE_STALE_AFTER = timedelta(minutes=2)   # no heartbeat → offline
TYPING_TTL = timedelta(milliseconds=5000)
ACTIVITY_TTL = timedelta(hours=24)
NOTIFICATION_RETENTION = timedelta(days=30)

# ---------------------------------------------------------------------------
# Read limits
# ---------------------------------------------------------------------------
DEFAULT_FEED_LIMIT = 50
DEFAULT_ACTIVITY_LIMIT = 20
DEFAULT_LEADERBOARD_LIMIT = 10
MAX_READ_LIMIT = 200


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    """Timezone-aware "now" in UTC."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite.

    PostgreSQL returns aware values for ``timestamptz``; SQLite drops the
    offset on the way in, so every Python-side comparison goes through here.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def iso(value: datetime | None) -> str | None:
    """ISO-8601 string for API payloads (``None`` passes through)."""
    value = as_utc(value)
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Enum validation
# ---------------------------------------------------------------------------
def parse_choice(enum_cls: type[E], value: str | E, field_name: str) -> E:
    """Coerce *value* into *enum_cls* or raise :class:`ValueError`.

    Every mutation validates its closed-set arguments through this before
    touching the database, so a malformed kind never produces a partial write.
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValueError(
            f"Invalid {field_name}: {value!r}. Allowed: {allowed}"
        ) from None


def clamp_limit(limit: int | None, default: int = DEFAULT_FEED_LIMIT) -> int:
    """Bound a caller-supplied read limit to ``1..MAX_READ_LIMIT``."""
    if limit is None:
        return default
    return max(1, min(int(limit), MAX_READ_LIMIT))
