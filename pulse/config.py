"""
pulse.config — YAML Configuration Loader
=========================================

Reads ``config.yaml`` for deployment settings (service identity, API port)
and the lifetime tunables of the ephemeral records (presence staleness,
typing TTL, activity TTL, notification retention).  Secrets and connection
strings stay in the environment (``.env``).

Usage::

    from pulse.config import load_config

    cfg = load_config()                 # reads ./config.yaml by default
    print(cfg.service_name)             # "Pulse Dev"
    print(cfg.presence_stale_seconds)   # 120
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from pulse.constants import (
    ACTIVITY_TTL,
    DEFAULT_FEED_LIMIT,
    NOTIFICATION_RETENTION,
    PRESENCE_STALE_AFTER,
    TYPING_TTL,
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PulseConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Only ``service_name`` and ``api_port`` are required; every lifetime
    tunable falls back to the defaults in :mod:`pulse.constants`.
    """

    # Identity
    service_name: str

    # API
    api_port: int

    # Record lifetimes
    presence_stale_seconds: int = int(PRESENCE_STALE_AFTER.total_seconds())
    typing_ttl_ms: int = int(TYPING_TTL.total_seconds() * 1000)
    activity_ttl_hours: int = int(ACTIVITY_TTL.total_seconds() // 3600)
    notification_retention_days: int = NOTIFICATION_RETENTION.days

    # Reads
    default_feed_limit: int = DEFAULT_FEED_LIMIT


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def default_config_path() -> Path:
    """Return ``$PULSE_CONFIG`` if set, else ``./config.yaml``."""
    return Path(os.getenv("PULSE_CONFIG", "config.yaml"))


def load_config(path: str | Path | None = None) -> PulseConfig:
    """Read *path* and return a :class:`PulseConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to
        :func:`default_config_path`.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path) if path is not None else default_config_path()
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = PulseConfig(service_name="", api_port=0)
    return PulseConfig(
        service_name=raw["service_name"],
        api_port=int(raw["api_port"]),
        presence_stale_seconds=int(
            raw.get("presence_stale_seconds", defaults.presence_stale_seconds)
        ),
        typing_ttl_ms=int(raw.get("typing_ttl_ms", defaults.typing_ttl_ms)),
        activity_ttl_hours=int(
            raw.get("activity_ttl_hours", defaults.activity_ttl_hours)
        ),
        notification_retention_days=int(
            raw.get("notification_retention_days", defaults.notification_retention_days)
        ),
        default_feed_limit=int(
            raw.get("default_feed_limit", defaults.default_feed_limit)
        ),
    )
