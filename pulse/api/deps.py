"""
pulse.api.deps — FastAPI dependency injection
===============================================

Identity comes from a JWT issued by the app's auth service: ``sub`` is the
acting user's id.  Pulse never authenticates users itself; it only checks
the signature and reads the subject.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Query, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from pulse.config import PulseConfig, load_config
from pulse.database.engine import create_db_engine
from pulse.engine.store import ReactiveStore

_WEAK_SECRETS = frozenset({
    "pulse-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_store() -> ReactiveStore:
    return ReactiveStore(get_engine())


@lru_cache(maxsize=1)
def get_config() -> PulseConfig:
    return load_config()


def _decode(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")


def get_token_payload(
    authorization: Annotated[str | None, Header()] = None,
    token: Annotated[str | None, Query(include_in_schema=False)] = None,
) -> dict:
    """Validate the bearer JWT and return its payload.  Raises 401 if invalid.

    Browsers' ``EventSource`` cannot send headers, so stream endpoints also
    accept ``?token=``.
    """
    if authorization and authorization.startswith("Bearer "):
        return _decode(authorization.split(" ", 1)[1])
    if token:
        return _decode(token)
    raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")


def get_current_actor(payload: Annotated[dict, Depends(get_token_payload)]) -> str:
    """The acting user's id (JWT ``sub``)."""
    actor_id = payload.get("sub")
    if not actor_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    return str(actor_id)


def require_maintenance(payload: Annotated[dict, Depends(get_token_payload)]) -> dict:
    """Allow admins and the scheduler service account.  Raises 403 otherwise."""
    if not (payload.get("is_admin") or payload.get("is_scheduler")):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not allowed to run maintenance")
    return payload


Actor = Annotated[str, Depends(get_current_actor)]
Store = Annotated[ReactiveStore, Depends(get_store)]
Config = Annotated[PulseConfig, Depends(get_config)]
