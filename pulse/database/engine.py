"""
pulse.database.engine — Database Connection & Async Helper
===========================================================

SQLAlchemy + psycopg2 is synchronous; FastAPI handlers and the SSE streams
run on an ``asyncio`` event loop.  Async code reaches the database through
:func:`run_db`, which ships the synchronous call to a worker thread with
``asyncio.to_thread()`` so the loop stays free.

Usage::

    from pulse.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside an async handler:
    feed = await run_db(notification_service.get_feed, store, recipient_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from pulse.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    Ephemeral writes are small and frequent (heartbeats every 30 s per
    client, keystroke-rate typing events), so the pool keeps a few more
    persistent connections than usual:

    * ``pool_size=10`` with ``max_overflow=20``.
    * ``pool_timeout=10`` — fail fast instead of queueing forever.
    * ``pool_recycle=1800`` — recycle connections after 30 minutes.

    Raises
    ------
    RuntimeError
        If neither *url* nor ``DATABASE_URL`` is set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=1800,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`pulse.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` stays for dev/test databases.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that commits on success and rolls back on
    exception.

    Read paths use this directly; write paths go through
    :meth:`pulse.engine.store.ReactiveStore.transaction` so subscribers are
    told about the change.
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every service call made from an async route goes through here::

        result = await run_db(presence_service.heartbeat, store, actor_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
