"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of pulse.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402

from pulse.config import PulseConfig  # noqa: E402
from pulse.database.models import Base  # noqa: E402
from pulse.engine.store import ReactiveStore  # noqa: E402

# Fixed instant used by tests that pass ``now`` explicitly (a Monday).
T0 = datetime(2026, 10, 19, 12, 0, 0, tzinfo=UTC)

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


def run_async(coro):
    """Run an async coroutine to completion without pytest-asyncio."""
    return asyncio.run(coro)


class Recorder:
    """Subscription callback that keeps every delivered value."""

    def __init__(self):
        self.values = []

    def __call__(self, value):
        self.values.append(value)

    @property
    def last(self):
        return self.values[-1]


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Pulse tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` in ``run_db`` and by the
    TestClient's worker threads).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def store(db_engine: Engine) -> ReactiveStore:
    s = ReactiveStore(db_engine)
    yield s
    s.close()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def test_config() -> PulseConfig:
    return PulseConfig(service_name="Pulse Test", api_port=8000)


def make_token(sub: str = "u1", **claims) -> str:
    """Create a signed JWT for *sub*.  Extra claims (``is_admin`` …) pass through."""
    import jwt

    from pulse.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": sub, **claims}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def auth(sub: str = "u1", **claims) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, **claims)}"}


@pytest.fixture
def client(store: ReactiveStore, test_config: PulseConfig):
    """FastAPI TestClient wired to the in-memory store.

    Created without a context manager, so the lifespan (and the PG
    listener) never runs.
    """
    from fastapi.testclient import TestClient

    from pulse.api.deps import get_config, get_store
    from pulse.api.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_config] = lambda: test_config
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
