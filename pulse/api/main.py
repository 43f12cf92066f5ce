"""
pulse.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn pulse.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

load_dotenv()

from pulse.api.deps import get_store  # noqa: E402
from pulse.api.routes.activity import router as activity_router  # noqa: E402
from pulse.api.routes.gatherings import router as gatherings_router  # noqa: E402
from pulse.api.routes.leaderboard import router as leaderboard_router  # noqa: E402
from pulse.api.routes.maintenance import router as maintenance_router  # noqa: E402
from pulse.api.routes.notifications import router as notifications_router  # noqa: E402
from pulse.api.routes.presence import router as presence_router  # noqa: E402
from pulse.api.routes.receipts import router as receipts_router  # noqa: E402
from pulse.api.routes.shared_posts import router as shared_posts_router  # noqa: E402
from pulse.api.routes.typing import router as typing_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the store and, on PostgreSQL, start cross-process fan-out."""
    store = get_store()
    if store.is_postgres:
        store.start_listener()
    logger.info("Pulse API started — store ready (%s)", store.engine.url.database)
    yield
    store.close()
    logger.info("Pulse API shutting down")


app = FastAPI(
    title="Pulse Realtime API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
@app.exception_handler(ValueError)
async def _validation_error(request: Request, exc: ValueError):
    return JSONResponse(
        {"detail": str(exc)}, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
    )


@app.exception_handler(OperationalError)
async def _store_unavailable(request: Request, exc: OperationalError):
    logger.warning("Store unavailable for %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        {"detail": "Store temporarily unavailable, retry"},
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        headers={"Retry-After": "1"},
    )


# Mount routers
app.include_router(presence_router, prefix="/api")
app.include_router(typing_router, prefix="/api")
app.include_router(notifications_router, prefix="/api")
app.include_router(receipts_router, prefix="/api")
app.include_router(gatherings_router, prefix="/api")
app.include_router(activity_router, prefix="/api")
app.include_router(leaderboard_router, prefix="/api")
app.include_router(shared_posts_router, prefix="/api")
app.include_router(maintenance_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
