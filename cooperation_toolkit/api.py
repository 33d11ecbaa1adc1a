"""
FastAPI application for the Cooperation Toolkit.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .config import get_settings
from .db.base import get_db, init_database
from .errors import CooperationError
from .events.dispatcher import OutboxDispatcher
from .events.outbox import OutboxService
from .governance.routes import router as governance_router
from .identity import get_actor_id
from .ledger.routes import router as ledger_router
from .logging_config import configure_logging
from .reviews.routes import router as reviews_router
from .sync.routes import router as sync_router
from .tasks.routes import router as tasks_router
from .teams.routes import router as teams_router

logger = structlog.get_logger()

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings)
    logger.info("app_starting", app_name=settings.app_name, environment=settings.environment)

    try:
        await init_database()
    except Exception as e:
        logger.error("app_start_failed", error=str(e))
        raise

    yield

    logger.info("app_stopped")


app = FastAPI(
    title="Cooperation Toolkit",
    description="Contribution credit (COOK) issuance and governance",
    version=importlib.metadata.version("cooperation-toolkit"),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CooperationError)
async def cooperation_error_handler(request: Request, exc: CooperationError) -> JSONResponse:
    """Render core rejections as ``{"error", "code", "message", "details"}``."""
    logger.info(
        "request_rejected",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(teams_router)
app.include_router(tasks_router)
app.include_router(reviews_router)
app.include_router(ledger_router)
app.include_router(governance_router)
app.include_router(sync_router)


# Health and Info Endpoints
@app.get("/health", tags=["system"])
async def health() -> dict:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/healthz")
def healthz() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("cooperation-toolkit")}


# Outbox Endpoints
@app.get("/events", tags=["events"])
async def list_events(
    status: Optional[str] = None,
    event_type: Optional[str] = None,
    team_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
) -> List[Dict[str, Any]]:
    """List outbox events with optional filtering."""
    events = OutboxService(db).list(
        status=status, event_type=event_type, team_id=team_id, limit=limit
    )
    return [e.to_dict() for e in events]


@app.post("/events/process", tags=["events"])
async def process_events(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
) -> Dict[str, Any]:
    """Dispatch pending outbox events."""
    logger.info("outbox_process_requested", actor_id=actor_id, limit=limit)
    async with OutboxDispatcher(db) as dispatcher:
        stats = await dispatcher.process_pending(limit)
    return {"status": "success", **stats}


@app.post("/events/requeue", tags=["events"])
async def requeue_failed_events(
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
) -> Dict[str, Any]:
    count = OutboxService(db).requeue_failed()
    logger.info("outbox_requeued", actor_id=actor_id, requeued=count)
    return {"status": "success", "requeued": count}
