"""FastAPI dependencies and service wiring.

build_sync_service() assembles the engine against the shared database
(session_factory = get_session); the lifespan stores the result on
app.state and endpoints retrieve it through get_sync_service().
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.chimera.core.database import get_session
from src.chimera.notifications.dispatcher import NotificationDispatcher
from src.chimera.sync.repository import (
    ConfigurationRepository,
    ExecutionRepository,
    ProductCacheRepository,
)
from src.chimera.sync.service import SyncService
from src.chimera.sync.tracker import ExecutionTracker


def build_sync_service() -> SyncService:
    """Wire repositories, tracker, dispatcher and orchestrator into a SyncService."""
    tracker = ExecutionTracker(ExecutionRepository(session_factory=get_session))
    return SyncService(
        configurations=ConfigurationRepository(session_factory=get_session),
        tracker=tracker,
        dispatcher=NotificationDispatcher(),
        product_cache=ProductCacheRepository(session_factory=get_session),
    )


def get_sync_service(request: Request) -> SyncService:
    """Retrieve SyncService from app.state, 503 if not available."""
    service = getattr(request.app.state, "sync_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync service not initialized",
        )
    return service
