"""REST API endpoints for the sync engine.

Manual triggers, compare-only runs, execution history, cancellation and
integration connectivity tests. The SyncService singleton comes from
app.state via get_sync_service; trigger-level errors map to HTTP codes:
ConflictError -> 409 (with the in-flight execution), ConfigurationError -> 422,
ExecutionNotFoundError -> 404.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from src.chimera.api.deps import get_sync_service
from src.chimera.integrations.schemas import IntegrationTestResult
from src.chimera.sync.errors import (
    ConfigurationError,
    ConflictError,
    ExecutionNotFoundError,
    ExecutionStateError,
)
from src.chimera.sync.schemas import ComparisonResult, Execution, SyncExecutionRequest
from src.chimera.sync.service import SyncService

router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


async def _conflict(exc: ConflictError, service: SyncService) -> JSONResponse:
    """409 carrying the in-flight execution alongside its id."""
    content = {"detail": str(exc), "execution_id": exc.execution_id, "execution": None}
    try:
        active = await service.get_execution(exc.execution_id)
        content["execution"] = active.model_dump(mode="json")
    except ExecutionNotFoundError:
        # Row gone between the conflict check and this read
        pass
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=content)


# ── Triggers ─────────────────────────────────────────────────────────────────


@router.post("/executions", response_model=Execution)
async def create_execution(
    body: SyncExecutionRequest,
    wait: bool = Query(False, description="Block until the run reaches a terminal status"),
    service: SyncService = Depends(get_sync_service),
):
    """Start a sync run.

    With wait=true the terminal execution is returned (200); otherwise the
    PENDING execution is returned immediately (202) and the run continues
    in the background.
    """
    try:
        if wait:
            execution = await service.execute_sync(body)
            return execution
        execution = await service.start_sync(body)
    except ConflictError as exc:
        return await _conflict(exc, service)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=execution.model_dump(mode="json"),
    )


@router.post("/comparisons", response_model=list[ComparisonResult])
async def create_comparison(
    body: SyncExecutionRequest,
    service: SyncService = Depends(get_sync_service),
) -> list[ComparisonResult]:
    """Compare source and target per store without uploading anything."""
    try:
        return await service.execute_comparison(body)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


# ── Executions ───────────────────────────────────────────────────────────────


@router.get("/executions", response_model=list[Execution])
async def list_executions(
    limit: int = Query(50, ge=1, le=500),
    service: SyncService = Depends(get_sync_service),
) -> list[Execution]:
    """Most recent executions first."""
    return await service.list_executions(limit)


@router.get("/executions/running", response_model=list[Execution])
async def list_running_executions(
    service: SyncService = Depends(get_sync_service),
) -> list[Execution]:
    return await service.list_running()


@router.get("/executions/{execution_id}", response_model=Execution)
async def get_execution(
    execution_id: str,
    service: SyncService = Depends(get_sync_service),
) -> Execution:
    try:
        return await service.get_execution(execution_id)
    except ExecutionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post("/executions/{execution_id}/cancel", response_model=Execution)
async def cancel_execution(
    execution_id: str,
    service: SyncService = Depends(get_sync_service),
) -> Execution:
    """Request cooperative cancellation.

    A run with a live worker stops at the next store or batch boundary;
    the returned execution may still be RUNNING at that point.
    """
    try:
        return await service.cancel(execution_id)
    except ExecutionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except ExecutionStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


# ── Integrations ─────────────────────────────────────────────────────────────


@router.post("/integrations/{integration_id}/test", response_model=IntegrationTestResult)
async def test_integration(
    integration_id: int,
    service: SyncService = Depends(get_sync_service),
) -> IntegrationTestResult:
    """Authenticate against the integration and make one lightweight request."""
    result = await service.test_integration(integration_id)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Integration {integration_id} not found",
        )
    return result
