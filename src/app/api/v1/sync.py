"""REST API endpoints for running syncs and inspecting sync runs.

POST /sync syncs one link (link_id) or every active link of an integration
(integration_id). Runs execute inside the request; progress of a running
sync can be polled from another request via /sync/runs/{id}/progress.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field, model_validator

from src.app.api.deps import (
    get_company_id,
    get_run_log,
    get_sync_service,
    get_user_id,
    sync_http_error,
)
from src.app.sync.exceptions import SyncError
from src.app.sync.schemas import LinkSyncResult, SyncProgress, SyncRunRead

router = APIRouter(prefix="/sync", tags=["sync"])


# ── Schemas ──────────────────────────────────────────────────────────────────


class SyncRequest(BaseModel):
    """Request body for POST /sync. Exactly one of link_id / integration_id."""

    link_id: uuid.UUID | None = None
    integration_id: uuid.UUID | None = None
    ids: list[str] | None = None
    object_type: str | None = None
    incremental: bool = False

    @model_validator(mode="after")
    def _one_target(self) -> SyncRequest:
        if (self.link_id is None) == (self.integration_id is None):
            raise ValueError("Provide exactly one of link_id or integration_id")
        return self


class SyncResponse(BaseModel):
    success: bool
    results: list[LinkSyncResult] = Field(default_factory=list)


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=SyncResponse, response_model_exclude_none=True)
async def run_sync(
    body: SyncRequest,
    request: Request,
    company_id: str = Depends(get_company_id),
    user_id: str | None = Depends(get_user_id),
) -> SyncResponse:
    """Run a sync for a link or an integration and return per-link results."""
    service = get_sync_service(request)
    try:
        if body.link_id is not None:
            results = [
                await service.sync_link(
                    company_id,
                    str(body.link_id),
                    ids=body.ids,
                    user_id=user_id,
                    incremental=body.incremental,
                )
            ]
        else:
            results = await service.sync_integration(
                company_id,
                str(body.integration_id),
                ids=body.ids,
                object_type=body.object_type,
                user_id=user_id,
                incremental=body.incremental,
            )
    except SyncError as exc:
        raise sync_http_error(exc) from exc

    return SyncResponse(
        success=bool(results) and all(r.success for r in results),
        results=results,
    )


@router.get("/runs", response_model=list[SyncRunRead])
async def list_runs(
    request: Request,
    link_id: uuid.UUID | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    company_id: str = Depends(get_company_id),
) -> list[SyncRunRead]:
    """Most recent runs first, optionally for one link."""
    run_log = get_run_log(request)
    return await run_log.list_runs(
        company_id, link_id=str(link_id) if link_id else None, limit=limit
    )


@router.get("/runs/{run_id}", response_model=SyncRunRead)
async def get_run(
    run_id: uuid.UUID,
    request: Request,
    company_id: str = Depends(get_company_id),
) -> SyncRunRead:
    run_log = get_run_log(request)
    run = await run_log.get_run(company_id, str(run_id))
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


@router.get("/runs/{run_id}/progress", response_model=SyncProgress)
async def get_run_progress(
    run_id: uuid.UUID,
    request: Request,
    company_id: str = Depends(get_company_id),
) -> Any:
    """Latest progress event of a run, 404 once it is no longer tracked."""
    run_log = get_run_log(request)
    if await run_log.get_run(company_id, str(run_id)) is None:
        raise HTTPException(status_code=404, detail="Run not found")
    progress = get_sync_service(request).progress.get(str(run_id))
    if progress is None:
        raise HTTPException(status_code=404, detail="No progress recorded for run")
    return progress
