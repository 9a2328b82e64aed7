"""FastAPI dependency injection for company-scoped requests and sync services.

The calling company comes from the X-Company-ID header and the optional
acting user from X-User-ID. Services are built once in the application
lifespan and read from app.state here.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import Header, HTTPException, Request, status

from src.app.sync.exceptions import SyncError


def _parse_uuid(value: str, header: str) -> str:
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} must be a UUID",
        )


async def get_company_id(
    x_company_id: str = Header(..., alias="X-Company-ID"),
) -> str:
    """Company UUID from the X-Company-ID header (400 if malformed)."""
    return _parse_uuid(x_company_id, "X-Company-ID")


async def get_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-ID"),
) -> str | None:
    """Optional acting user UUID from the X-User-ID header."""
    if not x_user_id:
        return None
    return _parse_uuid(x_user_id, "X-User-ID")


def _get_state(request: Request, name: str, label: str) -> Any:
    """Retrieve a service from app.state, 503 if not available."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_sync_service(request: Request) -> Any:
    """Retrieve SyncService from app.state, 503 if not available."""
    return _get_state(request, "sync_service", "Sync service")


def get_link_store(request: Request) -> Any:
    """Retrieve LinkStore from app.state, 503 if not available."""
    return _get_state(request, "link_store", "Link store")


def get_run_log(request: Request) -> Any:
    """Retrieve SyncRunLog from app.state, 503 if not available."""
    return _get_state(request, "sync_run_log", "Sync run log")


def sync_http_error(exc: SyncError) -> HTTPException:
    """Translate a SyncError into the HTTPException the API answers with."""
    return HTTPException(
        status_code=exc.status_code,
        detail={"code": exc.code, "message": exc.message, **exc.details},
    )
