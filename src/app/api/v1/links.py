"""REST API endpoints for sync links.

A link associates the calling company with one external object: a
spreadsheet tab or a CRM object type. Links are soft-deleted.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from src.app.api.deps import (
    get_company_id,
    get_link_store,
    get_sync_service,
    sync_http_error,
)
from src.app.sync.exceptions import SyncError
from src.app.sync.schemas import LinkRead, SyncDirection

router = APIRouter(prefix="/links", tags=["links"])


# ── Schemas ──────────────────────────────────────────────────────────────────


class LinkRequest(BaseModel):
    """Request body for creating or updating a link."""

    integration_id: uuid.UUID
    spreadsheet_id: str | None = None
    sheet_tab_title: str | None = None
    object_type: str | None = None
    field_mapping: dict[str, str] = Field(default_factory=dict)
    sync_direction: SyncDirection = SyncDirection.INBOUND


class LinkResponse(BaseModel):
    """Response for link data, serializes datetimes to ISO strings."""

    id: str
    integration_id: str
    provider: str
    external_object_id: str
    object_type: str | None = None
    spreadsheet_id: str | None = None
    spreadsheet_name: str | None = None
    sheet_tab_title: str | None = None
    sheet_tab_id: int | None = None
    field_mapping: dict[str, str] = Field(default_factory=dict)
    sync_direction: str
    is_active: bool
    last_synced_at: str | None = None
    last_sync_row_count: int | None = None


def _link_to_response(link: LinkRead) -> LinkResponse:
    """Convert LinkRead to LinkResponse."""
    return LinkResponse(
        id=link.id,
        integration_id=link.integration_id,
        provider=link.provider.value,
        external_object_id=link.external_object_id,
        object_type=link.object_type,
        spreadsheet_id=link.spreadsheet_id,
        spreadsheet_name=link.spreadsheet_name,
        sheet_tab_title=link.sheet_tab_title,
        sheet_tab_id=link.sheet_tab_id,
        field_mapping=link.field_mapping,
        sync_direction=link.sync_direction.value,
        is_active=link.is_active,
        last_synced_at=link.last_synced_at.isoformat() if link.last_synced_at else None,
        last_sync_row_count=link.last_sync_row_count,
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=list[LinkResponse])
async def list_links(
    request: Request,
    integration_id: uuid.UUID | None = None,
    company_id: str = Depends(get_company_id),
) -> list[LinkResponse]:
    """List the company's active links, optionally for one integration."""
    store = get_link_store(request)
    links = await store.list_active_links(
        company_id, integration_id=str(integration_id) if integration_id else None
    )
    return [_link_to_response(link) for link in links]


@router.post("", response_model=LinkResponse, status_code=201)
async def save_link(
    body: LinkRequest,
    request: Request,
    company_id: str = Depends(get_company_id),
) -> LinkResponse:
    """Create a link, or update and reactivate the existing one for the same object."""
    service = get_sync_service(request)
    try:
        link = await service.create_link(
            company_id,
            str(body.integration_id),
            spreadsheet_id=body.spreadsheet_id,
            sheet_tab_title=body.sheet_tab_title,
            object_type=body.object_type,
            field_mapping=body.field_mapping,
            sync_direction=body.sync_direction,
        )
    except SyncError as exc:
        raise sync_http_error(exc) from exc
    return _link_to_response(link)


@router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_link(
    link_id: uuid.UUID,
    request: Request,
    company_id: str = Depends(get_company_id),
) -> None:
    """Deactivate (soft-delete) a link."""
    store = get_link_store(request)
    if not await store.deactivate_link(company_id, str(link_id)):
        raise HTTPException(status_code=404, detail="Link not found")


@router.post("/{link_id}/contacts/{contact_id}/push")
async def push_contact(
    link_id: uuid.UUID,
    contact_id: uuid.UUID,
    request: Request,
    company_id: str = Depends(get_company_id),
) -> dict[str, Any]:
    """Upsert one contact's row in the link's spreadsheet."""
    service = get_sync_service(request)
    try:
        result = await service.push_contact(company_id, str(link_id), str(contact_id))
    except SyncError as exc:
        raise sync_http_error(exc) from exc
    return result.model_dump()
