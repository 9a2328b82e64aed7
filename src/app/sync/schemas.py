"""Pydantic schemas for contact synchronization.

Defines all structured types flowing through a sync run:
- Enums: Provider, SyncDirection, SyncType, RunStatus, SyncPhase
- Source data: ExternalRecord, SourceReadResult
- Persistence views: IntegrationRead, LinkCreate, LinkRead, SyncRunRead
- Run accounting: SyncProgress, InboundResult, OutboundResult, LinkSyncResult
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class Provider(str, Enum):
    """External systems a company can connect. Values double as contact sources."""

    GOOGLE_SHEETS = "google_sheets"
    HUBSPOT = "hubspot"
    SALESFORCE = "salesforce"
    PIPEDRIVE = "pipedrive"


class SyncDirection(str, Enum):
    """Which way records flow for a link."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"
    BIDIRECTIONAL = "bidirectional"

    @property
    def allows_inbound(self) -> bool:
        return self in (SyncDirection.INBOUND, SyncDirection.BIDIRECTIONAL)

    @property
    def allows_outbound(self) -> bool:
        return self in (SyncDirection.OUTBOUND, SyncDirection.BIDIRECTIONAL)


class SyncType(str, Enum):
    FULL = "full"
    SELECTIVE = "selective"


class RunStatus(str, Enum):
    """Lifecycle of a sync run log entry."""

    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


class SyncPhase(str, Enum):
    READING = "reading"
    IMPORTING = "importing"
    COMPLETE = "complete"
    ERROR = "error"


# ── Source Data ─────────────────────────────────────────────────────────────


class ExternalRecord(BaseModel):
    """One record read from an external system, in canonical contact terms.

    Attributes:
        match_key: Normalized phone number; empty when the record has none.
        external_id: Provider object ID, or the sheet row number for spreadsheets.
        row_number: 1-based position in the source, used in error messages.
        fields: Canonical contact columns (contact_name, email, company_name,
            notes, tags, custom_fields). Never provider field names.
    """

    match_key: str = ""
    external_id: str = ""
    row_number: int = 0
    fields: dict[str, Any] = Field(default_factory=dict)


class SourceReadResult(BaseModel):
    """Records read by an adapter plus the total it saw in the source."""

    records: list[ExternalRecord] = Field(default_factory=list)
    total: int = 0


# ── Persistence Views ───────────────────────────────────────────────────────


class IntegrationRead(BaseModel):
    """A company's connection to one provider."""

    id: str
    company_id: str
    provider: Provider
    access_token: str = ""
    instance_url: str | None = None
    is_active: bool = True
    last_synced_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class LinkCreate(BaseModel):
    """Input for create_or_update_link."""

    integration_id: str
    provider: Provider
    external_object_id: str
    object_type: str | None = None
    spreadsheet_id: str | None = None
    spreadsheet_name: str | None = None
    sheet_tab_title: str | None = None
    sheet_tab_id: int | None = None
    field_mapping: dict[str, str] = Field(default_factory=dict)
    sync_direction: SyncDirection = SyncDirection.INBOUND


class LinkRead(BaseModel):
    """An association between a company and one external object."""

    id: str
    company_id: str
    integration_id: str
    provider: Provider
    external_object_id: str
    object_type: str | None = None
    spreadsheet_id: str | None = None
    spreadsheet_name: str | None = None
    sheet_tab_title: str | None = None
    sheet_tab_id: int | None = None
    field_mapping: dict[str, str] = Field(default_factory=dict)
    sync_direction: SyncDirection = SyncDirection.INBOUND
    is_active: bool = True
    last_synced_at: datetime | None = None
    last_sync_row_count: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def display_name(self) -> str:
        """Human-readable label used in notifications."""
        if self.spreadsheet_name:
            return self.spreadsheet_name
        if self.sheet_tab_title:
            return self.sheet_tab_title
        return self.object_type or self.external_object_id


class SyncRunRead(BaseModel):
    """One sync run log entry."""

    id: str
    company_id: str
    integration_id: str | None = None
    link_id: str | None = None
    provider: str
    sync_type: SyncType
    sync_direction: SyncDirection
    status: RunStatus
    records_created: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    errors: list[str] = Field(default_factory=list)
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


# ── Run Accounting ──────────────────────────────────────────────────────────


class SyncProgress(BaseModel):
    """Progress event emitted while a run is executing."""

    phase: SyncPhase
    processed: int = 0
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    message: str = ""


class InboundResult(BaseModel):
    """Tally of one inbound reconciliation.

    `unchanged` counts matched records whose fields already agreed with the
    stored contact; they are included in `skipped`.
    """

    success: bool = True
    created: int = 0
    updated: int = 0
    skipped: int = 0
    unchanged: int = 0
    total: int = 0
    errors: list[str] = Field(default_factory=list)
    error: str | None = None
    phase: SyncPhase = SyncPhase.COMPLETE


class OutboundResult(BaseModel):
    success: bool = True
    row_count: int = 0
    error: str | None = None


class LinkSyncResult(BaseModel):
    """Outcome of syncing one link in its configured direction."""

    success: bool
    link_id: str
    run_id: str | None = None
    direction: SyncDirection
    inbound: InboundResult | None = None
    outbound: OutboundResult | None = None
    error: str | None = None
