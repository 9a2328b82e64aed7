"""Pydantic schemas for the contact store.

- ContactSource: Which system created a contact
- ContactCreate: Insert payload produced by the reconciliation engine
- ContactUpdate: Partial update payload (only set fields are written)
- ContactRead: Full persisted contact, also used as the match snapshot
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ContactSource(str, Enum):
    """Origin tag stored on every contact.

    MANUAL contacts may be claimed by any sync source; contacts created by a
    sync source keep that source forever.
    """

    MANUAL = "manual"
    GOOGLE_SHEETS = "google_sheets"
    HUBSPOT = "hubspot"
    SALESFORCE = "salesforce"
    PIPEDRIVE = "pipedrive"


class ContactCreate(BaseModel):
    """Fields for a new contact."""

    phone_number: str
    contact_name: str | None = None
    email: str | None = None
    company_name: str | None = None
    notes: str | None = None
    status: str = "new"
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    source: str = ContactSource.MANUAL.value


class ContactUpdate(BaseModel):
    """Partial contact update; dump with exclude_unset=True."""

    phone_number: str | None = None
    contact_name: str | None = None
    email: str | None = None
    company_name: str | None = None
    notes: str | None = None
    status: str | None = None
    tags: list[str] | None = None
    custom_fields: dict[str, Any] | None = None
    source: str | None = None


class ContactRead(BaseModel):
    """A persisted contact."""

    id: str
    company_id: str
    phone_number: str
    contact_name: str | None = None
    email: str | None = None
    company_name: str | None = None
    notes: str | None = None
    status: str = "new"
    call_status: str | None = None
    call_outcome: str | None = None
    last_call_date: datetime | None = None
    call_duration: int | None = None
    call_attempts: int = 0
    analysis: dict[str, Any] | None = None
    call_metadata: dict[str, Any] | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    source: str = ContactSource.MANUAL.value
    created_at: datetime | None = None
    updated_at: datetime | None = None
