"""Outbound writer -- serializes contacts into a fixed column layout and pushes them out.

Two modes, both only for links whose direction allows outbound:
- push_all: full overwrite of the target (clear, then header + every row)
- push_one: single-contact upsert keyed by the Phone Number column

Call analysis and call metadata JSON are decoded once into CallAnalysis and
CallMetadata before serialization.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.app.config import get_settings
from src.app.contacts.schemas import ContactRead
from src.app.sync.adapters.base import SourceAdapter, TabularWriter
from src.app.sync.exceptions import OutboundNotAllowed
from src.app.sync.schemas import IntegrationRead, LinkRead, OutboundResult

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

CONTACT_SHEET_HEADERS: list[str] = [
    "Contact Name",
    "Phone Number",
    "Email",
    "Company",
    "Status",
    "Call Status",
    "Call Outcome",
    "Last Call Date",
    "Call Duration (s)",
    "Call Attempts",
    "Sentiment",
    "Interest Level",
    "Follow-up Required",
    "Summary",
    "Tags",
    "Notes",
    "Source",
    "Created At",
    "Updated At",
]

PHONE_COLUMN = CONTACT_SHEET_HEADERS.index("Phone Number")


# ── Call Payload Schemas ────────────────────────────────────────────────────


class CallAnalysis(BaseModel):
    """Post-call analysis as stored on the contact."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    call_sentiment: str | int | float | None = Field(default=None, alias="callSentiment")
    customer_interest_level: str | int | float | None = Field(
        default=None, alias="customerInterestLevel"
    )
    follow_up_required: bool | None = Field(default=None, alias="followUpRequired")


class CallMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str | None = None


def _decode(model: type[ModelT], raw: object) -> ModelT:
    if not isinstance(raw, dict):
        return model()
    try:
        return model.model_validate(raw)
    except ValidationError:
        logger.debug("outbound.payload_decode_failed", model=model.__name__)
        return model()


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value)


def format_timestamp(value: datetime | None) -> str:
    """Render timestamps in UTC as 'YYYY-MM-DD HH:MM:SS'."""
    if value is None:
        return ""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S")


def contact_to_row(contact: ContactRead, default_source: str | None = None) -> list[str]:
    """Serialize a contact in CONTACT_SHEET_HEADERS order."""
    analysis = _decode(CallAnalysis, contact.analysis)
    metadata = _decode(CallMetadata, contact.call_metadata)

    if analysis.follow_up_required is True:
        follow_up = "Yes"
    elif analysis.follow_up_required is False:
        follow_up = "No"
    else:
        follow_up = ""

    return [
        contact.contact_name or "",
        contact.phone_number or "",
        contact.email or "",
        contact.company_name or "",
        contact.status or "",
        contact.call_status or "",
        contact.call_outcome or "",
        format_timestamp(contact.last_call_date),
        _text(contact.call_duration),
        _text(contact.call_attempts),
        _text(analysis.call_sentiment),
        _text(analysis.customer_interest_level),
        follow_up,
        metadata.summary or contact.call_outcome or "",
        ", ".join(contact.tags or []),
        contact.notes or "",
        contact.source or default_source or get_settings().PRODUCT_NAME,
        format_timestamp(contact.created_at),
        format_timestamp(contact.updated_at),
    ]


class ContactLister(Protocol):
    async def list_contacts(self, company_id: str) -> list[ContactRead]: ...


class LinkBookkeeper(Protocol):
    async def mark_synced(self, link_id: str, row_count: int) -> None: ...


class OutboundWriter:
    """Pushes internal contacts to a writable external target.

    Args:
        contacts: Store providing list_contacts (newest first).
        links: Store used to record last_synced_at on the link.
    """

    def __init__(self, contacts: ContactLister, links: LinkBookkeeper) -> None:
        self._contacts = contacts
        self._links = links

    @staticmethod
    def _writer(link: LinkRead, adapter: SourceAdapter) -> TabularWriter:
        if not link.sync_direction.allows_outbound:
            raise OutboundNotAllowed(
                f"Link direction '{link.sync_direction.value}' does not allow outbound sync",
                details={"link_id": link.id},
            )
        if not isinstance(adapter, TabularWriter):
            raise OutboundNotAllowed(
                f"{adapter.source_tag} does not support outbound sync",
                details={"link_id": link.id},
            )
        return adapter

    async def push_all(
        self,
        company_id: str,
        link: LinkRead,
        integration: IntegrationRead,
        adapter: SourceAdapter,
    ) -> OutboundResult:
        """Overwrite the target with every company contact.

        Raises:
            OutboundNotAllowed: The link or adapter does not allow outbound.
        """
        writer = self._writer(link, adapter)
        try:
            contacts = await self._contacts.list_contacts(company_id)
            rows = [contact_to_row(c) for c in contacts]
            written = await writer.write_all(integration, link, CONTACT_SHEET_HEADERS, rows)
            await self._links.mark_synced(link.id, written)
        except Exception as exc:
            logger.error(
                "outbound.push_all_failed",
                company_id=company_id,
                link_id=link.id,
                error=str(exc),
            )
            return OutboundResult(success=False, row_count=0, error=str(exc))

        logger.info(
            "outbound.push_all_complete",
            company_id=company_id,
            link_id=link.id,
            rows=written,
        )
        return OutboundResult(success=True, row_count=written)

    async def push_one(
        self,
        company_id: str,
        link: LinkRead,
        integration: IntegrationRead,
        adapter: SourceAdapter,
        contact: ContactRead,
    ) -> OutboundResult:
        """Upsert one contact's row, matching on the Phone Number column.

        Raises:
            OutboundNotAllowed: The link or adapter does not allow outbound.
        """
        writer = self._writer(link, adapter)
        try:
            row_count = await writer.write_one(
                integration,
                link,
                CONTACT_SHEET_HEADERS,
                contact_to_row(contact),
                PHONE_COLUMN,
            )
            await self._links.mark_synced(link.id, row_count)
        except Exception as exc:
            logger.error(
                "outbound.push_one_failed",
                company_id=company_id,
                link_id=link.id,
                contact_id=contact.id,
                error=str(exc),
            )
            return OutboundResult(success=False, row_count=0, error=str(exc))

        logger.info(
            "outbound.push_one_complete",
            company_id=company_id,
            link_id=link.id,
            contact_id=contact.id,
        )
        return OutboundResult(success=True, row_count=row_count)
