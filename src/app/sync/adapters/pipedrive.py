"""Pipedrive adapter -- reads persons through the v1 REST API.

Full reads page through /api/v1/persons with start/limit until
additional_data.pagination reports no more items. Selective reads fetch
/api/v1/persons/{id} one at a time; unknown IDs are skipped.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.app.config import get_settings
from src.app.sync.adapters.http import CRMHttpAdapter
from src.app.sync.matching import normalize_phone
from src.app.sync.schemas import ExternalRecord, IntegrationRead, Provider

logger = structlog.get_logger(__name__)

IMPORT_TAG = "pipedrive-import"


# ── Provider Schemas ────────────────────────────────────────────────────────


class PipedriveValue(BaseModel):
    """One entry of a person's phone or email list."""

    model_config = ConfigDict(extra="ignore")

    value: str | None = None
    primary: bool = False
    label: str | None = None


class PipedriveRef(BaseModel):
    """Embedded reference such as org_id or owner_id."""

    model_config = ConfigDict(extra="ignore")

    value: int | str | None = None
    name: str | None = None


class PipedrivePerson(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: list[PipedriveValue] = Field(default_factory=list)
    email: list[PipedriveValue] = Field(default_factory=list)
    org_id: PipedriveRef | None = None
    owner_id: PipedriveRef | None = None
    open_deals_count: int | None = None
    closed_deals_count: int | None = None
    label: int | str | None = None


class PipedrivePagination(BaseModel):
    model_config = ConfigDict(extra="ignore")

    more_items_in_collection: bool = False
    next_start: int | None = None


class PipedriveListResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool = False
    data: list[PipedrivePerson] | None = None
    additional_data: dict[str, Any] | None = None

    @property
    def pagination(self) -> PipedrivePagination:
        return PipedrivePagination.model_validate(
            (self.additional_data or {}).get("pagination") or {}
        )


def primary_value(values: Sequence[PipedriveValue]) -> str:
    """The primary entry's value, else the first entry's, else ""."""
    for item in values:
        if item.primary and item.value:
            return item.value.strip()
    for item in values:
        if item.value:
            return item.value.strip()
    return ""


def pipedrive_person_to_record(person: PipedrivePerson) -> ExternalRecord:
    """Convert a Pipedrive person into an ExternalRecord."""
    name = (person.name or " ".join(p for p in (person.first_name, person.last_name) if p)).strip()
    email = primary_value(person.email)
    org_name = person.org_id.name if person.org_id else None

    fields: dict[str, Any] = {"tags": [IMPORT_TAG]}
    if name:
        fields["contact_name"] = name
    if email:
        fields["email"] = email
    if org_name:
        fields["company_name"] = org_name.strip()

    custom: dict[str, Any] = {
        "pd_person_id": person.id,
        "pd_first_name": person.first_name,
        "pd_last_name": person.last_name,
        "pd_org_id": person.org_id.value if person.org_id else None,
        "pd_org_name": org_name,
        "pd_owner_name": person.owner_id.name if person.owner_id else None,
        "pd_open_deals": person.open_deals_count,
        "pd_closed_deals": person.closed_deals_count,
        "pd_label": person.label,
    }
    fields["custom_fields"] = {k: v for k, v in custom.items() if v is not None}

    return ExternalRecord(
        match_key=normalize_phone(primary_value(person.phone)),
        external_id=str(person.id),
        fields=fields,
    )


class PipedriveAdapter(CRMHttpAdapter):
    """Reads Pipedrive persons."""

    provider = Provider.PIPEDRIVE
    default_object_type = "persons"
    object_types = ("persons",)

    def base_url(self, integration: IntegrationRead) -> str:
        return (integration.instance_url or get_settings().PIPEDRIVE_API_BASE).rstrip("/")

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        object_type: str,
        ids: Sequence[str] | None,
        since: datetime | None,
    ) -> list[ExternalRecord]:
        if ids is not None:
            persons = await self._fetch_by_ids(client, ids)
        else:
            persons = await self._fetch_all(client, since)
        records = []
        for offset, person in enumerate(persons, start=1):
            record = pipedrive_person_to_record(person)
            record.row_number = offset
            records.append(record)
        return records

    async def _fetch_all(
        self, client: httpx.AsyncClient, since: datetime | None
    ) -> list[PipedrivePerson]:
        persons: list[PipedrivePerson] = []
        start = 0
        while True:
            params: dict[str, Any] = {"start": start, "limit": self.page_size}
            if since is not None:
                params["since"] = since.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
            page = PipedriveListResponse.model_validate(
                await self._get_json(client, "/api/v1/persons", params=params)
            )
            if not page.success or not page.data:
                return persons
            persons.extend(page.data)
            pagination = page.pagination
            if not pagination.more_items_in_collection or pagination.next_start is None:
                return persons
            start = pagination.next_start

    async def _fetch_by_ids(
        self, client: httpx.AsyncClient, ids: Sequence[str]
    ) -> list[PipedrivePerson]:
        persons: list[PipedrivePerson] = []
        for person_id in ids:
            try:
                data = await self._get_json(client, f"/api/v1/persons/{person_id}")
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code == 404:
                    logger.info("pipedrive.person_not_found", person_id=person_id)
                    continue
                raise
            if data.get("success") and data.get("data"):
                persons.append(PipedrivePerson.model_validate(data["data"]))
        return persons
