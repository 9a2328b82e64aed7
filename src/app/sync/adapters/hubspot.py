"""HubSpot adapter -- reads CRM contacts via the v3 objects API.

Full reads page through GET /crm/v3/objects/contacts using the `after`
cursor; selective reads use POST /crm/v3/objects/contacts/batch/read.
Payloads are decoded into HubSpotContact before conversion.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from src.app.config import get_settings
from src.app.sync.adapters.http import CRMHttpAdapter
from src.app.sync.matching import normalize_phone
from src.app.sync.schemas import ExternalRecord, IntegrationRead, Provider

CONTACT_PROPERTIES: list[str] = [
    "firstname", "lastname", "email", "phone", "mobilephone",
    "jobtitle", "company", "lifecyclestage", "hs_lead_status",
    "address", "city", "state", "zip", "country",
    "hubspot_owner_id", "createdate", "lastmodifieddate",
]

# HubSpot property -> custom_fields key
CUSTOM_FIELD_PROPERTIES: dict[str, str] = {
    "firstname": "hs_firstname",
    "lastname": "hs_lastname",
    "jobtitle": "hs_jobtitle",
    "company": "hs_company",
    "lifecyclestage": "hs_lifecyclestage",
    "hs_lead_status": "hs_lead_status",
    "city": "hs_city",
    "state": "hs_state",
    "country": "hs_country",
}

IMPORT_TAG = "hubspot-import"


# ── Provider Schemas ────────────────────────────────────────────────────────


class HubSpotContact(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    properties: dict[str, str | None] = Field(default_factory=dict)
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    def prop(self, name: str) -> str:
        return (self.properties.get(name) or "").strip()


class HubSpotPage(BaseModel):
    results: list[HubSpotContact] = Field(default_factory=list)
    paging: dict[str, Any] | None = None

    @property
    def next_after(self) -> str | None:
        return ((self.paging or {}).get("next") or {}).get("after")


def hubspot_contact_to_record(contact: HubSpotContact) -> ExternalRecord:
    """Convert a HubSpot contact into an ExternalRecord."""
    phone = contact.prop("phone") or contact.prop("mobilephone")
    name = " ".join(p for p in (contact.prop("firstname"), contact.prop("lastname")) if p)

    fields: dict[str, Any] = {"tags": [IMPORT_TAG]}
    if name:
        fields["contact_name"] = name
    if contact.prop("email"):
        fields["email"] = contact.prop("email")
    if contact.prop("company"):
        fields["company_name"] = contact.prop("company")

    custom: dict[str, Any] = {"hs_contact_id": contact.id}
    for prop, key in CUSTOM_FIELD_PROPERTIES.items():
        if contact.prop(prop):
            custom[key] = contact.prop(prop)
    fields["custom_fields"] = custom

    return ExternalRecord(
        match_key=normalize_phone(phone),
        external_id=contact.id,
        fields=fields,
    )


class HubSpotAdapter(CRMHttpAdapter):
    """Reads HubSpot contacts."""

    provider = Provider.HUBSPOT
    default_object_type = "contacts"
    object_types = ("contacts",)

    def base_url(self, integration: IntegrationRead) -> str:
        return get_settings().HUBSPOT_API_BASE

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        object_type: str,
        ids: Sequence[str] | None,
        since: datetime | None,
    ) -> list[ExternalRecord]:
        if ids is not None:
            contacts = await self._fetch_by_ids(client, ids)
        else:
            contacts = await self._fetch_all(client, since)
        records = []
        for offset, contact in enumerate(contacts, start=1):
            record = hubspot_contact_to_record(contact)
            record.row_number = offset
            records.append(record)
        return records

    async def _fetch_all(
        self, client: httpx.AsyncClient, since: datetime | None
    ) -> list[HubSpotContact]:
        contacts: list[HubSpotContact] = []
        after: str | None = None
        while True:
            params: dict[str, Any] = {
                "limit": self.page_size,
                "properties": ",".join(CONTACT_PROPERTIES),
            }
            if after:
                params["after"] = after
            page = HubSpotPage.model_validate(
                await self._get_json(client, "/crm/v3/objects/contacts", params=params)
            )
            for contact in page.results:
                # The list endpoint has no server-side modified filter
                if since is None or contact.updated_at is None or contact.updated_at > since:
                    contacts.append(contact)
            after = page.next_after
            if not after:
                return contacts

    async def _fetch_by_ids(
        self, client: httpx.AsyncClient, ids: Sequence[str]
    ) -> list[HubSpotContact]:
        contacts: list[HubSpotContact] = []
        # batch/read accepts at most 100 inputs
        for start in range(0, len(ids), self.page_size):
            chunk = ids[start : start + self.page_size]
            data = await self._post_json(
                client,
                "/crm/v3/objects/contacts/batch/read",
                {
                    "properties": CONTACT_PROPERTIES,
                    "inputs": [{"id": str(i)} for i in chunk],
                },
            )
            contacts.extend(HubSpotPage.model_validate(data).results)
        return contacts
