"""Salesforce adapter -- reads Contacts or Leads through SOQL queries.

Queries run against /services/data/<version>/query and follow
nextRecordsUrl until the result set reports done. The API root is the
integration's instance URL.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from src.app.config import get_settings
from src.app.sync.adapters.http import CRMHttpAdapter
from src.app.sync.exceptions import ReadFailure
from src.app.sync.matching import normalize_phone
from src.app.sync.schemas import ExternalRecord, IntegrationRead, Provider

CONTACT_FIELDS = (
    "Id, FirstName, LastName, Name, Email, Phone, MobilePhone, Title, Department, "
    "AccountId, Account.Name, MailingStreet, MailingCity, MailingState, "
    "MailingPostalCode, MailingCountry, Description, OwnerId, CreatedDate, LastModifiedDate"
)

LEAD_FIELDS = (
    "Id, FirstName, LastName, Name, Email, Phone, MobilePhone, Title, "
    "Company, Status, LeadSource, Description, OwnerId, CreatedDate, LastModifiedDate"
)

OBJECT_FIELDS: dict[str, str] = {"Contact": CONTACT_FIELDS, "Lead": LEAD_FIELDS}

IMPORT_TAG = "salesforce-import"
LEAD_TAG = "salesforce-lead"


# ── Provider Schemas ────────────────────────────────────────────────────────


class SalesforceAccountRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    Name: str | None = None


class SalesforceRecord(BaseModel):
    """A Contact or Lead row; fields absent from one object type stay None."""

    model_config = ConfigDict(extra="ignore")

    Id: str
    FirstName: str | None = None
    LastName: str | None = None
    Name: str | None = None
    Email: str | None = None
    Phone: str | None = None
    MobilePhone: str | None = None
    Title: str | None = None
    Department: str | None = None
    AccountId: str | None = None
    Account: SalesforceAccountRef | None = None
    MailingCity: str | None = None
    MailingState: str | None = None
    MailingCountry: str | None = None
    Company: str | None = None
    Status: str | None = None
    LeadSource: str | None = None
    Description: str | None = None


class SalesforceQueryPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    records: list[SalesforceRecord] = Field(default_factory=list)
    done: bool = True
    nextRecordsUrl: str | None = None


def soql_id_list(ids: Sequence[str]) -> str:
    """Quote IDs for an IN clause, escaping embedded single quotes."""
    return ",".join("'" + str(i).replace("\\", "\\\\").replace("'", "\\'") + "'" for i in ids)


def build_soql(object_type: str, ids: Sequence[str] | None = None, since: datetime | None = None) -> str:
    """Build the SOQL query for a full, incremental or selective read."""
    soql = f"SELECT {OBJECT_FIELDS[object_type]} FROM {object_type}"
    if ids is not None:
        return f"{soql} WHERE Id IN ({soql_id_list(ids)})"
    if since is not None:
        stamp = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        soql += f" WHERE LastModifiedDate > {stamp}"
    return f"{soql} ORDER BY LastModifiedDate DESC"


def salesforce_record_to_external(record: SalesforceRecord, object_type: str) -> ExternalRecord:
    """Convert a Salesforce Contact or Lead into an ExternalRecord."""
    phone = record.Phone or record.MobilePhone or ""
    name = (record.Name or " ".join(p for p in (record.FirstName, record.LastName) if p)).strip()

    fields: dict[str, Any] = {}
    if name:
        fields["contact_name"] = name
    if record.Email:
        fields["email"] = record.Email.strip()

    if object_type == "Lead":
        company = record.Company
        fields["tags"] = [IMPORT_TAG, LEAD_TAG]
        custom: dict[str, Any] = {
            "sf_lead_id": record.Id,
            "sf_lead_status": record.Status,
            "sf_lead_source": record.LeadSource,
        }
    else:
        company = record.Account.Name if record.Account else None
        fields["tags"] = [IMPORT_TAG]
        custom = {
            "sf_contact_id": record.Id,
            "sf_department": record.Department,
            "sf_account_id": record.AccountId,
            "sf_mailing_city": record.MailingCity,
            "sf_mailing_state": record.MailingState,
            "sf_mailing_country": record.MailingCountry,
        }
    if company:
        fields["company_name"] = company.strip()
    if record.Title:
        custom["sf_title"] = record.Title
    fields["custom_fields"] = {k: v for k, v in custom.items() if v is not None}

    return ExternalRecord(
        match_key=normalize_phone(phone),
        external_id=record.Id,
        fields=fields,
    )


class SalesforceAdapter(CRMHttpAdapter):
    """Reads Salesforce Contacts (default) or Leads."""

    provider = Provider.SALESFORCE
    default_object_type = "Contact"
    object_types = ("Contact", "Lead")

    def base_url(self, integration: IntegrationRead) -> str:
        if not integration.instance_url:
            raise ReadFailure("Salesforce integration has no instance URL")
        return integration.instance_url.rstrip("/")

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        object_type: str,
        ids: Sequence[str] | None,
        since: datetime | None,
    ) -> list[ExternalRecord]:
        version = get_settings().SALESFORCE_API_VERSION
        if ids is not None:
            # Keep IN clauses well under the SOQL length limit
            queries = [
                build_soql(object_type, ids[start : start + self.page_size])
                for start in range(0, len(ids), self.page_size)
            ]
        else:
            queries = [build_soql(object_type, since=since)]

        rows: list[SalesforceRecord] = []
        for soql in queries:
            page = SalesforceQueryPage.model_validate(
                await self._get_json(
                    client, f"/services/data/{version}/query", params={"q": soql}
                )
            )
            rows.extend(page.records)
            while not page.done and page.nextRecordsUrl:
                page = SalesforceQueryPage.model_validate(
                    await self._get_json(client, page.nextRecordsUrl)
                )
                rows.extend(page.records)

        records = []
        for offset, row in enumerate(rows, start=1):
            record = salesforce_record_to_external(row, object_type)
            record.row_number = offset
            records.append(record)
        return records
