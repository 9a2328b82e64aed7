"""Match resolution between external records and internal contacts.

Phone number (digits only) is the primary match key. For CRM integrations the
ContactMapping table is consulted first by external ID and is authoritative;
records that were never mapped fall back to phone matching.

Batch resolution issues at most one mapping query and one phone query per
batch, which is what keeps imports of tens of thousands of rows tractable.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

import structlog

from src.app.contacts.schemas import ContactRead

if TYPE_CHECKING:
    from src.app.sync.schemas import ExternalRecord

logger = structlog.get_logger(__name__)

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone(value: object) -> str:
    """Reduce a phone number to its digits ("+1 (555) 010-0" -> "15550100")."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


class ContactLookup(Protocol):
    async def find_by_phones(
        self, company_id: str, phone_numbers: list[str]
    ) -> list[ContactRead]: ...


class MappingLookup(Protocol):
    async def find_contacts_by_external_ids(
        self, company_id: str, integration_id: str, external_ids: list[str]
    ) -> dict[str, ContactRead]: ...


class BatchMatches:
    """Result of resolving one batch; answers lookups without further queries."""

    def __init__(
        self,
        by_external_id: dict[str, ContactRead] | None = None,
        by_phone: dict[str, ContactRead] | None = None,
    ) -> None:
        self.by_external_id = by_external_id or {}
        self.by_phone = by_phone or {}

    def lookup(self, record: ExternalRecord) -> ContactRead | None:
        """Return the matched contact for a record, mapping first."""
        if record.external_id and record.external_id in self.by_external_id:
            return self.by_external_id[record.external_id]
        if record.match_key:
            return self.by_phone.get(record.match_key)
        return None

    def remember(self, contact: ContactRead) -> None:
        """Refresh the snapshot after a write so later records see it."""
        for phone, existing in list(self.by_phone.items()):
            if existing.id == contact.id and phone != contact.phone_number:
                del self.by_phone[phone]
        self.by_phone[contact.phone_number] = contact
        for external_id, existing in list(self.by_external_id.items()):
            if existing.id == contact.id:
                self.by_external_id[external_id] = contact


class MatchResolver:
    """Finds existing contacts for batches of external records.

    Args:
        contacts: Contact store exposing find_by_phones.
        mappings: Optional mapping store; only used when an integration ID
            is supplied (CRM syncs).
    """

    def __init__(
        self,
        contacts: ContactLookup,
        mappings: MappingLookup | None = None,
    ) -> None:
        self._contacts = contacts
        self._mappings = mappings

    async def resolve_batch(
        self,
        company_id: str,
        records: Sequence[ExternalRecord],
        integration_id: str | None = None,
    ) -> BatchMatches:
        """Resolve a batch with one mapping query and one phone query.

        Args:
            company_id: Company UUID string.
            records: Records of the current batch.
            integration_id: Set for CRM syncs to enable mapping lookups.

        Returns:
            BatchMatches for per-record lookups.
        """
        by_external_id: dict[str, ContactRead] = {}
        if integration_id and self._mappings is not None:
            external_ids = [r.external_id for r in records if r.external_id]
            if external_ids:
                by_external_id = await self._mappings.find_contacts_by_external_ids(
                    company_id, integration_id, external_ids
                )

        # Phone lookup only for records the mapping did not already settle
        phones = sorted({
            r.match_key
            for r in records
            if r.match_key and r.external_id not in by_external_id
        })
        by_phone: dict[str, ContactRead] = {}
        if phones:
            for contact in await self._contacts.find_by_phones(company_id, phones):
                by_phone[contact.phone_number] = contact

        logger.debug(
            "matching.batch_resolved",
            company_id=company_id,
            records=len(records),
            mapped=len(by_external_id),
            phone_matches=len(by_phone),
        )
        return BatchMatches(by_external_id=by_external_id, by_phone=by_phone)

    async def resolve(
        self,
        company_id: str,
        record: ExternalRecord,
        integration_id: str | None = None,
    ) -> ContactRead | None:
        """Resolve a single record (convenience wrapper over resolve_batch)."""
        matches = await self.resolve_batch(company_id, [record], integration_id)
        return matches.lookup(record)
