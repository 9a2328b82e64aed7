"""Reconciliation engine -- batched, idempotent upsert of external records into contacts.

One engine serves every provider. Per batch of SYNC_BATCH_SIZE records:

1. Resolve matches with one mapping query (CRMs) and one phone query.
2. Partition into creates and updates. Records with no match key and no
   mapping are skipped; a record repeating the phone of a pending create
   in the same batch becomes an update of the contact that create produces.
3. Bulk insert the creates, falling back to row-by-row inserts when the
   statement fails as a whole.
4. Apply updates one by one, writing only changed fields. The stored
   source of a contact owned by another integration is never replaced.
   Each update carries an updated_at precondition so rows edited after
   matching are skipped rather than overwritten.
5. Upsert the batch's external ID mappings (CRMs) in one statement.

Per-record failures become skipped rows with an error entry. A read failure
aborts before any write. Anything else escaping the batch loop ends the run
with the counters reached so far.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any, Protocol

import structlog

from src.app.config import get_settings
from src.app.contacts.schemas import ContactCreate, ContactRead, ContactSource, ContactUpdate
from src.app.sync.adapters.base import SourceAdapter
from src.app.sync.exceptions import MissingRequiredField, RecordWriteFailure, RunAborted
from src.app.sync.matching import BatchMatches, MatchResolver, MappingLookup
from src.app.sync.schemas import (
    ExternalRecord,
    InboundResult,
    IntegrationRead,
    LinkRead,
    Provider,
    SyncPhase,
    SyncProgress,
)

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[SyncProgress], None]

# Contact columns an inbound record may write
WRITABLE_FIELDS = ("phone_number", "contact_name", "email", "company_name", "notes", "source")


class ContactStore(Protocol):
    async def find_by_phones(
        self, company_id: str, phone_numbers: list[str]
    ) -> list[ContactRead]: ...

    async def bulk_create(
        self, company_id: str, items: list[ContactCreate]
    ) -> list[ContactRead]: ...

    async def create_contact(self, company_id: str, data: ContactCreate) -> ContactRead: ...

    async def update_contact(
        self,
        company_id: str,
        contact_id: str,
        data: ContactUpdate,
        expected_updated_at: datetime | None = None,
    ) -> ContactRead | None: ...


class MappingStore(MappingLookup, Protocol):
    async def upsert_mappings(
        self,
        company_id: str,
        integration_id: str,
        object_type: str | None,
        pairs: list[tuple[str, str]],
    ) -> int: ...


class LinkBookkeeper(Protocol):
    async def mark_synced(self, link_id: str, row_count: int) -> None: ...


# ── Payload Helpers ─────────────────────────────────────────────────────────


def merge_tags(existing: Sequence[str], incoming: Sequence[str]) -> list[str]:
    """Ordered union: existing tags first, then new ones."""
    merged = list(existing)
    for tag in incoming:
        if tag not in merged:
            merged.append(tag)
    return merged


def build_create(record: ExternalRecord, source: str) -> ContactCreate:
    """Insert payload for an unmatched record."""
    fields = record.fields
    return ContactCreate(
        phone_number=record.match_key,
        contact_name=fields.get("contact_name"),
        email=fields.get("email"),
        company_name=fields.get("company_name"),
        notes=fields.get("notes"),
        tags=list(fields.get("tags") or []),
        custom_fields=dict(fields.get("custom_fields") or {}),
        source=source,
    )


def build_update(
    record: ExternalRecord, existing: ContactRead, source: str
) -> ContactUpdate | None:
    """Changed fields for a matched record, or None when nothing differs.

    The source tag is only written when the contact is manual or already
    belongs to this source; company_id is never part of an update.
    """
    payload: dict[str, Any] = {
        k: v for k, v in record.fields.items() if k in WRITABLE_FIELDS
    }
    if record.match_key:
        payload["phone_number"] = record.match_key
    payload["source"] = source
    if existing.source and existing.source not in (source, ContactSource.MANUAL.value):
        payload.pop("source")
    payload.pop("company_id", None)

    if record.fields.get("tags"):
        payload["tags"] = merge_tags(existing.tags, record.fields["tags"])
    if record.fields.get("custom_fields"):
        payload["custom_fields"] = {**existing.custom_fields, **record.fields["custom_fields"]}

    changes = {k: v for k, v in payload.items() if getattr(existing, k) != v}
    if not changes:
        return None
    return ContactUpdate(**changes)


# ── Engine ──────────────────────────────────────────────────────────────────


class ReconciliationEngine:
    """Reconciles records from any source adapter into the contact store.

    Args:
        contacts: Contact store (ContactRepository in production).
        links: Store used to record last_synced_at on the link.
        mappings: External ID mapping store, used for adapters whose
            records carry stable provider IDs.
        batch_size: Records per batch. Defaults to settings.SYNC_BATCH_SIZE.
        update_precondition: Guard updates with the updated_at captured at
            match time. Defaults to settings.SYNC_UPDATE_PRECONDITION.
    """

    def __init__(
        self,
        contacts: ContactStore,
        links: LinkBookkeeper,
        mappings: MappingStore | None = None,
        batch_size: int | None = None,
        update_precondition: bool | None = None,
    ) -> None:
        settings = get_settings()
        self._contacts = contacts
        self._links = links
        self._mappings = mappings
        self._resolver = MatchResolver(contacts, mappings)
        self._batch_size = max(1, batch_size or settings.SYNC_BATCH_SIZE)
        self._precondition = (
            settings.SYNC_UPDATE_PRECONDITION
            if update_precondition is None
            else update_precondition
        )

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def run(
        self,
        company_id: str,
        link: LinkRead,
        adapter: SourceAdapter,
        integration: IntegrationRead,
        ids: Sequence[str] | None = None,
        since: datetime | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> InboundResult:
        """Run one inbound reconciliation for a link.

        Args:
            company_id: Company UUID string.
            link: Link being synced.
            adapter: Source adapter for the link's provider.
            integration: Connection used by the adapter.
            ids: Optional subset of external IDs (selective sync).
            since: Optional lower bound on source modification time.
            on_progress: Called after the read and after every batch.

        Returns:
            InboundResult with counters; success is False on read failure
            or when the run aborted part way.
        """
        log = logger.bind(company_id=company_id, link_id=link.id, provider=adapter.source_tag)
        result = InboundResult()

        def emit(phase: SyncPhase, message: str, processed: int = 0) -> None:
            if on_progress is None:
                return
            try:
                on_progress(
                    SyncProgress(
                        phase=phase,
                        processed=processed,
                        total=result.total,
                        created=result.created,
                        updated=result.updated,
                        skipped=result.skipped,
                        message=message,
                    )
                )
            except Exception:
                log.warning("sync.progress_callback_failed", phase=phase.value, exc_info=True)

        # ── Read ────────────────────────────────────────────────────────
        is_sheet = adapter.provider == Provider.GOOGLE_SHEETS
        emit(
            SyncPhase.READING,
            "Reading spreadsheet data..." if is_sheet
            else f"Reading {adapter.source_tag} records...",
        )
        try:
            read = await adapter.read(integration, link, ids=ids, since=since)
        except MissingRequiredField as exc:
            return self._read_failed(result, exc.message, emit, log)
        except Exception as exc:
            return self._read_failed(result, str(exc) or type(exc).__name__, emit, log)

        records = read.records
        result.total = read.total
        if not records:
            try:
                await self._links.mark_synced(link.id, 0)
            except Exception as exc:
                return self._aborted(result, 0, exc, emit, log)
            emit(SyncPhase.COMPLETE, "Sheet is empty" if is_sheet else "No records found")
            log.info("sync.inbound_empty")
            return result

        # ── Batches ─────────────────────────────────────────────────────
        processed = 0
        for start in range(0, len(records), self._batch_size):
            batch = records[start : start + self._batch_size]
            try:
                await self._process_batch(company_id, link, adapter, integration, batch, result)
            except Exception as exc:
                return self._aborted(result, processed, exc, emit, log)

            processed += len(batch)
            emit(
                SyncPhase.IMPORTING,
                f"Importing contacts... {processed} of {result.total}",
                processed,
            )
            log.debug(
                "sync.batch_complete",
                processed=processed,
                created=result.created,
                updated=result.updated,
                skipped=result.skipped,
            )

        # Contacts are already written; a bookkeeping failure keeps the counters.
        try:
            await self._links.mark_synced(link.id, result.total)
        except Exception as exc:
            return self._aborted(result, processed, exc, emit, log)
        emit(
            SyncPhase.COMPLETE,
            f"Import complete! {result.created} created, {result.updated} updated",
            processed,
        )
        log.info(
            "sync.inbound_complete",
            total=result.total,
            created=result.created,
            updated=result.updated,
            skipped=result.skipped,
            unchanged=result.unchanged,
            errors=len(result.errors),
        )
        return result

    def _read_failed(
        self,
        result: InboundResult,
        message: str,
        emit: Callable[..., None],
        log: Any,
    ) -> InboundResult:
        log.warning("sync.read_failed", error=message)
        result.success = False
        result.phase = SyncPhase.ERROR
        result.error = message
        emit(SyncPhase.ERROR, message)
        return result

    def _aborted(
        self,
        result: InboundResult,
        processed: int,
        exc: Exception,
        emit: Callable[..., None],
        log: Any,
    ) -> InboundResult:
        aborted = RunAborted(
            f"Sync aborted after {processed} of {result.total} records: "
            f"{str(exc) or type(exc).__name__}",
            details={"processed": processed},
        )
        log.error(
            "sync.run_aborted",
            processed=processed,
            created=result.created,
            updated=result.updated,
            error=str(exc),
            exc_info=True,
        )
        result.success = False
        result.phase = SyncPhase.ERROR
        result.error = aborted.message
        emit(SyncPhase.ERROR, aborted.message, processed)
        return result

    # ── Batch Processing ────────────────────────────────────────────────────

    async def _process_batch(
        self,
        company_id: str,
        link: LinkRead,
        adapter: SourceAdapter,
        integration: IntegrationRead,
        batch: Sequence[ExternalRecord],
        result: InboundResult,
    ) -> None:
        source = adapter.source_tag
        integration_id = (
            integration.id
            if adapter.uses_contact_mappings and self._mappings is not None
            else None
        )
        matches = await self._resolver.resolve_batch(company_id, batch, integration_id)

        to_create: list[ExternalRecord] = []
        pending_keys: set[str] = set()
        to_update: list[ExternalRecord] = []
        for record in batch:
            if matches.lookup(record) is not None:
                to_update.append(record)
            elif not record.match_key:
                result.skipped += 1
            elif record.match_key in pending_keys:
                # Same phone as an earlier row in this batch: merge into it
                to_update.append(record)
            else:
                pending_keys.add(record.match_key)
                to_create.append(record)

        pairs: list[tuple[str, str]] = []

        created = await self._insert(company_id, to_create, source, adapter, result)
        for record, contact in zip(to_create, created):
            if contact is None:
                continue
            matches.remember(contact)
            if integration_id and record.external_id:
                pairs.append((record.external_id, contact.id))

        for record in to_update:
            contact = await self._update(company_id, record, matches, source, adapter, result)
            if contact is not None and integration_id and record.external_id:
                pairs.append((record.external_id, contact.id))

        if integration_id and pairs and self._mappings is not None:
            await self._mappings.upsert_mappings(
                company_id,
                integration_id,
                link.object_type or adapter.default_object_type,
                pairs,
            )

    def _label(self, record: ExternalRecord, adapter: SourceAdapter) -> str:
        if adapter.uses_contact_mappings and record.external_id:
            return f"Record {record.external_id}"
        return f"Row {record.row_number}"

    async def _insert(
        self,
        company_id: str,
        records: list[ExternalRecord],
        source: str,
        adapter: SourceAdapter,
        result: InboundResult,
    ) -> list[ContactRead | None]:
        """Bulk insert, or row-by-row when the bulk statement fails."""
        if not records:
            return []
        payloads = [build_create(r, source) for r in records]
        try:
            created = await self._contacts.bulk_create(company_id, payloads)
            result.created += len(created)
            return list(created)
        except Exception as exc:
            logger.warning(
                "sync.bulk_insert_failed",
                company_id=company_id,
                rows=len(payloads),
                error=str(getattr(exc, "orig", exc)),
            )

        created_rows: list[ContactRead | None] = []
        for record, payload in zip(records, payloads):
            try:
                contact = await self._contacts.create_contact(company_id, payload)
            except Exception as exc:
                failure = RecordWriteFailure(
                    self._label(record, adapter), str(getattr(exc, "orig", exc))
                )
                result.skipped += 1
                result.errors.append(failure.message)
                created_rows.append(None)
                continue
            result.created += 1
            created_rows.append(contact)
        return created_rows

    async def _update(
        self,
        company_id: str,
        record: ExternalRecord,
        matches: BatchMatches,
        source: str,
        adapter: SourceAdapter,
        result: InboundResult,
    ) -> ContactRead | None:
        """Apply one update. Returns the contact the record resolved to."""
        existing = matches.lookup(record)
        if existing is None:
            # Duplicate of a row whose insert failed
            result.skipped += 1
            result.errors.append(
                RecordWriteFailure(
                    self._label(record, adapter),
                    "duplicate phone of a row that could not be created",
                ).message
            )
            return None

        changes = build_update(record, existing, source)
        if changes is None:
            result.skipped += 1
            result.unchanged += 1
            return existing

        try:
            updated = await self._contacts.update_contact(
                company_id,
                existing.id,
                changes,
                expected_updated_at=existing.updated_at if self._precondition else None,
            )
        except Exception as exc:
            result.skipped += 1
            result.errors.append(
                RecordWriteFailure(
                    self._label(record, adapter), str(getattr(exc, "orig", exc))
                ).message
            )
            return None

        if updated is None:
            result.skipped += 1
            result.errors.append(
                RecordWriteFailure(
                    self._label(record, adapter),
                    "contact was modified during sync; update skipped",
                ).message
            )
            return None

        result.updated += 1
        matches.remember(updated)
        return updated
