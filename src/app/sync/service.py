"""Sync service -- orchestrates one sync of a link end to end.

sync_link loads the link and its integration, opens a run in the run log,
runs inbound and/or outbound according to the link direction, closes the
run, records metrics, publishes progress and writes a notification.
sync_integration does the same for every active link of a CRM integration,
creating the default object link on first use.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

import structlog

from src.app.contacts.schemas import ContactRead
from src.app.core.monitoring import track_sync_run
from src.app.sync.adapters import AdapterRegistry, GoogleSheetsAdapter
from src.app.sync.adapters.base import SourceAdapter
from src.app.sync.engine import ProgressCallback, ReconciliationEngine
from src.app.sync.exceptions import (
    ContactNotFound,
    IntegrationNotFound,
    InvalidLinkRequest,
    LinkInactive,
    LinkNotFound,
    OutboundNotAllowed,
    SyncError,
)
from src.app.sync.links import IntegrationStore, LinkStore, make_external_object_id
from src.app.sync.notifier import SyncNotifier
from src.app.sync.outbound import OutboundWriter
from src.app.sync.run_log import SyncRunLog
from src.app.sync.schemas import (
    IntegrationRead,
    LinkCreate,
    LinkRead,
    LinkSyncResult,
    OutboundResult,
    Provider,
    SyncDirection,
    SyncProgress,
    SyncType,
)

logger = structlog.get_logger(__name__)


class ContactReader(Protocol):
    async def get_contact(self, company_id: str, contact_id: str) -> ContactRead | None: ...


# ── Progress Registry ───────────────────────────────────────────────────────


class ProgressRegistry:
    """Latest progress event per run, kept in memory for polling.

    Oldest runs are evicted once max_runs is exceeded.
    """

    def __init__(self, max_runs: int = 500) -> None:
        self._max_runs = max_runs
        self._events: OrderedDict[str, SyncProgress] = OrderedDict()

    def publish(self, run_id: str, progress: SyncProgress) -> None:
        self._events[run_id] = progress
        self._events.move_to_end(run_id)
        while len(self._events) > self._max_runs:
            self._events.popitem(last=False)

    def get(self, run_id: str) -> SyncProgress | None:
        return self._events.get(run_id)

    def callback(
        self, run_id: str, forward: ProgressCallback | None = None
    ) -> ProgressCallback:
        """Progress callback that records events and forwards them to the caller."""

        def _on_progress(progress: SyncProgress) -> None:
            self.publish(run_id, progress)
            if forward is not None:
                forward(progress)

        return _on_progress

    def __len__(self) -> int:
        return len(self._events)


# ── Sync Service ────────────────────────────────────────────────────────────


class SyncService:
    """Entry point for all sync operations.

    Args:
        links: Link store.
        integrations: Integration store.
        run_log: Sync run log (also the per-link run guard).
        engine: Inbound reconciliation engine.
        outbound: Outbound writer.
        adapters: Provider -> adapter registry.
        contacts: Contact store used by push_contact.
        notifier: Optional notifier for finished runs.
        progress: Registry receiving progress events; one is created if omitted.
    """

    def __init__(
        self,
        links: LinkStore,
        integrations: IntegrationStore,
        run_log: SyncRunLog,
        engine: ReconciliationEngine,
        outbound: OutboundWriter,
        adapters: AdapterRegistry,
        contacts: ContactReader,
        notifier: SyncNotifier | None = None,
        progress: ProgressRegistry | None = None,
    ) -> None:
        self._links = links
        self._integrations = integrations
        self._run_log = run_log
        self._engine = engine
        self._outbound = outbound
        self._adapters = adapters
        self._contacts = contacts
        self._notifier = notifier
        self.progress = progress or ProgressRegistry()

    # ── Lookups ─────────────────────────────────────────────────────────────

    async def _load_link(self, company_id: str, link_id: str) -> LinkRead:
        link = await self._links.get_link(company_id, link_id)
        if link is None:
            raise LinkNotFound(f"Link {link_id} not found", details={"link_id": link_id})
        if not link.is_active:
            raise LinkInactive(f"Link {link_id} is inactive", details={"link_id": link_id})
        return link

    async def _load_integration(self, company_id: str, integration_id: str) -> IntegrationRead:
        integration = await self._integrations.get_integration(company_id, integration_id)
        if integration is None or not integration.is_active:
            raise IntegrationNotFound(
                f"Integration {integration_id} not found or inactive",
                details={"integration_id": integration_id},
            )
        return integration

    def _adapter(self, provider: Provider) -> SourceAdapter:
        try:
            return self._adapters.get(provider)
        except KeyError as exc:
            raise IntegrationNotFound(
                f"No adapter registered for {provider.value}",
                details={"provider": provider.value},
            ) from exc

    # ── Links ───────────────────────────────────────────────────────────────

    async def create_link(
        self,
        company_id: str,
        integration_id: str,
        spreadsheet_id: str | None = None,
        sheet_tab_title: str | None = None,
        object_type: str | None = None,
        field_mapping: dict[str, str] | None = None,
        sync_direction: SyncDirection = SyncDirection.INBOUND,
    ) -> LinkRead:
        """Create or update the link for a spreadsheet tab or CRM object type.

        For spreadsheets the title and tab ID are looked up from the sheet; a
        missing tab title means the first tab.

        Raises:
            IntegrationNotFound: Unknown or inactive integration.
            InvalidLinkRequest: Unknown tab, object type or missing spreadsheet.
        """
        integration = await self._load_integration(company_id, integration_id)
        adapter = self._adapter(integration.provider)

        if isinstance(adapter, GoogleSheetsAdapter):
            if not spreadsheet_id:
                raise InvalidLinkRequest("spreadsheet_id is required for Google Sheets links")
            info = await adapter.describe_spreadsheet(integration, spreadsheet_id)
            if sheet_tab_title:
                tab = info.find_tab(sheet_tab_title)
            else:
                tab = info.tabs[0] if info.tabs else None
            if tab is None:
                raise InvalidLinkRequest(
                    f"Sheet tab '{sheet_tab_title}' not found",
                    details={"spreadsheet_id": spreadsheet_id},
                )
            data = LinkCreate(
                integration_id=integration.id,
                provider=integration.provider,
                external_object_id=make_external_object_id(
                    integration.provider,
                    spreadsheet_id=spreadsheet_id,
                    sheet_tab_title=tab.title,
                ),
                object_type=adapter.default_object_type,
                spreadsheet_id=spreadsheet_id,
                spreadsheet_name=info.title or None,
                sheet_tab_title=tab.title,
                sheet_tab_id=tab.sheet_id,
                field_mapping=field_mapping or {},
                sync_direction=sync_direction,
            )
        else:
            object_type = object_type or adapter.default_object_type
            if object_type not in adapter.object_types:
                raise InvalidLinkRequest(
                    f"{adapter.source_tag} cannot sync object type '{object_type}'",
                    details={"object_types": list(adapter.object_types)},
                )
            if sync_direction.allows_outbound and not adapter.supports_write:
                raise OutboundNotAllowed(
                    f"{adapter.source_tag} does not support outbound sync",
                )
            data = LinkCreate(
                integration_id=integration.id,
                provider=integration.provider,
                external_object_id=make_external_object_id(
                    integration.provider, object_type=object_type
                ),
                object_type=object_type,
                field_mapping=field_mapping or {},
                sync_direction=sync_direction,
            )

        link = await self._links.create_or_update_link(company_id, data)
        logger.info(
            "sync.link_saved",
            company_id=company_id,
            link_id=link.id,
            provider=link.provider.value,
            external_object_id=link.external_object_id,
        )
        return link

    # ── Sync ────────────────────────────────────────────────────────────────

    async def sync_link(
        self,
        company_id: str,
        link_id: str,
        ids: Sequence[str] | None = None,
        user_id: str | None = None,
        incremental: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> LinkSyncResult:
        """Sync one link in its configured direction.

        Args:
            company_id: Company UUID string.
            link_id: Link to sync.
            ids: Optional external IDs for a selective inbound sync.
            user_id: User to notify when the run finishes.
            incremental: Only read records modified since the last sync.
            on_progress: Forwarded every progress event of the run.

        Returns:
            LinkSyncResult with inbound and/or outbound results.

        Raises:
            LinkNotFound, LinkInactive, IntegrationNotFound: Bad target.
            OutboundNotAllowed: Outbound-only link on a read-only provider.
            RunInProgress: The link already has a live run.
        """
        link = await self._load_link(company_id, link_id)
        integration = await self._load_integration(company_id, link.integration_id)
        adapter = self._adapter(link.provider)
        direction = link.sync_direction

        if direction == SyncDirection.OUTBOUND and not adapter.supports_write:
            raise OutboundNotAllowed(
                f"{adapter.source_tag} does not support outbound sync",
                details={"link_id": link.id},
            )

        run_id = await self._run_log.start_run(
            company_id,
            provider=link.provider.value,
            integration_id=integration.id,
            link_id=link.id,
            sync_type=SyncType.SELECTIVE if ids is not None else SyncType.FULL,
            direction=direction,
        )
        log = logger.bind(company_id=company_id, link_id=link.id, run_id=run_id)
        on_run_progress = self.progress.callback(run_id, on_progress)

        result = LinkSyncResult(success=True, link_id=link.id, run_id=run_id, direction=direction)
        async with track_sync_run(link.provider.value, direction.value) as tracker:
            try:
                await self._execute(
                    company_id,
                    link,
                    integration,
                    adapter,
                    result,
                    ids=ids,
                    since=link.last_synced_at if incremental else None,
                    on_progress=on_run_progress,
                )
            except Exception as exc:
                log.error("sync.link_failed", error=str(exc), exc_info=True)
                inbound = result.inbound
                await self._run_log.fail_run(
                    run_id,
                    str(exc) or type(exc).__name__,
                    created=inbound.created if inbound else 0,
                    updated=inbound.updated if inbound else 0,
                    skipped=inbound.skipped if inbound else 0,
                    errors=list(inbound.errors) if inbound else None,
                )
                raise

            tracker["status"] = "completed" if result.success else "failed"
            if result.inbound is not None:
                tracker["created"] = result.inbound.created
                tracker["updated"] = result.inbound.updated
                tracker["skipped"] = result.inbound.skipped

        await self._integrations.mark_used(integration.id, synced=result.success)
        if self._notifier is not None:
            await self._notifier.notify(company_id, user_id, link, result)

        log.info(
            "sync.link_complete",
            success=result.success,
            direction=direction.value,
        )
        return result

    async def _execute(
        self,
        company_id: str,
        link: LinkRead,
        integration: IntegrationRead,
        adapter: SourceAdapter,
        result: LinkSyncResult,
        ids: Sequence[str] | None,
        since: datetime | None,
        on_progress: ProgressCallback,
    ) -> LinkSyncResult:
        """Fill `result` in place so a caller catching an exception keeps the partial tally."""
        direction = link.sync_direction
        run_id = result.run_id

        created = updated = skipped = 0
        errors: list[str] = []

        if direction.allows_inbound:
            inbound = await self._engine.run(
                company_id,
                link,
                adapter,
                integration,
                ids=ids,
                since=since,
                on_progress=on_progress,
            )
            result.inbound = inbound
            created, updated, skipped = inbound.created, inbound.updated, inbound.skipped
            errors = list(inbound.errors)
            if not inbound.success:
                result.success = False
                result.error = inbound.error
                await self._run_log.fail_run(
                    run_id,
                    inbound.error or "Inbound sync failed",
                    created=created,
                    updated=updated,
                    skipped=skipped,
                    errors=errors,
                )
                return result

        if direction.allows_outbound:
            if adapter.supports_write:
                outbound = await self._outbound.push_all(company_id, link, integration, adapter)
            else:
                logger.info(
                    "sync.outbound_unsupported",
                    link_id=link.id,
                    provider=adapter.source_tag,
                )
                outbound = None
            result.outbound = outbound
            if outbound is not None and not outbound.success:
                result.success = False
                result.error = outbound.error
                await self._run_log.fail_run(
                    run_id,
                    outbound.error or "Outbound sync failed",
                    created=created,
                    updated=updated,
                    skipped=skipped,
                    errors=errors,
                )
                return result

        await self._run_log.complete_run(run_id, created, updated, skipped, errors)
        return result

    async def sync_integration(
        self,
        company_id: str,
        integration_id: str,
        ids: Sequence[str] | None = None,
        object_type: str | None = None,
        user_id: str | None = None,
        incremental: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> list[LinkSyncResult]:
        """Sync every active link of an integration.

        For CRMs a link for object_type (or the adapter's default object type
        when the integration has no active link yet) is created first. ids
        only apply to links of that object type.

        Raises:
            IntegrationNotFound: Unknown or inactive integration.
            InvalidLinkRequest: Unsupported object type.
        """
        integration = await self._load_integration(company_id, integration_id)
        adapter = self._adapter(integration.provider)
        active = await self._links.list_active_links(company_id, integration_id=integration.id)

        target_type = object_type
        if integration.provider != Provider.GOOGLE_SHEETS:
            target_type = object_type or adapter.default_object_type
            wanted_id = make_external_object_id(integration.provider, object_type=target_type)
            if (object_type or not active) and all(
                link.external_object_id != wanted_id for link in active
            ):
                active.append(
                    await self.create_link(
                        company_id, integration.id, object_type=target_type
                    )
                )

        results: list[LinkSyncResult] = []
        for link in active:
            link_ids = ids
            if ids is not None and target_type and link.object_type != target_type:
                link_ids = None
            try:
                results.append(
                    await self.sync_link(
                        company_id,
                        link.id,
                        ids=link_ids,
                        user_id=user_id,
                        incremental=incremental,
                        on_progress=on_progress,
                    )
                )
            except SyncError as exc:
                logger.warning(
                    "sync.integration_link_skipped",
                    company_id=company_id,
                    link_id=link.id,
                    code=exc.code,
                    error=exc.message,
                )
                results.append(
                    LinkSyncResult(
                        success=False,
                        link_id=link.id,
                        direction=link.sync_direction,
                        error=exc.message,
                    )
                )
            except Exception as exc:
                # sync_link has already failed the run; keep going with the other links
                logger.error(
                    "sync.integration_link_failed",
                    company_id=company_id,
                    link_id=link.id,
                    error=str(exc),
                    exc_info=True,
                )
                results.append(
                    LinkSyncResult(
                        success=False,
                        link_id=link.id,
                        direction=link.sync_direction,
                        error=str(exc) or type(exc).__name__,
                    )
                )
        return results

    async def push_contact(
        self, company_id: str, link_id: str, contact_id: str
    ) -> OutboundResult:
        """Upsert one contact's row in the link's spreadsheet.

        Raises:
            LinkNotFound, LinkInactive, IntegrationNotFound: Bad target.
            ContactNotFound: Unknown contact.
            OutboundNotAllowed: Inbound-only link or read-only provider.
        """
        link = await self._load_link(company_id, link_id)
        integration = await self._load_integration(company_id, link.integration_id)
        adapter = self._adapter(link.provider)
        contact = await self._contacts.get_contact(company_id, contact_id)
        if contact is None:
            raise ContactNotFound(
                f"Contact {contact_id} not found", details={"contact_id": contact_id}
            )

        async with track_sync_run(link.provider.value, SyncDirection.OUTBOUND.value) as tracker:
            result = await self._outbound.push_one(
                company_id, link, integration, adapter, contact
            )
            tracker["status"] = "completed" if result.success else "failed"
        return result
