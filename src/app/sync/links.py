"""Link, contact-mapping and integration stores.

Provides three repositories using the session_factory callable pattern:
- LinkStore: Idempotent link upsert, soft deactivation, sync bookkeeping
- ContactMappingStore: external ID -> contact ID lookups and batch upserts
- IntegrationStore: Provider connections for a company

Deployments that have not yet migrated the sync tables keep working:
reads against a missing table return empty results and bookkeeping writes
become logged no-ops.
"""

from __future__ import annotations

import functools
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.contacts.models import ContactModel
from src.app.contacts.repository import contact_from_model
from src.app.contacts.schemas import ContactRead
from src.app.core.database import is_missing_table_error
from src.app.sync.models import ContactMappingModel, IntegrationModel, LinkModel
from src.app.sync.schemas import (
    IntegrationRead,
    LinkCreate,
    LinkRead,
    Provider,
    SyncDirection,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def tolerate_missing_table(
    default: Callable[[], Any],
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Return default() instead of failing when the queried table does not exist."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except DBAPIError as exc:
                if not is_missing_table_error(exc):
                    raise
                logger.warning(
                    "sync.table_missing",
                    operation=func.__qualname__,
                    error=str(exc.orig),
                )
                return default()

        return wrapper

    return decorator


def make_external_object_id(
    provider: Provider,
    spreadsheet_id: str | None = None,
    sheet_tab_title: str | None = None,
    object_type: str | None = None,
) -> str:
    """Stable identifier of the external object behind a link."""
    if provider == Provider.GOOGLE_SHEETS:
        return f"{spreadsheet_id}/{sheet_tab_title}"
    return f"{provider.value}:{object_type}"


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_link(model: LinkModel) -> LinkRead:
    """Convert LinkModel to LinkRead schema."""
    return LinkRead(
        id=str(model.id),
        company_id=str(model.company_id),
        integration_id=str(model.integration_id),
        provider=Provider(model.provider),
        external_object_id=model.external_object_id,
        object_type=model.object_type,
        spreadsheet_id=model.spreadsheet_id,
        spreadsheet_name=model.spreadsheet_name,
        sheet_tab_title=model.sheet_tab_title,
        sheet_tab_id=model.sheet_tab_id,
        field_mapping=dict(model.field_mapping or {}),
        sync_direction=SyncDirection(model.sync_direction),
        is_active=model.is_active,
        last_synced_at=model.last_synced_at,
        last_sync_row_count=model.last_sync_row_count,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_integration(model: IntegrationModel) -> IntegrationRead:
    """Convert IntegrationModel to IntegrationRead schema."""
    return IntegrationRead(
        id=str(model.id),
        company_id=str(model.company_id),
        provider=Provider(model.provider),
        access_token=model.access_token or "",
        instance_url=model.instance_url,
        is_active=model.is_active,
        last_synced_at=model.last_synced_at,
        metadata=dict(model.metadata_json or {}),
    )


# ── Link Store ──────────────────────────────────────────────────────────────


class LinkStore:
    """Async persistence for links.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create_or_update_link(self, company_id: str, data: LinkCreate) -> LinkRead:
        """Create a link or refresh the existing one for the same external object.

        Keyed by (company_id, external_object_id). An existing link is
        reactivated and its mapping and direction replaced.

        Args:
            company_id: Company UUID string.
            data: LinkCreate with the object details.

        Returns:
            LinkRead for the active link.
        """
        values = {
            "company_id": uuid.UUID(company_id),
            "integration_id": uuid.UUID(data.integration_id),
            "provider": data.provider.value,
            "external_object_id": data.external_object_id,
            "object_type": data.object_type,
            "spreadsheet_id": data.spreadsheet_id,
            "spreadsheet_name": data.spreadsheet_name,
            "sheet_tab_title": data.sheet_tab_title,
            "sheet_tab_id": data.sheet_tab_id,
            "field_mapping": data.field_mapping,
            "sync_direction": data.sync_direction.value,
            "is_active": True,
        }
        async for session in self._session_factory():
            stmt = pg_insert(LinkModel).values(**values)
            stmt = stmt.on_conflict_do_update(
                constraint="uq_sync_link_company_object",
                set_={
                    "integration_id": stmt.excluded.integration_id,
                    "object_type": stmt.excluded.object_type,
                    "spreadsheet_name": stmt.excluded.spreadsheet_name,
                    "sheet_tab_id": stmt.excluded.sheet_tab_id,
                    "field_mapping": stmt.excluded.field_mapping,
                    "sync_direction": stmt.excluded.sync_direction,
                    "is_active": True,
                    "updated_at": datetime.now(timezone.utc),
                },
            ).returning(LinkModel)
            result = await session.execute(
                stmt, execution_options={"populate_existing": True}
            )
            model = result.scalar_one()
            await session.commit()
            logger.info(
                "links.upserted",
                company_id=company_id,
                link_id=str(model.id),
                external_object_id=data.external_object_id,
                direction=data.sync_direction.value,
            )
            return _model_to_link(model)

    @tolerate_missing_table(lambda: None)
    async def get_link(self, company_id: str, link_id: str) -> LinkRead | None:
        """Get a link by ID, active or not."""
        async for session in self._session_factory():
            stmt = select(LinkModel).where(
                LinkModel.company_id == uuid.UUID(company_id),
                LinkModel.id == uuid.UUID(link_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_link(model)

    @tolerate_missing_table(list)
    async def list_active_links(
        self, company_id: str, integration_id: str | None = None
    ) -> list[LinkRead]:
        """List active links for a company, optionally for one integration."""
        async for session in self._session_factory():
            stmt = select(LinkModel).where(
                LinkModel.company_id == uuid.UUID(company_id),
                LinkModel.is_active.is_(True),
            )
            if integration_id:
                stmt = stmt.where(LinkModel.integration_id == uuid.UUID(integration_id))
            stmt = stmt.order_by(LinkModel.created_at)
            result = await session.execute(stmt)
            return [_model_to_link(m) for m in result.scalars().all()]

    async def deactivate_link(self, company_id: str, link_id: str) -> bool:
        """Soft-delete a link. Returns False if it does not exist."""
        async for session in self._session_factory():
            stmt = (
                update(LinkModel)
                .where(
                    LinkModel.company_id == uuid.UUID(company_id),
                    LinkModel.id == uuid.UUID(link_id),
                )
                .values(is_active=False, updated_at=datetime.now(timezone.utc))
            )
            result = await session.execute(stmt)
            await session.commit()
            found = result.rowcount > 0
            logger.info("links.deactivated", company_id=company_id, link_id=link_id, found=found)
            return found

    @tolerate_missing_table(lambda: None)
    async def mark_synced(self, link_id: str, row_count: int) -> None:
        """Record when a link was last synced and how many rows it had."""
        async for session in self._session_factory():
            stmt = (
                update(LinkModel)
                .where(LinkModel.id == uuid.UUID(link_id))
                .values(
                    last_synced_at=datetime.now(timezone.utc),
                    last_sync_row_count=row_count,
                )
            )
            await session.execute(stmt)
            await session.commit()


# ── Contact Mapping Store ───────────────────────────────────────────────────


class ContactMappingStore:
    """Async persistence for external ID -> contact mappings.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    @tolerate_missing_table(dict)
    async def find_contacts_by_external_ids(
        self, company_id: str, integration_id: str, external_ids: list[str]
    ) -> dict[str, ContactRead]:
        """Resolve many external IDs to contacts with one joined query."""
        if not external_ids:
            return {}
        async for session in self._session_factory():
            stmt = (
                select(ContactMappingModel.external_id, ContactModel)
                .join(ContactModel, ContactModel.id == ContactMappingModel.contact_id)
                .where(
                    ContactMappingModel.integration_id == uuid.UUID(integration_id),
                    ContactMappingModel.external_id.in_(sorted(set(external_ids))),
                    ContactModel.company_id == uuid.UUID(company_id),
                )
            )
            result = await session.execute(stmt)
            return {
                external_id: contact_from_model(contact)
                for external_id, contact in result.all()
            }

    async def find_contact_by_external_id(
        self, company_id: str, integration_id: str, external_id: str
    ) -> ContactRead | None:
        found = await self.find_contacts_by_external_ids(
            company_id, integration_id, [external_id]
        )
        return found.get(external_id)

    @tolerate_missing_table(lambda: 0)
    async def upsert_mappings(
        self,
        company_id: str,
        integration_id: str,
        object_type: str | None,
        pairs: list[tuple[str, str]],
    ) -> int:
        """Insert or repoint (external_id, contact_id) pairs in one statement.

        Returns:
            Number of distinct external IDs written.
        """
        # ON CONFLICT cannot touch the same row twice; last pair wins
        latest: dict[str, str] = {}
        for external_id, contact_id in pairs:
            latest[external_id] = contact_id
        if not latest:
            return 0

        now = datetime.now(timezone.utc)
        rows = [
            {
                "company_id": uuid.UUID(company_id),
                "integration_id": uuid.UUID(integration_id),
                "contact_id": uuid.UUID(contact_id),
                "external_id": external_id,
                "object_type": object_type,
                "last_synced_at": now,
            }
            for external_id, contact_id in latest.items()
        ]
        async for session in self._session_factory():
            stmt = pg_insert(ContactMappingModel).values(rows)
            stmt = stmt.on_conflict_do_update(
                constraint="uq_contact_mapping_integration_external",
                set_={
                    "contact_id": stmt.excluded.contact_id,
                    "object_type": stmt.excluded.object_type,
                    "last_synced_at": stmt.excluded.last_synced_at,
                },
            )
            await session.execute(stmt)
            await session.commit()
        return len(rows)

    async def upsert_mapping(
        self,
        company_id: str,
        integration_id: str,
        external_id: str,
        contact_id: str,
        object_type: str | None = None,
    ) -> None:
        await self.upsert_mappings(
            company_id, integration_id, object_type, [(external_id, contact_id)]
        )


# ── Integration Store ───────────────────────────────────────────────────────


class IntegrationStore:
    """Read access to provider connections plus usage bookkeeping.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get_integration(
        self, company_id: str, integration_id: str
    ) -> IntegrationRead | None:
        async for session in self._session_factory():
            stmt = select(IntegrationModel).where(
                IntegrationModel.company_id == uuid.UUID(company_id),
                IntegrationModel.id == uuid.UUID(integration_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_integration(model)

    async def get_active_integration(
        self, company_id: str, provider: Provider
    ) -> IntegrationRead | None:
        async for session in self._session_factory():
            stmt = select(IntegrationModel).where(
                IntegrationModel.company_id == uuid.UUID(company_id),
                IntegrationModel.provider == provider.value,
                IntegrationModel.is_active.is_(True),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_integration(model)

    async def mark_used(self, integration_id: str, synced: bool = False) -> None:
        """Stamp last_used_at, and last_synced_at when a sync completed."""
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {"last_used_at": now}
        if synced:
            values["last_synced_at"] = now
        async for session in self._session_factory():
            stmt = (
                update(IntegrationModel)
                .where(IntegrationModel.id == uuid.UUID(integration_id))
                .values(**values)
            )
            await session.execute(stmt)
            await session.commit()
