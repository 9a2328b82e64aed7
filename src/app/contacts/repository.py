"""Contact repository -- async CRUD for the company-scoped contact store.

Uses the session_factory callable pattern: every method opens its own
session, commits its own work, and returns Pydantic schemas rather than
ORM instances. All methods take company_id as first argument.

Batch operations (find_by_phones, bulk_create) exist so the reconciliation
engine can resolve and insert a whole batch with a single round trip each.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime

import structlog
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.contacts.models import ContactModel
from src.app.contacts.schemas import ContactCreate, ContactRead, ContactUpdate

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def contact_from_model(model: ContactModel) -> ContactRead:
    """Convert ContactModel to ContactRead schema."""
    return ContactRead(
        id=str(model.id),
        company_id=str(model.company_id),
        phone_number=model.phone_number,
        contact_name=model.contact_name,
        email=model.email,
        company_name=model.company_name,
        notes=model.notes,
        status=model.status or "new",
        call_status=model.call_status,
        call_outcome=model.call_outcome,
        last_call_date=model.last_call_date,
        call_duration=model.call_duration,
        call_attempts=model.call_attempts or 0,
        analysis=model.analysis,
        call_metadata=model.call_metadata,
        tags=list(model.tags or []),
        custom_fields=dict(model.custom_fields or {}),
        source=model.source,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _create_values(company_id: str, data: ContactCreate) -> dict:
    values = data.model_dump()
    values["company_id"] = uuid.UUID(company_id)
    return values


# ── Repository ──────────────────────────────────────────────────────────────


class ContactRepository:
    """Async operations on the contacts table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Reads ───────────────────────────────────────────────────────────────

    async def get_contact(
        self, company_id: str, contact_id: str
    ) -> ContactRead | None:
        """Get a contact by ID.

        Args:
            company_id: Company UUID string.
            contact_id: Contact UUID string.

        Returns:
            ContactRead if found, None otherwise.
        """
        async for session in self._session_factory():
            stmt = select(ContactModel).where(
                ContactModel.company_id == uuid.UUID(company_id),
                ContactModel.id == uuid.UUID(contact_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return contact_from_model(model)

    async def find_by_phones(
        self, company_id: str, phone_numbers: list[str]
    ) -> list[ContactRead]:
        """Fetch every contact whose normalized phone is in phone_numbers.

        One query regardless of how many numbers are passed.
        """
        if not phone_numbers:
            return []
        async for session in self._session_factory():
            stmt = select(ContactModel).where(
                ContactModel.company_id == uuid.UUID(company_id),
                ContactModel.phone_number.in_(sorted(set(phone_numbers))),
            )
            result = await session.execute(stmt)
            return [contact_from_model(m) for m in result.scalars().all()]

    async def list_contacts(self, company_id: str) -> list[ContactRead]:
        """List all contacts for a company, newest first."""
        async for session in self._session_factory():
            stmt = (
                select(ContactModel)
                .where(ContactModel.company_id == uuid.UUID(company_id))
                .order_by(ContactModel.created_at.desc())
            )
            result = await session.execute(stmt)
            return [contact_from_model(m) for m in result.scalars().all()]

    # ── Writes ──────────────────────────────────────────────────────────────

    async def create_contact(
        self, company_id: str, data: ContactCreate
    ) -> ContactRead:
        """Insert a single contact."""
        async for session in self._session_factory():
            model = ContactModel(**_create_values(company_id, data))
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return contact_from_model(model)

    async def bulk_create(
        self, company_id: str, items: list[ContactCreate]
    ) -> list[ContactRead]:
        """Insert many contacts in one statement.

        The statement is all-or-nothing: if any row violates a constraint
        the whole insert is rolled back and the error propagates, so the
        caller can fall back to row-by-row inserts.

        Returns:
            Created contacts in the same order as items.
        """
        if not items:
            return []
        async for session in self._session_factory():
            stmt = insert(ContactModel).returning(
                ContactModel, sort_by_parameter_order=True
            )
            result = await session.scalars(
                stmt, [_create_values(company_id, item) for item in items]
            )
            created = [contact_from_model(m) for m in result.all()]
            await session.commit()
            return created

    async def update_contact(
        self,
        company_id: str,
        contact_id: str,
        data: ContactUpdate,
        expected_updated_at: datetime | None = None,
    ) -> ContactRead | None:
        """Apply a partial update to one contact.

        Args:
            company_id: Company UUID string.
            contact_id: Contact UUID string.
            data: Fields to write (only explicitly set fields are applied).
            expected_updated_at: If given, the update only applies while the
                row still carries this updated_at value.

        Returns:
            The updated contact, or None when the row is gone or was
            modified after expected_updated_at was read.
        """
        values = data.model_dump(exclude_unset=True)
        values.pop("company_id", None)
        async for session in self._session_factory():
            stmt = (
                update(ContactModel)
                .where(
                    ContactModel.company_id == uuid.UUID(company_id),
                    ContactModel.id == uuid.UUID(contact_id),
                )
                .values(**values, updated_at=func.now())
                .returning(ContactModel)
                .execution_options(synchronize_session=False)
            )
            if expected_updated_at is not None:
                stmt = stmt.where(ContactModel.updated_at == expected_updated_at)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            await session.commit()
            if model is None:
                logger.info(
                    "contacts.update_precondition_failed",
                    company_id=company_id,
                    contact_id=contact_id,
                )
                return None
            return contact_from_model(model)
