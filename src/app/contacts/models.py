"""Contact persistence model -- the internal, company-scoped contact store.

Phone number is the durable identity of a contact within a company and is
stored normalized (digits only). The (company_id, phone_number) unique
constraint is what keeps repeated syncs from duplicating people.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.app.core.database import Base


class ContactModel(Base):
    """A person the company can call, created manually or by a sync source."""

    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "phone_number",
            name="uq_contact_company_phone",
        ),
        Index("ix_contacts_company_created", "company_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    company_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(50), nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    email: Mapped[str | None] = mapped_column(String(300), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="new", server_default="new"
    )

    # Call activity, written by the calling side of the product
    call_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    call_outcome: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_call_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    call_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    call_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    analysis: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    call_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    tags: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    custom_fields: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    source: Mapped[str] = mapped_column(
        String(50), nullable=False, default="manual", server_default="manual"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
