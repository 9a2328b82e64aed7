"""Create contact store and sync tables.

Revision ID: 001_contact_sync
Revises:
Create Date: 2026-10-18

Creates six tables:
- contacts: Company-scoped contacts, unique per (company_id, phone_number)
- integrations: Provider connections with access tokens
- sync_links: Linked spreadsheet tabs and CRM object types
- contact_mappings: External record ID -> contact, per integration
- sync_runs: Run log; a partial unique index allows one running row per link
- notifications: In-app notifications for finished runs
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_contact_sync"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # ── contacts table ──────────────────────────────────────────────────

    op.create_table(
        "contacts",
        _id_column(),
        sa.Column("company_id", UUID(as_uuid=True), nullable=False),
        sa.Column("phone_number", sa.String(50), nullable=False),
        sa.Column("contact_name", sa.String(300), nullable=True),
        sa.Column("email", sa.String(300), nullable=True),
        sa.Column("company_name", sa.String(300), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(50), server_default="new", nullable=False),
        sa.Column("call_status", sa.String(50), nullable=True),
        sa.Column("call_outcome", sa.Text(), nullable=True),
        sa.Column("last_call_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("call_duration", sa.Integer(), nullable=True),
        sa.Column("call_attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("analysis", sa.JSON(), nullable=True),
        sa.Column("call_metadata", sa.JSON(), nullable=True),
        sa.Column("tags", sa.JSON(), server_default=sa.text("'[]'::json"), nullable=True),
        sa.Column(
            "custom_fields", sa.JSON(), server_default=sa.text("'{}'::json"), nullable=True
        ),
        sa.Column("source", sa.String(50), server_default="manual", nullable=False),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("company_id", "phone_number", name="uq_contact_company_phone"),
    )
    op.create_index("ix_contacts_company_created", "contacts", ["company_id", "created_at"])

    # ── integrations table ──────────────────────────────────────────────

    op.create_table(
        "integrations",
        _id_column(),
        sa.Column("company_id", UUID(as_uuid=True), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("access_token", sa.Text(), server_default="", nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("instance_url", sa.String(500), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column(
            "metadata_json", sa.JSON(), server_default=sa.text("'{}'::json"), nullable=True
        ),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("company_id", "provider", name="uq_integration_company_provider"),
    )

    # ── sync_links table ────────────────────────────────────────────────

    op.create_table(
        "sync_links",
        _id_column(),
        sa.Column("company_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "integration_id",
            UUID(as_uuid=True),
            sa.ForeignKey("integrations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("external_object_id", sa.String(500), nullable=False),
        sa.Column("object_type", sa.String(100), nullable=True),
        sa.Column("spreadsheet_id", sa.String(200), nullable=True),
        sa.Column("spreadsheet_name", sa.String(500), nullable=True),
        sa.Column("sheet_tab_title", sa.String(300), nullable=True),
        sa.Column("sheet_tab_id", sa.Integer(), nullable=True),
        sa.Column(
            "field_mapping", sa.JSON(), server_default=sa.text("'{}'::json"), nullable=True
        ),
        sa.Column("sync_direction", sa.String(20), server_default="inbound", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_row_count", sa.Integer(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "company_id", "external_object_id", name="uq_sync_link_company_object"
        ),
    )
    op.create_index(
        "ix_sync_links_company_active", "sync_links", ["company_id", "is_active"]
    )

    # ── contact_mappings table ──────────────────────────────────────────

    op.create_table(
        "contact_mappings",
        _id_column(),
        sa.Column("company_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "integration_id",
            UUID(as_uuid=True),
            sa.ForeignKey("integrations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "contact_id",
            UUID(as_uuid=True),
            sa.ForeignKey("contacts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("external_id", sa.String(200), nullable=False),
        sa.Column("object_type", sa.String(100), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "integration_id", "external_id", name="uq_contact_mapping_integration_external"
        ),
    )
    op.create_index("ix_contact_mappings_contact", "contact_mappings", ["contact_id"])

    # ── sync_runs table ─────────────────────────────────────────────────

    op.create_table(
        "sync_runs",
        _id_column(),
        sa.Column("company_id", UUID(as_uuid=True), nullable=False),
        sa.Column("integration_id", UUID(as_uuid=True), nullable=True),
        sa.Column("link_id", UUID(as_uuid=True), nullable=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("sync_type", sa.String(20), nullable=False),
        sa.Column("sync_direction", sa.String(20), nullable=False),
        sa.Column("status", sa.String(30), server_default="running", nullable=False),
        sa.Column("records_created", sa.Integer(), server_default="0", nullable=False),
        sa.Column("records_updated", sa.Integer(), server_default="0", nullable=False),
        sa.Column("records_skipped", sa.Integer(), server_default="0", nullable=False),
        sa.Column("errors", sa.JSON(), server_default=sa.text("'[]'::json"), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "uq_sync_runs_one_running_per_link",
        "sync_runs",
        ["link_id"],
        unique=True,
        postgresql_where=sa.text("status = 'running'"),
    )
    op.create_index(
        "ix_sync_runs_company_started", "sync_runs", ["company_id", "started_at"]
    )

    # ── notifications table ─────────────────────────────────────────────

    op.create_table(
        "notifications",
        _id_column(),
        sa.Column("company_id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column(
            "metadata_json", sa.JSON(), server_default=sa.text("'{}'::json"), nullable=True
        ),
        _created_at(),
    )
    op.create_index(
        "ix_notifications_company_created", "notifications", ["company_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_index("ix_sync_runs_company_started", table_name="sync_runs")
    op.drop_index("uq_sync_runs_one_running_per_link", table_name="sync_runs")
    op.drop_table("sync_runs")
    op.drop_table("contact_mappings")
    op.drop_table("sync_links")
    op.drop_table("integrations")
    op.drop_table("contacts")
