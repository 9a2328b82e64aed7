"""Sync notifier -- records an in-app notification when a run finishes.

Delivery (email, push, UI badge) belongs to another service; this module
only writes the notifications row. A notifier failure is logged and never
fails the sync that produced it.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.sync.models import NotificationModel
from src.app.sync.schemas import LinkRead, LinkSyncResult

logger = structlog.get_logger(__name__)

SYNC_COMPLETED = "sync_completed"
SYNC_FAILED = "sync_failed"

_PROVIDER_TITLES = {
    "google_sheets": "Google Sheets",
    "hubspot": "HubSpot",
    "salesforce": "Salesforce",
    "pipedrive": "Pipedrive",
}


def build_notification(link: LinkRead, result: LinkSyncResult) -> tuple[str, str, str]:
    """Return (type, title, message) for a finished link sync."""
    label = _PROVIDER_TITLES.get(link.provider.value, link.provider.value)
    name = link.display_name

    if not result.success:
        error = result.error
        if result.inbound is not None and result.inbound.error:
            error = result.inbound.error
        elif result.outbound is not None and result.outbound.error:
            error = result.outbound.error
        return (
            SYNC_FAILED,
            f"{label} Import Failed",
            f'"{name}": Import failed: {error or "Unknown error"}',
        )

    if result.inbound is not None:
        inbound = result.inbound
        message = (
            f'"{name}": {inbound.created} contacts created, {inbound.updated} updated, '
            f"{inbound.skipped} skipped ({inbound.total} total rows processed)"
        )
        if result.outbound is not None:
            message += f"; {result.outbound.row_count} rows exported"
        return SYNC_COMPLETED, f"{label} Import Complete", message

    row_count = result.outbound.row_count if result.outbound else 0
    return (
        SYNC_COMPLETED,
        f"{label} Export Complete",
        f'"{name}": {row_count} contacts exported',
    )


class SyncNotifier:
    """Persists notifications for finished sync runs.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def notify(
        self,
        company_id: str,
        user_id: str | None,
        link: LinkRead,
        result: LinkSyncResult,
    ) -> bool:
        """Write a notification row. Returns False if it could not be written."""
        notification_type, title, message = build_notification(link, result)
        metadata: dict[str, Any] = {
            "link_id": link.id,
            "provider": link.provider.value,
            "run_id": result.run_id,
        }
        if result.inbound is not None:
            metadata.update(
                created=result.inbound.created,
                updated=result.inbound.updated,
                skipped=result.inbound.skipped,
                total=result.inbound.total,
            )
        try:
            async for session in self._session_factory():
                session.add(
                    NotificationModel(
                        company_id=uuid.UUID(company_id),
                        user_id=uuid.UUID(user_id) if user_id else None,
                        type=notification_type,
                        title=title,
                        message=message,
                        read=False,
                        metadata_json=metadata,
                    )
                )
                await session.commit()
        except Exception as exc:
            logger.warning(
                "notifier.write_failed",
                company_id=company_id,
                link_id=link.id,
                error=str(exc),
            )
            return False

        logger.info(
            "notifier.sent",
            company_id=company_id,
            link_id=link.id,
            type=notification_type,
        )
        return True
