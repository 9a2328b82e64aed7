"""Sync run log -- auditable record of every run plus the per-link run guard.

start_run refuses to open a second live run for the same link. Runs left
in `running` longer than SYNC_RUN_STALE_AFTER_MINUTES (for example after a
crashed worker) are marked failed so they stop blocking the link. The
partial unique index on sync_runs(link_id) WHERE status = 'running'
closes the race between two concurrent start_run calls.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.config import get_settings
from src.app.sync.exceptions import RunInProgress
from src.app.sync.models import SyncRunModel
from src.app.sync.schemas import RunStatus, SyncDirection, SyncRunRead, SyncType

logger = structlog.get_logger(__name__)

STALE_RUN_MESSAGE = "Run did not finish; marked stale"


def _model_to_run(model: SyncRunModel) -> SyncRunRead:
    """Convert SyncRunModel to SyncRunRead schema."""
    return SyncRunRead(
        id=str(model.id),
        company_id=str(model.company_id),
        integration_id=str(model.integration_id) if model.integration_id else None,
        link_id=str(model.link_id) if model.link_id else None,
        provider=model.provider,
        sync_type=SyncType(model.sync_type),
        sync_direction=SyncDirection(model.sync_direction),
        status=RunStatus(model.status),
        records_created=model.records_created or 0,
        records_updated=model.records_updated or 0,
        records_skipped=model.records_skipped or 0,
        errors=list(model.errors or []),
        error_message=model.error_message,
        started_at=model.started_at,
        completed_at=model.completed_at,
    )


class SyncRunLog:
    """Async persistence for sync runs.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        stale_after: Age after which a running row no longer blocks its link.
            Defaults to settings.SYNC_RUN_STALE_AFTER_MINUTES.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
        stale_after: timedelta | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._stale_after = stale_after or timedelta(
            minutes=get_settings().SYNC_RUN_STALE_AFTER_MINUTES
        )

    async def start_run(
        self,
        company_id: str,
        provider: str,
        integration_id: str | None,
        link_id: str | None,
        sync_type: SyncType,
        direction: SyncDirection,
    ) -> str:
        """Open a run in `running` state.

        Returns:
            The new run ID.

        Raises:
            RunInProgress: The link already has a live run.
        """
        now = datetime.now(timezone.utc)
        async for session in self._session_factory():
            if link_id:
                stmt = select(SyncRunModel).where(
                    SyncRunModel.link_id == uuid.UUID(link_id),
                    SyncRunModel.status == RunStatus.RUNNING.value,
                )
                result = await session.execute(stmt)
                for running in result.scalars().all():
                    if running.started_at and now - running.started_at > self._stale_after:
                        running.status = RunStatus.FAILED.value
                        running.error_message = STALE_RUN_MESSAGE
                        running.completed_at = now
                        logger.warning(
                            "sync_run.stale_marked_failed",
                            run_id=str(running.id),
                            link_id=link_id,
                        )
                    else:
                        raise RunInProgress(
                            "A sync is already running for this link",
                            details={"link_id": link_id, "run_id": str(running.id)},
                        )
                await session.flush()

            model = SyncRunModel(
                company_id=uuid.UUID(company_id),
                integration_id=uuid.UUID(integration_id) if integration_id else None,
                link_id=uuid.UUID(link_id) if link_id else None,
                provider=provider,
                sync_type=sync_type.value,
                sync_direction=direction.value,
                status=RunStatus.RUNNING.value,
                records_created=0,
                records_updated=0,
                records_skipped=0,
                errors=[],
                started_at=now,
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise RunInProgress(
                    "A sync is already running for this link",
                    details={"link_id": link_id},
                ) from exc

            run_id = str(model.id)
            logger.info(
                "sync_run.started",
                run_id=run_id,
                company_id=company_id,
                link_id=link_id,
                provider=provider,
                sync_type=sync_type.value,
                direction=direction.value,
            )
            return run_id

    async def complete_run(
        self,
        run_id: str,
        created: int,
        updated: int,
        skipped: int,
        errors: list[str] | None = None,
    ) -> RunStatus:
        """Close a run; status depends on whether any errors were recorded."""
        errors = errors or []
        status = RunStatus.COMPLETED_WITH_ERRORS if errors else RunStatus.COMPLETED
        await self._finish(
            run_id,
            status=status,
            created=created,
            updated=updated,
            skipped=skipped,
            errors=errors,
            error_message=None,
        )
        return status

    async def fail_run(
        self,
        run_id: str,
        message: str,
        created: int = 0,
        updated: int = 0,
        skipped: int = 0,
        errors: list[str] | None = None,
    ) -> None:
        """Mark a run failed, keeping whatever counters it reached."""
        await self._finish(
            run_id,
            status=RunStatus.FAILED,
            created=created,
            updated=updated,
            skipped=skipped,
            errors=errors or [],
            error_message=message,
        )

    async def _finish(
        self,
        run_id: str,
        status: RunStatus,
        created: int,
        updated: int,
        skipped: int,
        errors: list[str],
        error_message: str | None,
    ) -> None:
        async for session in self._session_factory():
            stmt = (
                update(SyncRunModel)
                .where(
                    SyncRunModel.id == uuid.UUID(run_id),
                    SyncRunModel.status == RunStatus.RUNNING.value,
                )
                .values(
                    status=status.value,
                    records_created=created,
                    records_updated=updated,
                    records_skipped=skipped,
                    errors=errors,
                    error_message=error_message,
                    completed_at=datetime.now(timezone.utc),
                )
            )
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount == 0:
                logger.warning("sync_run.finish_ignored", run_id=run_id, status=status.value)
                return
            logger.info(
                "sync_run.finished",
                run_id=run_id,
                status=status.value,
                created=created,
                updated=updated,
                skipped=skipped,
                errors=len(errors),
            )

    async def get_run(self, company_id: str, run_id: str) -> SyncRunRead | None:
        async for session in self._session_factory():
            stmt = select(SyncRunModel).where(
                SyncRunModel.company_id == uuid.UUID(company_id),
                SyncRunModel.id == uuid.UUID(run_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_run(model)

    async def list_runs(
        self, company_id: str, link_id: str | None = None, limit: int = 50
    ) -> list[SyncRunRead]:
        """Most recent runs first."""
        async for session in self._session_factory():
            stmt = select(SyncRunModel).where(
                SyncRunModel.company_id == uuid.UUID(company_id),
            )
            if link_id:
                stmt = stmt.where(SyncRunModel.link_id == uuid.UUID(link_id))
            stmt = stmt.order_by(SyncRunModel.started_at.desc()).limit(limit)
            result = await session.execute(stmt)
            return [_model_to_run(m) for m in result.scalars().all()]
