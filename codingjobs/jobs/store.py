"""Durable background job state backed by the ``background_jobs`` table.

Every state change is one conditional UPDATE guarded by the allowed source
statuses, so concurrent pause/cancel/complete calls cannot interleave into
an inconsistent state: exactly one of them changes the row, the others see
``False``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import case, delete, select, update
from sqlalchemy.orm import sessionmaker

from codingjobs.db.models import BackgroundJobModel, utcnow
from codingjobs.jobs.models import BackgroundJob, JobKind, JobStatus

logger = logging.getLogger(__name__)

# Progress stays below 100 until the job is completed
MAX_RUNNING_PROGRESS = 99


class JobStore:
    """Compare-and-set transitions over background job rows."""

    def __init__(self, session_maker: sessionmaker) -> None:
        self._session_maker = session_maker

    async def create(
        self,
        workspace_id: int,
        kind: JobKind,
        payload: dict[str, Any],
        restarted_from: str | None = None,
    ) -> BackgroundJob:
        row = BackgroundJobModel(
            workspace_id=workspace_id,
            kind=kind.value,
            payload=payload,
            status=JobStatus.PENDING.value,
            progress=0,
            attempt=0,
            restarted_from=restarted_from,
        )
        async with self._session_maker() as session:
            session.add(row)
            await session.commit()
        return BackgroundJob.from_model(row)

    async def get(self, job_id: str) -> BackgroundJob | None:
        async with self._session_maker() as session:
            row = await session.get(BackgroundJobModel, job_id)
            return BackgroundJob.from_model(row) if row is not None else None

    async def list_for_workspace(
        self, workspace_id: int, kind: JobKind | None = None
    ) -> list[BackgroundJob]:
        """Jobs of a workspace, newest first."""
        stmt = select(BackgroundJobModel).where(BackgroundJobModel.workspace_id == workspace_id)
        if kind is not None:
            stmt = stmt.where(BackgroundJobModel.kind == kind.value)
        stmt = stmt.order_by(BackgroundJobModel.created_at.desc(), BackgroundJobModel.id)

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [BackgroundJob.from_model(row) for row in result.scalars().all()]

    async def delete(self, job_id: str) -> bool:
        async with self._session_maker() as session:
            result = await session.execute(
                delete(BackgroundJobModel).where(BackgroundJobModel.id == job_id)
            )
            await session.commit()
        return result.rowcount == 1

    async def _transition(
        self,
        job_id: str,
        from_statuses: Iterable[JobStatus],
        values: dict[str, Any],
        attempt: int | None = None,
    ) -> bool:
        """Apply ``values`` only if the row is in one of ``from_statuses``.

        Returns:
            True if exactly this call changed the row
        """
        conditions = [
            BackgroundJobModel.id == job_id,
            BackgroundJobModel.status.in_([status.value for status in from_statuses]),
        ]
        if attempt is not None:
            conditions.append(BackgroundJobModel.attempt == attempt)

        stmt = (
            update(BackgroundJobModel)
            .where(*conditions)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def claim(self, job_id: str) -> bool:
        """pending (first dispatch) -> processing."""
        return await self._transition(
            job_id,
            [JobStatus.PENDING],
            {"status": JobStatus.PROCESSING.value, "started_at": utcnow()},
            attempt=0,
        )

    async def pause(self, job_id: str) -> bool:
        return await self._transition(
            job_id, [JobStatus.PROCESSING], {"status": JobStatus.PAUSED.value}
        )

    async def resume(self, job_id: str) -> bool:
        """paused -> processing; the bumped attempt invalidates the old worker run."""
        return await self._transition(
            job_id,
            [JobStatus.PAUSED],
            {
                "status": JobStatus.PROCESSING.value,
                "attempt": BackgroundJobModel.attempt + 1,
            },
        )

    async def cancel_queued(self, job_id: str) -> bool:
        """pending|paused -> cancelled; nothing is running for these."""
        return await self._transition(
            job_id,
            [JobStatus.PENDING, JobStatus.PAUSED],
            {"status": JobStatus.CANCELLED.value, "finished_at": utcnow()},
        )

    async def cancel_running(self, job_id: str) -> bool:
        """processing -> cancelled; the handler stops at its next checkpoint."""
        return await self._transition(
            job_id,
            [JobStatus.PROCESSING],
            {"status": JobStatus.CANCELLED.value, "finished_at": utcnow()},
        )

    async def complete(self, job_id: str, attempt: int, result: dict[str, Any]) -> bool:
        return await self._transition(
            job_id,
            [JobStatus.PROCESSING],
            {
                "status": JobStatus.COMPLETED.value,
                "progress": 100,
                "result": result,
                "finished_at": utcnow(),
            },
            attempt=attempt,
        )

    async def fail(self, job_id: str, attempt: int, error: str) -> bool:
        return await self._transition(
            job_id,
            [JobStatus.PENDING, JobStatus.PROCESSING],
            {"status": JobStatus.FAILED.value, "error": error, "finished_at": utcnow()},
            attempt=attempt,
        )

    async def set_progress(self, job_id: str, percentage: int) -> bool:
        """Raise progress to ``percentage`` (capped at 99); never lowers it."""
        target = max(0, min(int(percentage), MAX_RUNNING_PROGRESS))
        return await self._transition(
            job_id,
            [JobStatus.PROCESSING],
            {
                "progress": case(
                    (BackgroundJobModel.progress < target, target),
                    else_=BackgroundJobModel.progress,
                )
            },
        )
