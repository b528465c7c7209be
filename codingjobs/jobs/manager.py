"""Job queue manager: create, track and control background jobs.

Job state lives in the database (see ``JobStore``); arq only carries
``run_background_job(job_id, attempt)`` to a worker. Control operations
answer with an ``ActionResult`` instead of raising, so callers can relay the
message as is.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from arq.connections import ArqRedis
from redis.exceptions import RedisError

from codingjobs.core.queue import get_queue
from codingjobs.jobs.handlers import resolve_handler, resolve_kind, validate_payload
from codingjobs.jobs.models import (
    ActionResult,
    BackgroundJob,
    JobKind,
    JobQueueUnavailableError,
    JobStatus,
    JobStatusView,
)
from codingjobs.jobs.store import JobStore
from codingjobs.models import ValidationError

logger = logging.getLogger(__name__)

Dispatcher = Callable[[str, int], Awaitable[None]]

_JOB_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def validate_job_id(job_id: str) -> str:
    if not isinstance(job_id, str) or not _JOB_ID_PATTERN.match(job_id):
        raise ValidationError(f"Invalid job id: {job_id!r}")
    return job_id


class ArqDispatcher:
    """Enqueue ``run_background_job`` on the arq Redis queue."""

    def __init__(self) -> None:
        self._redis: ArqRedis | None = None

    async def __call__(self, job_id: str, attempt: int) -> None:
        try:
            if self._redis is None:
                self._redis = await get_queue()
            # arq deduplicates on _job_id, so one dispatch per attempt
            await self._redis.enqueue_job(
                "run_background_job", job_id, attempt, _job_id=f"{job_id}:{attempt}"
            )
        except (RedisError, OSError) as exc:
            self._redis = None
            raise JobQueueUnavailableError(f"Job queue unavailable: {exc}") from exc


class JobQueueManager:
    """Uniform control surface over background jobs of every kind."""

    def __init__(self, store: JobStore, dispatcher: Dispatcher | None = None) -> None:
        self.store = store
        self._dispatch = dispatcher or ArqDispatcher()

    async def create(
        self,
        workspace_id: int,
        kind: JobKind | str,
        payload: dict[str, Any],
        restarted_from: str | None = None,
    ) -> BackgroundJob:
        """Validate, persist and enqueue a job.

        Raises:
            ValidationError: Unknown kind or invalid payload (nothing persisted)
            JobQueueUnavailableError: Redis refused the job (job marked failed)
        """
        job_kind = resolve_kind(kind)
        normalized = validate_payload(job_kind, {"workspace_id": workspace_id, **payload})

        job = await self.store.create(workspace_id, job_kind, normalized, restarted_from)
        try:
            await self._dispatch(job.id, 0)
        except JobQueueUnavailableError as exc:
            await self.store.fail(job.id, 0, str(exc))
            logger.error("Could not enqueue %s job %s: %s", job_kind.value, job.id, exc)
            raise

        logger.info("Enqueued %s job %s for workspace %s", job_kind.value, job.id, workspace_id)
        return job

    async def get_job(self, job_id: str) -> BackgroundJob | None:
        return await self.store.get(validate_job_id(job_id))

    async def get_status(self, job_id: str) -> JobStatusView | None:
        job = await self.get_job(job_id)
        return job.status_view() if job is not None else None

    async def pause(self, job_id: str) -> ActionResult:
        job = await self.get_job(job_id)
        if job is None:
            return ActionResult(False, "Job not found")

        if await self.store.pause(job_id):
            logger.info("Paused job %s", job_id)
            return ActionResult(True, "Job paused; it stops at the next batch boundary", job_id)

        current = await self.store.get(job_id)
        status = current.status.value if current else "deleted"
        return ActionResult(False, f"Only processing jobs can be paused (status: {status})", job_id)

    async def resume(self, job_id: str) -> ActionResult:
        job = await self.get_job(job_id)
        if job is None:
            return ActionResult(False, "Job not found")

        if not await self.store.resume(job_id):
            current = await self.store.get(job_id)
            status = current.status.value if current else "deleted"
            return ActionResult(False, f"Only paused jobs can be resumed (status: {status})", job_id)

        resumed = await self.store.get(job_id)
        attempt = resumed.attempt if resumed else job.attempt + 1
        try:
            await self._dispatch(job_id, attempt)
        except JobQueueUnavailableError as exc:
            await self.store.fail(job_id, attempt, str(exc))
            return ActionResult(False, str(exc), job_id)

        logger.info("Resumed job %s (attempt %d)", job_id, attempt)
        return ActionResult(True, "Job resumed", job_id)

    async def cancel(self, job_id: str) -> ActionResult:
        """Cancel a job; cancelling an already cancelled job succeeds again."""
        job = await self.get_job(job_id)
        if job is None:
            return ActionResult(False, "Job not found")

        if await self.store.cancel_queued(job_id):
            logger.info("Cancelled queued job %s", job_id)
            return ActionResult(True, "Job cancelled and removed from queue", job_id)

        if await self.store.cancel_running(job_id):
            logger.info("Cancelled running job %s", job_id)
            return ActionResult(
                True, "Job cancelled; processing stops at the next checkpoint", job_id
            )

        current = await self.store.get(job_id)
        if current is None:
            return ActionResult(False, "Job not found")
        if current.status == JobStatus.CANCELLED:
            return ActionResult(True, "Job already cancelled", job_id)
        return ActionResult(
            False, f"Job cannot be cancelled (status: {current.status.value})", job_id
        )

    async def restart(self, job_id: str) -> ActionResult:
        """Re-run a failed job as a new job; the failed one is kept for history."""
        job = await self.get_job(job_id)
        if job is None:
            return ActionResult(False, "Job not found")
        if job.status != JobStatus.FAILED:
            return ActionResult(
                False, f"Only failed jobs can be restarted (status: {job.status.value})", job_id
            )

        try:
            new_job = await self.create(
                job.workspace_id, job.kind, job.payload, restarted_from=job.id
            )
        except JobQueueUnavailableError as exc:
            return ActionResult(False, str(exc), job_id)

        logger.info("Restarted job %s as %s", job_id, new_job.id)
        return ActionResult(True, "Job restarted", new_job.id)

    async def delete(self, job_id: str) -> ActionResult:
        job = await self.get_job(job_id)
        if job is None:
            return ActionResult(False, "Job not found")

        if not await self.store.delete(job_id):
            return ActionResult(False, "Job not found")

        cleanup = resolve_handler(job.kind).cleanup
        if cleanup is not None:
            cleanup(job.result)

        logger.info("Deleted job %s", job_id)
        return ActionResult(True, "Job deleted", job_id)

    async def get_all_jobs(
        self, workspace_id: int, kind: JobKind | str | None = None
    ) -> list[dict[str, Any]]:
        """Job summaries of a workspace, newest first."""
        job_kind = resolve_kind(kind) if kind is not None else None
        jobs = await self.store.list_for_workspace(workspace_id, job_kind)
        return [job.summary() for job in jobs]
