"""arq worker executing background jobs.

Run with ``arq codingjobs.worker.WorkerSettings`` or ``codingjobs worker``.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.orm import sessionmaker

from codingjobs.config import get_config
from codingjobs.core.logging import configure_logging
from codingjobs.core.queue import get_redis_settings
from codingjobs.db.connection import close_db, get_session_factory
from codingjobs.jobs.batch import BatchProcessor
from codingjobs.jobs.handlers import resolve_handler
from codingjobs.jobs.models import JobContext, JobStatus
from codingjobs.jobs.store import JobStore

logger = structlog.get_logger()


async def execute_background_job(
    session_maker: sessionmaker,
    job_id: str,
    attempt: int = 0,
    batch_size: int | None = None,
    export_dir: str | None = None,
) -> dict[str, Any]:
    """Claim, run and settle one background job.

    Attempt 0 claims a pending job; later attempts (dispatched by resume)
    only proceed if the row is processing with that same attempt.

    Returns:
        The handler result, or a ``skipped``/``stopped`` marker

    Raises:
        Exception: Whatever the handler raised, after recording the failure
    """
    config = get_config()
    store = JobStore(session_maker)
    structlog.contextvars.bind_contextvars(job_id=job_id, attempt=attempt)
    try:
        job = await store.get(job_id)
        if job is None:
            logger.warning("job_not_found")
            return {"skipped": True, "reason": "not_found"}

        if attempt == 0:
            claimed = await store.claim(job_id)
        else:
            claimed = job.status == JobStatus.PROCESSING and job.attempt == attempt
        if not claimed:
            current = await store.get(job_id)
            reason = current.status.value if current else "not_found"
            logger.info("job_not_claimed", reason=reason)
            return {"skipped": True, "reason": reason}

        spec = resolve_handler(job.kind)
        ctx = JobContext(
            job_id=job_id,
            attempt=attempt,
            session_maker=session_maker,
            store=store,
            batch_processor=BatchProcessor(store, batch_size or config.batch.batch_size),
            export_dir=export_dir or config.export.export_dir,
        )

        logger.info("job_started", kind=job.kind.value)
        try:
            result = await spec.run(ctx, job)
        except Exception as exc:
            await store.fail(job_id, attempt, str(exc))
            logger.error("job_failed", kind=job.kind.value, error=str(exc), exc_info=True)
            raise

        if await store.complete(job_id, attempt, result):
            logger.info("job_completed", kind=job.kind.value)
            return result

        current = await store.get(job_id)
        status = current.status.value if current else "deleted"
        if current is not None and current.status == JobStatus.PROCESSING:
            status = "superseded"
        logger.info("job_stopped", kind=job.kind.value, status=status)
        return {"stopped": True, "status": status, "partial_result": result}
    finally:
        structlog.contextvars.unbind_contextvars("job_id", "attempt")


async def startup(ctx: dict[str, Any]) -> None:
    """Initialize resources when worker starts."""
    config = get_config()
    configure_logging(config.log_level, config.log_format)
    ctx["session_maker"] = get_session_factory()
    logger.info("worker_started")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Cleanup resources when worker stops."""
    await close_db()
    logger.info("worker_stopped")


async def run_background_job(ctx: dict[str, Any], job_id: str, attempt: int = 0) -> dict[str, Any]:
    """arq task: execute one background job by id."""
    return await execute_background_job(ctx["session_maker"], job_id, attempt)


class WorkerSettings:
    functions = [run_background_job]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()
    job_timeout = get_config().queue.job_timeout_seconds
    keep_result = get_config().queue.keep_result_seconds
