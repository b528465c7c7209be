"""Shared dependencies for coding jobs web routes.

Usage:
    from fastapi import Depends
    from codingjobs.web.dependencies import get_job_manager

    @router.get("/jobs")
    async def list_jobs(manager: JobQueueManager = Depends(get_job_manager)):
        ...
"""

from __future__ import annotations

from fastapi import HTTPException

from codingjobs.db.connection import get_session_factory
from codingjobs.jobs.manager import JobQueueManager
from codingjobs.jobs.store import JobStore
from codingjobs.models import ValidationError

# Global singleton for the job queue manager
_job_manager: JobQueueManager | None = None


def get_job_manager() -> JobQueueManager:
    """Get the JobQueueManager singleton bound to the configured database."""
    global _job_manager
    if _job_manager is None:
        _job_manager = JobQueueManager(JobStore(get_session_factory()))
    return _job_manager


def bad_request(exc: ValidationError) -> HTTPException:
    """Map a validation error to a 400 response."""
    return HTTPException(status_code=400, detail=str(exc))
