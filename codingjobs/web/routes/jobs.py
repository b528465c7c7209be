"""Background job routes.

Routes:
- GET  /api/workspaces/{workspace_id}/jobs                      - List jobs (newest first)
- GET  /api/workspaces/{workspace_id}/jobs/{job_id}             - Poll job status
- GET  /api/workspaces/{workspace_id}/jobs/{job_id}/{action}    - cancel|pause|resume|restart|delete
- POST /api/workspaces/{workspace_id}/jobs/test-person-coding   - Start test-person coding
- POST /api/workspaces/{workspace_id}/jobs/export               - Start a CSV export
- POST /api/workspaces/{workspace_id}/jobs/statistics           - Start a Kappa computation
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from codingjobs.jobs.manager import JobQueueManager
from codingjobs.jobs.models import ActionResult, BackgroundJob, JobKind, JobQueueUnavailableError
from codingjobs.models import ValidationError
from codingjobs.web.dependencies import bad_request, get_job_manager
from codingjobs.web.models import (
    ActionResponse,
    ExportJobRequest,
    JobCreatedResponse,
    JobStatusResponse,
    PersonCodingJobRequest,
    StatisticsJobRequest,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/workspaces/{workspace_id}", tags=["jobs"])


async def _require_job(manager: JobQueueManager, workspace_id: int, job_id: str) -> BackgroundJob:
    try:
        job = await manager.get_job(job_id)
    except ValidationError as exc:
        raise bad_request(exc) from exc
    if job is None or job.workspace_id != workspace_id:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


async def _create(
    manager: JobQueueManager, workspace_id: int, kind: JobKind, payload: dict[str, Any]
) -> JobCreatedResponse:
    try:
        job = await manager.create(workspace_id, kind, payload)
    except ValidationError as exc:
        raise bad_request(exc) from exc
    except JobQueueUnavailableError as exc:
        logger.error("job_enqueue_failed", kind=kind.value, error=str(exc))
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return JobCreatedResponse(
        job_id=job.id,
        kind=job.kind.value,
        status=job.status.value,
        message=f"{kind.value} job queued",
    )


def _action_response(result: ActionResult) -> ActionResponse:
    return ActionResponse(success=result.success, message=result.message, job_id=result.job_id)


@router.get("/jobs")
async def list_jobs(
    workspace_id: int,
    kind: str | None = Query(default=None),
    manager: JobQueueManager = Depends(get_job_manager),
) -> list[dict[str, Any]]:
    try:
        return await manager.get_all_jobs(workspace_id, kind)
    except ValidationError as exc:
        raise bad_request(exc) from exc


@router.post("/jobs/test-person-coding", response_model=JobCreatedResponse)
async def start_test_person_coding(
    workspace_id: int,
    body: PersonCodingJobRequest,
    manager: JobQueueManager = Depends(get_job_manager),
):
    return await _create(manager, workspace_id, JobKind.TEST_PERSON_CODING, body.model_dump())


@router.post("/jobs/export", response_model=JobCreatedResponse)
async def start_export(
    workspace_id: int,
    body: ExportJobRequest,
    manager: JobQueueManager = Depends(get_job_manager),
):
    return await _create(manager, workspace_id, JobKind.EXPORT, body.model_dump())


@router.post("/jobs/statistics", response_model=JobCreatedResponse)
async def start_statistics(
    workspace_id: int,
    body: StatisticsJobRequest,
    manager: JobQueueManager = Depends(get_job_manager),
):
    return await _create(manager, workspace_id, JobKind.STATISTICS, body.model_dump())


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(
    workspace_id: int,
    job_id: str,
    manager: JobQueueManager = Depends(get_job_manager),
):
    job = await _require_job(manager, workspace_id, job_id)
    return JobStatusResponse(**job.status_view().to_dict())


@router.get("/jobs/{job_id}/cancel", response_model=ActionResponse)
async def cancel_job(workspace_id: int, job_id: str, manager: JobQueueManager = Depends(get_job_manager)):
    await _require_job(manager, workspace_id, job_id)
    return _action_response(await manager.cancel(job_id))


@router.get("/jobs/{job_id}/pause", response_model=ActionResponse)
async def pause_job(workspace_id: int, job_id: str, manager: JobQueueManager = Depends(get_job_manager)):
    await _require_job(manager, workspace_id, job_id)
    return _action_response(await manager.pause(job_id))


@router.get("/jobs/{job_id}/resume", response_model=ActionResponse)
async def resume_job(workspace_id: int, job_id: str, manager: JobQueueManager = Depends(get_job_manager)):
    await _require_job(manager, workspace_id, job_id)
    return _action_response(await manager.resume(job_id))


@router.get("/jobs/{job_id}/restart", response_model=ActionResponse)
async def restart_job(workspace_id: int, job_id: str, manager: JobQueueManager = Depends(get_job_manager)):
    await _require_job(manager, workspace_id, job_id)
    return _action_response(await manager.restart(job_id))


@router.get("/jobs/{job_id}/delete", response_model=ActionResponse)
async def delete_job(workspace_id: int, job_id: str, manager: JobQueueManager = Depends(get_job_manager)):
    await _require_job(manager, workspace_id, job_id)
    return _action_response(await manager.delete(job_id))
