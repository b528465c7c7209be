"""Case distribution routes.

Routes:
- POST /api/workspaces/{workspace_id}/coding/distribution/preview - Compute a plan
- POST /api/workspaces/{workspace_id}/coding/distribution/create  - Compute and create coding jobs
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from codingjobs.db.connection import get_session
from codingjobs.distribution.service import create_distributed_coding_jobs, preview_distribution
from codingjobs.models import DistributionRequest, ValidationError
from codingjobs.web.dependencies import bad_request

router = APIRouter(prefix="/api/workspaces/{workspace_id}/coding/distribution", tags=["distribution"])


@router.post("/preview")
async def preview(workspace_id: int, body: DistributionRequest) -> dict[str, Any]:
    """Distribution plan for the selection; nothing is persisted."""
    try:
        async with get_session() as session:
            plan = await preview_distribution(session, workspace_id, body)
    except ValidationError as exc:
        raise bad_request(exc) from exc
    return plan.to_dict()


@router.post("/create")
async def create(workspace_id: int, body: DistributionRequest) -> dict[str, Any]:
    """Distribute cases and create one coding job per coder and variable."""
    try:
        async with get_session() as session:
            result = await create_distributed_coding_jobs(session, workspace_id, body)
    except ValidationError as exc:
        raise bad_request(exc) from exc
    return result.to_dict()
