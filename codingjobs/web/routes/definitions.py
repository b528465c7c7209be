"""Job definition routes.

Routes:
- GET    /api/workspaces/{workspace_id}/coding/job-definitions                 - List (optional ?status=)
- POST   /api/workspaces/{workspace_id}/coding/job-definitions                 - Create
- GET    /api/workspaces/{workspace_id}/coding/job-definitions/overlaps        - Shared variables
- GET    /api/workspaces/{workspace_id}/coding/job-definitions/{id}            - Get
- PATCH  /api/workspaces/{workspace_id}/coding/job-definitions/{id}            - Update
- DELETE /api/workspaces/{workspace_id}/coding/job-definitions/{id}            - Delete
- POST   /api/workspaces/{workspace_id}/coding/job-definitions/{id}/approve    - Change status
- POST   /api/workspaces/{workspace_id}/coding/job-definitions/{id}/create-jobs - Realize as coding jobs
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from codingjobs.db.connection import get_session
from codingjobs.db.models import JobDefinitionModel
from codingjobs.definitions.service import (
    approve_definition,
    create_definition,
    create_jobs_from_definition,
    definition_to_dict,
    delete_definition,
    find_definition_overlaps,
    get_definition,
    list_definitions,
    update_definition,
)
from codingjobs.models import (
    JobDefinitionData,
    JobDefinitionStatus,
    JobDefinitionUpdate,
    ValidationError,
)
from codingjobs.web.dependencies import bad_request
from codingjobs.web.models import DefinitionStatusChange

router = APIRouter(prefix="/api/workspaces/{workspace_id}/coding/job-definitions", tags=["definitions"])


async def _workspace_definition(
    session: AsyncSession, workspace_id: int, definition_id: int
) -> JobDefinitionModel:
    definition = await get_definition(session, definition_id)
    if definition is None or definition.workspace_id != workspace_id:
        raise HTTPException(status_code=404, detail="Job definition not found")
    return definition


@router.get("")
async def list_job_definitions(
    workspace_id: int, status: JobDefinitionStatus | None = Query(default=None)
) -> list[dict[str, Any]]:
    async with get_session() as session:
        definitions = await list_definitions(session, workspace_id, status)
        return [definition_to_dict(definition) for definition in definitions]


@router.post("")
async def create_job_definition(workspace_id: int, body: JobDefinitionData) -> dict[str, Any]:
    """Create a definition; variables without available cases come back as conflicts."""
    try:
        async with get_session() as session:
            definition, conflicts = await create_definition(session, workspace_id, body)
            payload = definition_to_dict(definition)
    except ValidationError as exc:
        raise bad_request(exc) from exc
    return {"definition": payload, "conflicts": conflicts}


@router.get("/overlaps")
async def job_definition_overlaps(workspace_id: int) -> list[dict[str, Any]]:
    async with get_session() as session:
        overlaps = await find_definition_overlaps(session, workspace_id)
    return [{**asdict(overlap), "is_conflict": overlap.is_conflict} for overlap in overlaps]


@router.get("/{definition_id}")
async def get_job_definition(workspace_id: int, definition_id: int) -> dict[str, Any]:
    async with get_session() as session:
        definition = await _workspace_definition(session, workspace_id, definition_id)
        return definition_to_dict(definition)


@router.patch("/{definition_id}")
async def update_job_definition(
    workspace_id: int, definition_id: int, body: JobDefinitionUpdate
) -> dict[str, Any]:
    try:
        async with get_session() as session:
            await _workspace_definition(session, workspace_id, definition_id)
            updated = await update_definition(session, definition_id, body)
            if updated is None:
                raise HTTPException(status_code=404, detail="Job definition not found")
            definition, conflicts = updated
            payload = definition_to_dict(definition)
    except ValidationError as exc:
        raise bad_request(exc) from exc
    return {"definition": payload, "conflicts": conflicts}


@router.delete("/{definition_id}")
async def delete_job_definition(workspace_id: int, definition_id: int) -> dict[str, Any]:
    async with get_session() as session:
        await _workspace_definition(session, workspace_id, definition_id)
        deleted = await delete_definition(session, definition_id)
    return {"success": deleted}


@router.post("/{definition_id}/approve")
async def approve_job_definition(
    workspace_id: int, definition_id: int, body: DefinitionStatusChange | None = None
) -> dict[str, Any]:
    target = body.status if body else JobDefinitionStatus.APPROVED
    try:
        async with get_session() as session:
            await _workspace_definition(session, workspace_id, definition_id)
            definition = await approve_definition(session, definition_id, target)
            if definition is None:
                raise HTTPException(status_code=404, detail="Job definition not found")
            payload = definition_to_dict(definition)
    except ValidationError as exc:
        raise bad_request(exc) from exc
    return payload


@router.post("/{definition_id}/create-jobs")
async def create_jobs(workspace_id: int, definition_id: int) -> dict[str, Any]:
    try:
        async with get_session() as session:
            await _workspace_definition(session, workspace_id, definition_id)
            result = await create_jobs_from_definition(session, definition_id)
            if result is None:
                raise HTTPException(status_code=404, detail="Job definition not found")
    except ValidationError as exc:
        raise bad_request(exc) from exc
    return result.to_dict()
