"""Inter-rater agreement routes.

Routes:
- GET /api/workspaces/{workspace_id}/coding/cohens-kappa - Kappa per variable and coder pair
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from codingjobs.db.connection import get_session
from codingjobs.statistics.service import get_cohens_kappa_statistics

router = APIRouter(prefix="/api/workspaces/{workspace_id}/coding", tags=["statistics"])


@router.get("/cohens-kappa")
async def cohens_kappa(
    workspace_id: int,
    unit_name: str | None = Query(default=None, alias="unitName"),
    variable_id: str | None = Query(default=None, alias="variableId"),
    weighted_mean: bool = Query(default=False, alias="weightedMean"),
) -> dict[str, Any]:
    async with get_session() as session:
        return await get_cohens_kappa_statistics(
            session, workspace_id, unit_name, variable_id, weighted_mean
        )
