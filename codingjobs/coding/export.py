"""CSV export of coding results.

Runs as a background job: rows are fetched and appended to the file batch by
batch so a paused or cancelled export stops at a batch boundary. A stopped
export removes the partial file of its own attempt.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codingjobs.db.models import (
    CodingJobCoderModel,
    CodingJobModel,
    CodingJobUnitModel,
    ResponseModel,
)
from codingjobs.jobs.batch import ProgressReporter
from codingjobs.jobs.models import BackgroundJob, ExportPayload, JobContext

logger = logging.getLogger(__name__)

EXPORT_HEADERS = [
    "Unit",
    "Variable",
    "Person",
    "Response ID",
    "Coding Job",
    "Coder",
    "Code",
    "Score",
    "Notes",
    "Coded At",
]


def export_file_path(export_dir: str | Path, workspace_id: int, job_id: str, attempt: int) -> Path:
    """One file per run so a superseded attempt never touches a newer one."""
    return Path(export_dir) / f"coding-results-{workspace_id}-{job_id}-{attempt}.csv"


async def fetch_export_unit_ids(
    session: AsyncSession, workspace_id: int, export_type: str
) -> list[int]:
    """Ids of all coding job units of the workspace in export order.

    ``detailed`` orders by unit, variable and person; ``by-coder`` orders by
    coder first.
    """
    stmt = (
        select(CodingJobUnitModel.id)
        .join(CodingJobModel, CodingJobModel.id == CodingJobUnitModel.coding_job_id)
        .join(ResponseModel, ResponseModel.id == CodingJobUnitModel.response_id)
        .outerjoin(CodingJobCoderModel, CodingJobCoderModel.coding_job_id == CodingJobModel.id)
        .where(CodingJobModel.workspace_id == workspace_id)
    )
    unit_order = (
        CodingJobUnitModel.unit_name,
        CodingJobUnitModel.variable_id,
        ResponseModel.person_login,
        CodingJobUnitModel.id,
    )
    if export_type == "by-coder":
        stmt = stmt.order_by(CodingJobCoderModel.user_name, *unit_order)
    else:
        stmt = stmt.order_by(*unit_order)

    result = await session.execute(stmt)
    return list(dict.fromkeys(result.scalars().all()))


async def fetch_export_rows(session: AsyncSession, unit_ids: Sequence[int]) -> list[list[Any]]:
    """CSV rows for the given units, in the order of ``unit_ids``."""
    stmt = (
        select(
            CodingJobUnitModel.id,
            CodingJobUnitModel.unit_name,
            CodingJobUnitModel.variable_id,
            ResponseModel.person_login,
            CodingJobUnitModel.response_id,
            CodingJobModel.name,
            CodingJobCoderModel.user_name,
            CodingJobUnitModel.code,
            CodingJobUnitModel.score,
            CodingJobUnitModel.notes,
            CodingJobUnitModel.coded_at,
        )
        .join(CodingJobModel, CodingJobModel.id == CodingJobUnitModel.coding_job_id)
        .join(ResponseModel, ResponseModel.id == CodingJobUnitModel.response_id)
        .outerjoin(CodingJobCoderModel, CodingJobCoderModel.coding_job_id == CodingJobModel.id)
        .where(CodingJobUnitModel.id.in_(list(unit_ids)))
    )
    by_id: dict[int, list[Any]] = {}
    for row in (await session.execute(stmt)).all():
        by_id.setdefault(
            row[0],
            [
                row.unit_name,
                row.variable_id,
                row.person_login,
                row.response_id,
                row.name,
                row.user_name or "",
                "" if row.code is None else row.code,
                "" if row.score is None else row.score,
                row.notes or "",
                row.coded_at.isoformat() if row.coded_at else "",
            ],
        )
    return [by_id[unit_id] for unit_id in unit_ids if unit_id in by_id]


def cleanup_export(result: dict[str, Any] | None) -> None:
    """Delete the file an export job produced."""
    if not result or not result.get("file_path"):
        return
    path = Path(result["file_path"])
    if path.exists():
        path.unlink()
        logger.info("Removed export file %s", path)


async def run_export(ctx: JobContext, job: BackgroundJob) -> dict[str, Any]:
    """Handler for ``JobKind.EXPORT``."""
    payload = ExportPayload.model_validate(job.payload)
    path = export_file_path(ctx.export_dir, payload.workspace_id, job.id, ctx.attempt)
    path.parent.mkdir(parents=True, exist_ok=True)

    async with ctx.session_maker() as session:
        unit_ids = await fetch_export_unit_ids(session, payload.workspace_id, payload.export_type)

    with path.open("w", newline="", encoding="utf-8") as handle:
        csv.writer(handle).writerow(EXPORT_HEADERS)

    async def process(batch: Sequence[int], report: ProgressReporter) -> int:
        async with ctx.session_maker() as session:
            rows = await fetch_export_rows(session, batch)
        with path.open("a", newline="", encoding="utf-8") as handle:
            csv.writer(handle).writerows(rows)
        await report(1.0)
        return len(rows)

    outcome = await ctx.batch_processor.run(
        job.id, ctx.attempt, unit_ids, process, lambda total, count: total + count, 0
    )

    if not outcome.finished:
        path.unlink(missing_ok=True)
        return {
            "export_type": payload.export_type,
            "row_count": outcome.result,
            "stopped_reason": outcome.stopped_reason,
        }

    logger.info("Exported %d rows to %s", outcome.result, path)
    return {
        "export_type": payload.export_type,
        "workspace_id": payload.workspace_id,
        "file_name": path.name,
        "file_path": str(path),
        "file_size": path.stat().st_size,
        "row_count": outcome.result,
    }
