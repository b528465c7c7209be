"""Test-person coding: carry coder results back onto responses.

For every person in the job, responses still ``CODING_INCOMPLETE`` receive
the code that coders entered in non-training coding jobs. When several jobs
coded the same response differently, the response is left untouched for
double-coding review.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from codingjobs.db.models import CodingJobModel, CodingJobUnitModel, ResponseModel
from codingjobs.distribution.repository import apply_result
from codingjobs.jobs.batch import ProgressReporter
from codingjobs.jobs.models import BackgroundJob, JobContext, PersonCodingPayload
from codingjobs.models import ResponseStatus

logger = logging.getLogger(__name__)


@dataclass
class CodingStatistics:
    total_responses: int = 0
    status_counts: dict[str, int] = field(default_factory=dict)
    applied_results: int = 0

    def merge(self, other: CodingStatistics) -> CodingStatistics:
        counts = dict(self.status_counts)
        for status, count in other.status_counts.items():
            counts[status] = counts.get(status, 0) + count
        return CodingStatistics(
            total_responses=self.total_responses + other.total_responses,
            status_counts=counts,
            applied_results=self.applied_results + other.applied_results,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_responses": self.total_responses,
            "status_counts": dict(sorted(self.status_counts.items())),
            "applied_results": self.applied_results,
        }


def merge_coding_statistics(acc: CodingStatistics, batch: CodingStatistics) -> CodingStatistics:
    return acc.merge(batch)


async def apply_coded_results(
    session: AsyncSession, workspace_id: int, person_ids: Sequence[int]
) -> int:
    """Apply agreed coder results to the persons' incomplete responses.

    Returns:
        Number of responses that received a result
    """
    incomplete = (
        select(ResponseModel.id)
        .where(
            ResponseModel.workspace_id == workspace_id,
            ResponseModel.person_id.in_(list(person_ids)),
            ResponseModel.status == ResponseStatus.CODING_INCOMPLETE.value,
        )
    )
    stmt = (
        select(CodingJobUnitModel.response_id, CodingJobUnitModel.code, CodingJobUnitModel.score)
        .join(CodingJobModel, CodingJobModel.id == CodingJobUnitModel.coding_job_id)
        .where(
            CodingJobModel.workspace_id == workspace_id,
            CodingJobModel.training_id.is_(None),
            CodingJobUnitModel.code.is_not(None),
            CodingJobUnitModel.response_id.in_(incomplete),
        )
        .order_by(CodingJobUnitModel.response_id, CodingJobUnitModel.id)
    )
    rows = (await session.execute(stmt)).all()

    results: dict[int, list[tuple[int, int | None]]] = defaultdict(list)
    for row in rows:
        results[row.response_id].append((row.code, row.score))

    applied = 0
    for response_id, coded in results.items():
        codes = {code for code, _ in coded}
        if len(codes) != 1:
            logger.debug("Response %s has conflicting codes %s; left for review", response_id, codes)
            continue
        score = next((score for _, score in coded if score is not None), None)
        if await apply_result(session, response_id, coded[0][0], score):
            applied += 1

    return applied


async def count_response_statuses(
    session: AsyncSession, workspace_id: int, person_ids: Sequence[int]
) -> dict[str, int]:
    stmt = (
        select(ResponseModel.status, func.count(ResponseModel.id))
        .where(
            ResponseModel.workspace_id == workspace_id,
            ResponseModel.person_id.in_(list(person_ids)),
        )
        .group_by(ResponseModel.status)
    )
    return {status: int(count) for status, count in (await session.execute(stmt)).all()}


async def process_person_batch(
    session: AsyncSession, workspace_id: int, person_ids: Sequence[int]
) -> CodingStatistics:
    applied = await apply_coded_results(session, workspace_id, person_ids)
    counts = await count_response_statuses(session, workspace_id, person_ids)
    return CodingStatistics(
        total_responses=sum(counts.values()),
        status_counts=counts,
        applied_results=applied,
    )


async def run_test_person_coding(ctx: JobContext, job: BackgroundJob) -> dict[str, Any]:
    """Handler for ``JobKind.TEST_PERSON_CODING``."""
    payload = PersonCodingPayload.model_validate(job.payload)

    async def process(batch: Sequence[int], report: ProgressReporter) -> CodingStatistics:
        async with ctx.session_maker() as session:
            stats = await process_person_batch(session, payload.workspace_id, batch)
            await session.commit()
        await report(1.0)
        return stats

    outcome = await ctx.batch_processor.run(
        job.id,
        ctx.attempt,
        payload.person_ids,
        process,
        merge_coding_statistics,
        CodingStatistics(),
    )

    result = outcome.result.to_dict()
    result["processed_persons"] = outcome.processed_items
    if not outcome.finished:
        result["stopped_reason"] = outcome.stopped_reason
    return result
