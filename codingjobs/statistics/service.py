"""Inter-rater agreement over double-coded responses of a workspace."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from itertools import combinations
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from codingjobs.db.models import CodingJobCoderModel, CodingJobModel, CodingJobUnitModel
from codingjobs.jobs.models import BackgroundJob, JobContext, StatisticsPayload
from codingjobs.statistics.kappa import (
    CoderPair,
    CoderPairResult,
    average_kappa,
    calculate_cohens_kappa,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DoubleCodedRow:
    response_id: int
    unit_name: str
    variable_id: str
    coding_job_id: int
    coder_id: int
    coder_name: str
    code: int


async def fetch_double_coded_rows(
    session: AsyncSession,
    workspace_id: int,
    unit_name: str | None = None,
    variable_id: str | None = None,
) -> list[DoubleCodedRow]:
    """Coded units of responses that were coded in at least two jobs."""
    base_filters = [
        CodingJobModel.workspace_id == workspace_id,
        CodingJobModel.training_id.is_(None),
        CodingJobUnitModel.code.is_not(None),
    ]
    if unit_name:
        base_filters.append(CodingJobUnitModel.unit_name == unit_name)
    if variable_id:
        base_filters.append(CodingJobUnitModel.variable_id == variable_id)

    double_coded = (
        select(CodingJobUnitModel.response_id)
        .join(CodingJobModel, CodingJobModel.id == CodingJobUnitModel.coding_job_id)
        .where(*base_filters)
        .group_by(CodingJobUnitModel.response_id)
        .having(func.count(func.distinct(CodingJobUnitModel.coding_job_id)) > 1)
    )

    stmt = (
        select(
            CodingJobUnitModel.response_id,
            CodingJobUnitModel.unit_name,
            CodingJobUnitModel.variable_id,
            CodingJobUnitModel.coding_job_id,
            CodingJobCoderModel.user_id,
            CodingJobCoderModel.user_name,
            CodingJobUnitModel.code,
        )
        .join(CodingJobModel, CodingJobModel.id == CodingJobUnitModel.coding_job_id)
        .join(CodingJobCoderModel, CodingJobCoderModel.coding_job_id == CodingJobModel.id)
        .where(*base_filters, CodingJobUnitModel.response_id.in_(double_coded))
        .order_by(
            CodingJobUnitModel.unit_name,
            CodingJobUnitModel.variable_id,
            CodingJobUnitModel.response_id,
            CodingJobUnitModel.coding_job_id,
        )
    )
    rows = (await session.execute(stmt)).all()
    return [
        DoubleCodedRow(
            response_id=row.response_id,
            unit_name=row.unit_name,
            variable_id=row.variable_id,
            coding_job_id=row.coding_job_id,
            coder_id=row.user_id,
            coder_name=row.user_name,
            code=row.code,
        )
        for row in rows
    ]


def build_coder_pairs(rows: list[DoubleCodedRow]) -> dict[tuple[str, str], list[CoderPair]]:
    """Group rows per variable and align the codes of every coder pair.

    Within a variable the pairs are ordered with ``coder1_id < coder2_id``;
    a pair only includes responses both coders coded.
    """
    by_variable: dict[tuple[str, str], dict[int, dict[int, int]]] = defaultdict(
        lambda: defaultdict(dict)
    )
    names: dict[int, str] = {}
    for row in rows:
        by_variable[(row.unit_name, row.variable_id)][row.response_id][row.coder_id] = row.code
        names[row.coder_id] = row.coder_name

    pairs_by_variable: dict[tuple[str, str], list[CoderPair]] = {}
    for variable, responses in by_variable.items():
        coder_ids = sorted({coder for coded in responses.values() for coder in coded})
        pairs: list[CoderPair] = []
        for first, second in combinations(coder_ids, 2):
            codes = [
                (coded[first], coded[second])
                for _, coded in sorted(responses.items())
                if first in coded and second in coded
            ]
            if codes:
                pairs.append(
                    CoderPair(
                        coder1_id=first,
                        coder1_name=names[first],
                        coder2_id=second,
                        coder2_name=names[second],
                        codes=codes,
                    )
                )
        if pairs:
            pairs_by_variable[variable] = pairs
    return pairs_by_variable


async def get_cohens_kappa_statistics(
    session: AsyncSession,
    workspace_id: int,
    unit_name: str | None = None,
    variable_id: str | None = None,
    weighted_mean: bool = False,
) -> dict[str, Any]:
    """Per-variable Kappa for every coder pair plus a workspace summary.

    Args:
        unit_name: Restrict to one unit
        variable_id: Restrict to one variable
        weighted_mean: Weight the summary average by valid pairs

    Returns:
        ``{"variables": [...], "workspace_summary": {...}}``
    """
    rows = await fetch_double_coded_rows(session, workspace_id, unit_name, variable_id)
    pairs_by_variable = build_coder_pairs(rows)

    variables: list[dict[str, Any]] = []
    all_results: list[CoderPairResult] = []
    for (unit, variable), pairs in sorted(pairs_by_variable.items()):
        results = calculate_cohens_kappa(pairs)
        all_results.extend(results)
        variables.append(
            {
                "unit_name": unit,
                "variable_id": variable,
                "coder_pairs": [result.to_dict() for result in results],
            }
        )

    summary = {
        "total_double_coded_responses": len({row.response_id for row in rows}),
        "total_coder_pairs": len(all_results),
        "average_kappa": average_kappa(all_results, weighted=weighted_mean),
        "variables_included": len(variables),
        "coders_included": len({row.coder_id for row in rows}),
    }

    logger.info(
        "Calculated Cohen's Kappa for %d variables in workspace %s (average %s)",
        len(variables),
        workspace_id,
        summary["average_kappa"],
    )
    return {"variables": variables, "workspace_summary": summary}


async def run_statistics(ctx: JobContext, job: BackgroundJob) -> dict[str, Any]:
    """Handler for ``JobKind.STATISTICS``; computed in a single step."""
    payload = StatisticsPayload.model_validate(job.payload)
    await ctx.store.set_progress(job.id, 10)

    async with ctx.session_maker() as session:
        return await get_cohens_kappa_statistics(
            session, payload.workspace_id, payload.unit_name, payload.variable_id
        )
