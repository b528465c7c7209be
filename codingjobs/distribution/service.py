"""Distribution business operations: preview a plan or realize it as coding jobs."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from codingjobs.core.locks import variable_locks
from codingjobs.db.models import CodingJobCoderModel, CodingJobModel, CodingJobUnitModel
from codingjobs.distribution.engine import (
    calculate_distribution,
    coder_labels,
    generate_job_name,
    sort_coders,
)
from codingjobs.distribution.models import AssignmentPlan, CasePoolSnapshot
from codingjobs.distribution.repository import build_case_pool_snapshot
from codingjobs.models import (
    Case,
    CodingJobStatus,
    DistributionRequest,
    ValidationError,
    VariableRef,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CreatedJobSummary:
    job_id: int
    job_name: str
    coder_id: int
    coder_name: str
    item: str
    case_count: int
    variable_bundle_id: int | None = None


@dataclass
class DistributionCreationResult:
    plan: AssignmentPlan
    jobs: list[CreatedJobSummary] = field(default_factory=list)

    @property
    def jobs_created(self) -> int:
        return len(self.jobs)

    @property
    def message(self) -> str:
        message = f"Created {self.jobs_created} coding jobs"
        if self.plan.warnings:
            message += f" with {len(self.plan.warnings)} warnings"
        return message

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "jobs_created": self.jobs_created,
            "message": self.message,
            **self.plan.to_dict(),
            "jobs": [asdict(job) for job in self.jobs],
        }


def involved_variables(request: DistributionRequest) -> list[VariableRef]:
    """Every variable touched by the request, bundles included, without duplicates."""
    variables = list(request.selected_variables)
    for bundle in request.selected_variable_bundles:
        variables.extend(bundle.variables)
    return list(dict.fromkeys(variables))


def _validate_selection(request: DistributionRequest) -> None:
    if not request.selected_coders:
        raise ValidationError("At least one coder must be selected")
    if not involved_variables(request):
        raise ValidationError("At least one variable or variable bundle must be selected")


def _case_index(snapshot: CasePoolSnapshot) -> dict[int, Case]:
    return {case.id: case for cases in snapshot.cases_by_variable.values() for case in cases}


async def preview_distribution(
    session: AsyncSession, workspace_id: int, request: DistributionRequest
) -> AssignmentPlan:
    """Compute the plan without persisting anything."""
    _validate_selection(request)
    snapshot = await build_case_pool_snapshot(session, workspace_id, involved_variables(request))
    return calculate_distribution(request, snapshot)


async def create_distributed_coding_jobs(
    session: AsyncSession,
    workspace_id: int,
    request: DistributionRequest,
    job_definition_id: int | None = None,
) -> DistributionCreationResult:
    """Compute the plan and persist one coding job per (coder, item).

    Runs under the per-variable lock and commits before releasing it, so a
    concurrent distribution for the same variables sees these cases as
    assigned. Assignments with zero cases produce no job.

    Raises:
        ValidationError: No coders or no variables selected
    """
    _validate_selection(request)
    variables = involved_variables(request)

    async with variable_locks.hold(session, workspace_id, [v.key for v in variables]):
        snapshot = await build_case_pool_snapshot(session, workspace_id, variables)
        plan = calculate_distribution(request, snapshot)

        coders = sort_coders(request.selected_coders)
        labels = coder_labels(coders)
        coders_by_label = {labels[coder.id]: coder for coder in coders}
        cases = _case_index(snapshot)

        pending: list[tuple[CodingJobModel, CreatedJobSummary]] = []
        for item_key, per_coder in plan.assignments.items():
            item = plan.items[item_key]
            for label, response_ids in per_coder.items():
                if not response_ids:
                    continue

                coder = coders_by_label[label]
                job = CodingJobModel(
                    workspace_id=workspace_id,
                    name=generate_job_name(coder.name, item, len(response_ids)),
                    status=CodingJobStatus.PENDING.value,
                    case_ordering_mode=request.case_ordering_mode.value,
                    job_definition_id=job_definition_id,
                    variable_bundle_id=item.bundle_id,
                )
                job.coders.append(CodingJobCoderModel(user_id=coder.id, user_name=coder.name))
                job.units.extend(
                    CodingJobUnitModel(
                        response_id=response_id,
                        unit_name=cases[response_id].unit_name,
                        variable_id=cases[response_id].variable_id,
                    )
                    for response_id in response_ids
                )
                session.add(job)
                pending.append(
                    (
                        job,
                        CreatedJobSummary(
                            job_id=0,
                            job_name=job.name,
                            coder_id=coder.id,
                            coder_name=coder.name,
                            item=item_key,
                            case_count=len(response_ids),
                            variable_bundle_id=item.bundle_id,
                        ),
                    )
                )

        await session.flush()
        for job, summary in pending:
            summary.job_id = job.id
        await session.commit()

    logger.info(
        "Created %d coding jobs in workspace %s (definition=%s)",
        len(pending),
        workspace_id,
        job_definition_id,
    )
    return DistributionCreationResult(plan=plan, jobs=[summary for _, summary in pending])
