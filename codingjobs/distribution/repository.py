"""Database queries for cases (responses) and their assignment to coding jobs."""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from codingjobs.db.models import (
    CodingJobModel,
    CodingJobUnitModel,
    ResponseModel,
    VariableBundleModel,
    utcnow,
)
from codingjobs.distribution.models import CasePoolSnapshot
from codingjobs.models import Case, ResponseStatus, VariableBundle, VariableRef


def _assigned_clause(workspace_id: int):
    """EXISTS clause: the response already sits in a non-training coding job."""
    return exists(
        select(CodingJobUnitModel.id)
        .join(CodingJobModel, CodingJobModel.id == CodingJobUnitModel.coding_job_id)
        .where(
            CodingJobUnitModel.response_id == ResponseModel.id,
            CodingJobUnitModel.variable_id == ResponseModel.variable_id,
            CodingJobModel.workspace_id == workspace_id,
            CodingJobModel.training_id.is_(None),
        )
    )


def _variable_filter(workspace_id: int, variable: VariableRef, status: ResponseStatus):
    return and_(
        ResponseModel.workspace_id == workspace_id,
        ResponseModel.unit_name == variable.unit_name,
        ResponseModel.variable_id == variable.variable_id,
        ResponseModel.status == status.value,
    )


def _to_case(row: ResponseModel) -> Case:
    return Case(
        id=row.id,
        unit_name=row.unit_name,
        variable_id=row.variable_id,
        value=row.value,
        status=ResponseStatus(row.status),
        person_login=row.person_login or "",
    )


async def fetch_cases(
    session: AsyncSession,
    workspace_id: int,
    variable: VariableRef,
    status: ResponseStatus = ResponseStatus.CODING_INCOMPLETE,
    exclude_assigned: bool = True,
) -> list[Case]:
    """Return cases of one variable in natural order.

    Args:
        exclude_assigned: Drop cases already in a non-training coding job
    """
    stmt = select(ResponseModel).where(_variable_filter(workspace_id, variable, status))
    if exclude_assigned:
        stmt = stmt.where(~_assigned_clause(workspace_id))
    stmt = stmt.order_by(ResponseModel.person_login, ResponseModel.id)

    result = await session.execute(stmt)
    return [_to_case(row) for row in result.scalars().all()]


async def count_available_cases(
    session: AsyncSession, workspace_id: int, variable: VariableRef
) -> int:
    """Number of unassigned ``CODING_INCOMPLETE`` cases of a variable."""
    stmt = (
        select(func.count(ResponseModel.id))
        .where(_variable_filter(workspace_id, variable, ResponseStatus.CODING_INCOMPLETE))
        .where(~_assigned_clause(workspace_id))
    )
    return int((await session.execute(stmt)).scalar_one())


async def count_assigned_cases(
    session: AsyncSession, workspace_id: int, variable: VariableRef
) -> int:
    """Number of distinct responses of a variable already in non-training jobs."""
    stmt = (
        select(func.count(func.distinct(CodingJobUnitModel.response_id)))
        .join(CodingJobModel, CodingJobModel.id == CodingJobUnitModel.coding_job_id)
        .where(
            CodingJobModel.workspace_id == workspace_id,
            CodingJobModel.training_id.is_(None),
            CodingJobUnitModel.unit_name == variable.unit_name,
            CodingJobUnitModel.variable_id == variable.variable_id,
        )
    )
    return int((await session.execute(stmt)).scalar_one())


async def build_case_pool_snapshot(
    session: AsyncSession, workspace_id: int, variables: Sequence[VariableRef]
) -> CasePoolSnapshot:
    """Load eligible cases and assignment counts for every variable once."""
    cases_by_variable: dict[str, list[Case]] = {}
    assigned_counts: dict[str, int] = {}

    for variable in dict.fromkeys(variables):
        cases_by_variable[variable.key] = await fetch_cases(session, workspace_id, variable)
        assigned_counts[variable.key] = await count_assigned_cases(session, workspace_id, variable)

    return CasePoolSnapshot.build(cases_by_variable, assigned_counts)


async def apply_result(
    session: AsyncSession, response_id: int, code: int | None, score: int | None
) -> bool:
    """Write a coding result onto a response and mark it complete."""
    result = await session.execute(
        update(ResponseModel)
        .where(ResponseModel.id == response_id)
        .values(
            code=code,
            score=score,
            status=ResponseStatus.CODING_COMPLETE.value,
            coded_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def fetch_variable_bundles(
    session: AsyncSession, workspace_id: int, bundle_ids: Sequence[int]
) -> list[VariableBundle]:
    """Load stored bundles by id, keeping the requested order."""
    if not bundle_ids:
        return []

    result = await session.execute(
        select(VariableBundleModel).where(
            VariableBundleModel.workspace_id == workspace_id,
            VariableBundleModel.id.in_(list(bundle_ids)),
        )
    )
    by_id = {row.id: row for row in result.scalars().all()}

    return [
        VariableBundle(
            id=row.id,
            name=row.name,
            variables=[VariableRef.model_validate(variable) for variable in row.variables],
        )
        for bundle_id in bundle_ids
        if (row := by_id.get(bundle_id)) is not None
    ]
