"""Job definitions: approvable variable-to-coder assignment templates.

A definition moves draft -> pending_review -> approved (or draft ->
approved directly). Only approved definitions can be turned into coding
jobs. Variables without unassigned cases are reported as conflicts on
create/update and block approval.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codingjobs.db.models import JobDefinitionModel
from codingjobs.distribution.repository import count_available_cases, fetch_variable_bundles
from codingjobs.distribution.service import (
    DistributionCreationResult,
    create_distributed_coding_jobs,
)
from codingjobs.models import (
    BundleRef,
    CaseOrderingMode,
    Coder,
    DistributionRequest,
    JobDefinitionData,
    JobDefinitionStatus,
    JobDefinitionUpdate,
    ValidationError,
    VariableRef,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[JobDefinitionStatus, frozenset[JobDefinitionStatus]] = {
    JobDefinitionStatus.DRAFT: frozenset(
        {JobDefinitionStatus.PENDING_REVIEW, JobDefinitionStatus.APPROVED}
    ),
    JobDefinitionStatus.PENDING_REVIEW: frozenset({JobDefinitionStatus.APPROVED}),
    JobDefinitionStatus.APPROVED: frozenset(),
}

# Columns that cannot be cleared by a partial update
_REQUIRED_FIELDS = frozenset(
    {
        "assigned_variables",
        "assigned_variable_bundles",
        "assigned_coders",
        "case_ordering_mode",
    }
)


@dataclass(slots=True)
class DefinitionOverlap:
    variable: str
    definition_ids: list[int]
    available_cases: int

    @property
    def is_conflict(self) -> bool:
        return self.available_cases == 0


def definition_to_dict(definition: JobDefinitionModel) -> dict[str, Any]:
    return {
        "id": definition.id,
        "workspace_id": definition.workspace_id,
        "status": definition.status,
        "assigned_variables": definition.assigned_variables,
        "assigned_variable_bundles": definition.assigned_variable_bundles,
        "assigned_coders": definition.assigned_coders,
        "duration_seconds": definition.duration_seconds,
        "max_coding_cases": definition.max_coding_cases,
        "double_coding_absolute": definition.double_coding_absolute,
        "double_coding_percentage": definition.double_coding_percentage,
        "case_ordering_mode": definition.case_ordering_mode,
        "created_at": definition.created_at.isoformat() if definition.created_at else None,
        "updated_at": definition.updated_at.isoformat() if definition.updated_at else None,
    }


def _variables_of(definition: JobDefinitionModel) -> list[VariableRef]:
    return [VariableRef.model_validate(v) for v in definition.assigned_variables or []]


def _bundle_ids_of(definition: JobDefinitionModel) -> list[int]:
    return [BundleRef.model_validate(b).id for b in definition.assigned_variable_bundles or []]


async def _referenced_variables(
    session: AsyncSession, definition: JobDefinitionModel
) -> list[VariableRef]:
    """Direct variables plus the members of referenced bundles, without duplicates."""
    variables = _variables_of(definition)
    bundles = await fetch_variable_bundles(
        session, definition.workspace_id, _bundle_ids_of(definition)
    )
    for bundle in bundles:
        variables.extend(bundle.variables)
    return list(dict.fromkeys(variables))


async def check_variable_availability(
    session: AsyncSession,
    workspace_id: int,
    variables: Sequence[VariableRef],
    bundle_ids: Sequence[int] = (),
) -> list[str]:
    """Keys of the referenced variables that have no unassigned cases left."""
    candidates = list(variables)
    for bundle in await fetch_variable_bundles(session, workspace_id, bundle_ids):
        candidates.extend(bundle.variables)

    unavailable: list[str] = []
    for variable in dict.fromkeys(candidates):
        if await count_available_cases(session, workspace_id, variable) == 0:
            unavailable.append(variable.key)
    return unavailable


async def create_definition(
    session: AsyncSession, workspace_id: int, data: JobDefinitionData
) -> tuple[JobDefinitionModel, list[str]]:
    """Store a new definition.

    Returns:
        The definition and the variables without available cases

    Raises:
        ValidationError: Definition submitted as already approved
    """
    if data.status == JobDefinitionStatus.APPROVED:
        raise ValidationError("New job definitions must be draft or pending_review")

    definition = JobDefinitionModel(
        workspace_id=workspace_id,
        status=data.status.value,
        assigned_variables=[v.model_dump() for v in data.assigned_variables],
        assigned_variable_bundles=[b.model_dump() for b in data.assigned_variable_bundles],
        assigned_coders=[c.model_dump() for c in data.assigned_coders],
        duration_seconds=data.duration_seconds,
        max_coding_cases=data.max_coding_cases,
        double_coding_absolute=data.double_coding_absolute,
        double_coding_percentage=data.double_coding_percentage,
        case_ordering_mode=data.case_ordering_mode.value,
    )
    session.add(definition)
    await session.flush()

    conflicts = await check_variable_availability(
        session,
        workspace_id,
        data.assigned_variables,
        [b.id for b in data.assigned_variable_bundles],
    )
    logger.info(
        "Created job definition %s in workspace %s (%d conflicts)",
        definition.id,
        workspace_id,
        len(conflicts),
    )
    return definition, conflicts


async def get_definition(session: AsyncSession, definition_id: int) -> JobDefinitionModel | None:
    return await session.get(JobDefinitionModel, definition_id)


async def list_definitions(
    session: AsyncSession, workspace_id: int, status: JobDefinitionStatus | None = None
) -> list[JobDefinitionModel]:
    stmt = select(JobDefinitionModel).where(JobDefinitionModel.workspace_id == workspace_id)
    if status is not None:
        stmt = stmt.where(JobDefinitionModel.status == status.value)
    stmt = stmt.order_by(JobDefinitionModel.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_by_status(
    session: AsyncSession, workspace_id: int, status: JobDefinitionStatus
) -> list[JobDefinitionModel]:
    return await list_definitions(session, workspace_id, status)


async def update_definition(
    session: AsyncSession, definition_id: int, update: JobDefinitionUpdate
) -> tuple[JobDefinitionModel, list[str]] | None:
    """Apply a partial update to a definition that is not yet approved.

    Raises:
        ValidationError: Definition is already approved
    """
    definition = await get_definition(session, definition_id)
    if definition is None:
        return None
    if definition.status == JobDefinitionStatus.APPROVED.value:
        raise ValidationError("Approved job definitions cannot be edited")

    changes = update.model_dump(exclude_unset=True, mode="json")
    for field_name, value in changes.items():
        if value is None and field_name in _REQUIRED_FIELDS:
            continue
        setattr(definition, field_name, value)
    await session.flush()

    conflicts = await check_variable_availability(
        session, definition.workspace_id, _variables_of(definition), _bundle_ids_of(definition)
    )
    return definition, conflicts


async def delete_definition(session: AsyncSession, definition_id: int) -> bool:
    definition = await get_definition(session, definition_id)
    if definition is None:
        return False
    await session.delete(definition)
    await session.flush()
    return True


async def approve_definition(
    session: AsyncSession,
    definition_id: int,
    target_status: JobDefinitionStatus = JobDefinitionStatus.APPROVED,
) -> JobDefinitionModel | None:
    """Move a definition along the approval workflow.

    Raises:
        ValidationError: Transition not allowed, or approving a definition
            whose variables have no available cases
    """
    definition = await get_definition(session, definition_id)
    if definition is None:
        return None

    current = JobDefinitionStatus(definition.status)
    if target_status not in ALLOWED_TRANSITIONS[current]:
        raise ValidationError(
            f"Cannot change job definition status from {current.value} to {target_status.value}"
        )

    if target_status == JobDefinitionStatus.APPROVED:
        unavailable = await check_variable_availability(
            session, definition.workspace_id, _variables_of(definition), _bundle_ids_of(definition)
        )
        if unavailable:
            raise ValidationError(
                "Cannot approve job definition; no available cases for: " + ", ".join(unavailable)
            )

    definition.status = target_status.value
    await session.flush()
    logger.info("Job definition %s moved %s -> %s", definition_id, current.value, target_status.value)
    return definition


async def create_jobs_from_definition(
    session: AsyncSession, definition_id: int
) -> DistributionCreationResult | None:
    """Realize an approved definition as coding jobs.

    Raises:
        ValidationError: Definition is not approved
    """
    definition = await get_definition(session, definition_id)
    if definition is None:
        return None
    if definition.status != JobDefinitionStatus.APPROVED.value:
        raise ValidationError("Only approved job definitions can create coding jobs")

    request = DistributionRequest(
        selected_variables=_variables_of(definition),
        selected_coders=[Coder.model_validate(c) for c in definition.assigned_coders or []],
        selected_variable_bundles=await fetch_variable_bundles(
            session, definition.workspace_id, _bundle_ids_of(definition)
        ),
        double_coding_absolute=definition.double_coding_absolute,
        double_coding_percentage=definition.double_coding_percentage,
        case_ordering_mode=CaseOrderingMode(definition.case_ordering_mode),
        max_coding_cases=definition.max_coding_cases,
    )
    return await create_distributed_coding_jobs(
        session, definition.workspace_id, request, job_definition_id=definition.id
    )


async def find_definition_overlaps(
    session: AsyncSession, workspace_id: int
) -> list[DefinitionOverlap]:
    """Variables referenced by more than one draft or pending definition."""
    definitions = [
        definition
        for definition in await list_definitions(session, workspace_id)
        if definition.status != JobDefinitionStatus.APPROVED.value
    ]

    referenced: dict[VariableRef, list[int]] = defaultdict(list)
    for definition in definitions:
        for variable in await _referenced_variables(session, definition):
            referenced[variable].append(definition.id)

    overlaps: list[DefinitionOverlap] = []
    for variable, definition_ids in referenced.items():
        if len(definition_ids) < 2:
            continue
        overlaps.append(
            DefinitionOverlap(
                variable=variable.key,
                definition_ids=definition_ids,
                available_cases=await count_available_cases(session, workspace_id, variable),
            )
        )
    return overlaps
