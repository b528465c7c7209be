"""Distribution engine: partition eligible cases across coders.

Pure computation over a ``CasePoolSnapshot``; nothing here touches the
database. The same inputs always yield the same plan.

Per allocation item (a variable or a bundle):
    1. Cap the ordered pool at ``max_coding_cases``.
    2. Take the first ``d`` cases as the double-coded sample and give them to
       every coder.
    3. Split the remaining cases across coders, either in contiguous ranges
       (continuous) or round-robin (alternating).
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from fractions import Fraction
from typing import TypeVar

from codingjobs.distribution.models import (
    AggregationInfo,
    AllocationItem,
    AssignmentPlan,
    CasePoolSnapshot,
    DistributionWarning,
    DoubleCodingInfo,
)
from codingjobs.models import (
    Case,
    CaseOrderingMode,
    Coder,
    DistributionRequest,
    ValidationError,
    VariableBundle,
    VariableRef,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")


def sort_coders(coders: Sequence[Coder]) -> list[Coder]:
    """Deduplicate by id and order by (name, id)."""
    unique = {coder.id: coder for coder in coders}
    return sorted(unique.values(), key=lambda coder: (coder.name, coder.id))


def coder_labels(coders: Sequence[Coder]) -> dict[int, str]:
    """Plan key per coder: the name, or ``name#id`` when names collide."""
    counts: dict[str, int] = {}
    for coder in coders:
        counts[coder.name] = counts.get(coder.name, 0) + 1
    return {
        coder.id: coder.name if counts[coder.name] == 1 else f"{coder.name}#{coder.id}"
        for coder in coders
    }


def build_allocation_items(
    variables: Sequence[VariableRef],
    bundles: Sequence[VariableBundle] = (),
) -> list[AllocationItem]:
    """Turn the selection into allocation items.

    A variable that is part of a selected bundle is only allocated through
    the first bundle that contains it. Duplicate selections collapse into one
    item, and bundles sharing a name are keyed ``name#id``.
    """
    items: list[AllocationItem] = []
    bundled: set[str] = set()

    unique_bundles = list({bundle.id: bundle for bundle in bundles}.values())
    name_counts: dict[str, int] = {}
    for bundle in unique_bundles:
        name_counts[bundle.name] = name_counts.get(bundle.name, 0) + 1

    for bundle in unique_bundles:
        members = tuple(
            variable for variable in dict.fromkeys(bundle.variables) if variable.key not in bundled
        )
        if not members:
            continue
        bundled.update(variable.key for variable in members)
        key = bundle.name if name_counts[bundle.name] == 1 else f"{bundle.name}#{bundle.id}"
        items.append(
            AllocationItem(
                key=key,
                variables=members,
                bundle_id=bundle.id,
                bundle_name=bundle.name,
            )
        )

    for variable in dict.fromkeys(variables):
        if variable.key in bundled:
            continue
        items.append(AllocationItem(key=variable.key, variables=(variable,)))

    return items


def double_coding_fraction(percentage: float | None) -> Fraction:
    """Normalize a double-coding percentage to an exact fraction.

    Values in (0, 1] are read as fractions, values in (1, 100] as percent.
    """
    if not percentage:
        return Fraction(0)
    if percentage < 0 or percentage > 100:
        raise ValidationError(f"double_coding_percentage must be within 0..100, got {percentage}")

    value = Fraction(str(percentage))
    return value if value <= 1 else value / 100


def requested_double_coding(pool_size: int, absolute: int | None, fraction: Fraction) -> int:
    """Requested double-coded sample size; the absolute value wins when set."""
    if absolute is not None and absolute < 0:
        raise ValidationError("double_coding_absolute must not be negative")
    if absolute is not None:
        return absolute
    if fraction:
        return math.floor(fraction * pool_size)
    return 0


def split_continuous(items: Sequence[T], parts: int) -> list[list[T]]:
    """Contiguous slices; the first ``len % parts`` slices get one extra."""
    base, remainder = divmod(len(items), parts)
    slices: list[list[T]] = []
    start = 0
    for index in range(parts):
        size = base + (1 if index < remainder else 0)
        slices.append(list(items[start : start + size]))
        start += size
    return slices


def split_alternating(items: Sequence[T], parts: int) -> list[list[T]]:
    """Round-robin deal in natural order."""
    return [list(items[index::parts]) for index in range(parts)]


def partition_cases(
    cases: Sequence[T], parts: int, mode: CaseOrderingMode
) -> list[list[T]]:
    if mode == CaseOrderingMode.ALTERNATING:
        return split_alternating(cases, parts)
    return split_continuous(cases, parts)


def generate_job_name(coder_name: str, item: AllocationItem, case_count: int) -> str:
    """Job name ``{coder}_{unit}_{variable}_{count}`` with unsafe characters replaced."""
    raw = f"{coder_name}_{item.unit_name}_{item.variable_id}_{case_count}"
    return _UNSAFE_NAME_CHARS.sub("_", raw)


def _assignment_warnings(item: AllocationItem, snapshot: CasePoolSnapshot) -> list[DistributionWarning]:
    warnings: list[DistributionWarning] = []
    for variable in item.variables:
        in_jobs = snapshot.assigned_count(variable.key)
        available = snapshot.available_count(variable.key)
        if available == 0:
            warnings.append(
                DistributionWarning(
                    kind="no_available_cases",
                    item=item.key,
                    message=f"No unassigned cases left for {variable.key}",
                    cases_in_jobs=in_jobs,
                    available_cases=0,
                )
            )
        elif in_jobs > 0:
            warnings.append(
                DistributionWarning(
                    kind="partially_assigned",
                    item=item.key,
                    message=(
                        f"{in_jobs} cases of {variable.key} are already in coding jobs; "
                        f"distributing the remaining {available}"
                    ),
                    cases_in_jobs=in_jobs,
                    available_cases=available,
                )
            )
    return warnings


def _aggregation(cases: Sequence[Case]) -> AggregationInfo:
    return AggregationInfo(
        unique_values=len({case.value or "" for case in cases}),
        total_responses=len(cases),
    )


def calculate_distribution(
    request: DistributionRequest, snapshot: CasePoolSnapshot
) -> AssignmentPlan:
    """Compute the assignment plan for a distribution request.

    Args:
        request: Selected variables, bundles, coders and double-coding targets
        snapshot: Eligible cases per variable, built once for this operation

    Returns:
        AssignmentPlan with per-coder counts, double-coding info, warnings and
        the concrete response ids per (item, coder)

    Raises:
        ValidationError: No coders, no variables, or out-of-range targets
    """
    coders = sort_coders(request.selected_coders)
    if not coders:
        raise ValidationError("At least one coder must be selected")

    items = build_allocation_items(request.selected_variables, request.selected_variable_bundles)
    if not items:
        raise ValidationError("At least one variable or variable bundle must be selected")

    fraction = double_coding_fraction(request.double_coding_percentage)
    labels = coder_labels(coders)
    cap = request.max_coding_cases

    plan = AssignmentPlan(distribution={labels[coder.id]: {} for coder in coders})

    for item in items:
        item_cases = snapshot.cases_for(item)
        plan.items[item.key] = item
        plan.aggregation_info[item.key] = _aggregation(item_cases)
        plan.warnings.extend(_assignment_warnings(item, snapshot))

        pool = list(item_cases)
        unused = 0
        if cap is not None and len(pool) > cap:
            unused = len(pool) - cap
            pool = pool[:cap]

        requested = requested_double_coding(len(pool), request.double_coding_absolute, fraction)
        double_count = min(requested, len(pool))
        if requested > len(pool):
            plan.warnings.append(
                DistributionWarning(
                    kind="double_coding_clamped",
                    item=item.key,
                    message=(
                        f"Requested {requested} double-coded cases for {item.key} "
                        f"but only {len(pool)} are available"
                    ),
                    requested=requested,
                    delivered=double_count,
                )
            )

        double_ids = tuple(case.id for case in pool[:double_count])
        single_cases = pool[double_count:]
        shares = partition_cases(single_cases, len(coders), request.case_ordering_mode)

        item_assignments: dict[str, tuple[int, ...]] = {}
        for coder, share in zip(coders, shares):
            label = labels[coder.id]
            response_ids = double_ids + tuple(case.id for case in share)
            plan.distribution[label][item.key] = len(response_ids)
            item_assignments[label] = response_ids
        plan.assignments[item.key] = item_assignments

        plan.double_coding_info[item.key] = DoubleCodingInfo(
            total_cases=len(pool),
            double_coded_cases=double_count,
            single_coded_cases_assigned=len(single_cases),
            double_coded_cases_per_coder={labels[coder.id]: double_count for coder in coders},
            unused_cases=unused,
        )

    logger.debug(
        "Calculated distribution for %d items across %d coders (%d warnings)",
        len(items),
        len(coders),
        len(plan.warnings),
    )
    return plan
