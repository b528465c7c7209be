"""Data structures produced and consumed by the distribution engine."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any

from codingjobs.models import Case, VariableRef


def case_sort_key(case: Case) -> tuple[str, str, str, int]:
    """Natural ordering of cases within a pool."""
    return (case.unit_name, case.variable_id, case.person_login, case.id)


@dataclass(frozen=True, slots=True)
class AllocationItem:
    """A single variable or a whole bundle; cases of one item are split together."""

    key: str
    variables: tuple[VariableRef, ...]
    bundle_id: int | None = None
    bundle_name: str | None = None

    @property
    def is_bundle(self) -> bool:
        return self.bundle_id is not None

    @property
    def unit_name(self) -> str:
        return self.bundle_name if self.is_bundle else self.variables[0].unit_name

    @property
    def variable_id(self) -> str:
        return "" if self.is_bundle else self.variables[0].variable_id


@dataclass(frozen=True)
class CasePoolSnapshot:
    """Immutable view of the eligible cases, built once per operation.

    ``cases_by_variable`` holds the unassigned ``CODING_INCOMPLETE`` cases of
    each variable key in natural order; ``assigned_counts`` holds how many
    cases of each variable already sit in non-training coding jobs.
    """

    cases_by_variable: Mapping[str, tuple[Case, ...]]
    assigned_counts: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def build(
        cls,
        cases_by_variable: Mapping[str, Iterable[Case]],
        assigned_counts: Mapping[str, int] | None = None,
    ) -> CasePoolSnapshot:
        frozen = {
            key: tuple(sorted(cases, key=case_sort_key))
            for key, cases in cases_by_variable.items()
        }
        return cls(
            cases_by_variable=MappingProxyType(frozen),
            assigned_counts=MappingProxyType(dict(assigned_counts or {})),
        )

    def cases_for(self, item: AllocationItem) -> tuple[Case, ...]:
        cases: list[Case] = []
        for variable in item.variables:
            cases.extend(self.cases_by_variable.get(variable.key, ()))
        if item.is_bundle:
            cases.sort(key=case_sort_key)
        return tuple(cases)

    def assigned_count(self, variable_key: str) -> int:
        return self.assigned_counts.get(variable_key, 0)

    def available_count(self, variable_key: str) -> int:
        return len(self.cases_by_variable.get(variable_key, ()))


@dataclass(slots=True)
class DoubleCodingInfo:
    total_cases: int
    double_coded_cases: int
    single_coded_cases_assigned: int
    double_coded_cases_per_coder: dict[str, int]
    unused_cases: int = 0


@dataclass(slots=True)
class AggregationInfo:
    unique_values: int
    total_responses: int


@dataclass(slots=True)
class DistributionWarning:
    """Resource conflict reported alongside a plan instead of raised."""

    kind: str  # double_coding_clamped | partially_assigned | no_available_cases
    item: str
    message: str
    requested: int | None = None
    delivered: int | None = None
    cases_in_jobs: int | None = None
    available_cases: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class AssignmentPlan:
    """Result of a distribution computation.

    ``distribution[coder][item]`` is the number of cases the coder receives
    for the item (double-coded plus single-coded share). ``assignments``
    carries the concrete response ids used when realizing the plan.
    """

    distribution: dict[str, dict[str, int]] = field(default_factory=dict)
    double_coding_info: dict[str, DoubleCodingInfo] = field(default_factory=dict)
    aggregation_info: dict[str, AggregationInfo] = field(default_factory=dict)
    warnings: list[DistributionWarning] = field(default_factory=list)
    assignments: dict[str, dict[str, tuple[int, ...]]] = field(default_factory=dict)
    items: dict[str, AllocationItem] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "distribution": self.distribution,
            "double_coding_info": {
                key: asdict(info) for key, info in self.double_coding_info.items()
            },
            "aggregation_info": {
                key: asdict(info) for key, info in self.aggregation_info.items()
            },
            "warnings": [warning.to_dict() for warning in self.warnings],
        }
