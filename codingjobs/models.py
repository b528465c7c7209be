"""Coding jobs Pydantic models for type-safe data validation.

Shared vocabulary for the distribution engine, job definitions and the
background job queue.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ValidationError(ValueError):
    """Request rejected before anything is enqueued or persisted."""


class ResponseStatus(str, Enum):
    """Coding status of a single response (case)."""

    UNSET = "UNSET"
    NOT_REACHED = "NOT_REACHED"
    DISPLAYED = "DISPLAYED"
    VALUE_CHANGED = "VALUE_CHANGED"
    DERIVE_PENDING = "DERIVE_PENDING"
    CODE_SELECTION_PENDING = "CODE_SELECTION_PENDING"
    CODING_INCOMPLETE = "CODING_INCOMPLETE"  # Needs manual coding
    INTENDED_INCOMPLETE = "INTENDED_INCOMPLETE"
    CODING_COMPLETE = "CODING_COMPLETE"
    CODING_ERROR = "CODING_ERROR"
    INVALID = "INVALID"


class CaseOrderingMode(str, Enum):
    """How single-coded cases are sliced among coders."""

    CONTINUOUS = "continuous"  # Contiguous ranges per coder
    ALTERNATING = "alternating"  # Round-robin, one case per coder per round


class JobDefinitionStatus(str, Enum):
    """Approval workflow of a job definition."""

    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"


class CodingJobStatus(str, Enum):
    """Lifecycle of a persisted coding job (coder work, not queue work)."""

    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class VariableRef(BaseModel):
    """A (unit, variable) pair; the smallest allocation unit."""

    model_config = ConfigDict(frozen=True)

    unit_name: str = Field(min_length=1)
    variable_id: str = Field(min_length=1)

    @property
    def key(self) -> str:
        return f"{self.unit_name}::{self.variable_id}"


class VariableBundle(BaseModel):
    """Named, ordered set of variables distributed as one allocation unit."""

    id: int
    name: str = Field(min_length=1)
    variables: list[VariableRef] = Field(default_factory=list)


class BundleRef(BaseModel):
    """Reference to a stored variable bundle."""

    id: int
    name: str


class Coder(BaseModel):
    """A human coder. Immutable for the distribution engine."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str = Field(min_length=1)
    username: str | None = None


class Case(BaseModel):
    """One response awaiting coding."""

    model_config = ConfigDict(frozen=True)

    id: int
    unit_name: str
    variable_id: str
    value: str | None = None
    status: ResponseStatus = ResponseStatus.CODING_INCOMPLETE
    person_login: str = ""

    @property
    def variable_key(self) -> str:
        return f"{self.unit_name}::{self.variable_id}"


class DistributionRequest(BaseModel):
    """Input to the distribution engine (preview and create)."""

    selected_variables: list[VariableRef] = Field(default_factory=list)
    selected_coders: list[Coder] = Field(default_factory=list)
    double_coding_absolute: int | None = Field(default=None, ge=0)
    double_coding_percentage: float | None = Field(default=None, ge=0, le=100)
    selected_variable_bundles: list[VariableBundle] = Field(default_factory=list)
    case_ordering_mode: CaseOrderingMode = CaseOrderingMode.CONTINUOUS
    max_coding_cases: int | None = Field(default=None, ge=0)

    @field_validator("max_coding_cases")
    @classmethod
    def zero_means_unlimited(cls, v: int | None) -> int | None:
        return v or None


class JobDefinitionData(BaseModel):
    """Fields of an approvable job template."""

    status: JobDefinitionStatus = JobDefinitionStatus.DRAFT
    assigned_variables: list[VariableRef] = Field(default_factory=list)
    assigned_variable_bundles: list[BundleRef] = Field(default_factory=list)
    assigned_coders: list[Coder] = Field(default_factory=list)
    duration_seconds: int | None = Field(default=None, ge=0)
    max_coding_cases: int | None = Field(default=None, ge=0)
    double_coding_absolute: int | None = Field(default=None, ge=0)
    double_coding_percentage: float | None = Field(default=None, ge=0, le=100)
    case_ordering_mode: CaseOrderingMode = CaseOrderingMode.CONTINUOUS


class JobDefinitionUpdate(BaseModel):
    """Partial update; unset fields are left unchanged."""

    assigned_variables: list[VariableRef] | None = None
    assigned_variable_bundles: list[BundleRef] | None = None
    assigned_coders: list[Coder] | None = None
    duration_seconds: int | None = Field(default=None, ge=0)
    max_coding_cases: int | None = Field(default=None, ge=0)
    double_coding_absolute: int | None = Field(default=None, ge=0)
    double_coding_percentage: float | None = Field(default=None, ge=0, le=100)
    case_ordering_mode: CaseOrderingMode | None = None
