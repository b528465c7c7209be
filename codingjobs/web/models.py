"""Request and response bodies of the web API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from codingjobs.models import JobDefinitionStatus


class PersonCodingJobRequest(BaseModel):
    person_ids: list[int] = Field(min_length=1)
    group_names: str | None = None


class ExportJobRequest(BaseModel):
    export_type: Literal["detailed", "by-coder"] = "detailed"


class StatisticsJobRequest(BaseModel):
    unit_name: str | None = None
    variable_id: str | None = None


class JobCreatedResponse(BaseModel):
    job_id: str
    kind: str
    status: str
    message: str


class ActionResponse(BaseModel):
    success: bool
    message: str
    job_id: str | None = None


class JobStatusResponse(BaseModel):
    status: str
    progress: int
    result: dict[str, Any] | None = None
    error: str | None = None


class DefinitionStatusChange(BaseModel):
    status: JobDefinitionStatus = JobDefinitionStatus.APPROVED
