"""Job kind -> handler registry.

Every ``JobKind`` has exactly one handler, a payload model validated when the
job is created, and an optional cleanup for artifacts left behind by a
completed job.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PayloadValidationError

from codingjobs.coding.export import cleanup_export, run_export
from codingjobs.coding.results import run_test_person_coding
from codingjobs.jobs.models import (
    BackgroundJob,
    ExportPayload,
    JobContext,
    JobKind,
    PersonCodingPayload,
    StatisticsPayload,
)
from codingjobs.models import ValidationError
from codingjobs.statistics.service import run_statistics

JobHandler = Callable[[JobContext, BackgroundJob], Awaitable[dict[str, Any]]]


@dataclass(frozen=True, slots=True)
class HandlerSpec:
    run: JobHandler
    payload_model: type[BaseModel]
    cleanup: Callable[[dict[str, Any] | None], None] | None = None


HANDLERS: MappingProxyType[JobKind, HandlerSpec] = MappingProxyType(
    {
        JobKind.TEST_PERSON_CODING: HandlerSpec(run_test_person_coding, PersonCodingPayload),
        JobKind.EXPORT: HandlerSpec(run_export, ExportPayload, cleanup_export),
        JobKind.STATISTICS: HandlerSpec(run_statistics, StatisticsPayload),
    }
)


def resolve_kind(kind: JobKind | str) -> JobKind:
    try:
        return JobKind(kind)
    except ValueError as exc:
        raise ValidationError(f"Unknown job kind: {kind!r}") from exc


def resolve_handler(kind: JobKind | str) -> HandlerSpec:
    """Handler for a job kind.

    Raises:
        ValidationError: Kind is not a known JobKind
    """
    return HANDLERS[resolve_kind(kind)]


def validate_payload(kind: JobKind | str, payload: dict[str, Any]) -> dict[str, Any]:
    """Validate and normalize a payload for ``kind``.

    Raises:
        ValidationError: Unknown kind or payload not matching the kind's model
    """
    spec = resolve_handler(kind)
    try:
        return spec.payload_model.model_validate(payload).model_dump(mode="json")
    except PayloadValidationError as exc:
        raise ValidationError(f"Invalid payload for {resolve_kind(kind).value} job: {exc}") from exc
