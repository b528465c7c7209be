"""Background job types: kinds, states, payloads and views."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from sqlalchemy.orm import sessionmaker

    from codingjobs.db.models import BackgroundJobModel
    from codingjobs.jobs.batch import BatchProcessor
    from codingjobs.jobs.store import JobStore


class JobQueueUnavailableError(RuntimeError):
    """The Redis-backed queue could not accept a job."""


class JobKind(str, Enum):
    """Closed set of background job kinds; each maps to exactly one handler."""

    TEST_PERSON_CODING = "test-person-coding"
    EXPORT = "export"
    STATISTICS = "statistics"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class PersonCodingPayload(BaseModel):
    workspace_id: int
    person_ids: list[int] = Field(min_length=1)
    group_names: str | None = None


class ExportPayload(BaseModel):
    workspace_id: int
    export_type: Literal["detailed", "by-coder"] = "detailed"


class StatisticsPayload(BaseModel):
    workspace_id: int
    unit_name: str | None = None
    variable_id: str | None = None


@dataclass(slots=True)
class JobStatusView:
    """Uniform answer to a status poll."""

    status: JobStatus
    progress: int
    result: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(slots=True)
class ActionResult:
    success: bool
    message: str
    job_id: str | None = None


@dataclass(slots=True)
class BackgroundJob:
    id: str
    workspace_id: int
    kind: JobKind
    payload: dict[str, Any]
    status: JobStatus
    progress: int
    result: dict[str, Any] | None
    error: str | None
    attempt: int
    restarted_from: str | None
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None

    @classmethod
    def from_model(cls, row: BackgroundJobModel) -> BackgroundJob:
        return cls(
            id=row.id,
            workspace_id=row.workspace_id,
            kind=JobKind(row.kind),
            payload=dict(row.payload or {}),
            status=JobStatus(row.status),
            progress=row.progress,
            result=row.result,
            error=row.error,
            attempt=row.attempt,
            restarted_from=row.restarted_from,
            created_at=row.created_at,
            started_at=row.started_at,
            finished_at=row.finished_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def status_view(self) -> JobStatusView:
        return JobStatusView(
            status=self.status,
            progress=self.progress,
            result=self.result,
            error=self.error,
        )

    def summary(self) -> dict[str, Any]:
        """Listing entry with timing and payload-derived metadata."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "progress": self.progress,
            "result": self.result,
            "error": self.error,
            "restarted_from": self.restarted_from,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "group_names": self.payload.get("group_names"),
            "export_type": self.payload.get("export_type"),
        }


@dataclass
class JobContext:
    """What a handler gets to work with."""

    job_id: str
    attempt: int
    session_maker: sessionmaker
    store: JobStore
    batch_processor: BatchProcessor
    export_dir: str = "temp/exports"
