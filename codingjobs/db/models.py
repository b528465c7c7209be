"""SQLAlchemy async database models for coding jobs.

Responses are the cases to be coded; coding jobs group cases per coder;
background jobs hold the durable state of queued work.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ResponseModel(Base):
    """A single test-taker response to one variable of one unit."""

    __tablename__ = "responses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    unit_name: Mapped[str] = mapped_column(Text, nullable=False)
    variable_id: Mapped[str] = mapped_column(Text, nullable=False)

    # Test-taker
    person_id: Mapped[int | None] = mapped_column(Integer, index=True)
    person_login: Mapped[str] = mapped_column(Text, nullable=False, default="")
    group_name: Mapped[str | None] = mapped_column(Text)

    value: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    # Coding result
    code: Mapped[int | None] = mapped_column(Integer)
    score: Mapped[int | None] = mapped_column(Integer)
    coded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index(
            "idx_responses_ws_unit_var_status",
            "workspace_id",
            "unit_name",
            "variable_id",
            "status",
        ),
    )


class VariableBundleModel(Base):
    """Named set of variables that is distributed as one allocation unit."""

    __tablename__ = "variable_bundles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    # [{"unit_name": ..., "variable_id": ...}, ...]
    variables: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (UniqueConstraint("workspace_id", "name", name="uq_bundle_ws_name"),)


class JobDefinitionModel(Base):
    """Approvable template of a variable-to-coder assignment."""

    __tablename__ = "job_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="draft", index=True)

    assigned_variables: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    assigned_variable_bundles: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    assigned_coders: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    duration_seconds: Mapped[int | None] = mapped_column(Integer)
    max_coding_cases: Mapped[int | None] = mapped_column(Integer)
    double_coding_absolute: Mapped[int | None] = mapped_column(Integer)
    double_coding_percentage: Mapped[float | None] = mapped_column(Float)
    case_ordering_mode: Mapped[str] = mapped_column(Text, nullable=False, default="continuous")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class CodingJobModel(Base):
    """Unit of work handed to one coder."""

    __tablename__ = "coding_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    case_ordering_mode: Mapped[str] = mapped_column(Text, nullable=False, default="continuous")

    # Training jobs never count as "already assigned"
    training_id: Mapped[int | None] = mapped_column(Integer, index=True)
    job_definition_id: Mapped[int | None] = mapped_column(
        ForeignKey("job_definitions.id", ondelete="SET NULL"), index=True
    )
    variable_bundle_id: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    coders: Mapped[list[CodingJobCoderModel]] = relationship(
        back_populates="coding_job", cascade="all, delete-orphan"
    )
    units: Mapped[list[CodingJobUnitModel]] = relationship(
        back_populates="coding_job", cascade="all, delete-orphan"
    )


class CodingJobCoderModel(Base):
    """Coder assigned to a coding job."""

    __tablename__ = "coding_job_coders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    coding_job_id: Mapped[int] = mapped_column(
        ForeignKey("coding_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_name: Mapped[str] = mapped_column(Text, nullable=False)

    coding_job: Mapped[CodingJobModel] = relationship(back_populates="coders")

    __table_args__ = (UniqueConstraint("coding_job_id", "user_id", name="uq_job_coder"),)


class CodingJobUnitModel(Base):
    """One case inside a coding job, with the coder's result once coded."""

    __tablename__ = "coding_job_units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    coding_job_id: Mapped[int] = mapped_column(
        ForeignKey("coding_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    response_id: Mapped[int] = mapped_column(
        ForeignKey("responses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    unit_name: Mapped[str] = mapped_column(Text, nullable=False)
    variable_id: Mapped[str] = mapped_column(Text, nullable=False)

    code: Mapped[int | None] = mapped_column(Integer)
    score: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    coded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    coding_job: Mapped[CodingJobModel] = relationship(back_populates="units")

    __table_args__ = (
        # A case appears at most once per job
        UniqueConstraint(
            "coding_job_id", "response_id", "variable_id", name="uq_job_unit_response_variable"
        ),
        Index("idx_job_units_unit_var", "unit_name", "variable_id"),
    )


class BackgroundJobModel(Base):
    """Durable state of a queued background job.

    The queue (arq) only carries the job id; status, progress and result
    live here so every transition can be a conditional UPDATE.
    """

    __tablename__ = "background_jobs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid4().hex)
    workspace_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result: Mapped[dict | None] = mapped_column(JSON)
    error: Mapped[str | None] = mapped_column(Text)

    # Bumped on every resume; stale worker runs compare against it
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    restarted_from: Mapped[str | None] = mapped_column(String(32))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (Index("idx_background_jobs_ws_created", "workspace_id", "created_at"),)
