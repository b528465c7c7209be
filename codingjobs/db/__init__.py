"""Database layer for coding jobs with async SQLAlchemy."""

from codingjobs.db.connection import get_session, init_db
from codingjobs.db.models import (
    BackgroundJobModel,
    Base,
    CodingJobCoderModel,
    CodingJobModel,
    CodingJobUnitModel,
    JobDefinitionModel,
    ResponseModel,
    VariableBundleModel,
)

__all__ = [
    "Base",
    "ResponseModel",
    "VariableBundleModel",
    "JobDefinitionModel",
    "CodingJobModel",
    "CodingJobCoderModel",
    "CodingJobUnitModel",
    "BackgroundJobModel",
    "get_session",
    "init_db",
]
