"""Case distribution across coders with double coding."""

from codingjobs.distribution.engine import calculate_distribution
from codingjobs.distribution.models import (
    AssignmentPlan,
    CasePoolSnapshot,
    DistributionWarning,
    DoubleCodingInfo,
)
from codingjobs.distribution.service import (
    create_distributed_coding_jobs,
    preview_distribution,
)

__all__ = [
    "AssignmentPlan",
    "CasePoolSnapshot",
    "DistributionWarning",
    "DoubleCodingInfo",
    "calculate_distribution",
    "create_distributed_coding_jobs",
    "preview_distribution",
]
