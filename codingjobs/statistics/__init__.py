"""Inter-rater agreement statistics."""

from codingjobs.statistics.kappa import (
    CoderPair,
    CoderPairResult,
    calculate_cohens_kappa,
    interpret_kappa,
)
from codingjobs.statistics.service import get_cohens_kappa_statistics

__all__ = [
    "CoderPair",
    "CoderPairResult",
    "calculate_cohens_kappa",
    "get_cohens_kappa_statistics",
    "interpret_kappa",
]
