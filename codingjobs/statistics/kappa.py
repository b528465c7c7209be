"""Cohen's Kappa for pairs of coders.

kappa = (Po - Pe) / (1 - Pe)

Po is the observed share of identical codes, Pe the agreement expected by
chance from each coder's code marginals. Pairs in which either coder left
the code empty are ignored. The coefficient itself comes from
``sklearn.metrics.cohen_kappa_score``.
"""

from __future__ import annotations

import math
from collections.abc import Hashable, Iterable, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from sklearn.metrics import cohen_kappa_score

Code = Hashable


@dataclass(slots=True)
class CoderPair:
    """Codes two coders gave to the same cases, aligned by case."""

    coder1_id: int
    coder1_name: str
    coder2_id: int
    coder2_name: str
    codes: list[tuple[Code | None, Code | None]] = field(default_factory=list)


@dataclass(slots=True)
class CoderPairResult:
    coder1_id: int
    coder1_name: str
    coder2_id: int
    coder2_name: str
    kappa: float | None
    agreement: float  # percent
    total_items: int
    valid_pairs: int
    interpretation: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def interpret_kappa(kappa: float | None) -> str:
    """Landis & Koch style label for a kappa value."""
    if kappa is None:
        return "no_valid_pairs"
    if kappa < 0:
        return "poor"
    if kappa < 0.2:
        return "slight"
    if kappa < 0.4:
        return "fair"
    if kappa < 0.6:
        return "moderate"
    if kappa < 0.8:
        return "substantial"
    return "almost_perfect"


def kappa_from_codes(
    codes: Iterable[tuple[Code | None, Code | None]],
) -> tuple[float | None, float, int]:
    """Raw kappa, observed agreement (0..1) and number of valid pairs.

    Returns ``(None, 0.0, 0)`` when no pair has both codes set.
    """
    valid = [(a, b) for a, b in codes if a is not None and b is not None]
    n = len(valid)
    if n == 0:
        return None, 0.0, 0

    observed = sum(1 for a, b in valid if a == b) / n

    first = [a for a, _ in valid]
    second = [b for _, b in valid]
    if len(set(first) | set(second)) == 1:
        # Pe == 1: both coders used one and the same code throughout
        kappa: float | None = 1.0
    else:
        kappa = float(cohen_kappa_score(first, second))

    if kappa is not None and not math.isfinite(kappa):
        kappa = None

    return kappa, observed, n


def calculate_cohens_kappa(pairs: Sequence[CoderPair]) -> list[CoderPairResult]:
    """Kappa, agreement and interpretation for each coder pair.

    Args:
        pairs: Coder pairs with their aligned codes

    Returns:
        One CoderPairResult per input pair, in input order; kappa rounded to
        3 decimals and agreement given in percent with 1 decimal
    """
    results: list[CoderPairResult] = []
    for pair in pairs:
        kappa, observed, valid_pairs = kappa_from_codes(pair.codes)
        rounded = round(kappa, 3) if kappa is not None else None
        results.append(
            CoderPairResult(
                coder1_id=pair.coder1_id,
                coder1_name=pair.coder1_name,
                coder2_id=pair.coder2_id,
                coder2_name=pair.coder2_name,
                kappa=rounded,
                agreement=round(observed * 100, 1),
                total_items=len(pair.codes),
                valid_pairs=valid_pairs,
                interpretation=interpret_kappa(kappa),
            )
        )
    return results


def average_kappa(results: Iterable[CoderPairResult], weighted: bool = False) -> float | None:
    """Mean kappa over results with a defined kappa.

    Args:
        weighted: Weight each pair by its number of valid pairs

    Returns:
        Mean rounded to 3 decimals, or None if no kappa is defined
    """
    defined = [result for result in results if result.kappa is not None]
    if not defined:
        return None

    if weighted:
        total_weight = sum(result.valid_pairs for result in defined)
        mean = sum(result.kappa * result.valid_pairs for result in defined) / total_weight
    else:
        mean = sum(result.kappa for result in defined) / len(defined)
    return round(mean, 3)
