"""Unit tests for Cohen's Kappa computation."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from codingjobs.statistics.kappa import (
    CoderPair,
    CoderPairResult,
    average_kappa,
    calculate_cohens_kappa,
    interpret_kappa,
    kappa_from_codes,
)


def pair(codes) -> CoderPair:
    return CoderPair(coder1_id=1, coder1_name="alice", coder2_id=2, coder2_name="bob", codes=codes)


def result(kappa, valid_pairs=10) -> CoderPairResult:
    return CoderPairResult(
        coder1_id=1,
        coder1_name="alice",
        coder2_id=2,
        coder2_name="bob",
        kappa=kappa,
        agreement=0.0,
        total_items=valid_pairs,
        valid_pairs=valid_pairs,
        interpretation=interpret_kappa(kappa),
    )


class TestKappaFromCodes:
    def test_perfect_agreement(self):
        kappa, observed, n = kappa_from_codes([(1, 1), (0, 0), (2, 2), (1, 1)])

        assert kappa == pytest.approx(1.0)
        assert observed == 1.0
        assert n == 4

    def test_known_value(self):
        kappa, observed, n = kappa_from_codes([(1, 1), (1, 0), (0, 0), (0, 0)])

        assert observed == 0.75
        assert kappa == pytest.approx(0.5)

    def test_complete_disagreement_is_negative(self):
        kappa, observed, _ = kappa_from_codes([(1, 0), (0, 1)])

        assert observed == 0.0
        assert kappa == pytest.approx(-1.0)

    def test_single_shared_code_counts_as_perfect(self):
        kappa, _, _ = kappa_from_codes([(3, 3), (3, 3), (3, 3)])

        assert kappa == 1.0

    def test_pairs_with_missing_code_ignored(self):
        kappa, observed, n = kappa_from_codes([(1, 1), (None, 0), (0, None), (0, 0)])

        assert n == 2
        assert observed == 1.0
        assert kappa == pytest.approx(1.0)

    def test_no_valid_pairs(self):
        assert kappa_from_codes([(None, 1), (None, None)]) == (None, 0.0, 0)

    def test_undefined_coefficient_becomes_none(self):
        with patch("codingjobs.statistics.kappa.cohen_kappa_score", return_value=float("nan")):
            kappa, observed, n = kappa_from_codes([(1, 0), (0, 1)])

        assert kappa is None
        assert observed == 0.0
        assert n == 2

    def test_symmetric(self):
        codes = [(1, 2), (2, 2), (3, 1), (1, 1), (2, 3)]
        swapped = [(b, a) for a, b in codes]

        assert kappa_from_codes(codes)[0] == pytest.approx(kappa_from_codes(swapped)[0])


class TestCalculateCohensKappa:
    def test_rounding_and_interpretation(self):
        [res] = calculate_cohens_kappa([pair([(1, 1), (1, 0), (0, 0), (0, 0)])])

        assert res.kappa == 0.5
        assert res.agreement == 75.0
        assert res.total_items == 4
        assert res.valid_pairs == 4
        assert res.interpretation == "moderate"

    def test_kappa_rounded_to_three_decimals(self):
        codes = [(1, 1), (1, 1), (0, 0), (1, 0), (0, 1), (2, 2), (2, 1)]
        [res] = calculate_cohens_kappa([pair(codes)])

        assert res.kappa == round(res.kappa, 3)
        assert res.agreement == round(res.agreement, 1)

    def test_interpretation_uses_unrounded_kappa(self):
        with patch(
            "codingjobs.statistics.kappa.kappa_from_codes", return_value=(0.1996, 0.5, 4)
        ):
            [res] = calculate_cohens_kappa([pair([(1, 1), (1, 0), (0, 0), (0, 1)])])

        assert res.kappa == 0.2
        assert res.interpretation == "slight"

    def test_no_valid_pairs_result(self):
        [res] = calculate_cohens_kappa([pair([(None, 1)])])

        assert res.kappa is None
        assert res.agreement == 0.0
        assert res.total_items == 1
        assert res.interpretation == "no_valid_pairs"

    def test_preserves_input_order(self):
        first = pair([(1, 1)])
        second = CoderPair(coder1_id=3, coder1_name="carol", coder2_id=4, coder2_name="dave")

        results = calculate_cohens_kappa([first, second])

        assert [r.coder1_id for r in results] == [1, 3]


class TestInterpretation:
    @pytest.mark.parametrize(
        ("kappa", "label"),
        [
            (-0.1, "poor"),
            (0.0, "slight"),
            (0.19, "slight"),
            (0.2, "fair"),
            (0.4, "moderate"),
            (0.6, "substantial"),
            (0.8, "almost_perfect"),
            (1.0, "almost_perfect"),
            (None, "no_valid_pairs"),
        ],
    )
    def test_thresholds(self, kappa, label):
        assert interpret_kappa(kappa) == label


class TestAverageKappa:
    def test_plain_mean_ignores_undefined(self):
        assert average_kappa([result(0.4), result(0.8), result(None)]) == 0.6

    def test_weighted_mean(self):
        results = [result(0.2, valid_pairs=30), result(1.0, valid_pairs=10)]

        assert average_kappa(results, weighted=True) == 0.4

    def test_none_when_nothing_defined(self):
        assert average_kappa([result(None)]) is None
        assert average_kappa([]) is None
