"""Tests for p-value helpers."""

import numpy as np
import pytest

from nested_prediction.families import GaussianFamily
from nested_prediction.pvalues import (
    format_p_value,
    p_value_interval,
    permutation_p_value,
    prediction_p_value,
)


class TestPermutationPValue:
    def test_strictly_minimal_reference(self):
        stats = np.concatenate([[1.0], np.linspace(2.0, 10.0, 199)])
        assert permutation_p_value(stats) == pytest.approx(1 / 200)

    def test_ties_count(self):
        stats = np.array([3.0, 3.0, 1.0, 5.0])
        assert permutation_p_value(stats) == pytest.approx(3 / 4)

    def test_worst_reference_gives_one(self):
        stats = np.array([9.0, 1.0, 2.0, 3.0])
        assert permutation_p_value(stats) == 1.0

    def test_never_zero(self):
        rng = np.random.default_rng(0)
        stats = rng.standard_normal(50)
        assert permutation_p_value(stats) >= 1 / 50

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            permutation_p_value(np.array([]))


class TestPredictionPValue:
    def test_single_pass_uses_family_test(self):
        rng = np.random.default_rng(1)
        y = rng.standard_normal(40)
        y_hat = y + 0.1 * rng.standard_normal(40)
        p = prediction_p_value(GaussianFamily(), y, y_hat, np.array([1.0]))
        assert p == pytest.approx(GaussianFamily().reference_p_value(y, y_hat))

    def test_multiple_passes_use_permutations(self):
        stats = np.array([1.0, 2.0, 0.5, 3.0])
        p = prediction_p_value(GaussianFamily(), np.zeros(3), np.zeros(3), stats)
        assert p == pytest.approx(0.5)


class TestInterval:
    def test_contains_estimate(self):
        lo, hi = p_value_interval(0.05, 200)
        assert lo < 0.05 < hi

    def test_narrows_with_more_permutations(self):
        lo1, hi1 = p_value_interval(0.05, 100)
        lo2, hi2 = p_value_interval(0.05, 10_000)
        assert hi2 - lo2 < hi1 - lo1


class TestFormat:
    @pytest.mark.parametrize(
        "p, marker",
        [(0.0005, "(***)"), (0.005, "(**)"), (0.03, "(*)"), (0.2, "(ns)")],
    )
    def test_markers(self, p, marker):
        assert format_p_value(p).endswith(marker)

    def test_precision(self):
        assert format_p_value(0.12345, precision=2).startswith("0.12")
