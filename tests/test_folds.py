"""Tests for fold construction and dependency handling."""

import numpy as np
import pytest

from nested_prediction._errors import ConfigurationError
from nested_prediction.families import GaussianFamily, MultinomialFamily
from nested_prediction.folds import (
    dependency_groups,
    dependency_pairs,
    make_folds,
    validate_dependency,
)


@pytest.fixture()
def rng():
    return np.random.default_rng(0)


def _twin_matrix(n, pairs):
    dep = np.zeros((n, n), dtype=int)
    for i, j, label in pairs:
        dep[i, j] = label
    return dep


class TestMakeFolds:
    @pytest.mark.parametrize("k", [2, 3, 5, 10, 0])
    def test_partition_property(self, k, rng):
        y = rng.standard_normal(23)
        folds = make_folds(y, GaussianFamily(), k, rng)
        combined = np.sort(np.concatenate(folds))
        np.testing.assert_array_equal(combined, np.arange(23))
        assert all(len(f) > 0 for f in folds)

    def test_leave_one_out(self, rng):
        folds = make_folds(np.arange(7.0), GaussianFamily(), 0, rng)
        assert len(folds) == 7
        assert all(len(f) == 1 for f in folds)

    def test_balanced_sizes(self, rng):
        folds = make_folds(np.arange(23.0), GaussianFamily(), 5, rng)
        sizes = sorted(len(f) for f in folds)
        assert sizes[-1] - sizes[0] <= 1

    def test_multinomial_stratification(self, rng):
        labels = np.repeat([0, 1, 2], 30)
        fam = MultinomialFamily()
        y = fam.prepare_y(labels)
        folds = make_folds(y, fam, 5, rng)
        for fold in folds:
            props = np.bincount(labels[fold], minlength=3) / len(fold)
            np.testing.assert_allclose(props, 1 / 3, atol=0.1)

    def test_unbalanced_classes_spread(self, rng):
        labels = np.array([0] * 40 + [1] * 8)
        fam = MultinomialFamily()
        folds = make_folds(fam.prepare_y(labels), fam, 4, rng)
        assert [int(np.sum(labels[f] == 1)) for f in folds] == [2, 2, 2, 2]

    def test_groups_never_split(self, rng):
        n = 30
        groups = np.arange(n)
        groups[1] = 0
        groups[5] = 4
        groups[9] = 8
        groups[10] = 8
        folds = make_folds(np.arange(float(n)), GaussianFamily(), 4, rng, groups)
        fold_of = np.empty(n, dtype=int)
        for k, f in enumerate(folds):
            fold_of[f] = k
        assert fold_of[0] == fold_of[1]
        assert fold_of[4] == fold_of[5]
        assert fold_of[8] == fold_of[9] == fold_of[10]

    def test_leave_one_group_out(self, rng):
        groups = np.array([0, 0, 1, 2, 2, 2])
        folds = make_folds(np.arange(6.0), GaussianFamily(), 0, rng, groups)
        assert sorted(map(len, folds)) == [1, 2, 3]

    @pytest.mark.parametrize("k", [1, -1])
    def test_invalid_fold_count(self, k, rng):
        with pytest.raises(ConfigurationError, match="invalid"):
            make_folds(np.arange(10.0), GaussianFamily(), k, rng)

    def test_more_folds_than_units(self, rng):
        groups = np.array([0, 0, 1, 1, 2, 2])
        with pytest.raises(ConfigurationError, match="assignable units"):
            make_folds(np.arange(6.0), GaussianFamily(), 4, rng, groups)

    def test_reproducible_with_same_seed(self):
        y = np.arange(20.0)
        a = make_folds(y, GaussianFamily(), 4, np.random.default_rng(7))
        b = make_folds(y, GaussianFamily(), 4, np.random.default_rng(7))
        for fa, fb in zip(a, b):
            np.testing.assert_array_equal(fa, fb)


class TestDependency:
    def test_validate_symmetrises(self):
        dep = _twin_matrix(4, [(0, 1, 1), (3, 2, 2)])
        out = validate_dependency(dep, 4)
        np.testing.assert_array_equal(out, out.T)
        assert out[1, 0] == 1 and out[2, 3] == 2

    def test_validate_rejects_bad_labels(self):
        dep = _twin_matrix(3, [(0, 1, 3)])
        with pytest.raises(ConfigurationError, match="0, 1 or 2"):
            validate_dependency(dep, 3)

    @pytest.mark.parametrize("value", [0.5, 1.7, np.nan])
    def test_validate_rejects_fractional_labels(self, value):
        dep = np.zeros((3, 3))
        dep[0, 1] = value
        with pytest.raises(ConfigurationError, match="0, 1 or 2"):
            validate_dependency(dep, 3)

    def test_validate_accepts_whole_floats(self):
        dep = np.zeros((3, 3))
        dep[0, 1] = 2.0
        out = validate_dependency(dep, 3)
        assert out.dtype.kind == "i"
        assert out[1, 0] == 2

    def test_validate_rejects_bad_shape(self):
        with pytest.raises(ConfigurationError, match="Dependency matrix"):
            validate_dependency(np.zeros((3, 4)), 3)

    def test_pairs_by_label(self):
        dep = validate_dependency(_twin_matrix(6, [(0, 1, 1), (2, 3, 2), (4, 5, 1)]), 6)
        np.testing.assert_array_equal(dependency_pairs(dep, 1), [[0, 1], [4, 5]])
        np.testing.assert_array_equal(dependency_pairs(dep, 2), [[2, 3]])

    def test_overlapping_pairs_skipped(self):
        dep = validate_dependency(_twin_matrix(4, [(0, 1, 1), (1, 2, 1), (2, 3, 1)]), 4)
        np.testing.assert_array_equal(dependency_pairs(dep, 1), [[0, 1], [2, 3]])

    def test_no_pairs_gives_empty(self):
        pairs = dependency_pairs(np.zeros((3, 3), dtype=int), 1)
        assert pairs.shape == (0, 2)

    def test_groups_are_connected_components(self):
        dep = validate_dependency(_twin_matrix(5, [(0, 1, 1), (1, 2, 2)]), 5)
        groups = dependency_groups(dep)
        assert groups[0] == groups[1] == groups[2]
        assert len({groups[3], groups[4], groups[0]}) == 3
