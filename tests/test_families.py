"""Tests for the ModelFamily protocol and the four response families."""

import numpy as np
import pytest

from nested_prediction._errors import ConfigurationError, NumericalError
from nested_prediction.families import (
    MAX_CLASSES,
    CoxFamily,
    GaussianFamily,
    ModelFamily,
    MultinomialFamily,
    PoissonFamily,
    indicator_matrix,
    register_family,
    resolve_family,
)

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def survival_data(rng):
    n = 60
    time = rng.exponential(5.0, size=n)
    status = (rng.random(n) < 0.7).astype(float)
    status[0] = 1.0
    return np.column_stack([time, status])


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #


class TestResolveFamily:
    @pytest.mark.parametrize(
        "tag, cls",
        [
            ("gaussian", GaussianFamily),
            ("continuous", GaussianFamily),
            ("poisson", PoissonFamily),
            ("count", PoissonFamily),
            ("multinomial", MultinomialFamily),
            ("multiclass", MultinomialFamily),
            ("multi-class", MultinomialFamily),
            ("cox", CoxFamily),
            ("survival", CoxFamily),
            ("  Gaussian ", GaussianFamily),
        ],
    )
    def test_names_and_aliases(self, tag, cls):
        assert isinstance(resolve_family(tag), cls)

    def test_instance_passes_through(self):
        fam = PoissonFamily()
        assert resolve_family(fam) is fam

    def test_unknown_family_raises(self):
        with pytest.raises(ValueError, match="Unknown family"):
            resolve_family("binomial")

    def test_non_string_non_family_raises(self):
        with pytest.raises(TypeError):
            resolve_family(3)

    def test_all_families_satisfy_protocol(self):
        for fam in (GaussianFamily(), PoissonFamily(), MultinomialFamily(), CoxFamily()):
            assert isinstance(fam, ModelFamily)

    def test_register_rejects_non_family(self):
        class NotAFamily:
            pass

        with pytest.raises(TypeError, match="ModelFamily protocol"):
            register_family("bogus", NotAFamily)


# ------------------------------------------------------------------ #
# Deviance properties
# ------------------------------------------------------------------ #


class TestDevianceProperties:
    def test_gaussian_perfect_fit_is_zero(self, rng):
        y = rng.standard_normal(30)
        assert GaussianFamily().deviance(y, y) == pytest.approx(0.0)

    def test_poisson_perfect_fit_is_zero_with_zero_counts(self):
        y = np.array([0.0, 0.0, 1.0, 3.0, 7.0])
        assert PoissonFamily().deviance(y, y) == pytest.approx(0.0, abs=1e-12)

    def test_multinomial_perfect_fit_is_zero(self):
        y, _ = indicator_matrix(np.array([0, 1, 2, 1, 0]))
        assert MultinomialFamily().deviance(y, y) == pytest.approx(0.0, abs=1e-12)

    @pytest.mark.parametrize("fam", [GaussianFamily(), PoissonFamily()])
    def test_non_negative_on_random_predictions(self, fam, rng):
        y = rng.poisson(3.0, size=50).astype(float)
        y_hat = rng.uniform(0.1, 6.0, size=50)
        assert fam.deviance(y, y_hat) >= 0.0

    def test_multinomial_non_negative(self, rng):
        y, _ = indicator_matrix(rng.integers(0, 3, size=40))
        probs = rng.dirichlet(np.ones(3), size=40)
        assert MultinomialFamily().deviance(y, probs) >= 0.0

    def test_cox_non_negative_and_ordering(self, survival_data, rng):
        fam = CoxFamily()
        risk = rng.uniform(0.5, 2.0, size=len(survival_data))
        assert fam.deviance(survival_data, risk) >= 0.0
        # Higher risk for earlier failures must fit better than the reverse.
        good = np.exp(-survival_data[:, 0])
        bad = np.exp(survival_data[:, 0])
        assert fam.deviance(survival_data, good) < fam.deviance(survival_data, bad)

    def test_poisson_vanishing_mean_stays_finite(self):
        y = np.array([2.0, 0.0, 1.0])
        mu = np.array([0.0, 0.0, 1.0])
        assert np.isfinite(PoissonFamily().deviance(y, mu))

    def test_multinomial_zero_probability_stays_finite(self):
        y, _ = indicator_matrix(np.array([0, 1]))
        probs = np.array([[0.0, 1.0], [0.5, 0.5]])
        assert np.isfinite(MultinomialFamily().deviance(y, probs))

    def test_nan_prediction_raises_numerical_error(self):
        with pytest.raises(NumericalError):
            GaussianFamily().deviance(np.ones(3), np.array([1.0, np.nan, 1.0]))

    def test_gaussian_null_deviance_is_total_sum_of_squares(self, rng):
        fam = GaussianFamily()
        y = rng.standard_normal(20)
        assert fam.null_deviance(y) == pytest.approx(np.sum((y - y.mean()) ** 2))

    def test_poisson_null_deviance_uses_mean_count(self, rng):
        fam = PoissonFamily()
        y = rng.poisson(3.0, size=40).astype(float)
        mu = y.mean()
        nonzero = y > 0
        expected = 2.0 * np.sum(y[nonzero] * np.log(y[nonzero] / mu))
        assert fam.null_deviance(y) == pytest.approx(expected)
        assert fam.null_deviance(y) <= fam.deviance(y, np.full(40, 1.1 * mu))

    def test_multinomial_null_deviance_uses_class_proportions(self):
        fam = MultinomialFamily()
        y = fam.prepare_y(np.array([0, 0, 0, 1, 1, 2]))
        counts = np.array([3.0, 2.0, 1.0])
        expected = -2.0 * np.sum(counts * np.log(counts / 6.0))
        assert fam.null_deviance(y) == pytest.approx(expected)

    def test_cox_null_deviance_uses_risk_set_sizes(self):
        fam = CoxFamily()
        y = np.column_stack([[1.0, 2.0, 3.0, 4.0], [1.0, 0.0, 1.0, 1.0]])
        # Risk sets at the event times 1, 3, 4 hold 4, 2 and 1 samples.
        expected = 2.0 * (np.log(4.0) + np.log(2.0) + np.log(1.0))
        assert fam.null_deviance(y) == pytest.approx(expected)


# ------------------------------------------------------------------ #
# Validation and layouts
# ------------------------------------------------------------------ #


class TestValidation:
    def test_gaussian_constant_y_raises(self):
        with pytest.raises(ValueError, match="non-constant"):
            GaussianFamily().validate_y(np.ones(10))

    def test_poisson_rejects_negative_and_fractional(self):
        fam = PoissonFamily()
        with pytest.raises(ValueError, match="non-negative"):
            fam.validate_y(np.array([1.0, -1.0, 2.0]))
        with pytest.raises(ValueError, match="integer"):
            fam.validate_y(np.array([1.5, 2.0, 3.0]))

    def test_multinomial_accepts_labels_and_indicators(self):
        fam = MultinomialFamily()
        labels = np.array(["a", "b", "c", "a"])
        fam.validate_y(labels)
        prepared = fam.prepare_y(labels)
        assert prepared.shape == (4, 3)
        assert np.all(prepared.sum(axis=1) == 1)
        fam.validate_y(prepared)
        np.testing.assert_array_equal(fam.prepare_y(prepared), prepared)

    def test_multinomial_too_many_classes(self):
        labels = np.arange(MAX_CLASSES + 1)
        with pytest.raises(ConfigurationError, match="at most"):
            MultinomialFamily().validate_y(labels)

    def test_multinomial_single_class_raises(self):
        with pytest.raises(ValueError, match="two classes"):
            MultinomialFamily().validate_y(np.zeros(5))

    def test_cox_requires_failure(self):
        y = np.column_stack([np.arange(1.0, 6.0), np.zeros(5)])
        with pytest.raises(ValueError, match="failure"):
            CoxFamily().validate_y(y)

    def test_cox_requires_two_columns(self):
        with pytest.raises(ValueError, match=r"\(n, 2\)"):
            CoxFamily().validate_y(np.arange(5.0))


class TestFamilyHelpers:
    def test_multinomial_predict_rows_sum_to_one(self, rng):
        X = rng.standard_normal((10, 4))
        coef = rng.standard_normal((3, 4))
        probs = MultinomialFamily().predict(coef, np.zeros(3), X)
        np.testing.assert_allclose(probs.sum(axis=1), 1.0)

    def test_multinomial_stratify_labels(self):
        y, _ = indicator_matrix(np.array([2, 0, 1, 2]))
        np.testing.assert_array_equal(MultinomialFamily().stratify_labels(y), [2, 0, 1, 2])

    def test_continuous_families_do_not_stratify(self):
        assert GaussianFamily().stratify_labels(np.ones(3)) is None
        assert PoissonFamily().stratify_labels(np.ones(3)) is None

    def test_cox_martingale_residuals_sum_to_zero(self, survival_data):
        resid = CoxFamily().null_residuals(survival_data)
        assert resid.sum() == pytest.approx(0.0, abs=1e-10)

    def test_cox_has_no_intercept(self):
        fam = CoxFamily()
        assert not fam.has_intercept
        np.testing.assert_allclose(fam.predict(np.zeros(2), 5.0, np.ones((3, 2))), 1.0)

    def test_accuracy_only_for_multinomial(self):
        y, _ = indicator_matrix(np.array([0, 1, 1, 0]))
        assert MultinomialFamily().accuracy(y, y) == 1.0
        assert GaussianFamily().accuracy(np.ones(3), np.ones(3)) is None

    def test_multinomial_reference_p_value_perfect_calls(self):
        labels = np.tile([0, 1, 2], 20)
        y, _ = indicator_matrix(labels)
        p = MultinomialFamily().reference_p_value(y, y)
        assert 0.0 <= p < 1e-6

    def test_gaussian_reference_p_value_constant_prediction(self, rng):
        y = rng.standard_normal(20)
        assert GaussianFamily().reference_p_value(y, np.zeros(20)) == 1.0

    def test_gaussian_reference_p_value_strong_association(self, rng):
        y = rng.standard_normal(50)
        p = GaussianFamily().reference_p_value(y, y + 0.1 * rng.standard_normal(50))
        assert p < 1e-6
