"""Response-family protocol and the four concrete families.

The ``ModelFamily`` protocol isolates everything that depends on the
type of response (prediction from coefficients, deviance, the
intercept-only reference model, stratification labels, the
single-pass significance test) from the resampling machinery in
``selection.py``, ``engine.py`` and ``core.py``, which call the active
family through generic method calls instead of branching on a family
string.

Each concrete family is a frozen ``@dataclass`` with no mutable state.
:func:`resolve_family` maps a user-facing tag to an instance once, at
the start of a run; the same instance is then held for the run's
lifetime.

================  ===============  ======================================
Family            Aliases          Response layout
================  ===============  ======================================
``gaussian``      ``continuous``   ``(n,)`` floats
``poisson``       ``count``        ``(n,)`` non-negative integers
``multinomial``   ``multiclass``   ``(n,)`` labels or ``(n, K)`` one-hot
``cox``           ``survival``     ``(n, 2)`` ``[time, status]``
================  ===============  ======================================

Deviance conventions
~~~~~~~~~~~~~~~~~~~~
All four deviances are lower-is-better and non-negative.  Every
logarithm goes through :mod:`nested_prediction._numeric`, so a zero
count contributes ``0`` (``y·log(y/μ) → 0``) and a vanishing
probability contributes a large but finite penalty.  A deviance that is
still non-finite (e.g. NaN predictions) raises
:class:`~nested_prediction._errors.NumericalError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import numpy as np
from scipy import stats
from scipy.special import softmax

from ._errors import ConfigurationError, NumericalError
from ._numeric import safe_divide, safe_exp, safe_log, xlogy_ratio

logger = logging.getLogger(__name__)

MAX_CLASSES = 9
"""Largest number of categories the multinomial family accepts."""


# ------------------------------------------------------------------ #
# ModelFamily protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class ModelFamily(Protocol):
    """Interface that every response family implements.

    Attributes:
        name: Canonical tag (``"gaussian"``, ``"poisson"``,
            ``"multinomial"``, ``"cox"``).
        has_intercept: Whether fitted models carry an intercept.  The
            Cox partial likelihood is invariant to one, so ``False``.
        deconfound_response: Whether the response itself is
            residualised against confounds.  Only the continuous
            family does this.
        null_via_solver: Whether the cross-validated reference model is
            obtained from the elastic-net solver (intercept-only fit at
            alpha = 1) rather than a closed-form constant.
    """

    @property
    def name(self) -> str: ...

    @property
    def has_intercept(self) -> bool: ...

    @property
    def deconfound_response(self) -> bool: ...

    @property
    def null_via_solver(self) -> bool: ...

    def validate_y(self, y: np.ndarray) -> None:
        """Raise ``ValueError`` if *y* is not a valid response."""
        ...

    def prepare_y(self, y: np.ndarray) -> np.ndarray:
        """Return the canonical float layout of *y* for this family."""
        ...

    def predict(self, coef: np.ndarray, intercept: Any, X: np.ndarray) -> np.ndarray:
        """Map a linear predictor to the response scale."""
        ...

    def deviance(self, y: np.ndarray, y_hat: np.ndarray) -> float:
        """Family deviance of predictions *y_hat* against *y*."""
        ...

    def null_prediction(self, y_train: np.ndarray, n: int) -> np.ndarray:
        """Intercept-only prediction for *n* new rows."""
        ...

    def null_deviance(self, y: np.ndarray) -> float:
        """In-sample deviance of the intercept-only model fit to *y*.

        A reference value for adapters and callers; a run reports the
        cross-validated null deviance built from :meth:`null_prediction`.
        """
        ...

    def null_residuals(self, y: np.ndarray) -> np.ndarray:
        """Score residuals at the null model, used to size λ paths."""
        ...

    def stratify_labels(self, y: np.ndarray) -> np.ndarray | None:
        """Class labels for stratified folds, or ``None``."""
        ...

    def reference_p_value(self, y: np.ndarray, y_hat: np.ndarray) -> float:
        """Single-pass significance of held-out predictions."""
        ...

    def correlation(self, y: np.ndarray, y_hat: np.ndarray) -> float | None:
        """Correlation of predictions with the response, if meaningful."""
        ...

    def accuracy(self, y: np.ndarray, y_hat: np.ndarray) -> float | None:
        """Classification accuracy, if meaningful."""
        ...


# ------------------------------------------------------------------ #
# Shared helpers
# ------------------------------------------------------------------ #


def _checked(value: float, family: str) -> float:
    value = float(value)
    if not np.isfinite(value):
        raise NumericalError(f"{family} deviance is not finite ({value}).")
    return value


def _pearson_p(a: np.ndarray, b: np.ndarray) -> float:
    """One-sided (positive association) Pearson p-value.

    Returns 1.0 (no evidence) when there are fewer than three points
    or either input is constant, where the test is undefined.
    """
    a = np.ravel(a)
    b = np.ravel(b)
    if a.size < 3 or np.ptp(a) == 0 or np.ptp(b) == 0:
        logger.debug("Correlation test undefined for %d points; p set to 1.", a.size)
        return 1.0
    return float(stats.pearsonr(a, b, alternative="greater").pvalue)


def _pearson_r(a: np.ndarray, b: np.ndarray) -> float:
    a = np.ravel(a)
    b = np.ravel(b)
    if a.size < 2 or np.ptp(a) == 0 or np.ptp(b) == 0:
        return float("nan")
    return float(np.corrcoef(a, b)[0, 1])


def _require_1d_numeric(y: np.ndarray, family: str) -> None:
    if y.ndim != 1:
        raise ValueError(f"{family} family requires a 1-D response, got shape {y.shape}.")
    if not np.issubdtype(y.dtype, np.number):
        raise ValueError(f"{family} family requires numeric Y values.")
    if np.any(~np.isfinite(y.astype(float))):
        raise ValueError(f"{family} family does not accept NaN or infinite Y values.")


# ------------------------------------------------------------------ #
# GaussianFamily
# ------------------------------------------------------------------ #
#
# Identity link: ŷ = Xβ + β₀.  Deviance is the residual sum of
# squares, the quantity least squares minimises, and the null model
# predicts the training mean.  The response is deconfounded together
# with the features when confounds are supplied, so this is the only
# family whose statistics also exist in deconfounded space.


@dataclass(frozen=True)
class GaussianFamily:
    """Continuous response, identity link, squared-error deviance."""

    @property
    def name(self) -> str:
        return "gaussian"

    @property
    def has_intercept(self) -> bool:
        return True

    @property
    def deconfound_response(self) -> bool:
        return True

    @property
    def null_via_solver(self) -> bool:
        return False

    def validate_y(self, y: np.ndarray) -> None:
        """Check that *y* is numeric, 1-D and non-constant."""
        _require_1d_numeric(y, "gaussian")
        if np.ptp(y) == 0:
            raise ValueError("gaussian family requires non-constant Y (zero variance).")

    def prepare_y(self, y: np.ndarray) -> np.ndarray:
        return np.asarray(y, dtype=float).ravel()

    def predict(self, coef: np.ndarray, intercept: Any, X: np.ndarray) -> np.ndarray:
        return X @ coef + float(intercept)

    def deviance(self, y: np.ndarray, y_hat: np.ndarray) -> float:
        """Residual sum of squares ``Σ(y − ŷ)²``."""
        return _checked(np.sum((np.ravel(y) - np.ravel(y_hat)) ** 2), self.name)

    def null_prediction(self, y_train: np.ndarray, n: int) -> np.ndarray:
        return np.full(n, float(np.mean(y_train)))

    def null_deviance(self, y: np.ndarray) -> float:
        return self.deviance(y, self.null_prediction(y, len(y)))

    def null_residuals(self, y: np.ndarray) -> np.ndarray:
        return y - np.mean(y)

    def stratify_labels(self, y: np.ndarray) -> np.ndarray | None:  # noqa: ARG002
        return None

    def reference_p_value(self, y: np.ndarray, y_hat: np.ndarray) -> float:
        return _pearson_p(y_hat, y)

    def correlation(self, y: np.ndarray, y_hat: np.ndarray) -> float | None:
        return _pearson_r(y_hat, y)

    def accuracy(self, y: np.ndarray, y_hat: np.ndarray) -> float | None:  # noqa: ARG002
        return None


# ------------------------------------------------------------------ #
# PoissonFamily
# ------------------------------------------------------------------ #
#
# Log link: μ = exp(Xβ + β₀).  The deviance
#
#   D = 2 Σ [ y·log(y/μ) − (y − μ) ]
#
# is twice the log-likelihood gap to the saturated model.  Zero counts
# contribute only the −(y − μ) = μ term.


@dataclass(frozen=True)
class PoissonFamily:
    """Count response, log link, Poisson deviance."""

    @property
    def name(self) -> str:
        return "poisson"

    @property
    def has_intercept(self) -> bool:
        return True

    @property
    def deconfound_response(self) -> bool:
        return False

    @property
    def null_via_solver(self) -> bool:
        return True

    def validate_y(self, y: np.ndarray) -> None:
        """Check that *y* contains non-negative integer-valued data."""
        _require_1d_numeric(y, "poisson")
        if np.any(y < 0):
            raise ValueError("poisson family requires non-negative Y values.")
        # Floats that happen to be whole numbers (3.0) are fine.
        if not np.allclose(y, np.round(y)):
            raise ValueError("poisson family requires integer-valued Y.")
        if np.all(y == 0):
            raise ValueError("poisson family requires at least one non-zero count.")

    def prepare_y(self, y: np.ndarray) -> np.ndarray:
        return np.asarray(y, dtype=float).ravel()

    def predict(self, coef: np.ndarray, intercept: Any, X: np.ndarray) -> np.ndarray:
        return safe_exp(X @ coef + float(intercept))

    def deviance(self, y: np.ndarray, y_hat: np.ndarray) -> float:
        """``2 Σ [y·log(y/μ) − (y − μ)]`` with ``0·log 0 = 0``."""
        y = np.ravel(y)
        mu = np.ravel(y_hat)
        return _checked(2.0 * np.sum(xlogy_ratio(y, mu) - (y - mu)), self.name)

    def null_prediction(self, y_train: np.ndarray, n: int) -> np.ndarray:
        return np.full(n, float(np.mean(y_train)))

    def null_deviance(self, y: np.ndarray) -> float:
        return self.deviance(y, self.null_prediction(y, len(y)))

    def null_residuals(self, y: np.ndarray) -> np.ndarray:
        # Score of the Poisson log-likelihood at the intercept-only fit.
        return y - np.mean(y)

    def stratify_labels(self, y: np.ndarray) -> np.ndarray | None:  # noqa: ARG002
        return None

    def reference_p_value(self, y: np.ndarray, y_hat: np.ndarray) -> float:
        return _pearson_p(y_hat, y)

    def correlation(self, y: np.ndarray, y_hat: np.ndarray) -> float | None:
        return _pearson_r(y_hat, y)

    def accuracy(self, y: np.ndarray, y_hat: np.ndarray) -> float | None:  # noqa: ARG002
        return None


# ------------------------------------------------------------------ #
# MultinomialFamily
# ------------------------------------------------------------------ #
#
# Softmax link over K classes: P(k | x) = exp(η_k) / Σ_j exp(η_j),
# with one coefficient row and one intercept per class.  Responses are
# carried as one-hot indicator matrices; the deviance
#
#   D = −2 Σ_i log( Σ_k y_ik · p̂_ik )
#
# is twice the categorical cross-entropy.  Because y is one-hot, the
# inner sum just picks out the predicted probability of the observed
# class.


def indicator_matrix(labels: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """One-hot encode *labels*; returns ``(indicators, classes)``."""
    classes, codes = np.unique(np.asarray(labels), return_inverse=True)
    return np.eye(len(classes))[codes], classes


@dataclass(frozen=True)
class MultinomialFamily:
    """Multi-class response, softmax link, cross-entropy deviance."""

    @property
    def name(self) -> str:
        return "multinomial"

    @property
    def has_intercept(self) -> bool:
        return True

    @property
    def deconfound_response(self) -> bool:
        return False

    @property
    def null_via_solver(self) -> bool:
        return True

    @staticmethod
    def _is_indicator(y: np.ndarray) -> bool:
        return (
            y.ndim == 2
            and y.shape[1] >= 2
            and np.issubdtype(y.dtype, np.number)
            and bool(np.all(np.isin(y, (0, 1))))
            and bool(np.all(np.sum(y, axis=1) == 1))
        )

    def validate_y(self, y: np.ndarray) -> None:
        """Check class count: at least 2, at most :data:`MAX_CLASSES`."""
        if y.ndim == 2 and not self._is_indicator(y):
            raise ValueError(
                "multinomial family requires class labels or a one-hot "
                "indicator matrix (rows summing to 1)."
            )
        if y.ndim > 2:
            raise ValueError(f"multinomial response has invalid shape {y.shape}.")
        n_classes = y.shape[1] if y.ndim == 2 else len(np.unique(y))
        if n_classes < 2:
            raise ValueError("multinomial family requires at least two classes.")
        if n_classes > MAX_CLASSES:
            raise ConfigurationError(
                f"multinomial family supports at most {MAX_CLASSES} classes, "
                f"got {n_classes}."
            )

    def prepare_y(self, y: np.ndarray) -> np.ndarray:
        if self._is_indicator(y):
            return np.asarray(y, dtype=float)
        return indicator_matrix(y)[0]

    def predict(self, coef: np.ndarray, intercept: Any, X: np.ndarray) -> np.ndarray:
        """Class probabilities ``(n, K)`` from ``coef (K, p)``."""
        return softmax(X @ coef.T + np.asarray(intercept), axis=1)

    def deviance(self, y: np.ndarray, y_hat: np.ndarray) -> float:
        """``−2 Σ log(Σ_k y·ŷ)`` over one-hot rows."""
        picked = np.sum(np.asarray(y) * np.asarray(y_hat), axis=1)
        return _checked(-2.0 * np.sum(safe_log(picked)), self.name)

    def null_prediction(self, y_train: np.ndarray, n: int) -> np.ndarray:
        return np.tile(np.mean(y_train, axis=0), (n, 1))

    def null_deviance(self, y: np.ndarray) -> float:
        return self.deviance(y, self.null_prediction(y, len(y)))

    def null_residuals(self, y: np.ndarray) -> np.ndarray:
        return y - np.mean(y, axis=0)

    def stratify_labels(self, y: np.ndarray) -> np.ndarray | None:
        return np.argmax(y, axis=1)

    def reference_p_value(self, y: np.ndarray, y_hat: np.ndarray) -> float:
        """Exact binomial test of correct calls against the majority rate."""
        n = len(y)
        n_correct = int(np.sum(np.argmax(y_hat, axis=1) == np.argmax(y, axis=1)))
        chance = float(np.max(np.mean(y, axis=0)))
        if chance >= 1.0:
            return 1.0
        return float(stats.binomtest(n_correct, n, chance, alternative="greater").pvalue)

    def correlation(self, y: np.ndarray, y_hat: np.ndarray) -> float | None:  # noqa: ARG002
        return None

    def accuracy(self, y: np.ndarray, y_hat: np.ndarray) -> float | None:
        return float(np.mean(np.argmax(y_hat, axis=1) == np.argmax(y, axis=1)))


# ------------------------------------------------------------------ #
# CoxFamily
# ------------------------------------------------------------------ #
#
# Proportional hazards with right censoring.  Predictions are relative
# risks ŷ = exp(Xβ) (no intercept: it cancels in the partial
# likelihood).  The deviance is minus twice the log partial likelihood,
#
#   D = −2 Σ_{n: failure} log( ŷ_n / Σ_{m: t_m ≥ t_n} ŷ_m ),
#
# with ties handled Breslow-style: every sample whose time equals t_n
# belongs to the risk set of n.  Each ratio is at most 1, so D ≥ 0.


def _risk_set_sums(time: np.ndarray, risk: np.ndarray) -> np.ndarray:
    """``Σ_{m: t_m ≥ t_i} risk_m`` for every sample *i*."""
    order = np.argsort(time, kind="stable")
    t_sorted = time[order]
    csum = np.concatenate(([0.0], np.cumsum(risk[order])))
    first = np.searchsorted(t_sorted, time, side="left")
    return csum[-1] - csum[first]


@dataclass(frozen=True)
class CoxFamily:
    """Right-censored survival response, Cox partial-likelihood deviance."""

    @property
    def name(self) -> str:
        return "cox"

    @property
    def has_intercept(self) -> bool:
        return False

    @property
    def deconfound_response(self) -> bool:
        return False

    @property
    def null_via_solver(self) -> bool:
        return False

    def validate_y(self, y: np.ndarray) -> None:
        """Check the ``[time, status]`` layout."""
        if y.ndim != 2 or y.shape[1] != 2:
            raise ValueError(
                f"cox family requires an (n, 2) [time, status] response, got shape {y.shape}."
            )
        y = y.astype(float)
        if np.any(~np.isfinite(y)):
            raise ValueError("cox family does not accept NaN or infinite values.")
        if np.any(y[:, 0] < 0):
            raise ValueError("cox family requires non-negative survival times.")
        if not np.all(np.isin(y[:, 1], (0, 1))):
            raise ValueError("cox family requires status values in {0, 1}.")
        if not np.any(y[:, 1] == 1):
            raise ValueError("cox family requires at least one observed failure.")

    def prepare_y(self, y: np.ndarray) -> np.ndarray:
        return np.asarray(y, dtype=float)

    def predict(self, coef: np.ndarray, intercept: Any, X: np.ndarray) -> np.ndarray:  # noqa: ARG002
        """Relative risk ``exp(Xβ)``; strictly positive."""
        return safe_exp(X @ coef)

    def deviance(self, y: np.ndarray, y_hat: np.ndarray) -> float:
        time = y[:, 0]
        failed = y[:, 1] == 1
        risk = np.ravel(y_hat)
        ratio = safe_divide(risk, _risk_set_sums(time, risk), fill=1.0)
        return _checked(-2.0 * np.sum(safe_log(ratio[failed])), self.name)

    def null_prediction(self, y_train: np.ndarray, n: int) -> np.ndarray:  # noqa: ARG002
        return np.ones(n)

    def null_deviance(self, y: np.ndarray) -> float:
        return self.deviance(y, self.null_prediction(y, len(y)))

    def null_residuals(self, y: np.ndarray) -> np.ndarray:
        """Martingale residuals at β = 0 (Breslow cumulative hazard)."""
        time = y[:, 0]
        status = y[:, 1]
        at_risk = _risk_set_sums(time, np.ones(len(time)))
        increments = safe_divide(status, at_risk)
        order = np.argsort(time, kind="stable")
        t_sorted = time[order]
        cum = np.cumsum(increments[order])
        last = np.searchsorted(t_sorted, time, side="right") - 1
        return status - cum[last]

    def stratify_labels(self, y: np.ndarray) -> np.ndarray | None:  # noqa: ARG002
        return None

    def reference_p_value(self, y: np.ndarray, y_hat: np.ndarray) -> float:
        """Higher predicted risk should mean earlier failure."""
        failed = y[:, 1] == 1
        return _pearson_p(safe_log(np.ravel(y_hat)[failed]), -y[failed, 0])

    def correlation(self, y: np.ndarray, y_hat: np.ndarray) -> float | None:  # noqa: ARG002
        return None

    def accuracy(self, y: np.ndarray, y_hat: np.ndarray) -> float | None:  # noqa: ARG002
        return None


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #

_FAMILIES: dict[str, type] = {}
"""Registry mapping family name strings to concrete ModelFamily classes."""

_ALIASES = {
    "continuous": "gaussian",
    "count": "poisson",
    "multiclass": "multinomial",
    "multi-class": "multinomial",
    "survival": "cox",
}


def register_family(name: str, cls: type) -> None:
    """Register a concrete ``ModelFamily`` class under *name*.

    Raises:
        TypeError: If *cls* does not satisfy the ``ModelFamily``
            protocol.
    """
    try:
        instance = cls()
    except Exception:  # noqa: BLE001
        msg = f"{cls!r} could not be instantiated for protocol check."
        raise TypeError(msg) from None
    if not isinstance(instance, ModelFamily):
        msg = f"{cls!r} does not implement the ModelFamily protocol."
        raise TypeError(msg)
    _FAMILIES[name] = cls


def resolve_family(family: str | ModelFamily) -> ModelFamily:
    """Resolve a family tag or instance to a ``ModelFamily``.

    Instances pass through unchanged.  Strings are matched
    case-insensitively against the registry and the aliases in the
    module docstring.

    Raises:
        ValueError: If *family* is not a registered name or alias.
    """
    if not isinstance(family, str):
        if isinstance(family, ModelFamily):
            return family
        raise TypeError(f"family must be a string or ModelFamily, got {type(family).__name__}.")

    key = family.strip().lower()
    key = _ALIASES.get(key, key)
    if key not in _FAMILIES:
        available = ", ".join(sorted(set(_FAMILIES) | set(_ALIASES)))
        raise ValueError(f"Unknown family {family!r}.  Available families: {available}.")
    instance: ModelFamily = _FAMILIES[key]()
    return instance


register_family("gaussian", GaussianFamily)
register_family("poisson", PoissonFamily)
register_family("multinomial", MultinomialFamily)
register_family("cox", CoxFamily)
