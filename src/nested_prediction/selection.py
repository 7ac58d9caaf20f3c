"""Nested model selection within one outer-training fold.

Given the (deconfounded, standardised) training rows of an outer fold,
:func:`select_model` returns the model used to predict that fold's
held-out rows.  The protocol has four stages:

1. **Pre-filter** (optional).  Each feature is fit on its own with a
   two-point lasso path; features are ranked by the in-sample deviance
   at the least regularised end and the best ``n_prefilter`` are kept,
   best first.

2. **Joint (α, λ) search.**  For every mixing weight in the grid, one
   λ path is computed on the whole training fold and fit on every inner
   training split.  Held-out deviances are *summed* over inner folds
   (together they cover each training row once), giving an
   ``(n_lambda, n_alpha)`` matrix.  Its first minimum in row-major
   order picks ``(α*, λ*)``.  λ values the solver did not reach (pmax
   truncation, early stop) count as ``+inf``.

3. **Mask discovery.**  α* is refit on the whole fold with the narrow
   path ``λ* · (1.0, 0.5)``; features with a non-zero coefficient at λ*
   (any class, for multinomial) form the mask.  Fewer than
   ``min(2, p)`` survivors is a degenerate model: the best-ranked
   features are forced in and a warning is logged.

4. **λ refinement.**  Inner CV is repeated on the masked features at α*,
   scanning λ only; the refit at the refined λ is the fold's model.

Single-value penalty paths are not numerically supported by every
backend, so each refit uses a two-point path and keeps its first point.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from ._config import PredictionOptions
from ._errors import DegenerateModelError
from .families import ModelFamily
from .folds import make_folds
from .solver import ElasticNetSolver, SolverConfig

logger = logging.getLogger(__name__)

REFIT_MULTIPLES = np.array([1.0, 0.5])
"""Relative penalties of the narrow refit path; index 0 is kept."""

MIN_ACTIVE = 2


@dataclass(frozen=True)
class SelectedModel:
    """Final model of one outer fold.

    Attributes:
        alpha: Selected mixing weight.
        lambda_: Selected (refined) penalty.
        coef: ``(m,)``, or ``(K, m)`` for multinomial, over the
            retained features.
        intercept: Scalar, or ``(K,)`` for multinomial.
        feature_index: ``(m,)`` original column index of each retained
            feature, in the order of *coef*'s columns.
    """

    alpha: float
    lambda_: float
    coef: np.ndarray
    intercept: Any
    feature_index: np.ndarray

    @property
    def n_active(self) -> int:
        coef = self.coef if self.coef.ndim == 2 else self.coef[np.newaxis, :]
        return int(np.sum(np.any(coef != 0, axis=0)))

    @property
    def active_features(self) -> np.ndarray:
        """Original indices of features with a non-zero coefficient."""
        coef = self.coef if self.coef.ndim == 2 else self.coef[np.newaxis, :]
        return self.feature_index[np.any(coef != 0, axis=0)]

    def predict(self, family: ModelFamily, X: np.ndarray) -> np.ndarray:
        """Predict from the full ``(n, p)`` matrix *X*."""
        return family.predict(self.coef, self.intercept, X[:, self.feature_index])


# ------------------------------------------------------------------ #
# Pre-filter
# ------------------------------------------------------------------ #


def prefilter_features(
    X: np.ndarray,
    y: np.ndarray,
    family: ModelFamily,
    solver: ElasticNetSolver,
    n_keep: int,
) -> np.ndarray:
    """Indices of the *n_keep* best single features, best first.

    Each column is fit alone with a two-point lasso path (λ_max down to
    the smallest default ratio) and scored by its in-sample deviance at
    the least regularised point.  The sort is stable, so ties keep
    column order.
    """
    p = X.shape[1]
    scores = np.empty(p)
    config = SolverConfig(alpha=1.0, lambda_=2)
    for j in range(p):
        xj = X[:, [j]]
        path = solver.fit_path(xj, y, family, config)
        scores[j] = family.deviance(y, path.predict(family, xj, len(path) - 1))
    ranking = np.argsort(scores, kind="stable")
    logger.debug("Pre-filter kept %d of %d features.", min(n_keep, p), p)
    return ranking[:n_keep]


# ------------------------------------------------------------------ #
# Inner cross-validation
# ------------------------------------------------------------------ #


def _cv_deviance(
    X: np.ndarray,
    y: np.ndarray,
    family: ModelFamily,
    solver: ElasticNetSolver,
    folds: list[np.ndarray],
    alpha: float,
    lambdas: np.ndarray,
    pmax: int | None,
) -> np.ndarray:
    """Summed held-out deviance ``(len(lambdas),)`` over *folds*."""
    total = np.zeros(len(lambdas))
    config = SolverConfig(alpha=alpha, lambda_=lambdas, pmax=pmax)
    all_rows = np.arange(len(y))
    for test in folds:
        train = np.setdiff1d(all_rows, test, assume_unique=True)
        path = solver.fit_path(X[train], y[train], family, config)
        for k in range(len(path)):
            total[k] += family.deviance(y[test], path.predict(family, X[test], k))
        total[len(path):] = np.inf
    return total


def _refit(
    X: np.ndarray,
    y: np.ndarray,
    family: ModelFamily,
    solver: ElasticNetSolver,
    alpha: float,
    lambda_: float,
    pmax: int | None,
) -> tuple[np.ndarray, Any]:
    path = solver.fit_path(
        X, y, family, SolverConfig(alpha=alpha, lambda_=lambda_ * REFIT_MULTIPLES, pmax=pmax)
    )
    return path.coefs[0], path.intercepts[0]


def _active_mask(coef: np.ndarray, n_required: int) -> np.ndarray:
    """Non-zero mask of *coef*.

    Raises:
        DegenerateModelError: If fewer than *n_required* are non-zero.
    """
    mask = np.any(coef != 0, axis=0) if coef.ndim == 2 else coef != 0
    if int(mask.sum()) < n_required:
        raise DegenerateModelError(int(mask.sum()), n_required)
    return mask


def select_model(
    X: np.ndarray,
    y: np.ndarray,
    family: ModelFamily,
    solver: ElasticNetSolver,
    options: PredictionOptions,
    rng: np.random.Generator,
    groups: np.ndarray | None = None,
) -> SelectedModel:
    """Run the nested selection protocol on one training fold.

    Args:
        X: Standardised training features ``(n, p)``.
        y: Training response in the family's canonical layout.
        family: Active family.
        solver: Solver with an open session.
        options: Run configuration (alpha grid, inner fold count,
            ``Nfeatures``, path length).
        rng: Generator driving the inner fold shuffles.
        groups: Dependency-group label per training row, or ``None``.

    Returns:
        The fold's :class:`SelectedModel`.
    """
    p = X.shape[1]
    feature_index = np.arange(p)
    if 0 < options.n_prefilter < p:
        feature_index = prefilter_features(X, y, family, solver, options.n_prefilter)
    X_r = X[:, feature_index]

    # Stage 2: joint (alpha, lambda) search.
    folds = make_folds(y, family, options.inner_folds, rng, groups)
    alphas = options.alphas
    paths = [
        solver.lambda_path(X_r, y, family, a, options.nlambda, options.lambda_min_ratio)
        for a in alphas
    ]
    cv_dev = np.column_stack(
        [
            _cv_deviance(X_r, y, family, solver, folds, a, lam, options.pmax)
            for a, lam in zip(alphas, paths, strict=True)
        ]
    )
    li, ai = np.unravel_index(int(np.argmin(cv_dev)), cv_dev.shape)
    alpha = alphas[ai]
    lambda_star = float(paths[ai][li])
    logger.debug("Inner CV selected alpha=%g, lambda=%.4g.", alpha, lambda_star)

    # Stage 3: mask from the refit at lambda*.
    coef, _ = _refit(X_r, y, family, solver, alpha, lambda_star, options.pmax)
    n_required = min(MIN_ACTIVE, X_r.shape[1])
    try:
        mask = _active_mask(coef, n_required)
    except DegenerateModelError as exc:
        logger.warning("%s; forcing in the best-ranked features.", exc)
        mask = coef != 0 if coef.ndim == 1 else np.any(coef != 0, axis=0)
        for j in range(X_r.shape[1]):
            if mask.sum() >= n_required:
                break
            mask[j] = True
    feature_index = feature_index[mask]
    X_m = X_r[:, mask]

    # Stage 4: refine lambda on the masked features.
    lam_ref_path = solver.lambda_path(
        X_m, y, family, alpha, options.nlambda, options.lambda_min_ratio
    )
    dev_ref = _cv_deviance(X_m, y, family, solver, folds, alpha, lam_ref_path, options.pmax)
    lambda_ref = float(lam_ref_path[int(np.argmin(dev_ref))])
    coef, intercept = _refit(X_m, y, family, solver, alpha, lambda_ref, options.pmax)

    return SelectedModel(
        alpha=float(alpha),
        lambda_=lambda_ref,
        coef=coef,
        intercept=intercept,
        feature_index=feature_index,
    )
