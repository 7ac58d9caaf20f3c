"""Elastic-net path solver adapter.

The nested selector needs one operation from its solver: given a
design matrix, a response, a family and a configuration, return the
coefficients and intercepts along a path of penalty strengths.  This
module provides that operation on top of established path solvers;
no coordinate descent is implemented here:

==============  ========================================================
Family          Backend
==============  ========================================================
gaussian        ``sklearn.linear_model.enet_path`` on centred data
poisson         IRLS: statsmodels ``Poisson`` family supplies working
                weights and responses, each step is a weighted
                ``sklearn.linear_model.ElasticNet`` fit
multinomial     ``sklearn.linear_model.LogisticRegression`` (SAGA,
                elastic-net penalty), warm-started along the path
cox             ``sksurv.linear_model.CoxnetSurvivalAnalysis``
==============  ========================================================

Penalty scaling
~~~~~~~~~~~~~~~
All backends are driven on the glmnet scale, minimising

    (1/n) · NLL(β) + λ · [ α‖β‖₁ + (1 − α)/2 ‖β‖²₂ ]

so one λ path means the same thing for every family.  sklearn's
``LogisticRegression`` takes ``C = 1 / (n λ)``; the weighted
``ElasticNet`` used inside IRLS rescales its sample weights to sum to
n, which is undone by passing ``λ · n / Σw``.

Path generation
~~~~~~~~~~~~~~~
:meth:`ElasticNetSolver.lambda_path` follows glmnet: λ_max is the
smallest penalty at which every coefficient is zero, i.e.
``max |Xᵀ r| / (n · α)`` where *r* are the null-model score residuals
of the family; the path is log-spaced down to ``λ_max · ratio`` with
``ratio = 1e-4`` when n > p and ``1e-2`` otherwise.

Session scope
~~~~~~~~~~~~~
Fits are only allowed inside :meth:`ElasticNetSolver.session`, a
context manager that owns warning suppression for the duration of a
run and always releases it, including when a fit raises.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import numpy as np
import statsmodels.api as sm
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import ElasticNet, LogisticRegression, enet_path
from sksurv.linear_model import CoxnetSurvivalAnalysis
from sksurv.util import Surv

from ._errors import NumericalError
from .families import ModelFamily

logger = logging.getLogger(__name__)

_MIN_MIXING = 1e-3
"""Floor on alpha when sizing λ_max and for Coxnet, which rejects 0."""

_ABSENT_CLASS_LOGIT = -30.0
"""Intercept given to classes missing from a training split."""

_IRLS_MAX_ITER = 25
_IRLS_TOL = 1e-6
_MAX_ETA = 30.0

_SAGA_MAX_ITER = 2_000
_SAGA_TOL = 1e-4


# ------------------------------------------------------------------ #
# Configuration and result records
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class SolverConfig:
    """Options for one path fit.

    Attributes:
        alpha: Elastic-net mixing weight in ``[0, 1]`` (1 = lasso).
        lambda_: Explicit penalty path (any order; fitted descending),
            or an integer path length to generate, or ``None`` to
            generate ``nlambda`` values.
        nlambda: Path length when ``lambda_`` is not an array.
        standardize: Scale columns to unit variance before fitting and
            map coefficients back to the input scale.
        intercept: Fit an unpenalised intercept (ignored by cox).
        pmax: Cap on non-zero coefficients; the path stops before the
            first λ exceeding it.  The first λ is always kept, so a
            path whose first point already exceeds the cap has one
            point over the cap (logged at DEBUG).
        lambda_min_ratio: Smallest generated λ as a fraction of λ_max.
        max_iter: Iteration cap passed to the backend.
        tol: Convergence tolerance passed to the backend.
    """

    alpha: float = 1.0
    lambda_: np.ndarray | int | None = None
    nlambda: int = 100
    standardize: bool = False
    intercept: bool = True
    pmax: int | None = None
    lambda_min_ratio: float | None = None
    max_iter: int = 10_000
    tol: float = 1e-7


@dataclass(frozen=True)
class ElasticNetPath:
    """Coefficients along a realised penalty path.

    Attributes:
        lambdas: Realised penalties ``(L,)``, descending.  May be
            shorter than requested when the backend stopped early or
            ``pmax`` truncated the path.
        coefs: ``(L, p)``, or ``(L, K, p)`` for multinomial.
        intercepts: ``(L,)``, or ``(L, K)`` for multinomial.
        alpha: Mixing weight the path was fitted with.
    """

    lambdas: np.ndarray
    coefs: np.ndarray
    intercepts: np.ndarray
    alpha: float

    def __len__(self) -> int:
        return len(self.lambdas)

    def active(self, index: int) -> np.ndarray:
        """Boolean mask ``(p,)`` of non-zero features at *index*."""
        coef = self.coefs[index]
        if coef.ndim == 2:
            return np.any(coef != 0, axis=0)
        return coef != 0

    def n_nonzero(self) -> np.ndarray:
        return np.array([int(self.active(i).sum()) for i in range(len(self))])

    def predict(self, family: ModelFamily, X: np.ndarray, index: int) -> np.ndarray:
        return family.predict(self.coefs[index], self.intercepts[index], X)

    def truncated(self, length: int) -> ElasticNetPath:
        return ElasticNetPath(
            lambdas=self.lambdas[:length],
            coefs=self.coefs[:length],
            intercepts=self.intercepts[:length],
            alpha=self.alpha,
        )


# ------------------------------------------------------------------ #
# Per-family backends
# ------------------------------------------------------------------ #
#
# Each backend receives the λ path already sorted descending and
# returns (realised_lambdas, coefs, intercepts).


def _fit_gaussian(
    X: np.ndarray,
    y: np.ndarray,
    alpha: float,
    lambdas: np.ndarray,
    intercept: bool,
    max_iter: int,
    tol: float,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    # enet_path has no intercept; centring X and y makes the slopes
    # identical to an intercept fit, and the intercept is recovered
    # from the means.
    if intercept:
        x_mean = X.mean(axis=0)
        y_mean = float(y.mean())
    else:
        x_mean = np.zeros(X.shape[1])
        y_mean = 0.0
    realised, coefs, _ = enet_path(
        X - x_mean,
        y - y_mean,
        l1_ratio=alpha,
        alphas=lambdas,
        max_iter=max_iter,
        tol=tol,
    )
    coefs = coefs.T  # shape: (L, p)
    return np.asarray(realised), coefs, y_mean - coefs @ x_mean


def _fit_poisson(
    X: np.ndarray,
    y: np.ndarray,
    alpha: float,
    lambdas: np.ndarray,
    intercept: bool,
    max_iter: int,
    tol: float,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    # Proximal-Newton (IRLS) outer loop.  At the current estimate the
    # Poisson log-likelihood is replaced by its quadratic expansion,
    #   (1/2n) Σ wᵢ (zᵢ − ηᵢ)²,
    # with working weights w and working response z supplied by the
    # statsmodels family object, exactly as statsmodels' own IRLS does.
    n, p = X.shape
    glm_family = sm.families.Poisson()
    coef = np.zeros(p)
    b0 = float(np.log(max(y.mean(), 1e-10))) if intercept else 0.0

    model = ElasticNet(
        l1_ratio=alpha,
        fit_intercept=intercept,
        warm_start=True,
        max_iter=max_iter,
        tol=tol,
    )
    coefs = np.zeros((len(lambdas), p))
    intercepts = np.zeros(len(lambdas))

    for idx, lam in enumerate(lambdas):
        for _ in range(_IRLS_MAX_ITER):
            eta = np.clip(X @ coef + b0, -_MAX_ETA, _MAX_ETA)
            mu = glm_family.link.inverse(eta)
            weights = glm_family.weights(mu)
            z = eta + (y - mu) * glm_family.link.deriv(mu)
            model.set_params(alpha=lam * n / weights.sum())
            model.fit(X, z, sample_weight=weights)
            new_coef = model.coef_.copy()
            new_b0 = float(model.intercept_) if intercept else 0.0
            delta = max(np.max(np.abs(new_coef - coef), initial=0.0), abs(new_b0 - b0))
            coef, b0 = new_coef, new_b0
            if delta < _IRLS_TOL:
                break
        coefs[idx] = coef
        intercepts[idx] = b0

    return lambdas, coefs, intercepts


def _fit_multinomial(
    X: np.ndarray,
    y: np.ndarray,
    alpha: float,
    lambdas: np.ndarray,
    intercept: bool,
    max_iter: int,  # noqa: ARG001
    tol: float,  # noqa: ARG001
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    n, p = X.shape
    n_classes = y.shape[1]
    labels = np.argmax(y, axis=1)
    present = np.unique(labels)

    coefs = np.zeros((len(lambdas), n_classes, p))
    intercepts = np.full((len(lambdas), n_classes), _ABSENT_CLASS_LOGIT)

    # A training split holding a single class admits only the
    # constant model: that class gets probability ~1.
    if len(present) < 2:
        intercepts[:, present] = 0.0
        return lambdas, coefs, intercepts

    # SAGA converges far more slowly than coordinate descent, so it
    # gets its own, looser stopping rule.
    model = LogisticRegression(
        penalty="elasticnet",
        solver="saga",
        l1_ratio=alpha,
        fit_intercept=intercept,
        warm_start=True,
        max_iter=_SAGA_MAX_ITER,
        tol=_SAGA_TOL,
    )
    for idx, lam in enumerate(lambdas):
        model.set_params(C=1.0 / (n * lam))
        model.fit(X, labels)
        classes = model.classes_
        b = np.atleast_1d(model.intercept_)
        if len(classes) == 2:
            # Binary sklearn fits carry one row for the positive class;
            # softmax([0, η]) reproduces the logistic probabilities.
            coefs[idx, classes[1]] = model.coef_[0]
            intercepts[idx, classes[0]] = 0.0
            intercepts[idx, classes[1]] = b[0]
        else:
            coefs[idx, classes] = model.coef_
            intercepts[idx, classes] = b

    return lambdas, coefs, intercepts


def _fit_cox(
    X: np.ndarray,
    y: np.ndarray,
    alpha: float,
    lambdas: np.ndarray,
    intercept: bool,  # noqa: ARG001
    max_iter: int,
    tol: float,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    target = Surv.from_arrays(event=y[:, 1].astype(bool), time=y[:, 0])
    model = CoxnetSurvivalAnalysis(
        l1_ratio=max(alpha, _MIN_MIXING),
        alphas=lambdas,
        normalize=False,
        max_iter=max_iter,
        tol=tol,
        fit_baseline_model=False,
    )
    model.fit(X, target)
    realised = np.asarray(model.alphas_)
    coefs = np.asarray(model.coef_).T  # shape: (L, p)
    return realised, coefs, np.zeros(len(realised))


_BACKENDS: dict[str, Callable[..., tuple[np.ndarray, np.ndarray, np.ndarray]]] = {
    "gaussian": _fit_gaussian,
    "poisson": _fit_poisson,
    "multinomial": _fit_multinomial,
    "cox": _fit_cox,
}


# ------------------------------------------------------------------ #
# Solver
# ------------------------------------------------------------------ #


class ElasticNetSolver:
    """Stateless path fitter with a scoped usage session.

    Example::

        solver = ElasticNetSolver()
        with solver.session():
            path = solver.fit_path(X, y, family, SolverConfig(alpha=0.5))

    Attributes:
        n_fits: Number of path fits in the current (or last) session.
    """

    def __init__(self) -> None:
        self._active = False
        self.n_fits = 0

    @property
    def active(self) -> bool:
        return self._active

    @contextmanager
    def session(self) -> Iterator[ElasticNetSolver]:
        """Scope in which fits may run.

        Backend convergence and deprecation chatter is suppressed for
        the duration; the permutation p-value, not any single fit, is
        the inferential output.  Teardown runs on every exit path.

        Raises:
            RuntimeError: If a session is already open on this solver.
        """
        if self._active:
            raise RuntimeError("An ElasticNetSolver session is already active.")
        self._active = True
        self.n_fits = 0
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=ConvergenceWarning)
                warnings.filterwarnings("ignore", category=FutureWarning)
                yield self
        finally:
            self._active = False
            logger.debug("Solver session closed after %d path fits.", self.n_fits)

    def lambda_path(
        self,
        X: np.ndarray,
        y: np.ndarray,
        family: ModelFamily,
        alpha: float,
        nlambda: int,
        lambda_min_ratio: float | None = None,
    ) -> np.ndarray:
        """Log-spaced descending penalty path starting at λ_max."""
        n, p = X.shape
        score = np.abs(X.T @ family.null_residuals(y)) / n
        lam_max = float(np.max(score, initial=0.0)) / max(alpha, _MIN_MIXING)
        if not np.isfinite(lam_max) or lam_max <= 0.0:
            logger.debug("Degenerate λ_max (%s); using 1.0.", lam_max)
            lam_max = 1.0
        ratio = lambda_min_ratio or (1e-4 if n > p else 1e-2)
        return np.geomspace(lam_max, lam_max * ratio, nlambda)

    def fit_path(
        self,
        X: np.ndarray,
        y: np.ndarray,
        family: ModelFamily,
        config: SolverConfig,
    ) -> ElasticNetPath:
        """Fit the elastic-net path described by *config*.

        Raises:
            RuntimeError: If called outside :meth:`session`.
            NumericalError: If the backend returns non-finite values.
        """
        if not self._active:
            raise RuntimeError(
                "ElasticNetSolver.fit_path called outside of a solver session."
            )
        center = np.zeros(X.shape[1])
        scale = np.ones(X.shape[1])
        if config.standardize:
            if config.intercept:
                center = X.mean(axis=0)
            scale = X.std(axis=0)
            scale[scale == 0] = 1.0
            X = (X - center) / scale
        lambdas = self._resolve_lambdas(X, y, family, config)

        backend = _BACKENDS[family.name]
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=RuntimeWarning)
            realised, coefs, intercepts = backend(
                X,
                y,
                config.alpha,
                lambdas,
                config.intercept and family.has_intercept,
                config.max_iter,
                config.tol,
            )
        self.n_fits += 1

        if config.standardize:
            coefs = coefs / scale
            if family.has_intercept:
                intercepts = intercepts - coefs @ center

        if not (np.all(np.isfinite(coefs)) and np.all(np.isfinite(intercepts))):
            raise NumericalError(
                f"{family.name} path fit returned non-finite coefficients."
            )

        path = ElasticNetPath(
            lambdas=np.asarray(realised, dtype=float),
            coefs=coefs,
            intercepts=intercepts,
            alpha=config.alpha,
        )
        if config.pmax:
            over = np.flatnonzero(path.n_nonzero() > config.pmax)
            if over.size:
                if over[0] == 0:
                    logger.debug(
                        "First λ=%.4g already has %d non-zero coefficients (pmax=%d); "
                        "keeping it.",
                        path.lambdas[0],
                        int(path.n_nonzero()[0]),
                        config.pmax,
                    )
                path = path.truncated(max(int(over[0]), 1))
        return path

    def _resolve_lambdas(
        self,
        X: np.ndarray,
        y: np.ndarray,
        family: ModelFamily,
        config: SolverConfig,
    ) -> np.ndarray:
        lam: Any = config.lambda_
        if lam is None or isinstance(lam, (int, np.integer)):
            nlambda = int(lam) if lam is not None else config.nlambda
            return self.lambda_path(
                X, y, family, config.alpha, nlambda, config.lambda_min_ratio
            )
        lam = np.sort(np.asarray(lam, dtype=float))[::-1]
        if lam.size == 0 or np.any(lam <= 0):
            raise ValueError("Explicit penalty paths must be non-empty and positive.")
        return lam
