"""Outer evaluation loop.

One call to :meth:`OuterEvaluationLoop.run` produces a held-out
prediction for every sample under one (possibly permuted) response.
For each outer fold the loop

1. fits the confound projection on the training rows and applies it to
   both training and held-out rows,
2. standardises features with a ``StandardScaler`` fit on the training
   rows,
3. runs :func:`~nested_prediction.selection.select_model` on the
   training rows,
4. predicts the held-out rows, mapping continuous predictions back to
   the original response scale through the confound projection.

On the reference pass the loop also produces cross-validated null
predictions, from which the null deviance is computed.

Every intermediate (projection, scaler, selected model) is created
inside the fold body and dropped at the end of it; only predictions
and a small :class:`~nested_prediction._results.FoldSummary` leave the
fold.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from sklearn.preprocessing import StandardScaler

from ._config import PredictionOptions
from ._results import FoldSummary
from .deconfound import deconfound
from .families import ModelFamily
from .folds import make_folds
from .selection import select_model
from .solver import ElasticNetSolver, SolverConfig

logger = logging.getLogger(__name__)

_NULL_PENALTY_MULTIPLES = np.array([2.0, 1.5])
"""Multiples of λ_max for the intercept-only reference fit."""


@dataclass(frozen=True)
class OuterLoopResult:
    """Held-out predictions for one permutation.

    Attributes:
        predictions: Original-space predictions, ``(n,)`` or ``(n, K)``.
        folds: Outer test folds used.
        predictions_deconf: Deconfounded-space predictions when the
            response was deconfounded, else ``None``.
        y_deconf: Held-out deconfounded response, matching
            *predictions_deconf*.
        null_predictions: Cross-validated intercept-only predictions
            (reference pass only).
        null_predictions_deconf: Same, in deconfounded space.
        fold_summaries: Per-fold selection record.
    """

    predictions: np.ndarray
    folds: list[np.ndarray]
    predictions_deconf: np.ndarray | None = None
    y_deconf: np.ndarray | None = None
    null_predictions: np.ndarray | None = None
    null_predictions_deconf: np.ndarray | None = None
    fold_summaries: list[FoldSummary] = field(default_factory=list)


class OuterEvaluationLoop:
    """Outer cross-validation for a fixed family, configuration and solver.

    Args:
        family: Active response family.
        options: Run configuration.
        solver: Solver whose session is open for the loop's lifetime.
        confounds: Optional ``(n, q)`` confound matrix.  Confounds stay
            attached to their rows when the response is permuted.
        groups: Optional dependency-group label per sample.
    """

    def __init__(
        self,
        family: ModelFamily,
        options: PredictionOptions,
        solver: ElasticNetSolver,
        *,
        confounds: np.ndarray | None = None,
        groups: np.ndarray | None = None,
    ) -> None:
        self.family = family
        self.options = options
        self.solver = solver
        self.confounds = confounds
        self.groups = groups

    def _null_prediction(
        self,
        X_train: np.ndarray,
        y_train: np.ndarray,
        X_test: np.ndarray,
    ) -> np.ndarray:
        family = self.family
        if not family.null_via_solver:
            return family.null_prediction(y_train, len(X_test))
        # A lasso penalty above lambda_max zeroes every coefficient,
        # leaving the solver's own intercept-only fit.
        lam_max = self.solver.lambda_path(X_train, y_train, family, 1.0, 2)[0]
        config = SolverConfig(alpha=1.0, lambda_=lam_max * _NULL_PENALTY_MULTIPLES)
        path = self.solver.fit_path(X_train, y_train, family, config)
        return path.predict(family, X_test, 0)

    def run(
        self,
        X: np.ndarray,
        y: np.ndarray,
        rng: np.random.Generator,
        *,
        reference: bool = False,
    ) -> OuterLoopResult:
        """Predict every sample from a model that never saw it.

        Args:
            X: Features ``(n, p)``.
            y: Response in the family's canonical layout, already
                permuted for non-reference passes.
            rng: Generator for this permutation; drives outer and inner
                fold shuffles.
            reference: Also compute null predictions and fold summaries.
        """
        family = self.family
        n = len(y)
        folds = make_folds(y, family, self.options.outer_folds, rng, self.groups)

        predictions: np.ndarray | None = None
        null_pred: np.ndarray | None = None
        pred_deconf = y_deconf = null_deconf = None
        if self.confounds is not None and family.deconfound_response:
            pred_deconf = np.zeros(n)
            y_deconf = np.zeros(n)
            null_deconf = np.zeros(n) if reference else None

        summaries: list[FoldSummary] = []
        all_rows = np.arange(n)
        for k, test in enumerate(folds):
            train = np.setdiff1d(all_rows, test, assume_unique=True)
            X_train, X_test = X[train], X[test]
            y_train, y_test = y[train], y[test]

            projection = None
            if self.confounds is not None:
                C_train, C_test = self.confounds[train], self.confounds[test]
                projection, X_train, y_train = deconfound(X_train, y_train, C_train, family)
                _, X_test, y_test = deconfound(
                    X_test, y_test, C_test, family, projection=projection
                )

            scaler = StandardScaler().fit(X_train)
            X_train = scaler.transform(X_train)
            X_test = scaler.transform(X_test)

            fold_groups = self.groups[train] if self.groups is not None else None
            model = select_model(
                X_train, y_train, family, self.solver, self.options, rng, fold_groups
            )
            fold_pred = model.predict(family, X_test)
            if predictions is None:
                # Prediction layout differs from y for cox: (n,) vs (n, 2).
                predictions = np.zeros((n,) + fold_pred.shape[1:])
                if reference:
                    null_pred = np.zeros_like(predictions)

            if reference:
                fold_null = self._null_prediction(X_train, y_train, X_test)

            if projection is not None and projection.deconfounds_response:
                effect = projection.confound_effect_y(self.confounds[test])
                pred_deconf[test] = fold_pred
                y_deconf[test] = y_test
                predictions[test] = fold_pred + effect
                if reference:
                    null_deconf[test] = fold_null
                    null_pred[test] = fold_null + effect
            else:
                predictions[test] = fold_pred
                if reference:
                    null_pred[test] = fold_null

            if reference:
                summaries.append(
                    FoldSummary(
                        fold=k,
                        n_train=len(train),
                        n_test=len(test),
                        alpha=model.alpha,
                        lambda_=model.lambda_,
                        n_active=model.n_active,
                        features=model.active_features,
                    )
                )
            logger.debug(
                "Fold %d/%d: alpha=%g lambda=%.4g active=%d",
                k + 1,
                len(folds),
                model.alpha,
                model.lambda_,
                model.n_active,
            )

        assert predictions is not None
        return OuterLoopResult(
            predictions=predictions,
            folds=folds,
            predictions_deconf=pred_deconf,
            y_deconf=y_deconf,
            null_predictions=null_pred,
            null_predictions_deconf=null_deconf,
            fold_summaries=summaries,
        )
