"""Nested cross-validated prediction with permutation inference.

:func:`nested_predict` answers one question: *can the response be
predicted from the features better than chance, on data the model
never saw?*

Honest predictions
~~~~~~~~~~~~~~~~~~
Every reported prediction comes from the outer cross-validation loop,
so each sample is predicted by a model fit without it.  Every choice
that could leak information (confound regression, standardisation,
feature pre-filter, the (α, λ) search and the sparsity mask) is made
from the outer-training rows alone, inside the loop.  The inner
cross-validation that picks α and λ is nested within each outer
training fold.

Permutation inference
~~~~~~~~~~~~~~~~~~~~~
The whole nested procedure is repeated on relabelled responses.  Under
H₀ (no association between features and response) the held-out
deviance of the real data is just one draw from the same distribution
as the deviances of the relabelled runs, so the fraction of runs doing
at least as well is a valid p-value:

    p = #{b : D_b <= D_0} / Nperm

Only the response is relabelled.  Features and confounds stay with
their rows, so the confound adjustment is re-estimated on every
permutation exactly as it was on the real data.  With a dependency
structure (e.g. twins), relabellings keep pairs paired; see
:mod:`nested_prediction.permutations`.

Reproducibility
~~~~~~~~~~~~~~~
Permutations run in sequence.  Permutation *i* draws every random
choice (its relabelling, its outer and inner fold shuffles) from a
generator spawned as child *i* of ``SeedSequence(random_state)``, so a
fixed seed reproduces each permutation independently of how many are
run.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Mapping
from typing import Any

import numpy as np

from ._compat import DataFrameLike, as_float_array, as_response_array
from ._config import PredictionOptions, configure_logging, resolve_options
from ._results import PredictionResult, PredictionStats
from .engine import OuterEvaluationLoop, OuterLoopResult
from .families import ModelFamily, resolve_family
from .folds import dependency_groups, validate_dependency
from .permutations import PermutationEngine
from .pvalues import prediction_p_value
from .solver import ElasticNetSolver

logger = logging.getLogger(__name__)


def _cod(dev: float, nulldev: float) -> float:
    if nulldev <= 0.0:
        return float("nan")
    return 1.0 - dev / nulldev


def _compute_stats(
    family: ModelFamily,
    y: np.ndarray,
    reference: OuterLoopResult,
    statistics: np.ndarray,
    statistics_deconf: np.ndarray | None,
) -> PredictionStats:
    """Statistics of the reference pass."""
    y_hat = reference.predictions
    null_hat = reference.null_predictions
    dev = float(statistics[0])
    nulldev = family.deviance(y, null_hat)

    kwargs: dict[str, Any] = {}
    if statistics_deconf is not None:
        y_d = reference.y_deconf
        y_hat_d = reference.predictions_deconf
        dev_d = float(statistics_deconf[0])
        nulldev_d = family.deviance(y_d, reference.null_predictions_deconf)
        kwargs = {
            "pval_deconf": prediction_p_value(family, y_d, y_hat_d, statistics_deconf),
            "dev_deconf": dev_d,
            "nulldev_deconf": nulldev_d,
            "cod_deconf": _cod(dev_d, nulldev_d),
            "corr_deconf": family.correlation(y_d, y_hat_d),
        }

    return PredictionStats(
        pval=prediction_p_value(family, y, y_hat, statistics),
        dev=dev,
        nulldev=nulldev,
        cod=_cod(dev, nulldev),
        accuracy=family.accuracy(y, y_hat),
        corr=family.correlation(y, y_hat),
        **kwargs,
    )


def nested_predict(
    y: DataFrameLike,
    X: DataFrameLike,
    family: str | ModelFamily,
    options: Mapping[str, Any] | PredictionOptions | None = None,
    *,
    dependency: np.ndarray | None = None,
    permutations: np.ndarray | None = None,
    confounds: DataFrameLike | None = None,
    random_state: int | None = None,
) -> PredictionResult:
    """Predict *y* from *X* by nested cross-validation and test the fit.

    Args:
        y: Response, ``(n,)`` for gaussian and poisson; class labels
            ``(n,)`` or a one-hot ``(n, K)`` matrix for multinomial;
            ``(n, 2)`` ``[time, status]`` for cox.
        X: Features ``(n, p)``.  NumPy, pandas or Polars.
        family: ``"gaussian"``, ``"poisson"``, ``"multinomial"``,
            ``"cox"`` (or an alias, or a ``ModelFamily`` instance).
        options: Mapping with any of ``Nfeatures``, ``alpha``,
            ``CVscheme``, ``Nperm``, ``nlambda``, ``lambda_min_ratio``,
            ``show_scatter``, ``verbose`` (or their snake_case names),
            or a :class:`PredictionOptions`.
        dependency: Optional ``(n, n)`` matrix with 0 (independent) and
            1 / 2 (two pair types).  Linked samples share an outer and
            inner fold, and relabellings keep pairs paired.
        permutations: Optional ``(n, P)`` index array; overrides
            ``Nperm``.  Column *j* relabels sample *i* with the response
            of sample ``permutations[i, j]``.
        confounds: Optional ``(n, q)`` confounds regressed out of the
            features (and, for gaussian, the response) inside every
            outer fold.
        random_state: Seed for fold shuffles and relabellings.

    Returns:
        :class:`PredictionResult` with the held-out predictions of the
        unpermuted data, its statistics and the permutation null
        distribution.

    Raises:
        ConfigurationError: Invalid options, fold counts, class counts
            or permutation arrays.
        ValueError: Malformed inputs.
        NumericalError: Ill-conditioned confounds or non-finite
            deviances.
    """
    opts = resolve_options(options)
    configure_logging(opts.verbose)
    if opts.show_scatter:
        warnings.warn(
            "show_scatter is accepted for compatibility but no plot is drawn.",
            UserWarning,
            stacklevel=2,
        )

    X_arr = as_float_array(X, name="X", ndim=2)
    n, p = X_arr.shape
    fam = resolve_family(family)
    y_raw = as_response_array(y, n_rows=n)
    fam.validate_y(y_raw)
    y_arr = fam.prepare_y(y_raw)

    C = None
    if confounds is not None:
        C = as_float_array(confounds, name="confounds", ndim=2, n_rows=n)

    groups = None
    if dependency is not None:
        dep = validate_dependency(dependency, n)
        groups = dependency_groups(dep)

    engine = PermutationEngine(
        n,
        n_permutations=opts.n_perm,
        dependency=dependency,
        permutations=permutations,
    )
    n_perm = engine.n_permutations
    seeds = np.random.SeedSequence(random_state).spawn(n_perm)

    logger.info(
        "nested_predict: family=%s n=%d p=%d folds=%s permutations=%d (%s)",
        fam.name,
        n,
        p,
        opts.cv_scheme,
        n_perm,
        engine.mode.value,
    )

    solver = ElasticNetSolver()
    statistics = np.empty(n_perm)
    statistics_deconf: np.ndarray | None = None
    reference: OuterLoopResult | None = None
    with solver.session():
        loop = OuterEvaluationLoop(fam, opts, solver, confounds=C, groups=groups)
        for i in range(n_perm):
            rng = np.random.default_rng(seeds[i])
            perm = engine.draw(i, rng)
            y_perm = y_arr[perm]
            result = loop.run(X_arr, y_perm, rng, reference=(i == 0))
            statistics[i] = fam.deviance(y_perm, result.predictions)
            if result.predictions_deconf is not None:
                if statistics_deconf is None:
                    statistics_deconf = np.empty(n_perm)
                statistics_deconf[i] = fam.deviance(result.y_deconf, result.predictions_deconf)
            if i == 0:
                reference = result
            logger.info(
                "Permutation %d/%d: deviance %.6g", i + 1, n_perm, statistics[i]
            )

    assert reference is not None
    stats = _compute_stats(fam, y_arr, reference, statistics, statistics_deconf)
    return PredictionResult(
        predicted_y=reference.predictions,
        predicted_y_deconf=reference.predictions_deconf,
        stats=stats,
        permutation_stats=statistics,
        permutation_stats_deconf=statistics_deconf,
        fold_summaries=reference.fold_summaries,
        family=fam,
        options=opts,
        n_samples=n,
        n_features=p,
        permutation_mode=engine.mode.value,
    )
