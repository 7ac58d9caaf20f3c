"""P-values for nested prediction runs.

Permutation p-value
-------------------
Each permutation yields one summary statistic, the held-out deviance
of the predictions against the (relabelled) response; lower is better.
The reference (unpermuted) statistic is one member of that set, so

    p = #{b : D_b <= D_0} / B

where B counts the reference itself.  The reference always satisfies
its own inequality, so p is never zero: its minimum is 1/B, reached
exactly when the reference deviance is strictly smaller than every
permuted one.

Single-pass p-value
-------------------
With only the reference pass there is no null distribution.  The
family then supplies an asymptotic test of the held-out predictions
(see :meth:`~nested_prediction.families.ModelFamily.reference_p_value`).

Uncertainty of an empirical p-value
-----------------------------------
An empirical p-value from B permutations is itself a binomial
proportion.  :func:`p_value_interval` returns its exact
Clopper-Pearson interval, which the results table uses to flag
p-values whose interval straddles a significance threshold.
"""

from __future__ import annotations

import numpy as np
from scipy import stats as _sp_stats

from .families import ModelFamily

THRESHOLDS = (0.05, 0.01, 0.001)


def permutation_p_value(statistics: np.ndarray) -> float:
    """Fraction of permutations whose statistic is ``<=`` the reference.

    Args:
        statistics: ``(B,)`` summary statistics, reference first.

    Raises:
        ValueError: If *statistics* is empty.
    """
    statistics = np.asarray(statistics, dtype=float)
    if statistics.size == 0:
        raise ValueError("At least the reference statistic is required.")
    return float(np.mean(statistics <= statistics[0]))


def prediction_p_value(
    family: ModelFamily,
    y: np.ndarray,
    y_hat: np.ndarray,
    statistics: np.ndarray,
) -> float:
    """Permutation p-value when more than one pass ran, else the family test."""
    if len(statistics) > 1:
        return permutation_p_value(statistics)
    return family.reference_p_value(y, y_hat)


def p_value_interval(
    p_value: float,
    n_permutations: int,
    confidence_level: float = 0.95,
) -> tuple[float, float]:
    """Clopper-Pearson interval of an empirical p-value."""
    count = int(round(p_value * n_permutations))
    ci = _sp_stats.binomtest(count, n_permutations).proportion_ci(
        confidence_level=confidence_level, method="exact"
    )
    return float(ci.low), float(ci.high)


def format_p_value(p: float, precision: int = 3) -> str:
    """Render *p* with a significance marker: ``0.012 (*)``."""
    val = f"{np.round(p, precision):.{precision}f}"
    if p < THRESHOLDS[2]:
        return f"{val} (***)"
    if p < THRESHOLDS[1]:
        return f"{val} (**)"
    if p < THRESHOLDS[0]:
        return f"{val} (*)"
    return f"{val} (ns)"
