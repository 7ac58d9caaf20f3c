"""Formatted ASCII table display for nested prediction results.

The table mirrors the statsmodels summary style: a header panel with
the run configuration, a statistics panel with the held-out deviance,
null deviance, coefficient of determination and p-value (original and,
where present, deconfounded space side by side), and a per-fold panel
listing the hyperparameters the inner cross-validation chose.
"""

from __future__ import annotations

import math
import textwrap
from typing import TYPE_CHECKING

from scipy import stats as _sp_stats

from .pvalues import THRESHOLDS, format_p_value, p_value_interval

if TYPE_CHECKING:
    from ._results import PredictionResult


def _fmt(val: float | None, spec: str = ".4f") -> str:
    """Format a statistic; ``None`` and ``nan`` become ``'N/A'``."""
    if val is None or (isinstance(val, float) and math.isnan(val)):
        return "N/A"
    return format(val, spec)


def _wrap(text: str, width: int = 80, indent: int = 2) -> str:
    return textwrap.fill(text, width=width, initial_indent="", subsequent_indent=" " * indent)


def _recommend_n_permutations(p_hat: float, threshold: float, alpha: float = 0.05) -> int:
    """Minimum permutation count whose interval clears *threshold*.

    Normal approximation to the Clopper-Pearson half-width, rounded up
    and clamped to ``[100, 10_000_000]``.
    """
    gap = abs(p_hat - threshold)
    if gap < 1e-12:
        return 10_000_000
    z = _sp_stats.norm.ppf(1 - alpha / 2)
    b_min = math.ceil((z**2) * p_hat * (1 - p_hat) / (gap**2))
    return max(100, min(b_min, 10_000_000))


def print_results_table(
    result: PredictionResult,
    *,
    title: str = "Nested Cross-Validated Prediction",
) -> None:
    """Print *result* as an 80-column ASCII summary.

    Args:
        result: Object returned by
            :func:`~nested_prediction.core.nested_predict`.
        title: Title for the output table.
    """
    stats = result.stats
    opts = result.options
    col1 = 40
    col2 = 38

    print("=" * 80)
    for line in textwrap.wrap(title, width=78):
        print(f"{line:^80}")
    print("=" * 80)

    outer, inner = opts.cv_scheme
    rows = [
        ("Family:", result.family.name, "No. Observations:", str(result.n_samples)),
        ("Permutations:", result.permutation_mode, "No. Features:", str(result.n_features)),
        ("CV scheme:", f"{outer} outer / {inner} inner", "Nperm:", str(result.n_permutations)),
    ]
    if opts.n_prefilter or opts.pmax:
        rows.append(("Pre-filter:", str(opts.n_prefilter or "off"), "pmax:", str(opts.pmax or "off")))
    for ll, lv, rl, rv in rows:
        print(f"{ll:<16}{lv:<{col1 - 16}}{rl:>{col2 - 11}} {rv:>10}")

    print("-" * 80)

    has_deconf = stats.dev_deconf is not None
    print(f"{'Statistic':<24}{'Original':>27}{'Deconfounded' if has_deconf else '':>29}")
    print("-" * 80)

    def _row(label: str, val: float | None, val_d: float | None, spec: str = ".4f") -> None:
        right = _fmt(val_d, spec) if has_deconf else ""
        print(f"{label:<24}{_fmt(val, spec):>27}{right:>29}")

    _row("Deviance", stats.dev, stats.dev_deconf)
    _row("Null deviance", stats.nulldev, stats.nulldev_deconf)
    _row("Coef. of determination", stats.cod, stats.cod_deconf)
    if stats.corr is not None:
        _row("Correlation", stats.corr, stats.corr_deconf)
    if stats.accuracy is not None:
        _row("Accuracy", stats.accuracy, None)
    p_right = format_p_value(stats.pval_deconf) if stats.pval_deconf is not None else ""
    print(f"{'P-value':<24}{format_p_value(stats.pval):>27}{p_right:>29}")

    notes: list[str] = []
    n_perm = result.n_permutations
    if n_perm > 1:
        lo, hi = p_value_interval(stats.pval, n_perm)
        for t in THRESHOLDS:
            if lo < t < hi:
                b = _recommend_n_permutations(stats.pval, t)
                notes.append(
                    f"P-value interval [{lo:.3f}, {hi:.3f}] straddles {t}; "
                    f"consider Nperm ≥ {b:,}."
                )
                break
    else:
        notes.append(
            "Single pass (Nperm = 1): the p-value comes from a parametric test "
            "of the held-out predictions, not from permutations."
        )

    if result.fold_summaries:
        print("-" * 80)
        print(f"{'Fold':<8}{'Train':>8}{'Test':>8}{'Alpha':>12}{'Lambda':>16}{'Active':>10}  Features")
        print("-" * 80)
        for fs in result.fold_summaries:
            feats = ",".join(str(int(j)) for j in fs.features[:4])
            if len(fs.features) > 4:
                feats += ",..."
            print(
                f"{fs.fold + 1:<8}{fs.n_train:>8}{fs.n_test:>8}{fs.alpha:>12.3g}"
                f"{fs.lambda_:>16.4g}{fs.n_active:>10}  {feats}"
            )

    if notes:
        print("-" * 80)
        print("Notes")
        print("-" * 80)
        for note in notes:
            print(_wrap(f"  [!] {note}", width=80, indent=6))

    print("=" * 80)
    print(
        f"(***) p < {THRESHOLDS[2]}   "
        f"(**) p < {THRESHOLDS[1]}   "
        f"(*) p < {THRESHOLDS[0]}   "
        f"(ns) p >= {THRESHOLDS[0]}"
    )
