"""Typed result objects for nested prediction runs.

Frozen dataclasses that provide:

* **Attribute access** — ``result.stats.dev``, ``result.family``.
* **Dict-like access** — ``result["predicted_y"]``,
  ``result.stats.get("accuracy")``, ``"cod" in result.stats`` for
  consumers that prefer bracket syntax.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy types converted to native Python.

Three types are defined:

* :class:`FoldSummary` — what the selector chose in one outer fold of
  the reference pass.
* :class:`PredictionStats` — the statistics record of a run.  Fields
  that do not apply to the family (``accuracy`` outside multinomial,
  ``corr`` outside gaussian/poisson, the ``*_deconf`` variants without
  deconfounded response) are ``None``.
* :class:`PredictionResult` — held-out predictions, statistics and the
  permutation null distribution.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np

if TYPE_CHECKING:
    from ._config import PredictionOptions
    from .families import ModelFamily

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy scalars/arrays to Python-native types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(_numpy_to_python(item) for item in obj)
    if isinstance(obj, _DictAccessMixin):
        return obj.to_dict()
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access for result dataclasses.

    ``result["key"]`` raises ``KeyError`` on a miss;
    ``result.get(key, default)`` returns *default*; ``"key" in result``
    tests membership.  ``_SERIALIZERS`` maps field names to converters
    applied by :meth:`to_dict` before NumPy conversion.
    """

    _SERIALIZERS: ClassVar[dict[str, Any]] = {
        "family": lambda f: f.name,
        "options": lambda o: {f.name: getattr(o, f.name) for f in fields(o)},
    }

    def __getitem__(self, key: str) -> Any:
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain, JSON-serialisable dictionary."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            val = getattr(self, f.name)
            if f.name in self._SERIALIZERS and val is not None:
                val = self._SERIALIZERS[f.name](val)
            result[f.name] = _numpy_to_python(val)
        return result


# ------------------------------------------------------------------ #
# Result types
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class FoldSummary(_DictAccessMixin):
    """Selection outcome of one outer fold.

    Attributes:
        fold: Zero-based fold index.
        n_train: Training rows.
        n_test: Held-out rows.
        alpha: Selected mixing weight.
        lambda_: Selected penalty.
        n_active: Features with a non-zero coefficient.
        features: Original column indices of those features.
    """

    fold: int
    n_train: int
    n_test: int
    alpha: float
    lambda_: float
    n_active: int
    features: np.ndarray


@dataclass(frozen=True)
class PredictionStats(_DictAccessMixin):
    """Statistics of the held-out predictions.

    Attributes:
        pval: Permutation p-value (Nperm > 1) or the family's reference
            test p-value (Nperm = 1).
        dev: Deviance of the held-out predictions.
        nulldev: Deviance of the cross-validated intercept-only
            predictions.
        cod: Coefficient of determination ``1 − dev / nulldev``.
        accuracy: Classification accuracy (multinomial only).
        corr: Pearson correlation of predictions and response
            (gaussian and poisson only).
        pval_deconf, dev_deconf, nulldev_deconf, cod_deconf,
        corr_deconf: The same, in deconfounded space (gaussian with
            confounds only).
    """

    pval: float
    dev: float
    nulldev: float
    cod: float
    accuracy: float | None = None
    corr: float | None = None
    pval_deconf: float | None = None
    dev_deconf: float | None = None
    nulldev_deconf: float | None = None
    cod_deconf: float | None = None
    corr_deconf: float | None = None


@dataclass(frozen=True)
class PredictionResult(_DictAccessMixin):
    """Outcome of :func:`~nested_prediction.core.nested_predict`.

    Attributes:
        predicted_y: Held-out predictions of the reference pass in the
            original response space: ``(n,)`` values for gaussian and
            poisson, ``(n, K)`` class probabilities for multinomial,
            ``(n,)`` relative risks for cox.
        predicted_y_deconf: Held-out predictions in deconfounded space,
            or ``None``.
        stats: Statistics record.
        permutation_stats: Summary statistic (deviance) per
            permutation, reference first.
        permutation_stats_deconf: Same in deconfounded space, or
            ``None``.
        fold_summaries: Per-fold selection on the reference pass.
        family: Resolved family.
        options: Resolved run configuration.
        n_samples: Number of samples.
        n_features: Number of features.
        permutation_mode: Name of the permutation mode used.
    """

    predicted_y: np.ndarray
    predicted_y_deconf: np.ndarray | None
    stats: PredictionStats
    permutation_stats: np.ndarray
    family: ModelFamily
    options: PredictionOptions
    n_samples: int
    n_features: int
    permutation_mode: str
    permutation_stats_deconf: np.ndarray | None = None
    fold_summaries: list[FoldSummary] = field(default_factory=list)

    @property
    def n_permutations(self) -> int:
        return len(self.permutation_stats)
