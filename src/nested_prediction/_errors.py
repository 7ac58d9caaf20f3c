"""Exception taxonomy for nested_prediction.

Three failure classes are distinguished:

* :class:`ConfigurationError` — the request itself is invalid (fold
  counts, class counts, permutation-set shape, unknown option keys).
  Subclasses ``ValueError`` so callers that already guard input
  validation with ``except ValueError`` keep working.
* :class:`DegenerateModelError` — a fitted model retained fewer active
  features than the selector requires.  Raised and caught inside
  :mod:`nested_prediction.selection`, where the forced-inclusion
  fallback resolves it; it never escapes a run.
* :class:`NumericalError` — ill-conditioned deconfounding regressions
  or non-finite deviances.  Subclasses ``ArithmeticError``.

Solver failures are not wrapped: whatever the underlying path solver
raises propagates unchanged and aborts the run.
"""

from __future__ import annotations


class NestedPredictionError(Exception):
    """Base class for all package-specific errors."""


class ConfigurationError(NestedPredictionError, ValueError):
    """Invalid option, fold count, class count or permutation set."""


class DegenerateModelError(NestedPredictionError, RuntimeError):
    """A selected model has too few active features.

    Attributes:
        n_active: Number of non-zero coefficients found.
        n_required: Minimum number of features the selector keeps.
    """

    def __init__(self, n_active: int, n_required: int) -> None:
        self.n_active = n_active
        self.n_required = n_required
        super().__init__(
            f"Selected model has {n_active} active feature(s); "
            f"at least {n_required} required."
        )


class NumericalError(NestedPredictionError, ArithmeticError):
    """Ill-conditioned regression or non-finite statistic."""


__all__ = [
    "ConfigurationError",
    "DegenerateModelError",
    "NestedPredictionError",
    "NumericalError",
]
