"""Guarded logarithms and ratios shared by every deviance function.

Deviances of the count, multinomial and Cox families all take logs of
quantities that can legitimately reach zero: a zero count, a
probability that underflowed, a hazard ratio of an extreme linear
predictor.  Rather than patching each call site, every family routes
through the helpers below, which state the conventions once:

* ``y · log(y / μ) = 0`` whenever ``y = 0`` (the limit as y → 0).
* Arguments of a logarithm are clipped from below at the smallest
  positive normal float, so ``log`` never returns ``-inf``.
* Division by zero in a ratio returns the supplied fill value.
"""

from __future__ import annotations

import numpy as np
from scipy.special import xlogy

_TINY = np.finfo(float).tiny

# Largest exponent that keeps exp() finite in double precision.
MAX_EXP = 700.0


def safe_log(x: np.ndarray | float) -> np.ndarray:
    """Natural log with the argument clipped at the smallest positive float."""
    return np.log(np.clip(np.asarray(x, dtype=float), _TINY, None))


def safe_exp(eta: np.ndarray | float) -> np.ndarray:
    """Exponential with the argument capped at :data:`MAX_EXP`."""
    return np.exp(np.minimum(np.asarray(eta, dtype=float), MAX_EXP))


def xlogy_ratio(y: np.ndarray, mu: np.ndarray) -> np.ndarray:
    """Elementwise ``y · log(y / μ)`` with the ``y = 0`` convention.

    ``scipy.special.xlogy`` already returns 0 when its first argument is
    0; *mu* is clipped so a vanished mean cannot produce ``inf`` when
    ``y > 0``.
    """
    y = np.asarray(y, dtype=float)
    mu = np.clip(np.asarray(mu, dtype=float), _TINY, None)
    return xlogy(y, y) - xlogy(y, mu)


def safe_divide(
    num: np.ndarray | float,
    den: np.ndarray | float,
    fill: float = 0.0,
) -> np.ndarray:
    """Elementwise ``num / den`` returning *fill* where ``den == 0``."""
    num = np.asarray(num, dtype=float)
    den = np.asarray(den, dtype=float)
    out = np.full(np.broadcast(num, den).shape, fill, dtype=float)
    np.divide(num, den, out=out, where=den != 0)
    return out
