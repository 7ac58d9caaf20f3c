"""Run configuration for the nested_prediction package.

:class:`PredictionOptions` is the single configuration record consumed
by :func:`~nested_prediction.core.nested_predict`.  Callers may build it
directly or pass a plain mapping to :func:`resolve_options`, which
accepts both the traditional option names (``Nfeatures``, ``alpha``,
``CVscheme``, ``Nperm``, ``nlambda``, ``show_scatter``, ``verbose``) and
their snake_case equivalents.

Verbosity resolution order (first match wins):
    1. An explicit ``verbose`` option.
    2. The ``NESTED_PREDICTION_VERBOSE`` environment variable
       (``1``/``true``/``yes``/``on``, case-insensitive).
    3. Off.

Examples:
    Turn on progress logging from the shell::

        export NESTED_PREDICTION_VERBOSE=1

    Or per call::

        nested_predict(y, X, "gaussian", {"CVscheme": (5, 5), "verbose": True})
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from ._errors import ConfigurationError

DEFAULT_ALPHAS: tuple[float, ...] = (0.01, 0.1, 0.4, 0.7, 0.9, 0.99)

_ENV_VERBOSE = "NESTED_PREDICTION_VERBOSE"
_TRUTHY = {"1", "true", "yes", "on"}

# Traditional option names → PredictionOptions field names.
_ALIASES = {
    "Nfeatures": "n_features",
    "alpha": "alphas",
    "CVscheme": "cv_scheme",
    "Nperm": "n_perm",
    "nlambda": "nlambda",
    "lambda_min_ratio": "lambda_min_ratio",
    "show_scatter": "show_scatter",
    "verbose": "verbose",
}


@dataclass(frozen=True)
class PredictionOptions:
    """Validated configuration for one prediction run.

    Attributes:
        n_features: ``(n_prefilter, pmax)``.  ``n_prefilter`` is the
            number of features kept by the univariate pre-filter and
            ``pmax`` caps the number of non-zero coefficients along a
            solver path; ``0`` disables either.
        alphas: Grid of elastic-net mixing weights searched by the inner
            cross-validation.
        cv_scheme: ``(outer_folds, inner_folds)``; ``0`` means
            leave-one-out.
        n_perm: Number of permutations, including the unpermuted
            reference pass.
        nlambda: Length of the penalty path generated per mixing weight.
        lambda_min_ratio: Smallest penalty as a fraction of λ_max;
            ``None`` picks ``1e-4`` when N > p and ``1e-2`` otherwise.
        show_scatter: Accepted for compatibility; no plot is drawn.
        verbose: Log progress at INFO level.
    """

    n_features: tuple[int, int] = (0, 0)
    alphas: tuple[float, ...] = DEFAULT_ALPHAS
    cv_scheme: tuple[int, int] = (10, 10)
    n_perm: int = 1
    nlambda: int = 100
    lambda_min_ratio: float | None = None
    show_scatter: bool = False
    verbose: bool = False

    def __post_init__(self) -> None:
        n_pre, pmax = self.n_features
        if n_pre < 0 or pmax < 0:
            raise ConfigurationError("Nfeatures entries must be non-negative.")
        if not self.alphas:
            raise ConfigurationError("The alpha grid must not be empty.")
        for a in self.alphas:
            if not 0.0 <= a <= 1.0:
                raise ConfigurationError(
                    f"Mixing weight alpha={a} is outside [0, 1]."
                )
        for k in self.cv_scheme:
            if k < 0 or k == 1:
                raise ConfigurationError(
                    f"Fold count {k} is invalid; use 0 (leave-one-out) or >= 2."
                )
        if self.n_perm < 1:
            raise ConfigurationError("Nperm must be at least 1.")
        if self.nlambda < 2:
            raise ConfigurationError(
                "nlambda must be at least 2; single-value penalty paths "
                "are not supported."
            )
        if self.lambda_min_ratio is not None and not 0.0 < self.lambda_min_ratio < 1.0:
            raise ConfigurationError("lambda_min_ratio must lie in (0, 1).")

    @property
    def n_prefilter(self) -> int:
        return self.n_features[0]

    @property
    def pmax(self) -> int | None:
        return self.n_features[1] or None

    @property
    def outer_folds(self) -> int:
        return self.cv_scheme[0]

    @property
    def inner_folds(self) -> int:
        return self.cv_scheme[1]


def _as_pair(value: Any, name: str) -> tuple[int, int]:
    if value is None:
        return (0, 0)
    if isinstance(value, (int, float)):
        return (int(value), 0)
    items = [int(v) for v in value]
    if len(items) == 1:
        return (items[0], 0)
    if len(items) != 2:
        raise ConfigurationError(f"{name} must have one or two entries, got {len(items)}.")
    return (items[0], items[1])


def _coerce(field_name: str, value: Any) -> Any:
    if field_name == "n_features":
        return _as_pair(value, "Nfeatures")
    if field_name == "alphas":
        if isinstance(value, (int, float)):
            return (float(value),)
        return tuple(float(v) for v in value)
    if field_name == "cv_scheme":
        if isinstance(value, (int, float)):
            return (int(value), int(value))
        items = tuple(int(v) for v in value)
        if len(items) != 2:
            raise ConfigurationError(
                f"CVscheme must have two entries (outer, inner), got {len(items)}."
            )
        return items
    if field_name in ("n_perm", "nlambda"):
        return int(value)
    if field_name in ("show_scatter", "verbose"):
        return bool(value)
    return value


def _env_verbose() -> bool:
    return os.environ.get(_ENV_VERBOSE, "").strip().lower() in _TRUTHY


def resolve_options(
    options: Mapping[str, Any] | PredictionOptions | None = None,
) -> PredictionOptions:
    """Build a validated :class:`PredictionOptions`.

    Args:
        options: A mapping using traditional or snake_case keys, an
            existing :class:`PredictionOptions` (returned as-is), or
            ``None`` for all defaults.

    Returns:
        The resolved options.

    Raises:
        ConfigurationError: On unknown keys or invalid values.
    """
    if isinstance(options, PredictionOptions):
        return options
    options = dict(options or {})

    valid = {f.name for f in fields(PredictionOptions)}
    kwargs: dict[str, Any] = {}
    for key, value in options.items():
        field_name = _ALIASES.get(key, key)
        if field_name not in valid:
            raise ConfigurationError(
                f"Unknown option {key!r}.  Recognised options: "
                f"{sorted(set(_ALIASES) | valid)}."
            )
        kwargs[field_name] = _coerce(field_name, value)

    if "verbose" not in kwargs:
        kwargs["verbose"] = _env_verbose()

    return PredictionOptions(**kwargs)


_handler: logging.Handler | None = None


def configure_logging(verbose: bool) -> None:
    """Attach (or detach) an INFO stream handler on the package logger.

    The package logger otherwise only carries a ``NullHandler`` so that
    applications stay in control of log routing.
    """
    global _handler
    logger = logging.getLogger("nested_prediction")
    if verbose and _handler is None:
        _handler = logging.StreamHandler()
        _handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(_handler)
        logger.setLevel(logging.INFO)
    elif not verbose and _handler is not None:
        logger.removeHandler(_handler)
        logger.setLevel(logging.NOTSET)
        _handler = None
