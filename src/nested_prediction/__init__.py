"""nested_prediction — Nested cross-validated elastic-net prediction.

Predicts a continuous, count, multi-class or survival response from
high-dimensional features with elastic-net regularised GLMs.  Held-out
predictions come from nested cross-validation (an inner loop selects
the mixing weight and penalty, with two-stage feature selection), and
significance comes from permuting the response, optionally preserving
a pairwise dependency structure among samples.  Confound effects can
be removed inside every training fold.

Public API:
    .. autosummary::
        nested_predict
        print_results_table
        PredictionOptions
        resolve_options
        PredictionResult
        PredictionStats
        FoldSummary
        ModelFamily
        GaussianFamily
        PoissonFamily
        MultinomialFamily
        CoxFamily
        resolve_family
        register_family
        PermutationEngine
        PermutationMode
        ElasticNetSolver
        SolverConfig
        ElasticNetPath
        ConfigurationError
        DegenerateModelError
        NumericalError
"""

import logging

from ._config import PredictionOptions, resolve_options
from ._errors import (
    ConfigurationError,
    DegenerateModelError,
    NestedPredictionError,
    NumericalError,
)
from ._results import FoldSummary, PredictionResult, PredictionStats
from .core import nested_predict
from .display import print_results_table
from .families import (
    CoxFamily,
    GaussianFamily,
    ModelFamily,
    MultinomialFamily,
    PoissonFamily,
    register_family,
    resolve_family,
)
from .permutations import PermutationEngine, PermutationMode
from .solver import ElasticNetPath, ElasticNetSolver, SolverConfig

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "nested_predict",
    "print_results_table",
    "PredictionOptions",
    "resolve_options",
    "PredictionResult",
    "PredictionStats",
    "FoldSummary",
    "ModelFamily",
    "GaussianFamily",
    "PoissonFamily",
    "MultinomialFamily",
    "CoxFamily",
    "resolve_family",
    "register_family",
    "PermutationEngine",
    "PermutationMode",
    "ElasticNetSolver",
    "SolverConfig",
    "ElasticNetPath",
    "NestedPredictionError",
    "ConfigurationError",
    "DegenerateModelError",
    "NumericalError",
]

__version__ = "0.1.0"
