"""Tests for run configuration and logging setup."""

import logging
import os

import pytest

from nested_prediction._config import (
    DEFAULT_ALPHAS,
    PredictionOptions,
    configure_logging,
    resolve_options,
)
from nested_prediction._errors import ConfigurationError


class TestResolveOptions:
    def setup_method(self):
        self._saved = os.environ.pop("NESTED_PREDICTION_VERBOSE", None)

    def teardown_method(self):
        os.environ.pop("NESTED_PREDICTION_VERBOSE", None)
        if self._saved is not None:
            os.environ["NESTED_PREDICTION_VERBOSE"] = self._saved

    def test_defaults(self):
        opts = resolve_options(None)
        assert opts.alphas == DEFAULT_ALPHAS
        assert opts.cv_scheme == (10, 10)
        assert opts.n_perm == 1
        assert opts.nlambda == 100
        assert opts.pmax is None
        assert not opts.verbose

    def test_traditional_names(self):
        opts = resolve_options(
            {
                "Nfeatures": [50, 20],
                "alpha": [0.1, 0.5],
                "CVscheme": [5, 3],
                "Nperm": 100,
                "nlambda": 30,
            }
        )
        assert opts.n_prefilter == 50
        assert opts.pmax == 20
        assert opts.alphas == (0.1, 0.5)
        assert opts.outer_folds == 5
        assert opts.inner_folds == 3
        assert opts.n_perm == 100
        assert opts.nlambda == 30

    def test_snake_case_names(self):
        opts = resolve_options({"cv_scheme": (4, 2), "n_perm": 3})
        assert opts.cv_scheme == (4, 2)
        assert opts.n_perm == 3

    def test_scalar_forms(self):
        opts = resolve_options({"Nfeatures": 10, "alpha": 0.7, "CVscheme": 0})
        assert opts.n_features == (10, 0)
        assert opts.alphas == (0.7,)
        assert opts.cv_scheme == (0, 0)

    def test_instance_passes_through(self):
        opts = PredictionOptions(n_perm=4)
        assert resolve_options(opts) is opts

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="Unknown option"):
            resolve_options({"Nperms": 10})

    @pytest.mark.parametrize(
        "bad",
        [
            {"CVscheme": (1, 5)},
            {"CVscheme": (5, -2)},
            {"CVscheme": (5, 5, 5)},
            {"alpha": [0.5, 1.5]},
            {"alpha": []},
            {"Nperm": 0},
            {"nlambda": 1},
            {"Nfeatures": (-1, 0)},
            {"lambda_min_ratio": 2.0},
        ],
    )
    def test_invalid_values(self, bad):
        with pytest.raises(ConfigurationError):
            resolve_options(bad)

    def test_env_var_enables_verbose(self):
        os.environ["NESTED_PREDICTION_VERBOSE"] = "Yes"
        assert resolve_options({}).verbose

    def test_explicit_option_beats_env_var(self):
        os.environ["NESTED_PREDICTION_VERBOSE"] = "1"
        assert not resolve_options({"verbose": False}).verbose

    def test_options_are_frozen(self):
        opts = PredictionOptions()
        with pytest.raises(AttributeError):
            opts.n_perm = 5


class TestConfigureLogging:
    def teardown_method(self):
        configure_logging(False)

    def test_attach_and_detach(self):
        logger = logging.getLogger("nested_prediction")
        before = len(logger.handlers)
        configure_logging(True)
        assert len(logger.handlers) == before + 1
        assert logger.level == logging.INFO
        configure_logging(True)
        assert len(logger.handlers) == before + 1
        configure_logging(False)
        assert len(logger.handlers) == before
