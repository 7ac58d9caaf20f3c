"""Tests for input conversion at the API boundary."""

import numpy as np
import pandas as pd
import pytest

from nested_prediction._compat import as_float_array, as_response_array


class TestAsFloatArray:
    def test_numpy_cast_to_float(self):
        arr = as_float_array(np.array([[1, 2], [3, 4]]), name="X", ndim=2)
        assert arr.dtype == np.float64
        assert arr.shape == (2, 2)

    def test_pandas_dataframe(self):
        df = pd.DataFrame({"a": [1.0, 2.0, 3.0], "b": [0.0, 1.0, 0.0]})
        arr = as_float_array(df, name="X", ndim=2)
        np.testing.assert_array_equal(arr[:, 0], [1.0, 2.0, 3.0])

    def test_one_dimensional_promoted_to_column(self):
        arr = as_float_array(pd.Series([1.0, 2.0]), name="confounds", ndim=2)
        assert arr.shape == (2, 1)

    def test_wrong_ndim(self):
        with pytest.raises(ValueError, match="3-dimensional|2-dimensional"):
            as_float_array(np.zeros((2, 2, 2)), name="X", ndim=2)

    def test_row_mismatch(self):
        with pytest.raises(ValueError, match="'confounds' has 3 rows"):
            as_float_array(np.zeros((3, 1)), name="confounds", ndim=2, n_rows=4)

    @pytest.mark.parametrize("bad", [np.nan, np.inf])
    def test_non_finite(self, bad):
        X = np.ones((3, 2))
        X[1, 1] = bad
        with pytest.raises(ValueError, match="NaN or infinite"):
            as_float_array(X, name="X")

    def test_rejects_invalid_type(self):
        with pytest.raises(TypeError, match="'X'"):
            as_float_array({"a": 1}, name="X")


class TestAsResponseArray:
    def test_string_labels_kept(self):
        arr = as_response_array(pd.Series(["a", "b", "a"]), n_rows=3)
        assert arr.dtype.kind == "O"
        assert arr.tolist() == ["a", "b", "a"]

    def test_single_column_flattened(self):
        arr = as_response_array(pd.DataFrame({"y": [1.0, 2.0]}), n_rows=2)
        assert arr.shape == (2,)

    def test_two_columns_kept(self):
        arr = as_response_array(np.ones((4, 2)), n_rows=4)
        assert arr.shape == (4, 2)

    def test_row_mismatch(self):
        with pytest.raises(ValueError, match="rows"):
            as_response_array(np.ones(3), n_rows=4)


@pytest.fixture()
def pl():
    return pytest.importorskip("polars")


class TestPolars:
    def test_dataframe(self, pl):
        df = pl.DataFrame({"a": [1, 2, 3], "b": [4, 5, 6]})
        arr = as_float_array(df, name="X", ndim=2)
        assert arr.shape == (3, 2)

    def test_lazyframe_collected(self, pl):
        lf = pl.DataFrame({"a": [1.0, 2.0]}).lazy()
        arr = as_float_array(lf, name="X", ndim=2)
        np.testing.assert_array_equal(arr[:, 0], [1.0, 2.0])
