"""Input compatibility layer: pandas, Polars and NumPy to float arrays.

All public API functions operate on NumPy arrays internally.  This
module converts what users actually pass (``numpy.ndarray``,
``pandas.DataFrame`` / ``pandas.Series``, and, when installed,
``polars.DataFrame`` / ``polars.LazyFrame`` / ``polars.Series``) at
the boundary so the numerical code never has to care.

Polars is **not** a required dependency.  If it is not installed, only
NumPy and pandas inputs are recognised.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = (
        np.ndarray | pd.DataFrame | pd.Series | pl.DataFrame | pl.LazyFrame
    )
else:
    DataFrameLike: TypeAlias = np.ndarray | pd.DataFrame | pd.Series

# Polars is optional.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _to_numpy(obj: Any, name: str) -> np.ndarray:
    if isinstance(obj, (pd.DataFrame, pd.Series)):
        return obj.to_numpy()
    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_numpy()
        if isinstance(obj, (pl.DataFrame, pl.Series)):
            return obj.to_numpy()
    if isinstance(obj, (np.ndarray, list, tuple)):
        return np.asarray(obj)
    raise TypeError(
        f"'{name}' must be a NumPy array or pandas object"
        + (" or Polars DataFrame/Series" if _HAS_POLARS else "")
        + f", got {type(obj).__name__}."
    )


def as_float_array(
    obj: DataFrameLike,
    *,
    name: str = "input",
    ndim: int | None = None,
    n_rows: int | None = None,
) -> np.ndarray:
    """Convert *obj* to a float ``ndarray`` and check its shape.

    Args:
        obj: Array-like input.
        name: Label used in error messages (e.g. ``"X"``).
        ndim: If given, 1-D inputs are promoted to a column when
            ``ndim == 2``; any other mismatch is an error.
        n_rows: Required number of rows, if any.

    Returns:
        A float64 array.

    Raises:
        TypeError: If *obj* is not a recognised array type.
        ValueError: On shape mismatch or non-finite entries.
    """
    arr = _to_numpy(obj, name).astype(float)
    if ndim == 2 and arr.ndim == 1:
        arr = arr[:, np.newaxis]
    if ndim is not None and arr.ndim != ndim:
        raise ValueError(f"'{name}' must be {ndim}-dimensional, got shape {arr.shape}.")
    if n_rows is not None and arr.shape[0] != n_rows:
        raise ValueError(
            f"'{name}' has {arr.shape[0]} rows but {n_rows} samples were expected."
        )
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"'{name}' contains NaN or infinite values.")
    return arr


def as_response_array(obj: DataFrameLike, *, n_rows: int) -> np.ndarray:
    """Convert a response to an array without forcing a float dtype.

    Multinomial responses may arrive as string labels, so only the row
    count is checked here; each family validates the contents.
    """
    arr = _to_numpy(obj, "y")
    if arr.ndim == 2 and arr.shape[1] == 1:
        arr = arr[:, 0]
    if arr.shape[0] != n_rows:
        raise ValueError(
            f"'y' has {arr.shape[0]} rows but X has {n_rows} samples."
        )
    return arr
