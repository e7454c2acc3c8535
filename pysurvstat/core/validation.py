"""
Input validation utilities for PySurvStat.

These validators follow the "fail fast, fail loud" principle. They raise
immediately with clear error messages rather than silently correcting
or making assumptions about user intent.

Design principles:
    - No silent type coercion (except np.asarray on array-likes)
    - Clear, actionable error messages with actual values
    - Each function validates ONE thing
    - Parameter names included in all error messages
"""

import numpy as np
from numpy.typing import ArrayLike, NDArray
from typing import Any, Sequence

from pysurvstat.core.exceptions import (
    DataValidationError,
    DesignError,
    DimensionError,
    ValidationError,
)


def check_array(
    array: ArrayLike,
    name: str,
) -> NDArray[np.floating[Any]]:
    """
    Validate and convert input to a float64 numpy array.

    Booleans and integers are accepted and converted. Object dtype
    (mixed types) and non-numeric dtypes (strings, datetimes) are rejected.

    Args:
        array: Input to validate
        name: Parameter name for error messages

    Returns:
        numpy.ndarray of dtype float64

    Raises:
        DataValidationError: If input cannot be converted to numeric array
    """
    try:
        result = np.asarray(array)
    except (ValueError, TypeError) as e:
        raise DataValidationError(
            f"{name}: cannot convert to array: {e}", field=name
        ) from e

    if result.dtype == object:
        raise DataValidationError(
            f"{name}: converted to object dtype, indicating mixed types or "
            f"non-numeric data",
            field=name,
        )

    if result.dtype != np.bool_ and not np.issubdtype(result.dtype, np.number):
        raise DataValidationError(
            f"{name}: non-numeric dtype {result.dtype}, expected numeric data",
            field=name,
        )

    return result.astype(np.float64)


def check_finite(array: NDArray[np.floating[Any]], name: str) -> None:
    """
    Verify array contains no NaN or Inf values.

    Raises:
        DataValidationError: If array contains non-finite values
    """
    if not np.all(np.isfinite(array)):
        n_nan = int(np.sum(np.isnan(array)))
        n_inf = int(np.sum(np.isinf(array)))
        first = int(np.flatnonzero(~np.isfinite(array.ravel()))[0])
        raise DataValidationError(
            f"{name}: contains non-finite values ({n_nan} NaN, {n_inf} Inf)",
            field=name,
            index=first,
        )


def check_ndim(array: NDArray, ndim: int, name: str) -> None:
    """
    Verify array has exactly the specified number of dimensions.

    Raises:
        DimensionError: If array has wrong number of dimensions
    """
    if array.ndim != ndim:
        raise DimensionError(
            f"{name}: expected {ndim}D array, got {array.ndim}D with shape {array.shape}"
        )


def check_1d(array: NDArray, name: str) -> None:
    """Verify array is 1-dimensional."""
    check_ndim(array, 1, name)


def check_2d(array: NDArray, name: str) -> None:
    """Verify array is 2-dimensional."""
    check_ndim(array, 2, name)


def check_consistent_length(
    *arrays: NDArray,
    names: tuple[str, ...]
) -> None:
    """
    Verify all arrays have the same length (first dimension).

    Raises:
        ValueError: If number of names doesn't match number of arrays
        DataValidationError: If arrays have inconsistent lengths
    """
    if len(arrays) != len(names):
        raise ValueError(
            f"Number of arrays ({len(arrays)}) must match number of names ({len(names)})"
        )

    if len(arrays) < 2:
        return

    lengths = [arr.shape[0] for arr in arrays]
    if len(set(lengths)) > 1:
        details = ", ".join(f"{name}={length}" for name, length in zip(names, lengths))
        raise DataValidationError(f"Inconsistent lengths: {details}")


def check_min_samples(array: NDArray, min_samples: int, name: str) -> None:
    """
    Verify array has at least the minimum number of samples.

    Raises:
        DataValidationError: If array has fewer than min_samples
    """
    n = array.shape[0]
    if n < min_samples:
        raise DataValidationError(
            f"{name}: requires at least {min_samples} samples, got {n}",
            field=name,
        )


def check_positive(array: NDArray[np.floating[Any]], name: str) -> None:
    """
    Verify every value is strictly positive.

    Survival times of zero or less cannot enter a risk set.

    Raises:
        DataValidationError: If any value is <= 0
    """
    bad = np.flatnonzero(array <= 0)
    if len(bad) > 0:
        raise DataValidationError(
            f"{name}: must be strictly positive, got {array[bad[0]]!r} "
            f"at index {int(bad[0])} ({len(bad)} non-positive values)",
            field=name,
            index=int(bad[0]),
        )


def check_binary(array: NDArray[np.floating[Any]], name: str) -> None:
    """
    Verify an indicator array holds only 0/1 (or False/True).

    Raises:
        DataValidationError: If any value is not 0 or 1
    """
    bad = np.flatnonzero((array != 0.0) & (array != 1.0))
    if len(bad) > 0:
        unique_bad = np.unique(array[bad])
        raise DataValidationError(
            f"{name}: must contain only 0 and 1 (or False/True), "
            f"got values {unique_bad.tolist()}",
            field=name,
            index=int(bad[0]),
        )


def check_conf_level(conf_level: float) -> None:
    """
    Verify a confidence level lies strictly inside (0, 1).

    Raises:
        ValidationError: If conf_level is outside (0, 1)
    """
    if not 0.0 < conf_level < 1.0:
        raise ValidationError(
            f"conf_level must be in (0, 1), got {conf_level}"
        )


def check_column_rank(
    X: NDArray[np.floating[Any]],
    column_names: Sequence[str],
    *,
    center: bool = True,
) -> None:
    """
    Verify a design matrix has full column rank.

    With center=True the columns are centered first, so a constant column
    (collinear with the implicit baseline) counts as rank deficiency.

    Args:
        X: (n, p) design matrix
        column_names: Column labels for error messages
        center: Subtract column means before computing the rank

    Raises:
        DesignError: If the matrix is rank-deficient
    """
    n, p = X.shape
    if p == 0:
        return

    M = X - X.mean(axis=0) if center else X
    rank = int(np.linalg.matrix_rank(M))

    if rank < p:
        constant = [
            column_names[j] for j in range(p)
            if np.all(X[:, j] == X[0, j])
        ]
        detail = f" Constant columns: {constant}." if constant else ""
        raise DesignError(
            f"design matrix is rank-deficient (rank={rank}, expected={p}). "
            f"This indicates perfect multicollinearity.{detail}",
            rank=rank,
            expected_rank=p,
            column_names=tuple(column_names),
        )
