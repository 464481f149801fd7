"""Helpers for three-valued, NA-aware vectors.

Rule evaluation works on pandas nullable extension arrays (``boolean``,
``Int64``, ``Float64``, ``string``) so that comparisons and arithmetic
propagate NA and ``&``/``|`` follow Kleene logic.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd
from pandas.api.extensions import ExtensionArray
from pandas.api.types import (
    infer_dtype,
    is_bool_dtype,
    is_float_dtype,
    is_integer_dtype,
    is_numeric_dtype,
)


def is_vector(value: Any) -> bool:
    return isinstance(value, (ExtensionArray, np.ndarray, pd.Series))


def is_missing(value: Any) -> bool:
    """True for scalar NA (``pd.NA``, ``None``, ``NaN``, ``NaT``)."""
    if is_vector(value) or isinstance(value, (pd.DataFrame, list, tuple, set, dict)):
        return False
    return bool(pd.isna(value))


def column_array(values: Any) -> ExtensionArray:
    """Convert a column to the nullable array used during evaluation."""
    series = values if isinstance(values, pd.Series) else pd.Series(values)
    dtype = series.dtype
    if is_bool_dtype(dtype):
        return series.astype("boolean").array
    if is_integer_dtype(dtype):
        return series.astype("Int64").array
    if is_float_dtype(dtype):
        return series.astype("Float64").array
    if isinstance(dtype, pd.StringDtype):
        return series.astype("string").array
    if dtype == object:
        inferred = infer_dtype(series, skipna=True)
        if inferred == "string":
            return series.astype("string").array
        if inferred == "boolean":
            return series.astype("boolean").array
        if inferred == "integer":
            return series.astype("Int64").array
        if inferred in ("floating", "mixed-integer-float"):
            return series.astype("Float64").array
        if inferred == "empty":
            return series.astype("boolean").array
    return series.array


def as_array(value: Any) -> ExtensionArray:
    """Coerce vectors, sequences and scalars to a nullable array."""
    if isinstance(value, ExtensionArray) and not isinstance(value, pd.arrays.NumpyExtensionArray):
        return value
    if isinstance(value, pd.DataFrame):
        raise TypeError("a dataset cannot be used where a vector is expected")
    if isinstance(value, ExtensionArray):
        return column_array(pd.Series(np.asarray(value, dtype=object)))
    if isinstance(value, (pd.Series, np.ndarray)):
        return column_array(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return column_array(pd.Series(list(value), dtype=object))
    return column_array(pd.Series([value], dtype=object))


def to_logical(value: Any) -> Any:
    """Coerce a value to a three-valued logical (BooleanArray or scalar)."""
    if isinstance(value, pd.arrays.BooleanArray):
        return value
    if is_vector(value):
        array = as_array(value)
        if isinstance(array, pd.arrays.BooleanArray):
            return array
        if is_numeric_dtype(array.dtype):
            return pd.array(array, dtype="Float64").astype("boolean")
        raise TypeError(f"cannot interpret values of type {array.dtype} as logical")
    if is_missing(value):
        return pd.NA
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, float, np.integer, np.floating)):
        return bool(value)
    raise TypeError(f"cannot interpret {value!r} as logical")


def logical_not(value: Any) -> Any:
    value = to_logical(value)
    if value is pd.NA:
        return pd.NA
    if isinstance(value, bool):
        return not value
    return ~value


def as_result(value: Any) -> pd.arrays.BooleanArray:
    """Normalise the outcome of a rule to a BooleanArray (length 1 for scalars)."""
    value = to_logical(value)
    if isinstance(value, pd.arrays.BooleanArray):
        return value
    return pd.array([value], dtype="boolean")


def is_numeric(value: Any) -> bool:
    if is_vector(value):
        dtype = as_array(value).dtype
        return is_numeric_dtype(dtype) and not is_bool_dtype(dtype)
    if isinstance(value, (bool, np.bool_)):
        return False
    return isinstance(value, (int, float, np.integer, np.floating)) or value is pd.NA


def length(value: Any) -> int:
    if isinstance(value, pd.DataFrame):
        return len(value.columns)
    if is_vector(value):
        return len(value)
    return 1


def concatenate(values: list[Any]) -> ExtensionArray:
    """Build one vector from scalars and vectors, like R's ``c()``."""
    items: list[Any] = []
    for value in values:
        if is_vector(value):
            items.extend(pd.NA if pd.isna(item) else item for item in as_array(value))
        else:
            items.append(pd.NA if is_missing(value) else value)
    if not items:
        return pd.array([], dtype="boolean")
    return as_array(items)
