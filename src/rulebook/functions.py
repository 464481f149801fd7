"""
Function registry for the rule language.

The set of callable functions is closed: a rule may only call what is
registered here, and type checks are recognised by membership in
``TYPE_PREDICATES``, never by name pattern.

Available functions:
    - Type predicates: is.numeric, is.integer, is.double, is.character,
      is.logical, is.factor, is.date
    - Logical: is.na, grepl, in_range, any, all, is_unique, all_unique,
      is_complete, all_complete
    - Numeric: sum, mean, median, min, max, sd, var, length, nrow, ncol,
      abs, sqrt, exp, log, round, nchar, c
    - Missingness: number_missing, fraction_missing, row_missing, col_missing
    - Scoring: V (rule with impact and severity), L (linear rule with Lp impact)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping

import numpy as np
import pandas as pd
from pandas.api.types import (
    infer_dtype,
    is_bool_dtype,
    is_datetime64_any_dtype,
    is_float_dtype,
    is_integer_dtype,
    is_numeric_dtype,
    is_string_dtype,
)

from rulebook.expression import Dot, String
from rulebook.vectors import (
    as_array,
    column_array,
    concatenate,
    is_missing,
    is_numeric,
    is_vector,
    length,
    to_logical,
)


@dataclass(frozen=True)
class RuleFunction:
    """A function callable from rule expressions."""

    name: str
    impl: Callable[..., Any]
    logical: bool = False
    """Whether the function returns truth values (so a call can be a rule)."""

    type_check: bool = False
    """Whether the function is a type predicate."""

    lazy: bool = False
    """Lazy functions receive the evaluator and unevaluated argument nodes."""


FUNCTIONS: Dict[str, RuleFunction] = {}


def _register(name: str, *, logical: bool = False, type_check: bool = False, lazy: bool = False):
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        FUNCTIONS[name] = RuleFunction(
            name=name, impl=fn, logical=logical or type_check, type_check=type_check, lazy=lazy
        )
        return fn

    return decorator


def get_function(name: str) -> RuleFunction | None:
    return FUNCTIONS.get(name)


def _flag(kwargs: Mapping[str, Any], key: str, default: bool = False) -> bool:
    value = kwargs.get(key, default)
    return default if is_missing(value) else bool(value)


# --- type predicates --------------------------------------------------------


def _type_predicate(name: str, array_check: Callable[[Any, Any], bool], scalar_check: Callable[[Any], bool]):
    def check(value: Any) -> bool:
        if is_vector(value):
            array = as_array(value)
            return bool(array_check(array.dtype, array))
        return bool(scalar_check(value))

    _register(name, type_check=True)(check)


def _is_character_array(dtype, array) -> bool:
    if isinstance(dtype, pd.StringDtype):
        return True
    return is_string_dtype(dtype) and infer_dtype(array, skipna=True) in ("string", "empty")


def _is_date_array(dtype, array) -> bool:
    return is_datetime64_any_dtype(dtype) or infer_dtype(array, skipna=True) in ("date", "datetime")


_type_predicate(
    "is.numeric",
    lambda dtype, _: is_numeric_dtype(dtype) and not is_bool_dtype(dtype),
    lambda v: is_numeric(v) and v is not pd.NA,
)
_type_predicate(
    "is.integer",
    lambda dtype, _: is_integer_dtype(dtype),
    lambda v: isinstance(v, (int, np.integer)) and not isinstance(v, bool),
)
_type_predicate(
    "is.double",
    lambda dtype, _: is_float_dtype(dtype),
    lambda v: isinstance(v, (float, np.floating)),
)
_type_predicate("is.character", _is_character_array, lambda v: isinstance(v, str))
_type_predicate(
    "is.logical",
    lambda dtype, _: is_bool_dtype(dtype),
    lambda v: isinstance(v, (bool, np.bool_)) or v is pd.NA,
)
_type_predicate(
    "is.factor",
    lambda dtype, _: isinstance(dtype, pd.CategoricalDtype),
    lambda v: False,
)
_type_predicate(
    "is.date",
    _is_date_array,
    lambda v: isinstance(v, (pd.Timestamp, np.datetime64)) or hasattr(v, "isoformat"),
)

TYPE_PREDICATES = frozenset(name for name, fn in FUNCTIONS.items() if fn.type_check)


# --- logical functions ------------------------------------------------------


@_register("is.na", logical=True)
def _is_na(value: Any) -> Any:
    if is_vector(value):
        return pd.array(np.asarray(pd.isna(as_array(value)), dtype=bool), dtype="boolean")
    return is_missing(value)


@_register("grepl", logical=True)
def _grepl(pattern: str, value: Any, **kwargs: Any) -> Any:
    strings = pd.Series(as_array(value)).astype("string")
    matched = strings.str.contains(
        pattern,
        regex=not _flag(kwargs, "fixed"),
        case=not _flag(kwargs, "ignore.case"),
    )
    return matched.astype("boolean").array


@_register("in_range", logical=True)
def _in_range(value: Any, minimum: Any, maximum: Any, **kwargs: Any) -> Any:
    if _flag(kwargs, "strict"):
        return to_logical(value > minimum) & to_logical(value < maximum)
    return to_logical(value >= minimum) & to_logical(value <= maximum)


@_register("any", logical=True)
def _any(*values: Any, **kwargs: Any) -> Any:
    flags = to_logical(concatenate(list(values)))
    return flags.any(skipna=_flag(kwargs, "na.rm"))


@_register("all", logical=True)
def _all(*values: Any, **kwargs: Any) -> Any:
    flags = to_logical(concatenate(list(values)))
    return flags.all(skipna=_flag(kwargs, "na.rm"))


def _frame(values: tuple[Any, ...]) -> pd.DataFrame:
    columns: dict[int, Any] = {}
    for value in values:
        if isinstance(value, pd.DataFrame):
            for name in value.columns:
                columns[len(columns)] = column_array(value[name])
        else:
            columns[len(columns)] = as_array(value)
    return pd.DataFrame(columns)


@_register("is_unique", logical=True)
def _is_unique(*values: Any) -> Any:
    frame = _frame(values)
    return pd.array(~frame.duplicated(keep=False).to_numpy(), dtype="boolean")


@_register("all_unique", logical=True)
def _all_unique(*values: Any) -> bool:
    return not _frame(values).duplicated(keep=False).any()


@_register("is_complete", logical=True)
def _is_complete(*values: Any) -> Any:
    frame = _frame(values)
    return pd.array(frame.notna().all(axis=1).to_numpy(), dtype="boolean")


@_register("all_complete", logical=True)
def _all_complete(*values: Any) -> bool:
    return bool(_frame(values).notna().all(axis=None))


# --- numeric functions ------------------------------------------------------


def _reducer(name: str, method: str, **extra: Any) -> None:
    def reduce(*values: Any, **kwargs: Any) -> Any:
        series = pd.Series(concatenate(list(values)))
        if is_bool_dtype(series.dtype):
            series = series.astype("Int64")
        result = getattr(series, method)(skipna=_flag(kwargs, "na.rm"), **extra)
        return pd.NA if is_missing(result) else result

    _register(name)(reduce)


_reducer("sum", "sum")
_reducer("mean", "mean")
_reducer("median", "median")
_reducer("min", "min")
_reducer("max", "max")
_reducer("sd", "std", ddof=1)
_reducer("var", "var", ddof=1)


@_register("length")
def _length(value: Any) -> int:
    return length(value)


@_register("nrow")
def _nrow(value: Any) -> int:
    return len(value.index) if isinstance(value, pd.DataFrame) else length(value)


@_register("ncol")
def _ncol(value: Any) -> int:
    return len(value.columns) if isinstance(value, pd.DataFrame) else 1


def _elementwise(name: str, fn: Callable[[Any], Any]) -> None:
    def apply(value: Any, *args: Any, **kwargs: Any) -> Any:
        if is_vector(value):
            return fn(pd.Series(as_array(value)), *args, **kwargs).array
        return pd.NA if is_missing(value) else fn(pd.Series([value]), *args, **kwargs).iloc[0]

    _register(name)(apply)


_elementwise("abs", lambda s: s.abs())
_elementwise("sqrt", lambda s: s.astype("Float64") ** 0.5)
_elementwise("exp", lambda s: np.exp(s.astype("Float64")))
_elementwise("log", lambda s: np.log(s.astype("Float64")))
_elementwise("round", lambda s, digits=0: s.round(int(digits)))
_elementwise("nchar", lambda s: s.astype("string").str.len())


@_register("c")
def _c(*values: Any) -> Any:
    return concatenate(list(values))


# --- scoring ----------------------------------------------------------------


def argument(args: tuple, keywords: tuple, position: int, name: str) -> Any:
    """The node passed for a parameter, by keyword or by position, or None."""
    for key, value in keywords:
        if key == name:
            return value
    return args[position] if len(args) > position else None


@_register("V", logical=True, lazy=True)
def _v(evaluator: Any, args: tuple, keywords: tuple) -> Any:
    """``V(rule, impact, severity)``: a rule carrying its own impact and severity."""
    rule = argument(args, keywords, 0, "rule")
    impact = argument(args, keywords, 1, "impact")
    severity = argument(args, keywords, 2, "severity")
    result = to_logical(evaluator.evaluate(rule))
    if impact is not None:
        evaluator.impact = evaluator.evaluate(impact)
    if severity is not None:
        evaluator.severity = evaluator.evaluate(severity)
    return result


@_register("L", logical=True, lazy=True)
def _l(evaluator: Any, args: tuple, keywords: tuple) -> Any:
    """``L(linrule, p = 2)``: a linear rule scored by severity and Lp impact."""
    from rulebook.classify import linear_form

    rule = argument(args, keywords, 0, "linrule")
    p = argument(args, keywords, 1, "p")
    order = 2.0 if p is None else float(evaluator.evaluate(p))
    result = evaluator.linear(rule)
    norm = linear_form(rule).norm(order)
    if evaluator.severity is not None and norm:
        evaluator.impact = evaluator.severity / norm
    return result


# --- missingness ------------------------------------------------------------


def _selected_columns(evaluator: Any, args: tuple) -> dict[str, Any]:
    dataset: pd.DataFrame = evaluator.dataset()
    if not args or (len(args) == 1 and isinstance(args[0], Dot)):
        return {name: column_array(dataset[name]) for name in dataset.columns}
    if len(args) == 1 and isinstance(args[0], String):
        pattern = re.compile(args[0].value)
        return {
            name: column_array(dataset[name])
            for name in dataset.columns
            if pattern.search(str(name))
        }
    return {evaluator.label(arg): as_array(evaluator.evaluate(arg)) for arg in args}


@_register("number_missing", lazy=True)
def _number_missing(evaluator: Any, args: tuple, keywords: tuple) -> int:
    columns = _selected_columns(evaluator, args)
    return int(sum(int(pd.isna(values).sum()) for values in columns.values()))


@_register("fraction_missing", lazy=True)
def _fraction_missing(evaluator: Any, args: tuple, keywords: tuple) -> Any:
    columns = _selected_columns(evaluator, args)
    cells = sum(len(values) for values in columns.values())
    if cells == 0:
        return pd.NA
    missing = sum(int(pd.isna(values).sum()) for values in columns.values())
    return missing / cells


@_register("row_missing", lazy=True)
def _row_missing(evaluator: Any, args: tuple, keywords: tuple) -> Any:
    columns = _selected_columns(evaluator, args)
    if not columns:
        return pd.array([0] * len(evaluator.dataset().index), dtype="Int64")
    counts = pd.DataFrame({name: pd.isna(values) for name, values in columns.items()})
    return pd.array(counts.sum(axis=1).to_numpy(), dtype="Int64")


@_register("col_missing", lazy=True)
def _col_missing(evaluator: Any, args: tuple, keywords: tuple) -> Any:
    columns = _selected_columns(evaluator, args)
    return pd.array([int(pd.isna(values).sum()) for values in columns.values()], dtype="Int64")
