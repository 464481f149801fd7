"""
Interpreter for rule expressions.

Names are bound explicitly: a name resolves to a column of the primary
dataset, then to an entry of the reference data. Nothing else is in scope.
Values are pandas nullable arrays or scalars, so NA propagates through
comparisons and arithmetic and ``&``/``|``/``!`` follow Kleene logic.
"""

from __future__ import annotations

import operator
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from rulebook.classify import RuleKind
from rulebook.exceptions import NameConflictWarning, UnresolvedVariable
from rulebook.expression import (
    COMPARISONS,
    Binary,
    Call,
    Conditional,
    Dot,
    Logical,
    Missing,
    Name,
    Node,
    Number,
    String,
    Unary,
    deparse,
)
from rulebook.functions import get_function
from rulebook.options import DEFAULT_OPTIONS, Options
from rulebook.vectors import (
    as_array,
    as_result,
    column_array,
    is_missing,
    is_numeric,
    is_vector,
    logical_not,
    to_logical,
)

_COMPARE: Dict[str, Callable[[Any, Any], Any]] = {
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
    ">=": operator.ge,
    ">": operator.gt,
}

_ARITHMETIC: Dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "^": operator.pow,
}


class Scope:
    """The datasets a confrontation evaluates against.

    The primary dataset is re-indexed on a shallow copy, so callers' frames are
    never modified. Converted columns are cached and shared between rules.
    """

    def __init__(self, data: pd.DataFrame, ref: Optional[Mapping[str, Any]] = None):
        self.data = data.reset_index(drop=True)
        self.ref: Dict[str, Any] = dict(ref or {})
        self._names = {str(column): column for column in self.data.columns}
        self._columns: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @property
    def nrows(self) -> int:
        return len(self.data.index)

    def has_column(self, name: str) -> bool:
        return name in self._names

    def column(self, name: str) -> Any:
        with self._lock:
            if name not in self._columns:
                self._columns[name] = column_array(self.data[self._names[name]])
            return self._columns[name]

    def available(self) -> List[str]:
        return list(self._names) + [name for name in self.ref if name not in self._names]


def reference_value(value: Any) -> Any:
    """Normalise a reference entry: frames stay frames, vectors become arrays."""
    if isinstance(value, pd.DataFrame):
        return value
    if isinstance(value, (pd.Series, np.ndarray, list, tuple, set, frozenset)) or is_vector(value):
        return as_array(value)
    return value


class Evaluator:
    """Evaluates one rule against a scope, collecting its warnings.

    Floating-point problems (division by zero, overflow, invalid values) reach
    the evaluator through numpy's error callback. ``np.errstate`` is local to
    the evaluating thread, so the process-wide ``warnings`` state is never
    touched and serial and threaded runs record the same messages.
    """

    def __init__(self, scope: Scope, options: Options = DEFAULT_OPTIONS):
        self.scope = scope
        self.options = options
        self.warnings: List[Warning] = []
        self.severity: Optional[Any] = None
        self.impact: Optional[Any] = None

    def warn(self, warning: Warning) -> None:
        if not any(str(w) == str(warning) for w in self.warnings):
            self.warnings.append(warning)

    def floating_point_error(self, kind: str, flag: int) -> None:
        self.warn(RuntimeWarning(f"{kind} encountered"))

    # --- entry points -------------------------------------------------------

    def dataset(self) -> pd.DataFrame:
        return self.scope.data

    def label(self, node: Node) -> str:
        return node.id if isinstance(node, Name) else deparse(node)

    def run(self, rule: Any) -> pd.arrays.BooleanArray:
        """Evaluate a rule to a BooleanArray (length 1 for dataset-level rules)."""
        with np.errstate(divide="call", over="call", invalid="call", call=self.floating_point_error):
            return self._run(rule)

    def _run(self, rule: Any) -> pd.arrays.BooleanArray:
        node = rule.expression.node
        if rule.kind is RuleKind.FUNCTIONAL_DEPENDENCY:
            return self.functional_dependency(rule.determinant, rule.dependent)
        if rule.kind is RuleKind.LINEAR:
            return as_result(self.linear(node))
        return as_result(self.evaluate(node))

    # --- variables ----------------------------------------------------------

    def lookup(self, name: str) -> Any:
        in_data = self.scope.has_column(name)
        in_ref = name in self.scope.ref
        if in_data:
            if in_ref:
                self.warn(
                    NameConflictWarning(
                        f"'{name}' exists in both the data and the reference data; using the data column"
                    )
                )
            return self.scope.column(name)
        if in_ref:
            return reference_value(self.scope.ref[name])
        raise UnresolvedVariable(name, self.scope.available())

    def member(self, node: Binary) -> Any:
        container = self.evaluate(node.left)
        key = node.right.id
        if isinstance(container, pd.DataFrame):
            if key not in container.columns:
                raise UnresolvedVariable(f"{deparse(node.left)}${key}", [str(c) for c in container.columns])
            return column_array(container[key])
        if isinstance(container, Mapping):
            if key not in container:
                raise UnresolvedVariable(f"{deparse(node.left)}${key}", [str(k) for k in container])
            return reference_value(container[key])
        raise TypeError(f"'{deparse(node.left)}' has no members")

    # --- expressions --------------------------------------------------------

    def evaluate(self, node: Node) -> Any:
        if isinstance(node, (Number, String)):
            return node.value
        if isinstance(node, Logical):
            return node.value
        if isinstance(node, Missing):
            return pd.NA
        if isinstance(node, Name):
            return self.lookup(node.id)
        if isinstance(node, Dot):
            return self.scope.data
        if isinstance(node, Unary):
            value = self.evaluate(node.operand)
            if node.op == "!":
                return logical_not(value)
            return -value if node.op == "-" else value
        if isinstance(node, Binary):
            return self.binary(node)
        if isinstance(node, Call):
            return self.call(node)
        if isinstance(node, Conditional):
            return logical_not(self.evaluate(node.condition)) | to_logical(self.evaluate(node.consequent))
        raise TypeError(f"cannot evaluate {node!r}")

    def binary(self, node: Binary) -> Any:
        op = node.op
        if op == "$":
            return self.member(node)
        if op in ("->", "~"):
            from rulebook.classify import dependency_names

            return self.functional_dependency(dependency_names(node.left), dependency_names(node.right))
        left = self.evaluate(node.left)
        right = self.evaluate(node.right)
        if op in ("&", "&&"):
            return to_logical(left) & to_logical(right)
        if op in ("|", "||"):
            return to_logical(left) | to_logical(right)
        if op in COMPARISONS:
            return compare(op, left, right)
        if op in ("%vin%", "%in%"):
            return vin(left, right)
        if op in _ARITHMETIC:
            return _ARITHMETIC[op](_operand(left), _operand(right))
        raise TypeError(f"unsupported operator '{op}'")

    def call(self, node: Call) -> Any:
        function = get_function(node.func)
        if function is None:
            raise NameError(f"unknown function '{node.func}'")
        if function.lazy:
            return function.impl(self, node.args, node.keywords)
        args = [self.evaluate(arg) for arg in node.args]
        keywords = {key: self.evaluate(value) for key, value in node.keywords}
        return function.impl(*args, **keywords)

    # --- rule kinds ---------------------------------------------------------

    def linear(self, node: Binary) -> Any:
        """Compare ``lhs - rhs`` against the linear tolerances, recording severity."""
        left = self.evaluate(node.left)
        right = self.evaluate(node.right)
        if not (is_numeric(left) and is_numeric(right)):
            return compare(node.op, left, right)
        difference = _operand(left) - _operand(right)
        self.severity = abs(difference)
        if node.op in ("==", "!="):
            within = compare("<=", abs(difference), self.options.lin_eq_eps)
            return within if node.op == "==" else logical_not(within)
        eps = self.options.lin_ineq_eps
        if node.op in ("<", "<="):
            return compare(node.op, difference, eps)
        return compare(node.op, difference, -eps)

    def functional_dependency(self, determinant: tuple, dependent: tuple) -> pd.arrays.BooleanArray:
        """A record passes iff its left-hand key maps to exactly one right-hand key.

        Missing values take part in keys as an ordinary value.
        """
        left = _keys([self.lookup(name) for name in determinant], self.scope.nrows)
        right = _keys([self.lookup(name) for name in dependent], self.scope.nrows)
        frame = pd.DataFrame({"left": left, "right": right})
        distinct = frame.groupby("left", sort=False, dropna=False)["right"].transform("nunique")
        return pd.array((distinct == 1).to_numpy(), dtype="boolean")


def _operand(value: Any) -> Any:
    if isinstance(value, pd.arrays.BooleanArray):
        return value.astype("Int64")
    if isinstance(value, (bool, np.bool_)):
        return int(value)
    if is_vector(value):
        return as_array(value)
    return value


def compare(op: str, left: Any, right: Any) -> Any:
    """Elementwise comparison with NA propagation."""
    left, right = _operand(left), _operand(right)
    if is_missing(left) or is_missing(right):
        if is_vector(left) or is_vector(right):
            size = len(left) if is_vector(left) else len(right)
            return pd.array([pd.NA] * size, dtype="boolean")
        return pd.NA
    result = _COMPARE[op](left, right)
    if is_vector(result):
        return to_logical(result)
    return bool(result)


def vin(values: Any, table: Any) -> pd.arrays.BooleanArray:
    """Membership where an NA query is NA and a miss against a table with NA is NA."""
    query = as_array(values)
    reference = as_array(table) if is_vector(table) or isinstance(table, (list, tuple, set)) else as_array([table])
    present = pd.isna(reference)
    known = [item for item, missing in zip(reference, present) if not missing]
    table_has_na = bool(np.asarray(present).any())

    matched = np.asarray(pd.Series(np.asarray(query, dtype=object)).isin(known), dtype=bool)
    query_na = np.asarray(pd.isna(query), dtype=bool)
    result = pd.array(matched, dtype="boolean")
    undecided = query_na | (~matched & table_has_na)
    result[undecided] = pd.NA
    return result


def _keys(columns: List[Any], nrows: int) -> List[str]:
    parts = []
    for values in columns:
        if is_vector(values):
            items = ["\x00NA" if pd.isna(item) else str(item) for item in as_array(values)]
            if len(items) != nrows:
                raise ValueError(f"functional dependency variable has {len(items)} values for {nrows} records")
        else:
            items = ["\x00NA" if is_missing(values) else str(values)] * nrows
        parts.append(items)
    return ["\x1f".join(key) for key in zip(*parts)] if parts else [""] * nrows
