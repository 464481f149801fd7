"""
Static analysis of rule expressions.

Every rule gets a kind, decided in priority order (first match wins):

1. functional dependency  ``a + b -> c``
2. type check             ``is.numeric(x)``
3. set membership         ``x %vin% c("a", "b")``
4. linear (in)equality    ``2*x + y <= z - 3``
5. conditional            ``if (x > 0) y > 0``
6. general                any other truth-valued expression

Linear rules additionally carry their coefficient vector, which drives
severity/impact scoring of violations.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum
from typing import Dict, Mapping, Optional, Tuple, Union

from rulebook.exceptions import NotValidatingExpression, UnknownFunction
from rulebook.expression import (
    COMPARISONS,
    DEPENDENCY_OPERATORS,
    LOGICAL_OPERATORS,
    MEMBERSHIP_OPERATORS,
    Binary,
    Call,
    Conditional,
    Expression,
    Logical,
    Name,
    Node,
    Number,
    Unary,
    deparse,
    walk,
)
from rulebook.functions import FUNCTIONS, TYPE_PREDICATES, argument

CONSTANT = "CONSTANT"


class RuleKind(StrEnum):
    FUNCTIONAL_DEPENDENCY = "functional_dependency"
    TYPE_CHECK = "type_check"
    SET_MEMBERSHIP = "set_membership"
    LINEAR = "linear"
    CONDITIONAL = "conditional"
    GENERAL = "general"


@dataclass(frozen=True)
class LinearForm:
    """Coefficients of ``lhs - rhs`` for a linear rule ``lhs <op> rhs``."""

    operator: str
    coefficients: Tuple[Tuple[str, float], ...]

    @property
    def constant(self) -> float:
        return dict(self.coefficients).get(CONSTANT, 0.0)

    def as_dict(self) -> Dict[str, float]:
        return dict(self.coefficients)

    def norm(self, p: float = 2) -> float:
        """Dual norm of the variable coefficients, ``q = p / (p - 1)``."""
        if p < 1:
            raise ValueError("p must be >= 1")
        weights = [abs(c) for v, c in self.coefficients if v != CONSTANT]
        if not weights:
            return 0.0
        if p == 1:
            return max(weights)
        q = 1.0 if math.isinf(p) else p / (p - 1)
        return sum(w**q for w in weights) ** (1 / q)


@dataclass(frozen=True)
class Classification:
    kind: RuleKind
    linear: Optional[LinearForm] = None
    determinant: Tuple[str, ...] = ()
    dependent: Tuple[str, ...] = ()


def classify(expression: Union[Expression, Node]) -> Classification:
    """Classify a validating expression.

    Raises:
        UnknownFunction: a call outside the function registry
        NotValidatingExpression: the expression cannot produce a truth value
    """
    node = expression.node if isinstance(expression, Expression) else expression
    _check_functions(node)
    _check_dependency_placement(node)
    _check_scoring(node)

    if isinstance(node, Binary) and node.op in DEPENDENCY_OPERATORS:
        return Classification(
            kind=RuleKind.FUNCTIONAL_DEPENDENCY,
            determinant=dependency_names(node.left),
            dependent=dependency_names(node.right),
        )
    if isinstance(node, Call) and node.func in TYPE_PREDICATES:
        return Classification(kind=RuleKind.TYPE_CHECK)
    if isinstance(node, Binary) and node.op == "%vin%":
        return Classification(kind=RuleKind.SET_MEMBERSHIP)
    if isinstance(node, Binary) and node.op in COMPARISONS:
        form = linear_form(node)
        if form is not None:
            return Classification(kind=RuleKind.LINEAR, linear=form)
    if isinstance(node, Conditional):
        if not is_truth_valued(node.consequent):
            raise NotValidatingExpression(
                f"the consequent of '{deparse(node)}' is not a truth value"
            )
        return Classification(kind=RuleKind.CONDITIONAL)
    if is_truth_valued(node):
        return Classification(kind=RuleKind.GENERAL)
    raise NotValidatingExpression(f"'{deparse(node)}' does not evaluate to a truth value")


def is_truth_valued(node: Node) -> bool:
    """Whether a node can be shown, statically, to produce truth values."""
    if isinstance(node, Binary):
        return node.op in COMPARISONS + LOGICAL_OPERATORS + MEMBERSHIP_OPERATORS
    if isinstance(node, Unary):
        return node.op == "!"
    if isinstance(node, Conditional):
        return is_truth_valued(node.consequent)
    if isinstance(node, Call):
        function = FUNCTIONS.get(node.func)
        return function is not None and function.logical
    return isinstance(node, Logical)


def dependency_names(node: Node) -> Tuple[str, ...]:
    """Variables on one side of a dependency arrow: ``a``, ``a + b`` or ``c(a, b)``."""
    if isinstance(node, Name):
        return (node.id,)
    if isinstance(node, Binary) and node.op == "+":
        return dependency_names(node.left) + dependency_names(node.right)
    if isinstance(node, Call) and node.func == "c" and node.args and not node.keywords:
        names: Tuple[str, ...] = ()
        for arg in node.args:
            names += dependency_names(arg)
        return names
    raise NotValidatingExpression(
        f"'{deparse(node)}' is not a list of variables",
        suggestions=["Write functional dependencies as 'a + b -> c'"],
    )


def linear_form(node: Binary) -> Optional[LinearForm]:
    """Coefficients of ``left - right`` if both sides are affine, else None."""
    left = affine(node.left)
    right = affine(node.right)
    if left is None or right is None:
        return None
    combined = dict(left)
    for name, coefficient in right.items():
        combined[name] = combined.get(name, 0.0) - coefficient
    if not any(name != CONSTANT for name in combined):
        return None
    ordered = sorted(combined.items(), key=lambda item: item[0] == CONSTANT)
    return LinearForm(operator=node.op, coefficients=tuple(ordered))


def affine(node: Node) -> Optional[Dict[str, float]]:
    """Weighted sum of variables plus a constant, as ``{name: coefficient}``."""
    if isinstance(node, Number):
        if math.isinf(node.value):
            return None
        return {CONSTANT: float(node.value)}
    if isinstance(node, Name):
        return {node.id: 1.0}
    if isinstance(node, Unary) and node.op in ("-", "+"):
        inner = affine(node.operand)
        if inner is None:
            return None
        return _scale(inner, -1.0) if node.op == "-" else inner
    if not isinstance(node, Binary):
        return None
    if node.op in ("+", "-"):
        left, right = affine(node.left), affine(node.right)
        if left is None or right is None:
            return None
        sign = 1.0 if node.op == "+" else -1.0
        result = dict(left)
        for name, coefficient in right.items():
            result[name] = result.get(name, 0.0) + sign * coefficient
        return result
    if node.op == "*":
        left, right = affine(node.left), affine(node.right)
        if left is None or right is None:
            return None
        if _is_constant(left):
            return _scale(right, left.get(CONSTANT, 0.0))
        if _is_constant(right):
            return _scale(left, right.get(CONSTANT, 0.0))
        return None
    if node.op == "/":
        left, right = affine(node.left), affine(node.right)
        if left is None or right is None or not _is_constant(right):
            return None
        divisor = right.get(CONSTANT, 0.0)
        if divisor == 0:
            return None
        return _scale(left, 1.0 / divisor)
    return None


def _is_constant(form: Mapping[str, float]) -> bool:
    return all(name == CONSTANT for name in form)


def _scale(form: Mapping[str, float], factor: float) -> Dict[str, float]:
    return {name: coefficient * factor for name, coefficient in form.items()}


def _check_functions(node: Node) -> None:
    for item in walk(node):
        if isinstance(item, Call) and item.func not in FUNCTIONS:
            raise UnknownFunction(item.func, sorted(FUNCTIONS))


def _check_scoring(node: Node) -> None:
    for item in walk(node):
        if not isinstance(item, Call) or item.func not in ("V", "L"):
            continue
        wrapped = argument(item.args, item.keywords, 0, "rule" if item.func == "V" else "linrule")
        if wrapped is None:
            raise NotValidatingExpression(f"'{deparse(item)}' wraps no rule")
        if item.func == "V" and not is_truth_valued(wrapped):
            raise NotValidatingExpression(f"'{deparse(wrapped)}' does not evaluate to a truth value")
        if item.func == "L" and not (
            isinstance(wrapped, Binary) and wrapped.op in COMPARISONS and linear_form(wrapped) is not None
        ):
            raise NotValidatingExpression(
                f"'{deparse(wrapped)}' is not a linear comparison",
                suggestions=["L() takes a rule such as 'x + 2*y <= 10'"],
            )


def _check_dependency_placement(node: Node) -> None:
    inner = node
    if isinstance(node, Binary) and node.op in DEPENDENCY_OPERATORS:
        inner = Binary("&", node.left, node.right)
    for item in walk(inner):
        if isinstance(item, Binary) and item.op in DEPENDENCY_OPERATORS:
            raise NotValidatingExpression(
                f"a dependency arrow may only appear at the top of a rule: '{deparse(node)}'"
            )
