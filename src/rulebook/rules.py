"""
Rules and rule sets.

A RuleSet is built from a declaration stream: entries are expanded (macros
and variable groups), classified, named and checked for unique names. Rule
sets are immutable; every mutation returns a new, re-validated RuleSet.

Example:
    ```python
    from rulebook import ruleset

    rules = ruleset("turnover >= 0", {"expr": "staff > 0", "name": "has_staff"})
    result = rules.confront(df)
    print(result.summary())
    ```
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

import pandas as pd

from rulebook.classify import CONSTANT, LinearForm, RuleKind, classify
from rulebook.config import get_settings
from rulebook.exceptions import DuplicateRuleName
from rulebook.expand import Declaration, Entry, expand
from rulebook.expression import Binary, Expression, Node, rewrite
from rulebook.graph import Block, DependencyGraph
from rulebook.options import Options, normalize_layer, resolve

if TYPE_CHECKING:
    from rulebook.results import Confrontation

logger = logging.getLogger(__name__)

AUTO_NAME_PREFIX = "V"


@dataclass(frozen=True)
class Rule:
    """A named, classified validating expression."""

    name: str
    expression: Expression
    kind: RuleKind
    variables: tuple[str, ...] = ()
    linear: Optional[LinearForm] = None
    label: Optional[str] = None
    description: Optional[str] = None
    origin: Mapping[str, Any] = field(default_factory=dict, compare=False)
    options: Mapping[str, Any] = field(default_factory=dict)
    determinant: tuple[str, ...] = ()
    """Left-hand variables of a functional dependency."""

    dependent: tuple[str, ...] = ()
    """Right-hand variables of a functional dependency."""

    auto_named: bool = field(default=False, compare=False)
    """Whether the name was generated rather than declared."""

    @property
    def is_linear(self) -> bool:
        return self.kind is RuleKind.LINEAR

    def __str__(self) -> str:
        return f"{self.name}: {self.expression}"


def _membership(node: Node) -> Node:
    if isinstance(node, Binary) and node.op == "%in%":
        return Binary("%vin%", node.left, node.right)
    return node


def make_rule(declaration: Declaration, name: str, auto_named: bool = False) -> Rule:
    """Classify one expanded declaration into a Rule.

    Raises:
        NotValidatingExpression: the expression cannot produce a truth value
        UnknownFunction: the expression calls an unregistered function
        UnrecognizedOption: the declaration carries an unknown option key
    """
    expression = declaration.expression
    if isinstance(expression, str):
        raise TypeError("declarations must be expanded before they become rules")
    expression = Expression(node=rewrite(expression.node, _membership), text=expression.text)
    classification = classify(expression)
    return Rule(
        name=name,
        expression=expression,
        kind=classification.kind,
        variables=expression.variables,
        linear=classification.linear,
        label=declaration.label,
        description=declaration.description,
        origin=dict(declaration.origin),
        options=normalize_layer(declaration.options),
        determinant=classification.determinant,
        dependent=classification.dependent,
        auto_named=auto_named,
    )


class _NameSequence:
    """Generates ``V1``, ``V2``, ... skipping names already in use."""

    def __init__(self, used: Iterable[str]):
        self.used = set(used)
        self.counter = 0

    def next(self) -> str:
        self.counter += 1
        while f"{AUTO_NAME_PREFIX}{self.counter}" in self.used:
            self.counter += 1
        name = f"{AUTO_NAME_PREFIX}{self.counter}"
        self.used.add(name)
        return name


def _build_rules(declarations: Sequence[Declaration], taken: Iterable[str] = ()) -> List[Rule]:
    names = _NameSequence(set(taken) | {d.name for d in declarations if d.name})
    rules = []
    for declaration in declarations:
        if declaration.name:
            rules.append(make_rule(declaration, declaration.name))
        else:
            rules.append(make_rule(declaration, names.next(), auto_named=True))
    return rules


def _union(left: Sequence[Rule], right: Sequence[Rule]) -> List[Rule]:
    """Concatenate rules, renaming generated names on the right that clash."""
    names = _NameSequence({rule.name for rule in left} | {rule.name for rule in right})
    taken = {rule.name for rule in left}
    renamed = []
    for rule in right:
        if rule.auto_named and rule.name in taken:
            rule = replace(rule, name=names.next())
        taken.add(rule.name)
        renamed.append(rule)
    return list(left) + renamed


def _check_unique(rules: Sequence[Rule]) -> None:
    seen: set[str] = set()
    duplicates: dict[str, None] = {}
    for rule in rules:
        if rule.name in seen:
            duplicates.setdefault(rule.name, None)
        seen.add(rule.name)
    if duplicates:
        raise DuplicateRuleName(list(duplicates))


class RuleSet:
    """An ordered, name-unique, immutable collection of rules.

    Args:
        rules: Classified rules
        options: Options declared for the rule set
        layers: Lower-precedence option layers (e.g. from included rule files),
            lowest first
    """

    def __init__(
        self,
        rules: Iterable[Rule] = (),
        options: Optional[Mapping[str, Any]] = None,
        layers: Sequence[Mapping[str, Any]] = (),
    ):
        self._rules: tuple[Rule, ...] = tuple(rules)
        _check_unique(self._rules)
        self.declared_options: dict[str, Any] = normalize_layer(options or {})
        self.layers: tuple[dict[str, Any], ...] = tuple(normalize_layer(layer) for layer in layers)
        self.options: Options = self.effective_options()

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[Entry],
        options: Optional[Mapping[str, Any]] = None,
        layers: Sequence[Mapping[str, Any]] = (),
        groups: Optional[Mapping[str, Iterable[str]]] = None,
        origin: Optional[Mapping[str, Any]] = None,
    ) -> "RuleSet":
        """Expand, classify and name a declaration stream."""
        declarations = expand(entries, groups=groups, origin=origin)
        rules = _build_rules(declarations)
        logger.debug("Built rule set with %d rules", len(rules))
        return cls(rules, options=options, layers=layers)

    # --- options ------------------------------------------------------------

    def effective_options(
        self,
        rule: Union[Rule, str, None] = None,
        runtime: Union[Options, Mapping[str, Any], None] = None,
    ) -> Options:
        """Options in force for a rule (or the whole set).

        Precedence, lowest first: built-in defaults, RULEBOOK_* environment,
        included layers, the rule set's own options, runtime options, and the
        rule's own overrides.
        """
        if isinstance(rule, str):
            rule = self[rule]
        return resolve(
            [
                get_settings().option_layer(),
                *self.layers,
                self.declared_options,
                runtime,
                rule.options if rule is not None else None,
            ]
        )

    # --- collection protocol ------------------------------------------------

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __contains__(self, name: object) -> bool:
        return any(rule.name == name for rule in self._rules)

    def __getitem__(self, key: Union[int, str, slice]) -> Union[Rule, "RuleSet"]:
        if isinstance(key, slice):
            return self._derive(self._rules[key])
        return self._rules[self.index(key)]

    def __add__(self, other: "RuleSet") -> "RuleSet":
        if not isinstance(other, RuleSet):
            return NotImplemented
        return RuleSet(
            _union(self._rules, other._rules),
            options={**self.declared_options, **other.declared_options},
            layers=self.layers + other.layers,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RuleSet):
            return NotImplemented
        return self._rules == other._rules and self.options == other.options

    def __repr__(self) -> str:
        return f"RuleSet({len(self)} rules: {', '.join(self.names())})"

    def index(self, key: Union[int, str]) -> int:
        if isinstance(key, int):
            if not -len(self._rules) <= key < len(self._rules):
                raise IndexError(f"rule index {key} out of range")
            return key % len(self._rules)
        for i, rule in enumerate(self._rules):
            if rule.name == key:
                return i
        raise KeyError(f"no rule named '{key}'")

    def names(self) -> list[str]:
        return [rule.name for rule in self._rules]

    def variables(self) -> list[str]:
        seen: dict[str, None] = {}
        for rule in self._rules:
            for variable in rule.variables:
                seen.setdefault(variable, None)
        return list(seen)

    # --- mutations ----------------------------------------------------------

    def _derive(self, rules: Iterable[Rule]) -> "RuleSet":
        return RuleSet(rules, options=self.declared_options, layers=self.layers)

    def add(self, *entries: Entry) -> "RuleSet":
        """New rule set with the given entries appended."""
        declarations = expand(entries)
        added = _build_rules(declarations, taken=self.names())
        return self._derive(self._rules + tuple(added))

    def remove(self, *keys: Union[int, str]) -> "RuleSet":
        """New rule set without the rules at the given indices or names."""
        drop = {self.index(key) for key in keys}
        return self._derive(rule for i, rule in enumerate(self._rules) if i not in drop)

    def replace(self, key: Union[int, str], entry: Entry) -> "RuleSet":
        """New rule set with one rule replaced; an unnamed entry keeps the old name."""
        position = self.index(key)
        old = self._rules[position]
        declarations = expand([entry])
        if len(declarations) != 1:
            raise ValueError(f"a replacement must expand to one rule, got {len(declarations)}")
        declaration = declarations[0]
        if declaration.name:
            new = make_rule(declaration, declaration.name)
        else:
            new = make_rule(declaration, old.name, old.auto_named)
        rules = list(self._rules)
        rules[position] = new
        return self._derive(rules)

    def with_options(self, **options: Any) -> "RuleSet":
        """New rule set with updated declared options."""
        return RuleSet(
            self._rules,
            options={**self.declared_options, **normalize_layer(options)},
            layers=self.layers,
        )

    # --- analysis -----------------------------------------------------------

    def graph(self) -> DependencyGraph:
        return DependencyGraph.build(self._rules)

    def blocks(self) -> list[Block]:
        return self.graph().blocks()

    def summary(self) -> pd.DataFrame:
        """One row per block: number of variables, rules and linear rules."""
        by_name = {rule.name: rule for rule in self._rules}
        rows = [
            {
                "block": block.index,
                "nvar": len(block.variables),
                "rules": len(block.rules),
                "linear": sum(by_name[name].is_linear for name in block.rules),
            }
            for block in self.blocks()
        ]
        return pd.DataFrame(rows, columns=["block", "nvar", "rules", "linear"])

    def coefficients(self) -> pd.DataFrame:
        """Coefficient matrix of the linear rules (rules x variables, plus CONSTANT)."""
        linear = [rule for rule in self._rules if rule.linear is not None]
        frame = pd.DataFrame(
            [rule.linear.as_dict() for rule in linear],
            index=pd.Index([rule.name for rule in linear], name="name"),
        ).fillna(0.0)
        if CONSTANT in frame.columns:
            frame = frame[[c for c in frame.columns if c != CONSTANT] + [CONSTANT]]
        frame["operator"] = [rule.linear.operator for rule in linear]
        return frame

    def to_frame(self) -> pd.DataFrame:
        """One row per rule with its metadata."""
        blocks = self.graph().block_of()
        return pd.DataFrame(
            [
                {
                    "name": rule.name,
                    "expression": str(rule.expression),
                    "kind": str(rule.kind),
                    "variables": ", ".join(rule.variables),
                    "block": blocks[rule.name],
                    "label": rule.label,
                    "description": rule.description,
                    "source": rule.origin.get("file"),
                }
                for rule in self._rules
            ],
            columns=["name", "expression", "kind", "variables", "block", "label", "description", "source"],
        )

    # --- evaluation ---------------------------------------------------------

    def confront(self, data: Any, ref: Any = None, **kwargs: Any) -> "Confrontation":
        """Evaluate the rules against data; see :func:`rulebook.confront.confront`."""
        from rulebook.confront import confront

        return confront(self, data, ref, **kwargs)


def ruleset(
    *entries: Entry,
    options: Optional[Mapping[str, Any]] = None,
    layers: Sequence[Mapping[str, Any]] = (),
    groups: Optional[Mapping[str, Iterable[str]]] = None,
) -> RuleSet:
    """Build a RuleSet from declaration entries.

    Example:
        >>> rules = ruleset("x > 0", "y > 0", "x + y < 10")
        >>> rules.names()
        ['V1', 'V2', 'V3']
    """
    return RuleSet.from_entries(entries, options=options, layers=layers, groups=groups)
