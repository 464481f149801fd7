"""
Expansion of declaration streams.

A declaration stream mixes rules with two kinds of shorthand:

- local assignments ``name := expr`` are macros, substituted into every
  later entry (a later assignment of the same name shadows the earlier one);
- variable groups ``G := var_group(a, b)`` stand for several variables; a
  rule that references groups is replaced by one rule per combination of
  group members.

Example:
    >>> rules = expand(["f := var_group(c, d)", "g := var_group(a, b)", "g > f"])
    >>> [str(rule.expression) for rule in rules]
    ['a > c', 'a > d', 'b > c', 'b > d']
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from rulebook.exceptions import RuleSyntaxError, UnknownGroupReference
from rulebook.expression import (
    Assignment,
    Call,
    Expression,
    Name,
    Node,
    deparse,
    free_variables,
    parse,
    parse_entry,
    substitute,
)

logger = logging.getLogger(__name__)

GROUP_FUNCTION = "var_group"


@dataclass(frozen=True)
class Declaration:
    """One rule entry of a declaration stream."""

    expression: Union[Expression, str]
    name: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None
    options: Mapping[str, Any] = field(default_factory=dict)
    groups: Tuple[str, ...] = ()
    """Groups the rule must range over; each must have been declared."""

    origin: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GroupDeclaration:
    """A named list of variables, usable wherever a variable is expected."""

    name: str
    members: Tuple[str, ...]


Entry = Union[str, Mapping[str, Any], Declaration, Assignment, GroupDeclaration]


def to_entry(raw: Entry, origin: Optional[Mapping[str, Any]] = None) -> Union[Declaration, Assignment, GroupDeclaration]:
    """Normalise a raw stream entry (text, mapping or dataclass)."""
    origin = dict(origin or {})
    if isinstance(raw, (Declaration, Assignment, GroupDeclaration)):
        return raw
    if isinstance(raw, str):
        parsed = parse_entry(raw)
        if isinstance(parsed, Assignment):
            return _assignment_or_group(parsed)
        return Declaration(expression=parsed, origin={"source": raw.strip(), **origin})
    if isinstance(raw, Mapping):
        if "group" in raw:
            return GroupDeclaration(name=str(raw["group"]), members=tuple(str(m) for m in raw.get("members", ())))
        if "assign" in raw:
            value = raw.get("expr")
            if value is None:
                raise RuleSyntaxError(f"assignment '{raw['assign']}' has no 'expr'")
            return _assignment_or_group(Assignment(name=str(raw["assign"]), expression=parse(str(value))))
        text = raw.get("expr", raw.get("rule"))
        if text is None:
            raise RuleSyntaxError(f"rule entry without 'expr': {dict(raw)!r}")
        parsed = text if isinstance(text, Expression) else parse_entry(str(text))
        if isinstance(parsed, Assignment):
            return _assignment_or_group(parsed)
        return Declaration(
            expression=parsed,
            name=raw.get("name"),
            label=raw.get("label"),
            description=raw.get("description"),
            options=dict(raw.get("options") or {}),
            groups=tuple(raw.get("groups") or ()),
            origin={"source": str(text).strip(), **origin, **dict(raw.get("origin") or {})},
        )
    raise TypeError(f"cannot interpret {raw!r} as a rule declaration")


def _assignment_or_group(assignment: Assignment) -> Union[Assignment, GroupDeclaration]:
    node = assignment.expression.node
    if isinstance(node, Call) and node.func == GROUP_FUNCTION:
        members = []
        for arg in node.args:
            if not isinstance(arg, Name):
                raise RuleSyntaxError(
                    f"{GROUP_FUNCTION}() takes variable names, got '{deparse(arg)}'",
                    text=assignment.expression.text,
                )
            members.append(arg.id)
        return GroupDeclaration(name=assignment.name, members=tuple(members))
    return assignment


class Scope:
    """Macros and groups visible at one point of a declaration stream."""

    def __init__(self, groups: Optional[Mapping[str, Iterable[str]]] = None):
        self.macros: Dict[str, Node] = {}
        self.groups: Dict[str, Tuple[str, ...]] = {}
        for name, members in (groups or {}).items():
            self.bind_group(GroupDeclaration(name=name, members=tuple(members)))

    def bind(self, assignment: Assignment) -> None:
        self.groups.pop(assignment.name, None)
        self.macros[assignment.name] = substitute(assignment.expression.node, self.macros)

    def bind_group(self, group: GroupDeclaration) -> None:
        members: List[str] = []
        for member in group.members:
            # members may name earlier groups, which are flattened
            members.extend(self.groups.get(member, (member,)))
        self.macros.pop(group.name, None)
        self.groups[group.name] = tuple(dict.fromkeys(members))

    def expand(self, declaration: Declaration) -> List[Declaration]:
        expression = declaration.expression
        if isinstance(expression, str):
            expression = parse(expression)
        node = substitute(expression.node, self.macros)

        for name in declaration.groups:
            if name not in self.groups:
                raise UnknownGroupReference(name, sorted(self.groups))
        referenced = [name for name in free_variables(node) if name in self.groups]
        for name in declaration.groups:
            if name not in referenced:
                referenced.append(name)

        if not referenced:
            return [
                replace(
                    declaration,
                    expression=Expression(node=node, text=expression.text),
                    groups=(),
                )
            ]

        expanded = []
        combinations = list(itertools.product(*(self.groups[name] for name in referenced)))
        for i, members in enumerate(combinations, 1):
            binding = dict(zip(referenced, members))
            concrete = substitute(node, {group: Name(member) for group, member in binding.items()})
            name = declaration.name
            if name is not None and len(combinations) > 1:
                name = f"{name}.{i}"
            expanded.append(
                replace(
                    declaration,
                    expression=Expression(node=concrete, text=deparse(concrete)),
                    name=name,
                    groups=(),
                    origin={**declaration.origin, "group": binding},
                )
            )
        logger.debug(
            "Expanded '%s' over groups %s into %d rules", deparse(node), referenced, len(expanded)
        )
        return expanded


def expand(
    stream: Iterable[Entry],
    groups: Optional[Mapping[str, Iterable[str]]] = None,
    origin: Optional[Mapping[str, Any]] = None,
) -> List[Declaration]:
    """Expand a declaration stream into a flat, group-free list of rule declarations.

    Args:
        stream: Ordered entries (rule text, ``name := expr`` text, mappings or
            Declaration/Assignment/GroupDeclaration objects)
        groups: Variable groups declared outside the stream (e.g. by a rule file)
        origin: Provenance merged into every declaration's origin

    Returns:
        Declarations with parsed expressions, in stream order. Expanding the
        result again returns it unchanged.

    Raises:
        RuleSyntaxError: malformed entry text
        UnknownGroupReference: a rule ranges over an undeclared group
    """
    scope = Scope(groups)
    declarations: List[Declaration] = []
    for raw in stream:
        entry = to_entry(raw, origin)
        if isinstance(entry, Assignment):
            scope.bind(entry)
        elif isinstance(entry, GroupDeclaration):
            scope.bind_group(entry)
        else:
            declarations.extend(scope.expand(entry))
    return declarations
