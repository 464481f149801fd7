"""
Rule/variable dependency graph.

Rules and variables form a bipartite graph with an edge wherever a rule
references a variable. Its connected components ("blocks") group rules that
constrain the same data; rules in different blocks share no variables and can
be evaluated independently.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence


class _HasVariables(Protocol):
    name: str
    variables: Sequence[str]


@dataclass(frozen=True)
class Block:
    """A maximal connected set of rules and the variables they reference."""

    index: int
    rules: tuple[str, ...]
    variables: tuple[str, ...]


class DependencyGraph:
    """Adjacency between rule names and variable names."""

    def __init__(self, rule_variables: dict[str, tuple[str, ...]]):
        self.rule_variables = rule_variables
        self.variable_rules: dict[str, list[str]] = {}
        for rule, variables in rule_variables.items():
            for variable in variables:
                self.variable_rules.setdefault(variable, []).append(rule)

    @classmethod
    def build(cls, rules: Iterable[_HasVariables]) -> "DependencyGraph":
        return cls({rule.name: tuple(rule.variables) for rule in rules})

    @property
    def rules(self) -> tuple[str, ...]:
        return tuple(self.rule_variables)

    @property
    def variables(self) -> tuple[str, ...]:
        return tuple(self.variable_rules)

    def neighbours(self, rule: str) -> list[str]:
        """Rules sharing at least one variable with ``rule``."""
        seen: dict[str, None] = {}
        for variable in self.rule_variables[rule]:
            for other in self.variable_rules[variable]:
                if other != rule:
                    seen.setdefault(other, None)
        return list(seen)

    def blocks(self) -> list[Block]:
        """Connected components, in order of each block's first declared rule.

        Returns:
            Blocks partitioning all rules. Within a block, rules keep their
            declaration order and variables their order of first reference.
        """
        order = {name: i for i, name in enumerate(self.rule_variables)}
        visited: set[str] = set()
        blocks: list[Block] = []

        for seed in self.rule_variables:
            if seed in visited:
                continue
            # Breadth-first traversal over rule -> variable -> rule edges
            visited.add(seed)
            queue = [seed]
            members: list[str] = []
            while queue:
                rule = queue.pop(0)
                members.append(rule)
                for neighbour in self.neighbours(rule):
                    if neighbour not in visited:
                        visited.add(neighbour)
                        queue.append(neighbour)

            members.sort(key=order.__getitem__)
            variables: dict[str, None] = {}
            for rule in members:
                for variable in self.rule_variables[rule]:
                    variables.setdefault(variable, None)
            blocks.append(Block(index=len(blocks), rules=tuple(members), variables=tuple(variables)))

        return blocks

    def block_of(self) -> dict[str, int]:
        """Map each rule name to the index of its block."""
        return {rule: block.index for block in self.blocks() for rule in block.rules}
