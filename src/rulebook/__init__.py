"""Rulebook: declarative data validation rules for pandas."""

from __future__ import annotations

from importlib.metadata import version

from rulebook.classify import RuleKind
from rulebook.confront import confront
from rulebook.expand import expand
from rulebook.expression import parse
from rulebook.loader import read_rules
from rulebook.options import Options, resolve
from rulebook.results import Confrontation, RuleResult
from rulebook.rules import Rule, RuleSet, ruleset

__version__ = version("rulebook")
__all__ = [
    "__version__",
    "Confrontation",
    "Options",
    "Rule",
    "RuleKind",
    "RuleResult",
    "RuleSet",
    "confront",
    "expand",
    "parse",
    "read_rules",
    "resolve",
    "ruleset",
]
