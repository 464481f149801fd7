"""
Rule File Loader

Loads rule sets from YAML rule files:

    include:
      - base.yaml
    options:
      raise: none
      lin.ineq.eps: 1.0e-6
    groups:
      amounts: [turnover, profit]
    rules:
      - "staff >= 0"
      - expr: amounts >= 0
        name: nonnegative
        label: non-negative amounts
      - "avg := mean(turnover)"
      - turnover <= 10 * avg

Included files are resolved relative to the including file, depth-first;
their rules come first and their options sit below the file's own options.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from rulebook.exceptions import RuleFileError
from rulebook.options import normalize_layer
from rulebook.rules import RuleSet

logger = logging.getLogger(__name__)

SECTIONS = ("include", "options", "groups", "rules")


@dataclass(frozen=True)
class RuleSource:
    """The parsed content of one rule file (includes not yet resolved)."""

    path: Path
    entries: Tuple[Any, ...] = ()
    options: Dict[str, Any] = field(default_factory=dict)
    includes: Tuple[Path, ...] = ()
    groups: Dict[str, Tuple[str, ...]] = field(default_factory=dict)


def _as_list(value: Any, section: str, path: Path) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (str, Mapping)):
        return [value]
    if isinstance(value, list):
        return value
    raise RuleFileError(f"section '{section}' of {path} must be a list")


def _with_file(entry: Any, path: Path) -> Any:
    if isinstance(entry, str):
        return {"expr": entry, "origin": {"file": str(path)}}
    if isinstance(entry, Mapping):
        if "group" in entry or "assign" in entry:
            return dict(entry)
        return {**entry, "origin": {**dict(entry.get("origin") or {}), "file": str(path)}}
    raise RuleFileError(
        f"cannot read rule entry {entry!r} in {path}",
        suggestions=["Write rules as strings or as mappings with an 'expr' key"],
    )


def load_rule_file(path: Union[str, Path]) -> RuleSource:
    """Parse one YAML rule file.

    Raises:
        RuleFileError: the file is missing, is not valid YAML, or is malformed
    """
    path = Path(path)
    if not path.exists():
        raise RuleFileError(f"rule file not found: {path}")

    try:
        with open(path) as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RuleFileError(f"invalid YAML in {path}", cause=e) from e

    if content is None:
        return RuleSource(path=path)
    if isinstance(content, list):
        content = {"rules": content}
    if not isinstance(content, Mapping):
        raise RuleFileError(f"{path} must contain a mapping with a 'rules' section")

    for key in content:
        if key not in SECTIONS:
            logger.warning("Ignoring unknown section '%s' in %s", key, path)

    options = content.get("options") or {}
    if not isinstance(options, Mapping):
        raise RuleFileError(f"section 'options' of {path} must be a mapping")

    groups = content.get("groups") or {}
    if not isinstance(groups, Mapping):
        raise RuleFileError(f"section 'groups' of {path} must be a mapping of name to variables")

    includes = tuple(path.parent / str(item) for item in _as_list(content.get("include"), "include", path))
    entries = tuple(_with_file(entry, path) for entry in _as_list(content.get("rules"), "rules", path))

    return RuleSource(
        path=path,
        entries=entries,
        options=dict(options),
        includes=includes,
        groups={str(name): tuple(str(m) for m in _as_list(members, "groups", path)) for name, members in groups.items()},
    )


def _collect(path: Path, chain: Tuple[Path, ...], sources: List[RuleSource]) -> None:
    resolved = path.resolve()
    if resolved in chain:
        cycle = " -> ".join(str(p) for p in chain + (resolved,))
        raise RuleFileError(
            f"include cycle: {cycle}",
            suggestions=["Remove the include that points back to an including file"],
        )
    try:
        source = load_rule_file(resolved)
    except RuleFileError as e:
        if chain:
            raise RuleFileError(f"{e.message} (included from {chain[-1]})", cause=e.cause) from e
        raise
    for include in source.includes:
        _collect(include, chain + (resolved,), sources)
    sources.append(source)


def read_sources(path: Union[str, Path]) -> List[RuleSource]:
    """A rule file and everything it includes, includes first."""
    sources: List[RuleSource] = []
    _collect(Path(path), (), sources)
    return sources


def _drop_unknown_options(entry: Any) -> Any:
    if isinstance(entry, Mapping) and entry.get("options"):
        return {**entry, "options": normalize_layer(entry["options"], ignore_unknown=True)}
    return entry


def read_rules(
    path: Union[str, Path],
    options: Optional[Mapping[str, Any]] = None,
    ignore_unknown: bool = False,
) -> RuleSet:
    """
    Build a RuleSet from a rule file and its includes.

    Args:
        path: Rule file path
        options: Options that override the file's own options
        ignore_unknown: Drop option keys the engine does not know (e.g. from
            files written for another version) instead of raising

    Returns:
        RuleSet whose option layers are the included files' options

    Raises:
        RuleFileError: a file is missing or malformed, or includes form a cycle
        UnrecognizedOption: a file declares an unknown option and
            ``ignore_unknown`` is off
    """
    sources = read_sources(path)
    entries: List[Any] = []
    groups: Dict[str, Tuple[str, ...]] = {}
    for source in sources:
        entries.extend(source.entries)
        groups.update(source.groups)
    layers = [source.options for source in sources]
    if ignore_unknown:
        layers = [normalize_layer(layer, ignore_unknown=True) for layer in layers]
        entries = [_drop_unknown_options(entry) for entry in entries]

    logger.info("Read %d rule entries from %d file(s) starting at %s", len(entries), len(sources), path)
    return RuleSet.from_entries(
        entries,
        options={**layers[-1], **dict(options or {})},
        layers=layers[:-1],
        groups=groups,
    )
