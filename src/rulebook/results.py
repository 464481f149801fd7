"""
Confrontation results.

A Confrontation holds one RuleResult per rule, in rule-set order. Stored values
are always three-valued; each rule's ``na.value`` option only decides how
indeterminate outcomes are counted in summaries and aggregates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Literal, Optional, Sequence, Union

import numpy as np
import pandas as pd

from rulebook.options import DEFAULT_OPTIONS, Options
from rulebook.rules import Rule
from rulebook.schemas import RecordSchema, SummarySchema

SUMMARY_COLUMNS = ["name", "items", "passes", "fails", "nNA", "error", "warning", "expression"]


@dataclass(frozen=True)
class RuleResult:
    """Outcome of evaluating one rule."""

    rule: Rule
    """The evaluated rule."""

    values: Optional[pd.arrays.BooleanArray]
    """Per-record outcomes (length 1 for dataset-level rules); None if the rule errored."""

    errors: tuple[str, ...] = ()
    """Error messages captured while evaluating."""

    warnings: tuple[str, ...] = ()
    """Warning messages captured while evaluating."""

    severity: Optional[Any] = None
    """``|lhs - rhs|`` per record for linear rules, or what ``V()``/``L()`` computed."""

    impact: Optional[Any] = None
    """Impact declared with ``V()`` or computed by ``L()``."""

    block: Optional[int] = None
    """Index of the rule's block when evaluated sequentially."""

    elapsed: float = 0.0
    """Evaluation time in seconds."""

    options: Options = field(default=DEFAULT_OPTIONS)
    """Options in force for this rule."""

    @property
    def name(self) -> str:
        return self.rule.name

    @property
    def has_error(self) -> bool:
        return bool(self.errors)

    @property
    def has_warning(self) -> bool:
        return bool(self.warnings)

    @property
    def items(self) -> int:
        return 0 if self.values is None else len(self.values)

    def counts(self) -> tuple[int, int, int]:
        """(passes, fails, indeterminate), with indeterminate counted per ``na.value``."""
        if self.values is None:
            return 0, 0, 0
        values = self.values
        missing = int(values.isna().sum())
        passes = int(values.fillna(False).sum())
        fails = len(values) - passes - missing
        if self.options.na_value is True:
            return passes + missing, fails, 0
        if self.options.na_value is False:
            return passes, fails + missing, 0
        return passes, fails, missing

    def filled(self) -> Optional[pd.arrays.BooleanArray]:
        """Values with indeterminate outcomes replaced by ``na.value`` (if set)."""
        if self.values is None or self.options.na_value is None:
            return self.values
        return self.values.fillna(self.options.na_value)


class Confrontation:
    """Results of confronting a rule set with data.

    Results can be looked up by rule name or position, and exported as a
    summary (one row per rule) or in long form (one row per rule and record).
    """

    def __init__(self, results: Sequence[RuleResult], nrows: int, options: Options = DEFAULT_OPTIONS):
        self._results = tuple(results)
        self._by_name = {result.name: result for result in self._results}
        self.nrows = nrows
        self.options = options

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self) -> Iterator[RuleResult]:
        return iter(self._results)

    def __getitem__(self, key: Union[int, str]) -> RuleResult:
        if isinstance(key, str):
            return self._by_name[key]
        return self._results[key]

    def __repr__(self) -> str:
        summary = self.summary()
        return (
            f"Confrontation({len(self)} rules, {self.nrows} records: "
            f"{int(summary['fails'].sum())} fails, {int(summary['error'].sum())} errors)"
        )

    def names(self) -> List[str]:
        return [result.name for result in self._results]

    def summary(self) -> pd.DataFrame:
        """One row per rule: items, passes, fails, nNA, error and warning flags, expression."""
        rows = []
        for result in self._results:
            passes, fails, missing = result.counts()
            rows.append(
                {
                    "name": result.name,
                    "items": result.items,
                    "passes": passes,
                    "fails": fails,
                    "nNA": missing,
                    "error": result.has_error,
                    "warning": result.has_warning,
                    "expression": str(result.rule.expression),
                }
            )
        frame = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
        frame = frame.astype({"items": "int64", "passes": "int64", "fails": "int64", "nNA": "int64"})
        frame = frame.astype({"error": "bool", "warning": "bool", "name": "str", "expression": "str"})
        return SummarySchema.validate(frame)

    def aggregate(self, by: Literal["rule", "record"] = "rule") -> pd.DataFrame:
        """Pass/fail/NA counts and rates per rule, or per record over full-length rules."""
        if by == "rule":
            frame = self.summary().set_index("name")[["passes", "fails", "nNA"]]
            frame.columns = ["npass", "nfail", "nNA"]
        elif by == "record":
            values = self.values(filled=True)
            frame = pd.DataFrame(
                {
                    "npass": values.eq(True).sum(axis=1).astype("int64"),
                    "nfail": values.eq(False).sum(axis=1).astype("int64"),
                    "nNA": values.isna().sum(axis=1).astype("int64"),
                },
                index=values.index,
            )
        else:
            raise ValueError(f"by must be 'rule' or 'record', got {by!r}")
        total = frame[["npass", "nfail", "nNA"]].sum(axis=1).replace(0, np.nan)
        frame["rel.pass"] = frame["npass"] / total
        frame["rel.fail"] = frame["nfail"] / total
        frame["rel.NA"] = frame["nNA"] / total
        return frame

    def values(self, filled: bool = False) -> pd.DataFrame:
        """Records x rules frame of the rules evaluated once per record.

        Args:
            filled: Replace indeterminate outcomes by each rule's ``na.value``
        """
        columns = {}
        for result in self._results:
            if result.values is None or len(result.values) != self.nrows:
                continue
            columns[result.name] = result.filled() if filled else result.values
        frame = pd.DataFrame(columns, index=pd.RangeIndex(self.nrows, name="record"))
        return frame.astype("boolean") if columns else frame

    def to_frame(self, by: Literal["rule", "record"] = "rule") -> pd.DataFrame:
        """Tabular export: the summary plus rule metadata, or one row per rule and record."""
        if by == "rule":
            frame = self.summary()
            frame.insert(1, "kind", [str(result.rule.kind) for result in self._results])
            frame["block"] = pd.array([result.block for result in self._results], dtype="Int64")
            frame["label"] = [result.rule.label for result in self._results]
            frame["description"] = [result.rule.description for result in self._results]
            return frame
        if by == "record":
            parts = []
            for result in self._results:
                if result.values is None:
                    continue
                parts.append(
                    pd.DataFrame(
                        {
                            "name": result.name,
                            "record": np.arange(len(result.values), dtype="int64"),
                            "value": result.values,
                        }
                    )
                )
            if not parts:
                frame = pd.DataFrame(
                    {
                        "name": pd.Series([], dtype="str"),
                        "record": pd.Series([], dtype="int64"),
                        "value": pd.array([], dtype="boolean"),
                    }
                )
            else:
                frame = pd.concat(parts, ignore_index=True)
            return RecordSchema.validate(frame)
        raise ValueError(f"by must be 'rule' or 'record', got {by!r}")

    def errors(self) -> Dict[str, List[str]]:
        return {result.name: list(result.errors) for result in self._results if result.errors}

    def warnings(self) -> Dict[str, List[str]]:
        return {result.name: list(result.warnings) for result in self._results if result.warnings}

    def impact(self, name: str, p: float = 2) -> Any:
        """Severity of a linear rule's violations, scaled by the dual norm of its coefficients.

        Rules that score themselves with ``V()`` or ``L()`` report the impact
        computed during evaluation, and ``p`` is ignored for them.
        """
        result = self[name]
        linear = result.rule.linear
        if linear is None:
            if result.impact is not None:
                return result.impact
            raise ValueError(f"rule '{name}' is not linear")
        if result.severity is None:
            raise ValueError(f"rule '{name}' has no severity (it was not evaluated numerically)")
        norm = linear.norm(p)
        if norm == 0:
            raise ValueError(f"rule '{name}' has no variable coefficients")
        return result.severity / norm

    def _record_mask(self, want: bool, include_missing: bool) -> np.ndarray:
        values = self.values(filled=True)
        missing = values.isna().to_numpy(dtype=bool)
        if want:
            passed = values.eq(True).fillna(False).to_numpy(dtype=bool)
            return (passed | missing if include_missing else passed).all(axis=1)
        failed = values.eq(False).fillna(False).to_numpy(dtype=bool)
        return (failed | missing if include_missing else failed).any(axis=1)

    def violating(self, data: pd.DataFrame, include_missing: bool = False) -> pd.DataFrame:
        """Records of ``data`` failing at least one record-level rule."""
        self._check_rows(data)
        return data[self._record_mask(False, include_missing)]

    def satisfying(self, data: pd.DataFrame, include_missing: bool = False) -> pd.DataFrame:
        """Records of ``data`` passing every record-level rule."""
        self._check_rows(data)
        return data[self._record_mask(True, include_missing)]

    def _check_rows(self, data: pd.DataFrame) -> None:
        if len(data.index) != self.nrows:
            raise ValueError(f"data has {len(data.index)} records, the confrontation {self.nrows}")

    def all_passed(self, na_rm: bool = False) -> bool:
        """True if no rule errored and every counted outcome passed.

        Indeterminate outcomes left as NA by ``na.value`` count against the
        verdict unless ``na_rm`` is set.
        """
        summary = self.summary()
        if summary["error"].any() or summary["fails"].any():
            return False
        return na_rm or not summary["nNA"].any()
