"""
Confrontation engine.

Evaluates every rule of a rule set against a primary dataset (plus optional
reference data) and collects per-rule values, errors and warnings. What
happens on failure is decided by the ``raise`` option of each rule:

- ``none``: errors and warnings are recorded on the rule's result; the rule
  has no values and every other rule is still evaluated
- ``errors``: the first evaluation error propagates to the caller
- ``all``: warnings abort the confrontation too
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from rulebook.config import get_settings
from rulebook.evaluate import Evaluator, Scope
from rulebook.exceptions import EvaluationError, EvaluationTimeout, RulebookError
from rulebook.options import Options
from rulebook.results import Confrontation, RuleResult
from rulebook.rules import Rule, RuleSet, ruleset

logger = logging.getLogger(__name__)


def _as_frame(data: Any) -> pd.DataFrame:
    if isinstance(data, pd.DataFrame):
        return data
    if isinstance(data, Mapping):
        return pd.DataFrame(dict(data))
    raise TypeError(f"data must be a DataFrame or a mapping of columns, got {type(data).__name__}")


def _as_reference(ref: Any) -> Mapping[str, Any]:
    if ref is None:
        return {}
    if isinstance(ref, pd.DataFrame):
        return {str(column): ref[column] for column in ref.columns}
    if isinstance(ref, Mapping):
        return dict(ref)
    raise TypeError(f"ref must be a mapping or a DataFrame, got {type(ref).__name__}")


def _message(exc: BaseException) -> str:
    if isinstance(exc, RulebookError):
        return exc.message
    return f"{type(exc).__name__}: {exc}"


def _escalate(rule: Rule, exc: BaseException) -> RulebookError:
    if isinstance(exc, RulebookError):
        return exc
    return EvaluationError(_message(exc), rule=rule.name, cause=exc)


class _RuleRunner:
    """Evaluates single rules under their effective options."""

    def __init__(self, scope: Scope, timeout: Optional[float]):
        self.scope = scope
        self.timeout = timeout

    def _evaluate(self, rule: Rule, options: Options) -> Tuple[Any, Evaluator]:
        evaluator = Evaluator(self.scope, options)
        return evaluator.run(rule), evaluator

    def _evaluate_with_deadline(self, rule: Rule, options: Options) -> Tuple[Any, Evaluator]:
        if not self.timeout:
            return self._evaluate(rule, options)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"rulebook-{rule.name}")
        future = executor.submit(self._evaluate, rule, options)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            raise EvaluationTimeout(rule.name, self.timeout) from None
        finally:
            # a timed-out evaluation cannot be interrupted; it is left to finish in the background
            executor.shutdown(wait=False, cancel_futures=True)

    def run(self, rule: Rule, options: Options, block: Optional[int]) -> RuleResult:
        policy = options.raise_
        started = time.perf_counter()
        try:
            values, evaluator = self._evaluate_with_deadline(rule, options)
        except Exception as exc:
            elapsed = time.perf_counter() - started
            if policy != "none":
                escalated = _escalate(rule, exc)
                if escalated is exc:
                    raise
                raise escalated from exc
            logger.warning("Rule '%s' failed: %s", rule.name, _message(exc))
            return RuleResult(
                rule=rule,
                values=None,
                errors=(_message(exc),),
                block=block,
                elapsed=elapsed,
                options=options,
            )
        elapsed = time.perf_counter() - started
        messages = [str(warning) for warning in evaluator.warnings]
        if messages and policy == "all":
            raise EvaluationError(f"warning raised: {messages[0]}", rule=rule.name)
        logger.debug("Rule '%s' evaluated in %.4fs", rule.name, elapsed)
        return RuleResult(
            rule=rule,
            values=values,
            warnings=tuple(messages),
            severity=evaluator.severity,
            impact=evaluator.impact,
            block=block,
            elapsed=elapsed,
            options=options,
        )


def confront(
    rules: Union[RuleSet, Sequence[Any]],
    data: Any,
    ref: Any = None,
    *,
    options: Union[Options, Mapping[str, Any], None] = None,
    workers: Optional[int] = None,
    timeout: Optional[float] = None,
) -> Confrontation:
    """
    Evaluate a rule set against data.

    Args:
        rules: A RuleSet, or declaration entries to build one from
        data: Primary dataset (DataFrame or mapping of columns); never modified
        ref: Reference data: a mapping of names to DataFrames, vectors or
            scalars, or a DataFrame whose columns are made available
        options: Runtime options, above the rule set's options and below
            per-rule overrides
        workers: Threads used to evaluate independent blocks in parallel
        timeout: Per-rule deadline in seconds; a rule exceeding it is recorded
            as an error for that rule

    Returns:
        Confrontation with one result per rule, in rule-set order

    Raises:
        EvaluationError: a rule failed and its ``raise`` option is not 'none'
        UnresolvedVariable: same, for a name found in neither data nor ref
    """
    if not isinstance(rules, RuleSet):
        rules = ruleset(*rules)
    settings = get_settings()
    workers = workers or settings.workers
    timeout = timeout if timeout is not None else settings.timeout

    frame = _as_frame(data)
    scope = Scope(frame, _as_reference(ref))
    overall = rules.effective_options(runtime=options)
    effective = {rule.name: rules.effective_options(rule, runtime=options) for rule in rules}

    logger.info(
        "Confronting %d rules with %d records (workers=%d, sequential=%s)",
        len(rules),
        scope.nrows,
        workers,
        overall.sequential,
    )
    started = time.perf_counter()

    by_name = {rule.name: rule for rule in rules}
    blocks = rules.blocks()
    runner = _RuleRunner(scope, timeout)
    results: dict[str, RuleResult] = {}

    def run_block(names: Sequence[str], index: Optional[int]) -> List[RuleResult]:
        return [runner.run(by_name[name], effective[name], index) for name in names]

    if workers > 1 and len(blocks) > 1:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rulebook") as executor:
            futures = [
                executor.submit(run_block, block.rules, block.index if overall.sequential else None)
                for block in blocks
            ]
            try:
                for future in futures:
                    for result in future.result():
                        results[result.name] = result
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
    elif overall.sequential:
        for block in blocks:
            for result in run_block(block.rules, block.index):
                results[result.name] = result
    else:
        for result in run_block(rules.names(), None):
            results[result.name] = result

    confrontation = Confrontation(
        [results[name] for name in rules.names()],
        nrows=scope.nrows,
        options=overall,
    )
    failed = sum(result.has_error for result in confrontation)
    logger.info(
        "Confrontation finished in %.3fs: %d rules, %d with errors",
        time.perf_counter() - started,
        len(confrontation),
        failed,
    )
    return confrontation
