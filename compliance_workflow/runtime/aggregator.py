"""Result aggregation: completion-order collection, declaration-order output."""

from __future__ import annotations

from typing import Iterable, Sequence

from pydantic import BaseModel, Field

from ..workflow.schemas import Result, Rule
from ..workflow.types import ERROR_STATUSES, ResultStatus


class ResultSummary(BaseModel):
    """Counts over a result set, for reporting collaborators."""

    total: int = 0
    passed: int = 0
    failed: int = Field(0, description="Rules whose condition evaluated false")
    errored: int = Field(0, description="Probe, timeout and evaluator errors")
    skipped: int = 0
    highest_failed_severity: int | None = Field(
        None, description="Highest SeverityScore among unsuccessful, non-skipped results"
    )
    failed_rules: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.errored == 0


def aggregate(results: Iterable[Result], rules: Sequence[Rule]) -> list[Result]:
    """Order results by rule declaration order.

    Raises:
        ValueError: a rule has more than one result, or a result names a rule
            that is not in ``rules``.
    """
    position = {rule.rule_name: i for i, rule in enumerate(rules)}
    by_rule: dict[str, Result] = {}
    for result in results:
        if result.rule_name not in position:
            raise ValueError(f"Result for unknown rule '{result.rule_name}'")
        if result.rule_name in by_rule:
            raise ValueError(f"Duplicate result for rule '{result.rule_name}'")
        by_rule[result.rule_name] = result
    return sorted(by_rule.values(), key=lambda r: position[r.rule_name])


def summarize(results: Iterable[Result]) -> ResultSummary:
    """Count passes, failures, errors and skips; track the worst failure."""
    summary = ResultSummary()
    for result in results:
        summary.total += 1
        if result.status == ResultStatus.SKIPPED:
            summary.skipped += 1
            continue
        if result.success:
            summary.passed += 1
            continue

        if result.status in ERROR_STATUSES:
            summary.errored += 1
        else:
            summary.failed += 1
        summary.failed_rules.append(result.rule_name)
        if summary.highest_failed_severity is None or result.severity_score > summary.highest_failed_severity:
            summary.highest_failed_severity = result.severity_score
    return summary


class ResultAggregator:
    """Collects results as rules complete and finalizes them for a workflow."""

    def __init__(self, rules: Sequence[Rule]):
        self._rules = list(rules)
        self._names: set[str] = set()
        self.completed: list[Result] = []

    def add(self, result: Result) -> None:
        self._names.add(result.rule_name)
        self.completed.append(result)

    def __contains__(self, rule_name: object) -> bool:
        return rule_name in self._names

    def finalize(self) -> list[Result]:
        """Results in declaration order."""
        return aggregate(self.completed, self._rules)

    def summary(self) -> ResultSummary:
        """Counts over the finalized results; failed rules in declaration order."""
        return summarize(self.finalize())
