"""Structural and semantic validation of workflows.

Validation never stops at the first problem: every offending field yields
its own ``ValidationIssue`` and the full list is reported at once. A
workflow with any issue must not be executed.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .errors import IssueKind, ParameterError, ValidationIssue, WorkflowValidationError
from .graph import find_cycles
from .parameters import resolve
from .schemas import Rule, Workflow
from .types import OperatorType, to_decimal

SEVERITY_MIN = 0
SEVERITY_MAX = 10

_NUMERIC_OPERATORS = frozenset({OperatorType.GREATER_THAN, OperatorType.LESS_THAN})


# =============================================================================
# Pydantic error conversion
# =============================================================================


def _format_location(loc: tuple[Any, ...]) -> str:
    text = ""
    for part in loc:
        if isinstance(part, int):
            text += f"[{part}]"
        else:
            text += f".{part}" if text else str(part)
    return text or "<document>"


def _rule_name_at(document: Any, position: int) -> str | None:
    if not isinstance(document, Mapping):
        return None
    rules = document.get("Rules", document.get("rules"))
    if isinstance(rules, list) and 0 <= position < len(rules):
        item = rules[position]
        if isinstance(item, Mapping):
            name = item.get("RuleName", item.get("rule_name"))
            return name if isinstance(name, str) else None
    return None


def issues_from_pydantic(exc: PydanticValidationError, document: Any = None) -> list[ValidationIssue]:
    """Convert every error of a pydantic ValidationError into an issue."""
    issues = []
    for error in exc.errors():
        loc = tuple(error["loc"])
        kind = IssueKind.PARAMETER if "Parameters" in loc or "parameters" in loc else IssueKind.VALIDATION
        rule_name = None
        if len(loc) >= 2 and loc[0] in ("Rules", "rules") and isinstance(loc[1], int):
            rule_name = _rule_name_at(document, loc[1])
        message = error["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        issues.append(ValidationIssue(
            kind=kind,
            location=_format_location(loc),
            message=message,
            rule_name=rule_name,
        ))
    return issues


# =============================================================================
# Checks
# =============================================================================


def check_header(workflow: Workflow) -> list[ValidationIssue]:
    """WorkflowName and Rules must both be non-empty."""
    issues = []
    if not workflow.workflow_name or not workflow.workflow_name.strip():
        issues.append(ValidationIssue(location="WorkflowName", message="WorkflowName must not be empty"))
    if not workflow.rules:
        issues.append(ValidationIssue(location="Rules", message="Workflow must contain at least one rule"))
    if workflow.constraints.timeout is not None and workflow.constraints.timeout.total_seconds() <= 0:
        issues.append(ValidationIssue(
            location="Constraints.Timeout",
            message="Timeout must be greater than zero",
        ))
    return issues


def check_rule(rule: Rule, position: int) -> list[ValidationIssue]:
    """Per-rule checks that do not depend on the other rules."""
    prefix = f"Rules[{position}]"
    name = rule.rule_name or None
    issues = []

    def add(field: str, message: str, kind: IssueKind = IssueKind.VALIDATION) -> None:
        issues.append(ValidationIssue(
            kind=kind, location=f"{prefix}.{field}", message=message, rule_name=name
        ))

    if not rule.rule_name or not rule.rule_name.strip():
        add("RuleName", "RuleName must not be empty")

    if not SEVERITY_MIN <= rule.severity <= SEVERITY_MAX:
        add("Severity", f"Severity {rule.severity} is outside {SEVERITY_MIN}-{SEVERITY_MAX}")

    condition = rule.condition
    try:
        operator = OperatorType(condition.operator)
    except ValueError:
        add("Condition.Operator", f"Unknown operator '{condition.operator}'")
    else:
        if condition.requires_expected and not condition.has_expected:
            add("Condition.Expected", f"Expected is required for operator {operator.value}")
        if operator in _NUMERIC_OPERATORS and condition.has_expected:
            if to_decimal(condition.expected) is None:
                add("Condition.Expected", f"{operator.value} requires a numeric Expected value")
        if operator == OperatorType.REGEX_MATCH and condition.has_expected:
            if not isinstance(condition.expected, str):
                add("Condition.Expected", "RegexMatch requires a string pattern")
            else:
                try:
                    re.compile(condition.expected)
                except re.error as exc:
                    add("Condition.Expected", f"Invalid regular expression: {exc}")

    timeout = rule.execution.timeout
    if timeout is not None and timeout.total_seconds() <= 0:
        add("Execution.Timeout", "Timeout must be greater than zero")

    try:
        resolve(rule)
    except ParameterError as exc:
        add("Parameters", str(exc), IssueKind.PARAMETER)

    return issues


def check_names(workflow: Workflow) -> list[ValidationIssue]:
    """Rule names must be unique; each repeat is reported at its position."""
    counts = Counter(rule.rule_name for rule in workflow.rules if rule.rule_name)
    issues = []
    seen: set[str] = set()
    for position, rule in enumerate(workflow.rules):
        name = rule.rule_name
        if name and counts[name] > 1:
            if name in seen:
                issues.append(ValidationIssue(
                    location=f"Rules[{position}].RuleName",
                    message=f"Duplicate RuleName '{name}'",
                    rule_name=name,
                ))
            seen.add(name)
    return issues


def check_dependencies(workflow: Workflow) -> list[ValidationIssue]:
    """Every DependsOn entry must name a rule of the same workflow."""
    known = set(workflow.rule_names)
    issues = []
    for position, rule in enumerate(workflow.rules):
        for j, target in enumerate(rule.depends_on):
            if target not in known:
                issues.append(ValidationIssue(
                    location=f"Rules[{position}].Execution.DependsOn[{j}]",
                    message=f"Rule '{rule.rule_name}' depends on unknown rule '{target}'",
                    rule_name=rule.rule_name,
                ))
    return issues


def check_cycles(workflow: Workflow) -> list[ValidationIssue]:
    """Report every dependency cycle among resolvable DependsOn edges."""
    index: dict[str, int] = {}
    for position, rule in enumerate(workflow.rules):
        index.setdefault(rule.rule_name, position)

    adjacency = [
        [index[target] for target in rule.depends_on if target in index]
        for rule in workflow.rules
    ]

    issues = []
    for cycle in find_cycles(adjacency):
        names = [workflow.rules[i].rule_name for i in cycle]
        path = " -> ".join(names + names[:1])
        issues.append(ValidationIssue(
            kind=IssueKind.CYCLE,
            location=f"Rules[{cycle[0]}].Execution.DependsOn",
            message=f"Dependency cycle: {path}",
            rule_name=names[0],
            rules=names,
        ))
    return issues


# =============================================================================
# Entry points
# =============================================================================


def validate_workflow(workflow: Workflow) -> list[ValidationIssue]:
    """Run every semantic check and return all issues (empty means valid)."""
    issues = check_header(workflow)
    for position, rule in enumerate(workflow.rules):
        issues.extend(check_rule(rule, position))
    issues.extend(check_names(workflow))
    issues.extend(check_dependencies(workflow))
    issues.extend(check_cycles(workflow))
    return issues


def validate_document(document: Any) -> list[ValidationIssue]:
    """Validate a raw document mapping: structure first, then semantics."""
    try:
        workflow = Workflow.model_validate(document)
    except PydanticValidationError as exc:
        return issues_from_pydantic(exc, document)
    return validate_workflow(workflow)


def ensure_valid(workflow: Workflow) -> Workflow:
    """Raise WorkflowValidationError unless the workflow is valid."""
    issues = validate_workflow(workflow)
    if issues:
        raise WorkflowValidationError(issues)
    return workflow
