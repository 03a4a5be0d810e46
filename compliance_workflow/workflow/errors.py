"""Error taxonomy for workflow validation and execution.

Validation-time problems are collected as ``ValidationIssue`` records and
raised together in a ``WorkflowValidationError``. Execution-time errors
(probe, timeout, evaluator) never escape the scheduler; they are recorded on
the rule's result.
"""

from __future__ import annotations

from enum import Enum
from pydantic import BaseModel, Field


class IssueKind(str, Enum):
    """Category of a validation issue."""

    VALIDATION = "validation"
    PARAMETER = "parameter"
    CYCLE = "cycle"


class ValidationIssue(BaseModel):
    """A single validation problem found before execution."""

    kind: IssueKind = Field(IssueKind.VALIDATION, description="Issue category")
    location: str = Field(..., description="Document path, e.g. 'Rules[1].Severity'")
    message: str = Field(..., description="Human-readable explanation")
    rule_name: str | None = Field(None, description="Offending rule, if any")
    rules: list[str] = Field(default_factory=list, description="Rules in a cycle")

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""


class WorkflowValidationError(WorkflowError):
    """Raised when a workflow fails validation; carries every issue found."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = list(issues)
        lines = "\n".join(f"  - {issue}" for issue in self.issues)
        super().__init__(f"Workflow validation failed with {len(self.issues)} issue(s):\n{lines}")

    @property
    def cycles(self) -> list[list[str]]:
        """Rule names of every dependency cycle among the issues."""
        return [issue.rules for issue in self.issues if issue.kind == IssueKind.CYCLE]


class ParameterError(WorkflowError, ValueError):
    """Rule parameters do not match the shape required by the rule's provider."""


class GraphValidationError(WorkflowError):
    """Raised when the dependency graph cannot be built."""


class CycleError(GraphValidationError):
    """Raised when rule dependencies form one or more cycles."""

    def __init__(self, cycles: list[list[str]]):
        self.cycles = cycles
        described = "; ".join(" -> ".join(cycle + cycle[:1]) for cycle in cycles)
        super().__init__(f"Dependency cycle detected: {described}")


class ProbeError(WorkflowError):
    """A probe could not produce a value for its parameters."""


class ProbeTimeoutError(WorkflowError):
    """A probe exceeded the rule's effective timeout."""


class EvaluatorError(WorkflowError):
    """An operator cannot be applied to the observed or expected value."""
