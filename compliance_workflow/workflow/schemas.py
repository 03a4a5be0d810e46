"""Pydantic models for the compliance workflow document.

Field names follow the wire contract (``WorkflowName``, ``Rules``,
``DependsOn``...) through PascalCase aliases. Parameters are a tagged
variant selected by the rule's ``Provider``; the variant is resolved while
the rule is constructed, so a parsed Rule always carries the right shape.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import ConfigDict, Field, JsonValue, ValidationInfo, field_validator

from .errors import ParameterError
from .parameters import ProviderParameters, resolve_parameters
from .types import (
    ContractModel,
    Duration,
    OperatorType,
    PRESENCE_OPERATORS,
    ProviderType,
    ResultStatus,
    RunModeType,
)

SCHEMA_VERSION = "1.0"


def _unique(items: list[str]) -> list[str]:
    """Drop duplicates, keeping first-occurrence order."""
    return list(dict.fromkeys(items))


# =============================================================================
# Condition
# =============================================================================


class Condition(ContractModel):
    """How to evaluate the probed value.

    ``Expected`` may be any JSON value, including an explicit ``null``. An
    omitted ``Expected`` is distinguished from ``null`` through the model's
    set fields; it is only allowed for Exists/NotExists.
    """

    operator: OperatorType = Field(..., description="Comparison operator")
    expected: JsonValue = Field(None, description="Value compared against the probe result")

    @property
    def has_expected(self) -> bool:
        return "expected" in self.model_fields_set

    @property
    def requires_expected(self) -> bool:
        return self.operator not in PRESENCE_OPERATORS


# =============================================================================
# Execution options
# =============================================================================


class ExecutionOptions(ContractModel):
    """Rule-level execution options; these override workflow constraints."""

    run_mode: RunModeType = Field(RunModeType.INDEPENDENT, description="Scheduling mode")
    timeout: Duration | None = Field(None, description="Probe timeout (hh:mm:ss)")
    stop_on_failure: bool = Field(False, description="Halt the workflow if this rule fails")
    depends_on: list[str] = Field(default_factory=list, description="Rules that must finish first")

    @field_validator("depends_on")
    @classmethod
    def _dedupe_dependencies(cls, value: list[str]) -> list[str]:
        return _unique(value)


class WorkflowConstraints(ContractModel):
    """Workflow-level execution constraints."""

    run_sequentially: bool = Field(True, description="Run every rule on the sequential lane")
    stop_on_failure: bool = Field(False, description="Halt the workflow on the first failure")
    timeout: Duration | None = Field(None, description="Default probe timeout (hh:mm:ss)")


class Applicability(ContractModel):
    """OS applicability envelope."""

    os_family: str | None = Field(None, alias="OSFamily", description="e.g. 'Windows'")
    min_version: str | None = Field(None, description="e.g. '10.0'")
    max_version: str | None = Field(None, description="e.g. '10.0.22631'")
    product: str | None = Field(None, description="e.g. 'Windows Server 2022'")


# =============================================================================
# Rule
# =============================================================================


class Rule(ContractModel):
    """A rule probing one OS subsystem and asserting a condition on the value."""

    rule_name: str = Field(..., description="Unique rule name within the workflow")
    provider: ProviderType = Field(..., description="OS subsystem to probe")
    parameters: ProviderParameters = Field(..., description="Provider-specific parameters")
    condition: Condition = Field(..., description="Condition applied to the probed value")
    severity: int = Field(0, description="Severity score 0-10; higher is more critical")
    message: str | None = Field(None, description="Message shown when the rule fails")
    tags: list[str] = Field(default_factory=list, description="Classification tags")
    execution: ExecutionOptions = Field(default_factory=ExecutionOptions)

    @field_validator("parameters", mode="before")
    @classmethod
    def _resolve_parameters(cls, value, info: ValidationInfo):
        provider = info.data.get("provider")
        if provider is None:
            raise ParameterError("Cannot resolve parameters without a valid Provider")
        return resolve_parameters(provider, value)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: list[str]) -> list[str]:
        return _unique(value)

    @property
    def depends_on(self) -> list[str]:
        return self.execution.depends_on

    def is_exclusive(self, run_sequentially: bool) -> bool:
        """Whether the rule must run alone on the sequential lane."""
        return run_sequentially or self.execution.run_mode == RunModeType.SEQUENTIAL

    def effective_mode(self, run_sequentially: bool) -> RunModeType:
        if self.is_exclusive(run_sequentially):
            return RunModeType.SEQUENTIAL
        return RunModeType.INDEPENDENT

    def effective_timeout(self, constraints: WorkflowConstraints) -> timedelta | None:
        """Rule timeout if set, else the workflow timeout."""
        return self.execution.timeout or constraints.timeout

    def stops_on_failure(self, constraints: WorkflowConstraints) -> bool:
        return self.execution.stop_on_failure or constraints.stop_on_failure


# =============================================================================
# Result
# =============================================================================


class Result(ContractModel):
    """Outcome of one rule in one workflow run. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    rule_name: str
    success: bool
    status: ResultStatus
    message: str | None = None
    severity_score: int = Field(0, description="Rule severity at evaluation time")
    timestamp: datetime
    schema_version: str | None = None
    execution_mode: RunModeType = RunModeType.INDEPENDENT

    @property
    def skipped(self) -> bool:
        return self.status == ResultStatus.SKIPPED


# =============================================================================
# Workflow
# =============================================================================


class Workflow(ContractModel):
    """A compliance workflow: ordered rules plus the results of its last run."""

    schema_uri: str | None = Field(None, alias="$schema", description="JSON Schema pointer")
    workflow_name: str = Field(..., description="Human-readable workflow name")
    schema_version: str = Field(SCHEMA_VERSION, description="Contract version")
    author: str | None = Field(None, description="Author or maintainer")
    created_on: datetime | None = Field(None, description="Creation timestamp")
    applicability: Applicability = Field(default_factory=Applicability)
    constraints: WorkflowConstraints = Field(default_factory=WorkflowConstraints)
    rules: list[Rule] = Field(..., description="Ordered rules to evaluate")
    results: list[Result] = Field(default_factory=list, description="Results of the last run")

    @property
    def rule_names(self) -> list[str]:
        return [rule.rule_name for rule in self.rules]

    def get_rule(self, rule_name: str) -> Rule | None:
        """Get a rule by name."""
        for rule in self.rules:
            if rule.rule_name == rule_name:
                return rule
        return None

    def get_rules_by_tag(self, tag: str) -> list[Rule]:
        return [rule for rule in self.rules if tag in rule.tags]
