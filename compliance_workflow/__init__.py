"""Compliance Workflow - validation and execution engine for OS compliance rules.

A workflow document lists rules; each rule probes one OS subsystem through
an injected probe and asserts a condition on the probed value. This package
validates documents, orders rules by their dependencies and runs them.
"""

from .core import FixedClock, Settings, get_settings, utc_now
from .workflow import (
    Condition,
    CycleError,
    EvaluatorError,
    ExecutionOptions,
    HostInfo,
    OperatorType,
    ParameterError,
    ProbeError,
    ProbeTimeoutError,
    ProviderType,
    Result,
    ResultStatus,
    Rule,
    RunModeType,
    ValidationIssue,
    Workflow,
    WorkflowConstraints,
    WorkflowError,
    WorkflowValidationError,
    dump_workflow,
    parse_workflow,
    validate_document,
    validate_workflow,
    workflow_json_schema,
)
from .runtime import (
    ProbeRegistry,
    WorkflowEngine,
    WorkflowReport,
    execute_workflow,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "FixedClock",
    "Settings",
    "get_settings",
    "utc_now",
    # Models
    "Condition",
    "ExecutionOptions",
    "HostInfo",
    "OperatorType",
    "ProviderType",
    "Result",
    "ResultStatus",
    "Rule",
    "RunModeType",
    "Workflow",
    "WorkflowConstraints",
    # Errors
    "CycleError",
    "EvaluatorError",
    "ParameterError",
    "ProbeError",
    "ProbeTimeoutError",
    "ValidationIssue",
    "WorkflowError",
    "WorkflowValidationError",
    # Documents
    "dump_workflow",
    "parse_workflow",
    "validate_document",
    "validate_workflow",
    "workflow_json_schema",
    # Runtime
    "ProbeRegistry",
    "WorkflowEngine",
    "WorkflowReport",
    "execute_workflow",
]
