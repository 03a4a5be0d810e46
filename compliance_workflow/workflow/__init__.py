"""Workflow domain - document models, validation and dependency graph."""

from .types import (
    ContractModel,
    Duration,
    OperatorType,
    ProviderType,
    ResultStatus,
    RunModeType,
    format_duration,
    to_decimal,
)
from .errors import (
    IssueKind,
    ValidationIssue,
    WorkflowError,
    WorkflowValidationError,
    ParameterError,
    GraphValidationError,
    CycleError,
    ProbeError,
    ProbeTimeoutError,
    EvaluatorError,
)
from .parameters import (
    PARAMETER_MODELS,
    ProviderParameters,
    ProviderParametersBase,
    RegistryParameters,
    FileSystemParameters,
    AclParameters,
    WmiParameters,
    EventLogParameters,
    ServiceParameters,
    ProcessParameters,
    CustomParameters,
    resolve,
    resolve_parameters,
)
from .schemas import (
    SCHEMA_VERSION,
    Applicability,
    Condition,
    ExecutionOptions,
    Result,
    Rule,
    Workflow,
    WorkflowConstraints,
)
from .applicability import HostInfo, applicability_mismatches, check_applicability
from .graph import DependencyGraph, build_graph, find_cycles
from .validator import ensure_valid, validate_document, validate_workflow
from .loader import dump_workflow, parse_workflow, workflow_json_schema, workflow_to_document

__all__ = [
    # Types
    "ContractModel",
    "Duration",
    "OperatorType",
    "ProviderType",
    "ResultStatus",
    "RunModeType",
    "format_duration",
    "to_decimal",
    # Errors
    "IssueKind",
    "ValidationIssue",
    "WorkflowError",
    "WorkflowValidationError",
    "ParameterError",
    "GraphValidationError",
    "CycleError",
    "ProbeError",
    "ProbeTimeoutError",
    "EvaluatorError",
    # Parameters
    "PARAMETER_MODELS",
    "ProviderParameters",
    "ProviderParametersBase",
    "RegistryParameters",
    "FileSystemParameters",
    "AclParameters",
    "WmiParameters",
    "EventLogParameters",
    "ServiceParameters",
    "ProcessParameters",
    "CustomParameters",
    "resolve",
    "resolve_parameters",
    # Models
    "SCHEMA_VERSION",
    "Applicability",
    "Condition",
    "ExecutionOptions",
    "Result",
    "Rule",
    "Workflow",
    "WorkflowConstraints",
    # Applicability
    "HostInfo",
    "applicability_mismatches",
    "check_applicability",
    # Graph
    "DependencyGraph",
    "build_graph",
    "find_cycles",
    # Validation
    "ensure_valid",
    "validate_document",
    "validate_workflow",
    # Codec
    "dump_workflow",
    "parse_workflow",
    "workflow_json_schema",
    "workflow_to_document",
]
