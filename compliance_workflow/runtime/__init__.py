"""
Runtime package for compliance workflows.

Provides rule execution with:
- Injected probe capabilities per provider
- Operator evaluation over normalized values
- Dependency-ordered, bounded-concurrency scheduling
- Declaration-ordered result aggregation
"""

from .conditions import OPERATORS, evaluate, evaluate_condition, to_decimal, values_equal
from .probes import Probe, ProbeRegistry
from .aggregator import ResultAggregator, ResultSummary, aggregate, summarize
from .scheduler import WorkflowScheduler
from .engine import WorkflowEngine, WorkflowReport, execute_workflow

__all__ = [
    # Conditions
    "OPERATORS",
    "evaluate",
    "evaluate_condition",
    "to_decimal",
    "values_equal",
    # Probes
    "Probe",
    "ProbeRegistry",
    # Aggregation
    "ResultAggregator",
    "ResultSummary",
    "aggregate",
    "summarize",
    # Scheduling
    "WorkflowScheduler",
    # Engine
    "WorkflowEngine",
    "WorkflowReport",
    "execute_workflow",
]
