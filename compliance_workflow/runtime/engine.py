"""Workflow engine: validate, plan and run compliance workflows."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from ..core.clock import Clock, utc_now
from ..core.config import Settings, get_settings
from ..workflow.applicability import HostInfo, applicability_mismatches
from ..workflow.errors import ValidationIssue, WorkflowValidationError
from ..workflow.graph import DependencyGraph, build_graph
from ..workflow.loader import parse_workflow
from ..workflow.schemas import Result, Workflow
from ..workflow.types import ResultStatus
from ..workflow.validator import ensure_valid, validate_workflow
from .aggregator import ResultAggregator, ResultSummary
from .probes import ProbeRegistry
from .scheduler import WorkflowScheduler

logger = logging.getLogger(__name__)

WorkflowSource = str | Mapping[str, Any] | Workflow


class WorkflowReport(BaseModel):
    """Outcome of one workflow run."""

    workflow_name: str
    results: list[Result] = Field(default_factory=list)
    summary: ResultSummary = Field(default_factory=ResultSummary)

    @property
    def success(self) -> bool:
        return self.summary.success

    def get_result(self, rule_name: str) -> Result | None:
        for result in self.results:
            if result.rule_name == rule_name:
                return result
        return None


class WorkflowEngine:
    """Validates workflows and evaluates their rules with injected probes."""

    def __init__(
        self,
        probes: ProbeRegistry | Mapping[Any, Any] | None = None,
        *,
        settings: Settings | None = None,
        clock: Clock | None = None,
        max_workers: int | None = None,
    ):
        if probes is None:
            probes = ProbeRegistry()
        elif not isinstance(probes, ProbeRegistry):
            probes = ProbeRegistry(probes)
        self.probes = probes
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.scheduler = WorkflowScheduler(
            probes,
            max_workers=max_workers or self.settings.max_workers,
            clock=self.clock,
            default_timeout=self.settings.default_timeout_seconds,
            record_skipped=self.settings.record_skipped_rules,
        )

    def load(self, source: WorkflowSource) -> Workflow:
        """Parse a workflow document (structural checks only)."""
        return parse_workflow(source, clock=self.clock)

    def validate(self, source: WorkflowSource) -> list[ValidationIssue]:
        """Every validation issue of a workflow; empty when it can run."""
        try:
            workflow = self.load(source)
        except WorkflowValidationError as exc:
            return exc.issues
        return validate_workflow(workflow)

    def prepare(self, source: WorkflowSource) -> tuple[Workflow, DependencyGraph]:
        """Parse, validate and build the dependency graph.

        Raises:
            WorkflowValidationError: the workflow is invalid; nothing was probed.
        """
        workflow = ensure_valid(self.load(source))
        return workflow, build_graph(workflow.rules)

    def plan(self, source: WorkflowSource) -> list[list[str]]:
        """Static execution stages (see DependencyGraph.stages)."""
        workflow, graph = self.prepare(source)
        return graph.stages(workflow.constraints.run_sequentially)

    async def run(self, source: WorkflowSource, host: HostInfo | None = None) -> WorkflowReport:
        """Validate and execute a workflow.

        The workflow's ``results`` are replaced with the new result set, in
        rule declaration order.

        Args:
            source: Workflow, document mapping or JSON/YAML text.
            host: Host facts; when given and outside the workflow's
                applicability envelope, every rule is skipped unprobed.
        """
        workflow, graph = self.prepare(source)
        logger.info("Running workflow '%s' (%d rules)", workflow.workflow_name, len(graph))

        mismatches = applicability_mismatches(workflow.applicability, host) if host else []
        if mismatches:
            reason = "; ".join(mismatches)
            logger.info("Workflow '%s' not applicable: %s", workflow.workflow_name, reason)
            aggregator = ResultAggregator(workflow.rules)
            for rule in workflow.rules:
                aggregator.add(self._not_applicable(rule, workflow, reason))
        else:
            aggregator = await self.scheduler.run(workflow, graph)

        results = aggregator.finalize()
        workflow.results = results
        summary = aggregator.summary()
        logger.info(
            "Workflow '%s' finished: %d passed, %d failed, %d errored, %d skipped",
            workflow.workflow_name,
            summary.passed,
            summary.failed,
            summary.errored,
            summary.skipped,
        )
        return WorkflowReport(workflow_name=workflow.workflow_name, results=results, summary=summary)

    def run_sync(self, source: WorkflowSource, host: HostInfo | None = None) -> WorkflowReport:
        """Synchronous wrapper for :meth:`run`, for use in non-async contexts."""
        return asyncio.run(self.run(source, host))

    def _not_applicable(self, rule, workflow: Workflow, reason: str) -> Result:
        return Result(
            rule_name=rule.rule_name,
            success=False,
            status=ResultStatus.SKIPPED,
            message=f"Skipped: workflow not applicable to host ({reason})",
            severity_score=rule.severity,
            timestamp=self.clock(),
            schema_version=workflow.schema_version,
            execution_mode=rule.effective_mode(workflow.constraints.run_sequentially),
        )


def execute_workflow(
    source: WorkflowSource,
    probes: ProbeRegistry | Mapping[Any, Any],
    host: HostInfo | None = None,
    **engine_options: Any,
) -> WorkflowReport:
    """Convenience function to run a workflow once, synchronously."""
    return WorkflowEngine(probes, **engine_options).run_sync(source, host)
