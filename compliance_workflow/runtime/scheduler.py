"""Execution scheduler: dispatches rules in dependency order.

The scheduler coroutine is the single coordinator of a run. It owns the
per-rule dependency counters and the ready queue; rule tasks only return
results, so readiness is updated between awaits without locking.

Dispatch rules:
- A rule is ready once every rule in its DependsOn has finished, whether it
  passed or failed.
- Ready rules are taken in declaration order.
- Exclusive rules (workflow RunSequentially, or RunMode Sequential) wait
  until nothing else runs, then run alone.
- Independent rules run concurrently, at most ``max_workers`` at a time.
- After a failure with stop-on-failure in effect nothing new is dispatched;
  running rules finish, never-started rules are reported as skipped.
- Plain-function probes run on a thread pool owned by the run. A timed-out
  thread cannot be preempted: its cancel event is set and it is abandoned.
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import timedelta
from typing import Any

from ..core.clock import Clock, utc_now
from ..workflow.errors import EvaluatorError, ProbeError, ProbeTimeoutError
from ..workflow.graph import DependencyGraph
from ..workflow.parameters import ProviderParametersBase, resolve
from ..workflow.schemas import Result, Rule, Workflow, WorkflowConstraints
from ..workflow.types import ResultStatus, format_duration
from .aggregator import ResultAggregator
from .conditions import evaluate
from .probes import ProbeRegistry

logger = logging.getLogger(__name__)


def _retrieve_outcome(task: asyncio.Task) -> None:
    # Abandoned probes may still fail after a timeout; mark the outcome as seen.
    if not task.cancelled():
        task.exception()


class WorkflowScheduler:
    """Runs the rules of one validated workflow and produces their results."""

    def __init__(
        self,
        probes: ProbeRegistry,
        *,
        max_workers: int = 8,
        clock: Clock | None = None,
        default_timeout: float | None = None,
        record_skipped: bool = True,
    ):
        """Initialize the scheduler.

        Args:
            probes: Probe capabilities, one per provider.
            max_workers: Maximum number of Independent rules running at once.
            clock: Time source for result timestamps.
            default_timeout: Seconds allowed per probe when neither the rule
                nor the workflow sets a timeout. None means unbounded.
            record_skipped: Emit Skipped results for rules never started
                because of stop-on-failure; otherwise they are omitted.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.probes = probes
        self.max_workers = max_workers
        self.default_timeout = default_timeout
        self.record_skipped = record_skipped
        self._clock = clock or utc_now

    # -------------------------------------------------------------------------
    # Run loop
    # -------------------------------------------------------------------------

    async def run(self, workflow: Workflow, graph: DependencyGraph) -> ResultAggregator:
        """Evaluate every rule of ``graph``.

        Plain-function probes run on a thread pool owned by this run. The pool
        is shut down without waiting when the run ends, so a probe thread that
        ignores its cancel event cannot hold up the caller after a timeout.

        Returns:
            The run's ResultAggregator; ``completed`` holds the results in
            completion order.
        """
        rules = graph.rules
        constraints = workflow.constraints
        sequential = constraints.run_sequentially
        dependents = graph.dependents

        remaining = [len(deps) for deps in graph.dependencies]
        ready = [i for i, count in enumerate(remaining) if count == 0]
        heapq.heapify(ready)

        aggregator = ResultAggregator(rules)
        running: dict[asyncio.Task, int] = {}
        exclusive_running = False
        halted_by: str | None = None
        executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="compliance-probe"
        )

        try:
            while ready or running:
                while ready and halted_by is None:
                    rule = rules[ready[0]]
                    if rule.is_exclusive(sequential):
                        if running:
                            break
                        exclusive_running = True
                    elif exclusive_running or len(running) >= self.max_workers:
                        break

                    i = heapq.heappop(ready)
                    logger.debug("Dispatching rule '%s'", rule.rule_name)
                    task = asyncio.create_task(self.evaluate_rule(rule, workflow, executor=executor))
                    running[task] = i
                    if exclusive_running:
                        break

                if not running:
                    break

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=running.__getitem__):
                    i = running.pop(task)
                    rule = rules[i]
                    result = task.result()
                    aggregator.add(result)

                    if rule.is_exclusive(sequential):
                        exclusive_running = False
                    for dependent in dependents[i]:
                        remaining[dependent] -= 1
                        if remaining[dependent] == 0:
                            heapq.heappush(ready, dependent)

                    if not result.success and halted_by is None and rule.stops_on_failure(constraints):
                        halted_by = rule.rule_name
                        logger.warning(
                            "Rule '%s' failed with stop-on-failure; halting dispatch of workflow '%s'",
                            rule.rule_name,
                            workflow.workflow_name,
                        )
        finally:
            for task in running:
                task.cancel()
            executor.shutdown(wait=False, cancel_futures=True)

        if halted_by is not None and self.record_skipped:
            for rule in rules:
                if rule.rule_name not in aggregator:
                    aggregator.add(self._result(
                        rule,
                        workflow,
                        ResultStatus.SKIPPED,
                        f"Skipped: workflow halted after rule '{halted_by}' failed",
                    ))

        return aggregator

    # -------------------------------------------------------------------------
    # Single rule
    # -------------------------------------------------------------------------

    def timeout_for(self, rule: Rule, constraints: WorkflowConstraints) -> timedelta | None:
        """Rule timeout, else workflow timeout, else the scheduler default."""
        timeout = rule.effective_timeout(constraints)
        if timeout is None and self.default_timeout is not None:
            timeout = timedelta(seconds=self.default_timeout)
        return timeout

    async def evaluate_rule(
        self, rule: Rule, workflow: Workflow, executor: Executor | None = None
    ) -> Result:
        """Probe one rule and evaluate its condition. Never raises for rule errors."""
        timeout = self.timeout_for(rule, workflow.constraints)
        try:
            observed = await self._probe(rule, resolve(rule), timeout, executor)
        except ProbeTimeoutError as exc:
            return self._result(rule, workflow, ResultStatus.TIMEOUT, f"Timeout: {exc}")
        except ProbeError as exc:
            return self._result(rule, workflow, ResultStatus.PROBE_ERROR, f"Probe error: {exc}")

        try:
            success, explanation = evaluate(rule.condition, observed)
        except EvaluatorError as exc:
            logger.info("Rule '%s' could not be evaluated: %s", rule.rule_name, exc)
            return self._result(rule, workflow, ResultStatus.EVALUATOR_ERROR, f"Evaluator error: {exc}")

        if success:
            return self._result(rule, workflow, ResultStatus.PASSED, explanation)

        logger.info("Rule '%s' failed: %s", rule.rule_name, explanation)
        message = f"{rule.message} ({explanation})" if rule.message else explanation
        return self._result(rule, workflow, ResultStatus.FAILED, message)

    async def _probe(
        self,
        rule: Rule,
        parameters: ProviderParametersBase,
        timeout: timedelta | None,
        executor: Executor | None,
    ) -> Any:
        cancel_event = threading.Event()
        task = asyncio.ensure_future(
            self.probes.invoke(
                rule.provider, parameters, executor=executor, cancel_event=cancel_event
            )
        )
        try:
            seconds = timeout.total_seconds() if timeout is not None else None
            done, _ = await asyncio.wait({task}, timeout=seconds)
        except asyncio.CancelledError:
            cancel_event.set()
            task.cancel()
            raise

        if not done:
            cancel_event.set()
            task.cancel()
            task.add_done_callback(_retrieve_outcome)
            raise ProbeTimeoutError(
                f"{rule.provider.value} probe did not finish within {format_duration(timeout)}"
            )

        # Only the probe's own code can have cancelled the task at this point.
        if task.cancelled():
            logger.warning("Probe for rule '%s' was cancelled from within", rule.rule_name)
            raise ProbeError("Probe was cancelled before returning a value")

        try:
            return task.result()
        except ProbeError:
            raise
        except Exception as exc:
            logger.warning(
                "Probe for rule '%s' raised %s", rule.rule_name, type(exc).__name__, exc_info=True
            )
            raise ProbeError(f"{type(exc).__name__}: {exc}") from exc

    def _result(self, rule: Rule, workflow: Workflow, status: ResultStatus, message: str) -> Result:
        return Result(
            rule_name=rule.rule_name,
            success=status == ResultStatus.PASSED,
            status=status,
            message=message,
            severity_score=rule.severity,
            timestamp=self._clock(),
            schema_version=workflow.schema_version,
            execution_mode=rule.effective_mode(workflow.constraints.run_sequentially),
        )
