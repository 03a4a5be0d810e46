"""Dependency graph over the rules of a workflow.

Rules live in an arena indexed by declaration position and the graph is a
``networkx.DiGraph`` over those indices. An edge ``b -> a`` means rule ``a``
lists ``b`` in ``DependsOn``: ``b`` must finish (successfully or not) before
``a`` starts. Cycles are reported the other way round, following
``DependsOn``, so ``A -> B -> A`` reads "A depends on B depends on A".
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from itertools import islice
from typing import Iterable, Sequence

import networkx as nx

from .errors import CycleError, GraphValidationError
from .schemas import Rule

logger = logging.getLogger(__name__)

# simple_cycles is exponential on densely cyclic input
MAX_REPORTED_CYCLES = 100


@dataclass
class DependencyGraph:
    """Validated, acyclic dependency graph of a workflow's rules."""

    rules: list[Rule]
    index: dict[str, int]
    graph: nx.DiGraph

    def __len__(self) -> int:
        return len(self.rules)

    @property
    def names(self) -> list[str]:
        return [rule.rule_name for rule in self.rules]

    @property
    def dependencies(self) -> list[list[int]]:
        """Per rule index, the indices it waits for, in DependsOn order."""
        return [list(self.graph.predecessors(i)) for i in range(len(self.rules))]

    @property
    def dependents(self) -> list[list[int]]:
        """Per rule index, the indices waiting for it, in declaration order."""
        return [sorted(self.graph.successors(i)) for i in range(len(self.rules))]

    def dependencies_of(self, rule_name: str) -> list[str]:
        return [self.rules[i].rule_name for i in self.graph.predecessors(self.index[rule_name])]

    def dependents_of(self, rule_name: str) -> list[str]:
        return [self.rules[i].rule_name for i in sorted(self.graph.successors(self.index[rule_name]))]

    def topological_order(self) -> list[str]:
        """Dependencies first; declaration order breaks ties."""
        # nodes are declaration indices, so the default key orders ties
        return [self.rules[i].rule_name for i in nx.lexicographical_topological_sort(self.graph)]

    def stages(self, run_sequentially: bool = False) -> list[list[str]]:
        """Static execution plan, one list of rule names per stage.

        Each topological generation is split in declaration order: consecutive
        Independent rules share a concurrent batch, while each Sequential rule
        (every rule, when the workflow runs sequentially) is a stage of its own.
        """
        stages: list[list[str]] = []
        for generation in nx.topological_generations(self.graph):
            batch: list[str] = []
            for i in sorted(generation):
                rule = self.rules[i]
                if rule.is_exclusive(run_sequentially):
                    if batch:
                        stages.append(batch)
                        batch = []
                    stages.append([rule.rule_name])
                else:
                    batch.append(rule.rule_name)
            if batch:
                stages.append(batch)
        return stages


def _canonical_cycles(cycles: Iterable[list[int]]) -> list[list[int]]:
    """Rotate each cycle to start at its smallest index, dedupe and sort."""
    canonical = set()
    for cycle in islice(cycles, MAX_REPORTED_CYCLES):
        pivot = cycle.index(min(cycle))
        canonical.add(tuple(cycle[pivot:] + cycle[:pivot]))
    return [list(cycle) for cycle in sorted(canonical)]


def find_cycles(adjacency: Sequence[Sequence[int]]) -> list[list[int]]:
    """Elementary cycles of an index adjacency list.

    ``adjacency[i]`` lists the nodes ``i`` points at. Cycles are enumerated
    with ``networkx.simple_cycles`` and returned in canonical form (see
    ``_canonical_cycles``), at most ``MAX_REPORTED_CYCLES`` of them.
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(range(len(adjacency)))
    graph.add_edges_from(
        (node, target) for node, targets in enumerate(adjacency) for target in targets
    )
    return _canonical_cycles(nx.simple_cycles(graph))


def build_graph(rules: Sequence[Rule]) -> DependencyGraph:
    """Build the dependency graph of ``rules``.

    Raises:
        GraphValidationError: empty or duplicate rule names, or DependsOn
            entries naming rules that do not exist.
        CycleError: the dependencies contain at least one cycle.
    """
    rules = list(rules)
    names = [rule.rule_name for rule in rules]

    if any(not name for name in names):
        raise GraphValidationError("Every rule must have a non-empty RuleName")

    duplicates = sorted(name for name, count in Counter(names).items() if count > 1)
    if duplicates:
        raise GraphValidationError(f"Duplicate rule names: {', '.join(duplicates)}")

    index = {name: i for i, name in enumerate(names)}
    graph = nx.DiGraph()
    graph.add_nodes_from(range(len(rules)))
    dangling = []

    for i, rule in enumerate(rules):
        for target in rule.depends_on:
            if target not in index:
                dangling.append(f"{rule.rule_name} -> {target}")
                continue
            graph.add_edge(index[target], i)

    if dangling:
        raise GraphValidationError(f"Unknown DependsOn targets: {', '.join(dangling)}")

    if not nx.is_directed_acyclic_graph(graph):
        cycles = _canonical_cycles(nx.simple_cycles(graph.reverse(copy=False)))
        raise CycleError([[names[i] for i in cycle] for cycle in cycles])

    logger.debug(
        "Built dependency graph: %d rules, %d edges",
        graph.number_of_nodes(),
        graph.number_of_edges(),
    )
    return DependencyGraph(rules=rules, index=index, graph=graph)
