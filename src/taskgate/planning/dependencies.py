"""Dependency graph analysis for decomposed subtasks."""

from __future__ import annotations

import logging
import re
from collections import defaultdict, deque
from collections.abc import Sequence

from taskgate.planning.models import (
    DependencyAnalysis,
    DependencyEdge,
    DependencyType,
    PlanningSubtask,
)

logger = logging.getLogger(__name__)

DEPENDENCY_CONNECTIVES: tuple[str, ...] = (
    "after",
    "once",
    "when",
    "following",
    "based on",
    "using",
    "with",
)
MIN_SHARED_WORD_LENGTH = 4

_CONNECTIVE_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(word).replace(r"\ ", r"\s+") for word in DEPENDENCY_CONNECTIVES)
    + r")\b",
    re.I,
)
_WORD_PATTERN = re.compile(r"\w+")


def analyze_dependencies(subtasks: Sequence[PlanningSubtask]) -> DependencyAnalysis:
    """Build hard and soft edges, a topological order and parallel groups."""

    known_ids = {subtask.id for subtask in subtasks}
    edges: list[DependencyEdge] = []
    hard_pairs: set[tuple[str, str]] = set()

    for subtask in subtasks:
        for dependency in subtask.dependencies:
            if dependency not in known_ids:
                logger.debug(
                    "Ignoring dependency on unknown subtask %s from %s",
                    dependency,
                    subtask.id,
                )
                continue
            pair = (dependency, subtask.id)
            if pair in hard_pairs:
                continue
            hard_pairs.add(pair)
            edges.append(DependencyEdge(dependency, subtask.id, DependencyType.HARD))

    for i, earlier in enumerate(subtasks):
        for later in subtasks[i + 1 :]:
            if (earlier.id, later.id) in hard_pairs:
                continue
            if has_implicit_dependency(earlier, later):
                edges.append(DependencyEdge(earlier.id, later.id, DependencyType.SOFT))

    order = _topological_order(subtasks, edges)
    return DependencyAnalysis(
        edges=tuple(edges),
        topological_order=order,
        has_cycles=len(order) < len(subtasks),
        parallelizable_groups=_parallelizable_groups(subtasks, hard_pairs),
    )


def has_implicit_dependency(earlier: PlanningSubtask, later: PlanningSubtask) -> bool:
    """Heuristic: ``later`` references ``earlier`` through a connective and a shared word."""

    if _CONNECTIVE_PATTERN.search(later.description) is None:
        return False
    later_words = set(_WORD_PATTERN.findall(later.description.lower()))
    return any(
        len(word) >= MIN_SHARED_WORD_LENGTH and word in later_words
        for word in _WORD_PATTERN.findall(earlier.description.lower())
    )


def _topological_order(
    subtasks: Sequence[PlanningSubtask],
    edges: Sequence[DependencyEdge],
) -> tuple[str, ...]:
    in_degree = {subtask.id: 0 for subtask in subtasks}
    adjacency: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        adjacency[edge.from_id].append(edge.to_id)
        in_degree[edge.to_id] += 1

    queue = deque(node for node, degree in in_degree.items() if degree == 0)
    order: list[str] = []
    while queue:
        node = queue.popleft()
        order.append(node)
        for neighbor in adjacency[node]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)
    return tuple(order)


def _parallelizable_groups(
    subtasks: Sequence[PlanningSubtask],
    hard_pairs: set[tuple[str, str]],
) -> tuple[tuple[str, ...], ...]:
    buckets: dict[int, list[str]] = defaultdict(list)
    for subtask in subtasks:
        buckets[subtask.execution_order].append(subtask.id)

    groups: list[tuple[str, ...]] = []
    for execution_order in sorted(buckets):
        remaining = list(buckets[execution_order])
        while remaining:
            pending = set(remaining)
            blocked = {
                target
                for source, target in hard_pairs
                if source != target and source in pending and target in pending
            }
            group = tuple(node for node in remaining if node not in blocked)
            if not group:
                # Cycle inside the bucket; fall back to one subtask per group.
                groups.extend((node,) for node in remaining)
                break
            groups.append(group)
            remaining = [node for node in remaining if node in blocked]
    return tuple(groups)
