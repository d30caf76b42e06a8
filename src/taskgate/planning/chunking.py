"""Chunking decision and subtask extraction from prompt structure."""

from __future__ import annotations

import re
from collections.abc import Callable

from taskgate.planning.models import (
    ChunkingRecommendation,
    ExecutionMode,
    PlannerConfig,
    PlanningSubtask,
    SizeEstimation,
)

DEFAULT_SUBTASK_COMPLEXITY = 3

_NUMBERED_MARKER = re.compile(r"(?:^|(?<=\s))(\d+)\.\s+")
_BULLET_ITEM = re.compile(r"(?:^|\n)[ \t]*[-*]\s+(.+?)(?=\n\s*[-*]\s|\Z)", re.S)
_SEQUENTIAL_ITEM = re.compile(
    r"\b(first|then|next|after\s+that|finally|lastly)\s+(.+?)(?=[.,\n]|\Z)",
    re.I,
)
SEQUENTIAL_ORDER: dict[str, int] = {
    "first": 1,
    "then": 2,
    "next": 3,
    "after that": 4,
    "finally": 5,
    "lastly": 5,
}


def determine_chunking(
    prompt: str,
    size: SizeEstimation,
    config: PlannerConfig,
) -> ChunkingRecommendation:
    """Decide whether ``prompt`` should be decomposed into subtasks."""

    if not config.auto_chunk:
        return ChunkingRecommendation(should_chunk=False, reason="Auto-chunking disabled")

    exceeds_tokens = size.estimated_tokens > config.chunk_token_threshold
    exceeds_complexity = size.complexity_score >= config.chunk_complexity_threshold
    if not exceeds_tokens and not exceeds_complexity:
        return ChunkingRecommendation(
            should_chunk=False,
            reason=(
                f"Size within thresholds (tokens: {size.estimated_tokens}, "
                f"complexity: {size.complexity_score})"
            ),
        )

    subtasks = extract_subtasks(prompt, config)
    if len(subtasks) < config.min_subtasks:
        return ChunkingRecommendation(
            should_chunk=False,
            reason=(
                f"Extracted subtasks ({len(subtasks)}) below minimum ({config.min_subtasks})"
            ),
        )

    if exceeds_tokens:
        reason = (
            f"Token estimate ({size.estimated_tokens}) exceeds threshold "
            f"({config.chunk_token_threshold})"
        )
    else:
        reason = (
            f"Complexity ({size.complexity_score}) exceeds threshold "
            f"({config.chunk_complexity_threshold})"
        )
    has_dependencies = any(subtask.dependencies for subtask in subtasks)
    return ChunkingRecommendation(
        should_chunk=True,
        reason=reason,
        subtasks=subtasks,
        execution_mode=ExecutionMode.SEQUENTIAL if has_dependencies else ExecutionMode.PARALLEL,
    )


def extract_subtasks(prompt: str, config: PlannerConfig) -> tuple[PlanningSubtask, ...]:
    """Extract subtasks using the first structural strategy that matches.

    Numbered items win over bullet items, which win over sequential
    connectives. The result is capped at ``config.max_subtasks``.
    """

    strategies: tuple[Callable[[str], list[PlanningSubtask]], ...] = (
        _numbered_subtasks,
        _bullet_subtasks,
        _sequential_subtasks,
    )
    for strategy in strategies:
        subtasks = strategy(prompt)
        if subtasks:
            return tuple(subtasks[: config.max_subtasks])
    return ()


def _numbered_subtasks(prompt: str) -> list[PlanningSubtask]:
    markers = _numbered_run(prompt)
    subtasks: list[PlanningSubtask] = []
    for position, marker in enumerate(markers):
        end = markers[position + 1].start() if position + 1 < len(markers) else len(prompt)
        description = prompt[marker.end() : end].strip()
        if not description:
            continue
        subtasks.append(
            _subtask(
                index=len(subtasks) + 1,
                description=description,
                chained=True,
                execution_order=int(marker.group(1)),
            ),
        )
    return subtasks


def _numbered_run(prompt: str) -> list[re.Match[str]]:
    """Markers numbered 1, 2, 3... in reading order; other numbers are plain text.

    A lone inline ``1.`` (e.g. "version 1. Then...") is not a list.
    """

    run: list[re.Match[str]] = []
    for match in _NUMBERED_MARKER.finditer(prompt):
        if int(match.group(1)) == len(run) + 1:
            run.append(match)
    if len(run) == 1 and not _starts_line(prompt, run[0].start()):
        return []
    return run


def _starts_line(text: str, index: int) -> bool:
    prefix = text[:index].rstrip(" \t")
    return not prefix or prefix.endswith("\n")


def _bullet_subtasks(prompt: str) -> list[PlanningSubtask]:
    subtasks: list[PlanningSubtask] = []
    for match in _BULLET_ITEM.finditer(prompt):
        description = match.group(1).strip()
        if not description:
            continue
        index = len(subtasks) + 1
        subtasks.append(
            _subtask(index=index, description=description, chained=False, execution_order=index),
        )
    return subtasks


def _sequential_subtasks(prompt: str) -> list[PlanningSubtask]:
    subtasks: list[PlanningSubtask] = []
    for match in _SEQUENTIAL_ITEM.finditer(prompt):
        description = match.group(2).strip()
        if not description:
            continue
        keyword = " ".join(match.group(1).lower().split())
        index = len(subtasks) + 1
        subtasks.append(
            _subtask(
                index=index,
                description=description,
                chained=True,
                execution_order=SEQUENTIAL_ORDER.get(keyword, index),
            ),
        )
    return subtasks


def _subtask(
    *,
    index: int,
    description: str,
    chained: bool,
    execution_order: int,
) -> PlanningSubtask:
    dependencies = (f"subtask-{index - 1}",) if chained and index > 1 else ()
    return PlanningSubtask(
        id=f"subtask-{index}",
        description=description,
        dependencies=dependencies,
        estimated_complexity=DEFAULT_SUBTASK_COMPLEXITY,
        execution_order=execution_order,
    )
