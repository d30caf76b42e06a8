"""Deterministic prompt size estimation."""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from dataclasses import dataclass

from taskgate.planning.models import SizeCategory, SizeEstimation

MAX_COMPLEXITY = 10


@dataclass(slots=True, frozen=True)
class ComplexityIndicator:
    name: str
    pattern: re.Pattern[str]
    weight: int


@dataclass(slots=True, frozen=True)
class FileCountIndicator:
    name: str
    pattern: re.Pattern[str]
    estimate: Callable[[re.Match[str]], int]


@dataclass(slots=True, frozen=True)
class SizeThreshold:
    category: SizeCategory
    max_complexity: float
    max_tokens: float
    max_files: float


COMPLEXITY_INDICATORS: tuple[ComplexityIndicator, ...] = (
    ComplexityIndicator(
        "implementation scope",
        re.compile(r"\b(?:implement|create|build|develop)\s+(?:full|complete|entire|whole)", re.I),
        3,
    ),
    ComplexityIndicator(
        "refactor",
        re.compile(r"\b(?:refactor|rewrite|redesign|overhaul)", re.I),
        2,
    ),
    ComplexityIndicator(
        "integration",
        re.compile(r"\b(?:integrate|connect|combine|merge)", re.I),
        2,
    ),
    ComplexityIndicator("testing", re.compile(r"\b(?:test|testing|unittest|e2e)", re.I), 1),
    ComplexityIndicator(
        "persistence",
        re.compile(r"\b(?:database|db|sql|mongodb|postgres)", re.I),
        2,
    ),
    ComplexityIndicator("api", re.compile(r"\b(?:api|endpoint|rest|graphql)", re.I), 2),
    ComplexityIndicator(
        "auth",
        re.compile(r"\b(?:auth|authentication|authorization|security)", re.I),
        2,
    ),
    ComplexityIndicator(
        "performance",
        re.compile(r"\b(?:optimize|performance|speed|cache)", re.I),
        1,
    ),
    ComplexityIndicator("bug fix", re.compile(r"\b(?:fix|bug|issue|error)", re.I), 1),
    ComplexityIndicator("generic edit", re.compile(r"\b(?:add|update|modify|change)", re.I), 1),
)

FILE_COUNT_INDICATORS: tuple[FileCountIndicator, ...] = (
    FileCountIndicator(
        "explicit count",
        re.compile(r"\b(\d+)\s*(?:files?|components?|modules?)", re.I),
        lambda match: int(match.group(1)),
    ),
    FileCountIndicator(
        "multiple",
        re.compile(r"\b(?:multiple|several|various)\s+(?:files?|components?)", re.I),
        lambda _: 5,
    ),
    FileCountIndicator(
        "all",
        re.compile(r"\b(?:all|every|each)\s+(?:files?|components?)", re.I),
        lambda _: 10,
    ),
    FileCountIndicator(
        "single",
        re.compile(r"\b(?:single|one|a)\s+(?:file|component)", re.I),
        lambda _: 1,
    ),
)

SIZE_THRESHOLDS: tuple[SizeThreshold, ...] = (
    SizeThreshold(SizeCategory.XS, 2, 1_000, 1),
    SizeThreshold(SizeCategory.S, 4, 3_000, 3),
    SizeThreshold(SizeCategory.M, 6, 6_000, 6),
    SizeThreshold(SizeCategory.L, 8, 10_000, 10),
    SizeThreshold(SizeCategory.XL, math.inf, math.inf, math.inf),
)


def estimate_task_size(prompt: str) -> SizeEstimation:
    """Estimate complexity, file count, tokens and size bucket for a prompt."""

    reasons: list[str] = []

    complexity = 1
    for indicator in COMPLEXITY_INDICATORS:
        if indicator.pattern.search(prompt):
            complexity += indicator.weight
            reasons.append(f"Complexity +{indicator.weight}: {indicator.name}")
    complexity = min(MAX_COMPLEXITY, complexity)

    file_count = 1
    for indicator in FILE_COUNT_INDICATORS:
        match = indicator.pattern.search(prompt)
        if match is None:
            continue
        file_count = max(file_count, indicator.estimate(match))
        reasons.append(f"Files: matched {indicator.name} ({match.group(0)!r})")

    word_count = len(prompt.split())
    raw_tokens = word_count * 2 * (1 + complexity * 0.5) * file_count
    tokens = _round_half_up(raw_tokens)
    reasons.append(f"Token estimate: {tokens}")

    return SizeEstimation(
        complexity_score=complexity,
        estimated_file_count=file_count,
        estimated_tokens=tokens,
        size_category=categorize(
            complexity_score=complexity,
            estimated_tokens=tokens,
            estimated_file_count=file_count,
        ),
        reasons=tuple(reasons),
    )


def categorize(
    *,
    complexity_score: int,
    estimated_tokens: int,
    estimated_file_count: int,
) -> SizeCategory:
    """Return the first bucket whose ceilings all hold."""

    for threshold in SIZE_THRESHOLDS:
        if (
            complexity_score <= threshold.max_complexity
            and estimated_tokens <= threshold.max_tokens
            and estimated_file_count <= threshold.max_files
        ):
            return threshold.category
    return SizeCategory.XL


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
