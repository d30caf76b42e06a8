"""Domain models for task sizing, chunking and execution planning."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class SizeCategory(str, Enum):
    """Coarse task size buckets, ordered smallest first."""

    XS = "XS"
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"


class ExecutionMode(str, Enum):
    """How chunked subtasks should run relative to each other."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class ExecutionStrategy(str, Enum):
    """Resolved strategy for a whole execution plan."""

    SINGLE = "single"
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    MIXED = "mixed"


class DependencyType(str, Enum):
    HARD = "hard"
    SOFT = "soft"


@dataclass(slots=True, frozen=True)
class PlannerConfig:
    """Chunking thresholds and limits."""

    auto_chunk: bool = True
    chunk_token_threshold: int = 8_000
    chunk_complexity_threshold: int = 6
    max_subtasks: int = 10
    min_subtasks: int = 2
    enable_dependency_analysis: bool = True


@dataclass(slots=True, frozen=True)
class SizeEstimation:
    """Deterministic size estimate derived from a prompt."""

    complexity_score: int
    estimated_file_count: int
    estimated_tokens: int
    size_category: SizeCategory
    reasons: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "complexity_score": self.complexity_score,
            "estimated_file_count": self.estimated_file_count,
            "estimated_tokens": self.estimated_tokens,
            "size_category": self.size_category.value,
            "reasons": list(self.reasons),
        }


@dataclass(slots=True, frozen=True)
class PlanningSubtask:
    """One decomposed unit of work."""

    id: str
    description: str
    dependencies: tuple[str, ...] = ()
    estimated_complexity: int = 3
    execution_order: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "dependencies": list(self.dependencies),
            "estimated_complexity": self.estimated_complexity,
            "execution_order": self.execution_order,
        }


@dataclass(slots=True, frozen=True)
class ChunkingRecommendation:
    """Whether to decompose a task, and into which subtasks."""

    should_chunk: bool
    reason: str
    subtasks: tuple[PlanningSubtask, ...] = ()
    execution_mode: ExecutionMode | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_chunk": self.should_chunk,
            "reason": self.reason,
            "subtasks": [subtask.to_dict() for subtask in self.subtasks],
            "execution_mode": self.execution_mode.value if self.execution_mode else None,
        }


@dataclass(slots=True, frozen=True)
class DependencyEdge:
    from_id: str
    to_id: str
    type: DependencyType

    def to_dict(self) -> dict[str, Any]:
        return {"from": self.from_id, "to": self.to_id, "type": self.type.value}


@dataclass(slots=True, frozen=True)
class DependencyAnalysis:
    """Dependency graph facts derived from a subtask list."""

    edges: tuple[DependencyEdge, ...]
    topological_order: tuple[str, ...]
    has_cycles: bool
    parallelizable_groups: tuple[tuple[str, ...], ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "edges": [edge.to_dict() for edge in self.edges],
            "topological_order": list(self.topological_order),
            "has_cycles": self.has_cycles,
            "parallelizable_groups": [list(group) for group in self.parallelizable_groups],
        }


@dataclass(slots=True, frozen=True)
class ExecutionPlan:
    """Immutable planning result for one task."""

    plan_id: str
    task_id: str
    created_at: datetime
    size_estimation: SizeEstimation
    chunking_recommendation: ChunkingRecommendation
    execution_strategy: ExecutionStrategy
    estimated_duration_ms: int
    dependency_analysis: DependencyAnalysis | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "task_id": self.task_id,
            "created_at": self.created_at.isoformat(),
            "size_estimation": self.size_estimation.to_dict(),
            "chunking_recommendation": self.chunking_recommendation.to_dict(),
            "dependency_analysis": (
                self.dependency_analysis.to_dict() if self.dependency_analysis else None
            ),
            "execution_strategy": self.execution_strategy.value,
            "estimated_duration_ms": self.estimated_duration_ms,
        }
