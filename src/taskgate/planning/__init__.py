"""Task sizing, chunking and execution planning."""

from taskgate.planning.chunking import determine_chunking, extract_subtasks
from taskgate.planning.dependencies import analyze_dependencies
from taskgate.planning.estimator import estimate_task_size
from taskgate.planning.models import (
    ChunkingRecommendation,
    DependencyAnalysis,
    DependencyEdge,
    DependencyType,
    ExecutionMode,
    ExecutionPlan,
    ExecutionStrategy,
    PlannerConfig,
    PlanningSubtask,
    SizeCategory,
    SizeEstimation,
)
from taskgate.planning.planner import TaskPlanner, generate_execution_plan

__all__ = [
    "ChunkingRecommendation",
    "DependencyAnalysis",
    "DependencyEdge",
    "DependencyType",
    "ExecutionMode",
    "ExecutionPlan",
    "ExecutionStrategy",
    "PlannerConfig",
    "PlanningSubtask",
    "SizeCategory",
    "SizeEstimation",
    "TaskPlanner",
    "analyze_dependencies",
    "determine_chunking",
    "estimate_task_size",
    "extract_subtasks",
    "generate_execution_plan",
]
