"""Quality judgment and the bounded review loop."""

from taskgate.review.criteria import QualityJudgment, judge_result
from taskgate.review.goal_drift import GOAL_DRIFT_GUARD_TEMPLATE_ID, GoalDriftResult
from taskgate.review.loop import ReviewLoopExecutor
from taskgate.review.models import (
    CriteriaResult,
    IssueDetail,
    IssueType,
    IterationRecord,
    Judgment,
    RejectionDetails,
    ReviewFinalStatus,
    ReviewLoopConfig,
    ReviewLoopResult,
)
from taskgate.review.prompts import ModificationPromptRenderer

__all__ = [
    "GOAL_DRIFT_GUARD_TEMPLATE_ID",
    "CriteriaResult",
    "GoalDriftResult",
    "IssueDetail",
    "IssueType",
    "IterationRecord",
    "Judgment",
    "ModificationPromptRenderer",
    "QualityJudgment",
    "RejectionDetails",
    "ReviewFinalStatus",
    "ReviewLoopConfig",
    "ReviewLoopExecutor",
    "ReviewLoopResult",
    "judge_result",
]
