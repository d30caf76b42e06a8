"""Domain models for quality judgment and the review loop."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from taskgate.executor.base import ExecutorResult
from taskgate.review.patterns import EARLY_TERMINATION_PATTERNS, OMISSION_PATTERNS

QUALITY_CRITERIA: tuple[str, ...] = ("Q1", "Q2", "Q3", "Q4", "Q5", "Q6")


class Judgment(str, Enum):
    PASS = "PASS"
    REJECT = "REJECT"
    RETRY = "RETRY"


class ReviewFinalStatus(str, Enum):
    COMPLETE = "COMPLETE"
    INCOMPLETE = "INCOMPLETE"
    ERROR = "ERROR"


class IssueType(str, Enum):
    """Issue categories rendered into modification prompts."""

    MISSING_FILE = "missing_file"
    TODO_LEFT = "todo_left"
    OMISSION = "omission"
    SYNTAX_ERROR = "syntax_error"
    INCOMPLETE = "incomplete"
    EARLY_TERMINATION = "early_termination"
    ESCAPE_PHRASE = "escape_phrase"
    PREMATURE_COMPLETION = "premature_completion"
    MISSING_CHECKLIST = "missing_checklist"
    INVALID_COMPLETION_STATEMENT = "invalid_completion_statement"
    SCOPE_REDUCTION = "scope_reduction"


@dataclass(slots=True, frozen=True)
class ReviewLoopConfig:
    """Iteration limits and detection tables for the review loop."""

    max_iterations: int = 3
    retry_delay_seconds: float = 1.0
    escalate_on_max: bool = True
    mandatory_criteria: tuple[str, ...] = QUALITY_CRITERIA
    omission_patterns: tuple[re.Pattern[str], ...] = OMISSION_PATTERNS
    early_termination_patterns: tuple[re.Pattern[str], ...] = EARLY_TERMINATION_PATTERNS
    active_template_id: str | None = None

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1.")
        if self.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be >= 0.")


@dataclass(slots=True, frozen=True)
class CriteriaResult:
    criteria_id: str
    passed: bool
    detail: str

    def to_dict(self) -> dict[str, Any]:
        return {"criteria_id": self.criteria_id, "passed": self.passed, "detail": self.detail}


@dataclass(slots=True, frozen=True)
class IssueDetail:
    type: IssueType
    description: str
    location: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "description": self.description,
            "location": self.location,
            "suggestion": self.suggestion,
        }


@dataclass(slots=True, frozen=True)
class RejectionDetails:
    failed_criteria: tuple[str, ...]
    detected_issues: tuple[IssueDetail, ...]
    modification_prompt: str


@dataclass(slots=True)
class IterationRecord:
    """One executor call and its judgment."""

    iteration: int
    started_at: datetime
    ended_at: datetime
    judgment: Judgment
    criteria_results: list[CriteriaResult]
    rejection_details: RejectionDetails | None = None


@dataclass(slots=True)
class ReviewLoopResult:
    """Terminal outcome of a review loop run."""

    final_status: ReviewFinalStatus
    total_iterations: int
    iteration_history: list[IterationRecord]
    final_output: ExecutorResult
    escalated: bool = False
    failed_criteria: list[str] = field(default_factory=list)
