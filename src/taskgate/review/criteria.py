"""Quality criteria Q1-Q6 and the judgment that combines them."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from taskgate.executor.base import ExecutorResult, ExecutorStatus
from taskgate.review.goal_drift import (
    GoalDriftResult,
    safe_evaluate_goal_drift,
    should_run_goal_drift,
)
from taskgate.review.models import (
    CriteriaResult,
    IssueDetail,
    IssueType,
    Judgment,
    ReviewLoopConfig,
)
from taskgate.review.patterns import (
    BRACKET_PAIRS,
    FENCED_CODE_BLOCK,
    TODO_PATTERNS,
    TRUNCATION_MARKERS,
)

logger = logging.getLogger(__name__)

CRITERIA_NAMES: dict[str, str] = {
    "Q1": "Files Verified",
    "Q2": "No TODO/FIXME Left",
    "Q3": "No Omission Markers",
    "Q4": "No Incomplete Syntax",
    "Q5": "Evidence Present",
    "Q6": "No Early Termination",
}

ISSUE_TYPES: dict[str, IssueType] = {
    "Q1": IssueType.MISSING_FILE,
    "Q2": IssueType.TODO_LEFT,
    "Q3": IssueType.OMISSION,
    "Q4": IssueType.SYNTAX_ERROR,
    "Q5": IssueType.INCOMPLETE,
    "Q6": IssueType.EARLY_TERMINATION,
}

_MAX_OMISSIONS_LISTED = 5


@dataclass(slots=True)
class QualityJudgment:
    judgment: Judgment
    criteria_results: list[CriteriaResult]
    failed_criteria: list[str]
    goal_drift: GoalDriftResult | None = None
    issues: list[IssueDetail] = field(default_factory=list)

    @property
    def summary(self) -> str:
        return f"{self.judgment.value}: {len(self.failed_criteria)} criteria failed"


def _find_markers(
    result: ExecutorResult,
    patterns: Iterable[re.Pattern[str]],
) -> list[str]:
    """First match of each pattern in the output, then in every file preview."""

    patterns = tuple(patterns)
    found: list[str] = []
    for pattern in patterns:
        match = pattern.search(result.output)
        if match is not None:
            found.append(match.group(0))
    for verified in result.verified_files:
        if not verified.content_preview:
            continue
        for pattern in patterns:
            match = pattern.search(verified.content_preview)
            if match is not None:
                found.append(f"{match.group(0)} in {verified.path}")
    return found


def _existing_files(result: ExecutorResult) -> int:
    return sum(1 for item in result.verified_files if item.exists)


def check_files_verified(result: ExecutorResult) -> CriteriaResult:
    if result.unverified_files:
        return CriteriaResult(
            criteria_id="Q1",
            passed=False,
            detail=f"Files claimed but not verified: {', '.join(result.unverified_files)}",
        )
    existing = _existing_files(result)
    if existing == 0 and result.files_modified:
        return CriteriaResult(
            criteria_id="Q1",
            passed=False,
            detail="Files reported as modified but none verified on disk",
        )
    return CriteriaResult(
        criteria_id="Q1",
        passed=True,
        detail=f"{existing} files verified" if existing else "No files expected or modified",
    )


def check_no_todo_left(result: ExecutorResult) -> CriteriaResult:
    found = _find_markers(result, TODO_PATTERNS)
    if found:
        return CriteriaResult(
            criteria_id="Q2",
            passed=False,
            detail=f"TODO/FIXME markers found: {', '.join(found)}",
        )
    return CriteriaResult(criteria_id="Q2", passed=True, detail="No TODO/FIXME markers detected")


def check_no_omission_markers(
    result: ExecutorResult,
    patterns: Iterable[re.Pattern[str]],
) -> CriteriaResult:
    found = _find_markers(result, patterns)
    if found:
        listed = ", ".join(found[:_MAX_OMISSIONS_LISTED])
        if len(found) > _MAX_OMISSIONS_LISTED:
            listed += "..."
        return CriteriaResult(
            criteria_id="Q3",
            passed=False,
            detail=f"Omission markers found: {listed}",
        )
    return CriteriaResult(criteria_id="Q3", passed=True, detail="No omission markers detected")


def check_no_incomplete_syntax(result: ExecutorResult) -> CriteriaResult:
    """Heuristic bracket balance inside fenced code blocks plus truncation markers."""

    issues: list[str] = []
    for block in FENCED_CODE_BLOCK.findall(result.output):
        for name, opening, closing in BRACKET_PAIRS:
            opened = block.count(opening)
            closed = block.count(closing)
            if opened != closed:
                issues.append(f"Unmatched {name}: {opened} open, {closed} close")

    if any(marker in result.output for marker in TRUNCATION_MARKERS):
        issues.append("Output appears to be truncated")

    if issues:
        return CriteriaResult(criteria_id="Q4", passed=False, detail="; ".join(issues))
    return CriteriaResult(criteria_id="Q4", passed=True, detail="No incomplete syntax detected")


def _has_evidence(result: ExecutorResult) -> bool:
    if _existing_files(result):
        return True
    return bool(
        result.executed and result.status == ExecutorStatus.COMPLETE and result.files_modified,
    )


def check_evidence_present(result: ExecutorResult) -> CriteriaResult:
    existing = _existing_files(result)
    if existing:
        return CriteriaResult(
            criteria_id="Q5",
            passed=True,
            detail=f"Evidence: {existing} verified files",
        )
    if result.executed and result.status == ExecutorStatus.COMPLETE and result.files_modified:
        return CriteriaResult(
            criteria_id="Q5",
            passed=True,
            detail=(
                "Evidence: Successful execution with "
                f"{len(result.files_modified)} modified files"
            ),
        )
    if result.status == ExecutorStatus.NO_EVIDENCE:
        return CriteriaResult(
            criteria_id="Q5",
            passed=False,
            detail="No evidence of completion - executor returned NO_EVIDENCE",
        )
    return CriteriaResult(
        criteria_id="Q5",
        passed=False,
        detail="No verified evidence of completion",
    )


def check_no_early_termination(
    result: ExecutorResult,
    patterns: Iterable[re.Pattern[str]],
) -> CriteriaResult:
    found = [
        match.group(0)
        for pattern in patterns
        if (match := pattern.search(result.output)) is not None
    ]
    if found and not _has_evidence(result):
        return CriteriaResult(
            criteria_id="Q6",
            passed=False,
            detail=f"Early termination without evidence: {', '.join(found)}",
        )
    return CriteriaResult(
        criteria_id="Q6",
        passed=True,
        detail=(
            "Termination phrases found but evidence present"
            if found
            else "No early termination detected"
        ),
    )


def _checkers(
    config: ReviewLoopConfig,
) -> dict[str, Callable[[ExecutorResult], CriteriaResult]]:
    return {
        "Q1": check_files_verified,
        "Q2": check_no_todo_left,
        "Q3": lambda result: check_no_omission_markers(result, config.omission_patterns),
        "Q4": check_no_incomplete_syntax,
        "Q5": check_evidence_present,
        "Q6": lambda result: check_no_early_termination(
            result, config.early_termination_patterns
        ),
    }


def issues_from_criteria(criteria_results: Iterable[CriteriaResult]) -> list[IssueDetail]:
    return [
        IssueDetail(
            type=ISSUE_TYPES.get(item.criteria_id, IssueType.INCOMPLETE),
            description=item.detail or f"Failed criteria {item.criteria_id}",
        )
        for item in criteria_results
        if not item.passed
    ]


def _is_retriable(result: ExecutorResult) -> bool:
    if result.status == ExecutorStatus.INCOMPLETE or result.executor_blocked:
        return True
    return bool(result.error) and "timeout" in result.error.lower()


def judge_result(
    result: ExecutorResult,
    config: ReviewLoopConfig,
    active_template_id: str | None = None,
) -> QualityJudgment:
    """Classify one executor result as PASS, REJECT or RETRY."""

    if result.status == ExecutorStatus.ERROR:
        failure = CriteriaResult(
            criteria_id="Q1",
            passed=False,
            detail=f"Executor error: {result.error}",
        )
        return QualityJudgment(
            judgment=Judgment.RETRY,
            criteria_results=[failure],
            failed_criteria=["Q1"],
            issues=issues_from_criteria([failure]),
        )
    if result.status == ExecutorStatus.BLOCKED:
        failure = CriteriaResult(
            criteria_id="Q1",
            passed=False,
            detail=f"Executor blocked: {result.blocked_reason}",
        )
        return QualityJudgment(
            judgment=Judgment.RETRY,
            criteria_results=[failure],
            failed_criteria=["Q1"],
            issues=issues_from_criteria([failure]),
        )

    checkers = _checkers(config)
    criteria_results: list[CriteriaResult] = []
    for criteria_id in config.mandatory_criteria:
        checker = checkers.get(criteria_id)
        if checker is None:
            logger.debug("Skipping criterion without a built-in checker: %s", criteria_id)
            continue
        criteria_results.append(checker(result))

    issues = issues_from_criteria(criteria_results)
    failed_criteria = [item.criteria_id for item in criteria_results if not item.passed]

    goal_drift: GoalDriftResult | None = None
    template_id = active_template_id or config.active_template_id
    if should_run_goal_drift(template_id):
        goal_drift = safe_evaluate_goal_drift(result.output)
        mapped = goal_drift.mapped_criteria()
        criteria_results.extend(mapped)
        issues.extend(goal_drift.mapped_issues())
        for item in mapped:
            if not item.passed and item.criteria_id not in failed_criteria:
                failed_criteria.append(item.criteria_id)

    if not failed_criteria:
        judgment = Judgment.PASS
    elif _is_retriable(result):
        judgment = Judgment.RETRY
    else:
        judgment = Judgment.REJECT
    return QualityJudgment(
        judgment=judgment,
        criteria_results=criteria_results,
        failed_criteria=failed_criteria,
        goal_drift=goal_drift,
        issues=issues,
    )
