from __future__ import annotations

import allure

from taskgate.executor.base import ExecutorResult, ExecutorStatus, VerifiedFile
from taskgate.review import GOAL_DRIFT_GUARD_TEMPLATE_ID, Judgment, ReviewLoopConfig, judge_result
from taskgate.review.criteria import (
    check_evidence_present,
    check_files_verified,
    check_no_early_termination,
    check_no_incomplete_syntax,
    check_no_omission_markers,
    check_no_todo_left,
)
from taskgate.review.models import IssueType
from taskgate.review.patterns import EARLY_TERMINATION_PATTERNS, OMISSION_PATTERNS
from taskgate.review.prompts import build_modification_prompt

pytestmark = [
    allure.epic("Quality Gate"),
    allure.feature("Quality Criteria"),
]


def _complete(
    output: str = "done",
    *,
    files: tuple[str, ...] = ("a.ts",),
    preview: str | None = None,
) -> ExecutorResult:
    return ExecutorResult(
        executed=True,
        output=output,
        status=ExecutorStatus.COMPLETE,
        files_modified=list(files),
        verified_files=[
            VerifiedFile(path=path, exists=True, size=10, content_preview=preview)
            for path in files
        ],
    )


def test_verified_complete_output_passes_every_criterion() -> None:
    judgment = judge_result(_complete(), ReviewLoopConfig())

    assert judgment.judgment == Judgment.PASS
    assert [item.criteria_id for item in judgment.criteria_results] == [
        "Q1",
        "Q2",
        "Q3",
        "Q4",
        "Q5",
        "Q6",
    ]
    assert all(item.passed for item in judgment.criteria_results)
    assert judgment.summary == "PASS: 0 criteria failed"


def test_todo_marker_rejects_with_prompt_mentioning_todo() -> None:
    judgment = judge_result(_complete("...TODO: fix later"), ReviewLoopConfig())

    assert judgment.judgment == Judgment.REJECT
    assert judgment.failed_criteria == ["Q2"]
    prompt = build_modification_prompt(
        "Implement a.ts",
        judgment.criteria_results,
        judgment.issues,
    )
    assert "TODO" in prompt
    assert "### Previous Task\nImplement a.ts" in prompt


def test_executor_error_is_retry_without_content_checks() -> None:
    result = ExecutorResult(
        executed=False,
        output="",
        status=ExecutorStatus.ERROR,
        error="spawn failed",
    )

    judgment = judge_result(result, ReviewLoopConfig())

    assert judgment.judgment == Judgment.RETRY
    assert judgment.failed_criteria == ["Q1"]
    assert judgment.criteria_results[0].detail == "Executor error: spawn failed"


def test_blocked_executor_is_retry() -> None:
    result = ExecutorResult(
        executed=False,
        output="",
        status=ExecutorStatus.BLOCKED,
        executor_blocked=True,
        blocked_reason="INTERACTIVE_PROMPT",
    )

    judgment = judge_result(result, ReviewLoopConfig())

    assert judgment.judgment == Judgment.RETRY
    assert judgment.criteria_results[0].detail == "Executor blocked: INTERACTIVE_PROMPT"


def test_incomplete_status_with_failures_is_retry() -> None:
    result = ExecutorResult(executed=True, output="Created a.ts", status=ExecutorStatus.INCOMPLETE)

    judgment = judge_result(result, ReviewLoopConfig())

    assert judgment.judgment == Judgment.RETRY
    assert "Q5" in judgment.failed_criteria


def test_no_evidence_output_is_rejected() -> None:
    result = ExecutorResult(
        executed=True,
        output="Looked around",
        status=ExecutorStatus.NO_EVIDENCE,
    )

    judgment = judge_result(result, ReviewLoopConfig())

    assert judgment.judgment == Judgment.REJECT
    assert judgment.failed_criteria == ["Q5"]
    assert "NO_EVIDENCE" in judgment.criteria_results[4].detail


def test_files_verified_fails_for_unverified_claims() -> None:
    result = _complete()
    result.unverified_files = ["ghost.ts"]

    outcome = check_files_verified(result)

    assert outcome.passed is False
    assert outcome.detail == "Files claimed but not verified: ghost.ts"


def test_files_verified_passes_when_nothing_expected() -> None:
    result = ExecutorResult(executed=True, output="", status=ExecutorStatus.COMPLETE)

    outcome = check_files_verified(result)

    assert outcome.passed is True
    assert outcome.detail == "No files expected or modified"


def test_todo_markers_are_found_in_file_previews() -> None:
    outcome = check_no_todo_left(_complete("all good", preview="def f():\n    # FIXME\n"))

    assert outcome.passed is False
    assert "FIXME in a.ts" in outcome.detail


def test_xxx_marker_is_case_sensitive() -> None:
    assert check_no_todo_left(_complete("xxx is a placeholder name")).passed is True
    assert check_no_todo_left(_complete("XXX placeholder")).passed is False


def test_omission_markers_ignore_ellipsis_followed_by_text() -> None:
    assert check_no_omission_markers(_complete("Loading... done"), OMISSION_PATTERNS).passed
    outcome = check_no_omission_markers(_complete("code\n// remaining methods"), OMISSION_PATTERNS)
    assert outcome.passed is False
    assert outcome.detail.startswith("Omission markers found:")


def test_unbalanced_code_block_fails_syntax_check() -> None:
    outcome = check_no_incomplete_syntax(_complete("```python\ndef f(:\n    return {1\n```"))

    assert outcome.passed is False
    assert "Unmatched braces: 1 open, 0 close" in outcome.detail
    assert "Unmatched parentheses: 1 open, 0 close" in outcome.detail


def test_truncation_marker_fails_syntax_check() -> None:
    outcome = check_no_incomplete_syntax(_complete("The file was truncated here"))

    assert outcome.passed is False
    assert outcome.detail == "Output appears to be truncated"


def test_evidence_from_successful_run_without_disk_check() -> None:
    result = ExecutorResult(
        executed=True,
        output="",
        status=ExecutorStatus.COMPLETE,
        files_modified=["a.ts"],
    )

    outcome = check_evidence_present(result)

    assert outcome.passed is True
    assert outcome.detail == "Evidence: Successful execution with 1 modified files"


def test_early_termination_only_fails_without_evidence() -> None:
    without_files = ExecutorResult(
        executed=True,
        output="That's all",
        status=ExecutorStatus.COMPLETE,
    )
    failed = check_no_early_termination(without_files, EARLY_TERMINATION_PATTERNS)
    assert failed.passed is False
    assert failed.detail == "Early termination without evidence: That's all"

    with_files = check_no_early_termination(_complete("Done."), EARLY_TERMINATION_PATTERNS)
    assert with_files.passed is True
    assert with_files.detail == "Termination phrases found but evidence present"


def test_early_termination_accepts_same_evidence_as_evidence_check() -> None:
    result = ExecutorResult(
        executed=True,
        output="Updated a.ts. That's all",
        status=ExecutorStatus.COMPLETE,
        files_modified=["a.ts"],
    )

    assert check_evidence_present(result).passed is True
    outcome = check_no_early_termination(result, EARLY_TERMINATION_PATTERNS)
    assert outcome.passed is True
    assert outcome.detail == "Termination phrases found but evidence present"
    judgment = judge_result(result, ReviewLoopConfig())
    assert "Q5" not in judgment.failed_criteria
    assert "Q6" not in judgment.failed_criteria


def test_custom_mandatory_criteria_subset() -> None:
    config = ReviewLoopConfig(mandatory_criteria=("Q1", "Q5", "Q9"))

    judgment = judge_result(_complete("TODO everywhere"), config)

    assert judgment.judgment == Judgment.PASS
    assert [item.criteria_id for item in judgment.criteria_results] == ["Q1", "Q5"]


def test_issues_carry_types_per_criterion() -> None:
    judgment = judge_result(_complete("TODO: finish"), ReviewLoopConfig())

    assert [issue.type for issue in judgment.issues] == [IssueType.TODO_LEFT]


def test_goal_drift_runs_only_for_guard_template() -> None:
    output = "Basic implementation, you may want to add tests. Done."

    plain = judge_result(_complete(output), ReviewLoopConfig())
    guarded = judge_result(
        _complete(output),
        ReviewLoopConfig(),
        active_template_id=GOAL_DRIFT_GUARD_TEMPLATE_ID,
    )

    assert plain.goal_drift is None
    assert plain.judgment == Judgment.PASS
    assert guarded.goal_drift is not None
    assert guarded.judgment == Judgment.REJECT
    assert set(guarded.failed_criteria) == {"Q2", "Q5"}
    assert any(item.detail.startswith("[GD1]") for item in guarded.criteria_results)
