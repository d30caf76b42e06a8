"""Goal-drift guard: deterministic checks for hedged or shrunken deliverables.

Runs only when the ``goal_drift_guard`` template is active. Every failure of the
evaluator itself is reported as a full failure.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from taskgate.review.models import CriteriaResult, IssueDetail, IssueType

logger = logging.getLogger(__name__)

GOAL_DRIFT_GUARD_TEMPLATE_ID = "goal_drift_guard"
GOAL_DRIFT_CRITERIA: tuple[str, ...] = ("GD1", "GD2", "GD3", "GD4", "GD5")

ESCAPE_PHRASES: tuple[str, ...] = (
    "if needed",
    "if required",
    "optional",
    "as needed",
    "when necessary",
    "could be added later",
    "might need",
    "consider adding",
    "you may want to",
    "left as an exercise",
    "beyond the scope",
    "out of scope",
    "future enhancement",
    "future work",
    "not implemented yet",
    "to be determined",
    "tbd",
)

PREMATURE_COMPLETION_PHRASES: tuple[str, ...] = (
    "basic implementation complete",
    "basic implementation",
    "skeleton",
    "scaffold",
    "starter",
    "please verify",
    "please check",
    "you should verify",
    "you should check",
    "verify yourself",
    "check yourself",
    "left for you to",
    "up to you to",
    "i'll leave it to you",
)

SCOPE_REDUCTION_PHRASES: tuple[str, ...] = (
    "simplified version",
    "reduced scope",
    "minimal implementation",
    "basic version",
    "for now",
    "for the time being",
    "temporarily",
    "as a first step",
    "initial version",
    "partial implementation",
    "subset of",
    "instead of",
    "rather than",
)

VALID_COMPLETION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"COMPLETE:\s*All\s+\d+\s+requirements?\s+fulfilled", re.I),
    re.compile(r"COMPLETE:\s*all\s+requirements?\s+met", re.I),
    re.compile(r"INCOMPLETE:\s*Requirements?\s+[\w,\s]+\s+remain", re.I),
    re.compile(r"INCOMPLETE:\s*\d+\s+requirements?\s+remain", re.I),
)

AMBIGUOUS_COMPLETION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"done\.?$", re.I | re.M),
    re.compile(r"that's all", re.I),
    re.compile(r"finished", re.I),
    re.compile(r"completed\.?$", re.I | re.M),
    re.compile(r"all set", re.I),
)

CHECKLIST_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^[-*]\s*\[\s*[xX✓✔ ]\s*\]", re.M),
    re.compile(r"^[-*]\s*Requirement\s+\d+:", re.I | re.M),
    re.compile(r"###\s*Requirement\s+Checklist", re.I),
    re.compile(r"^\d+\.\s+.+:\s*(done|complete|implemented|finished)", re.I | re.M),
)

CRITERIA_NAMES: dict[str, str] = {
    "GD1": "No Escape Phrases",
    "GD2": "No Premature Completion",
    "GD3": "Requirement Checklist Present",
    "GD4": "Valid Completion Statement",
    "GD5": "No Scope Reduction",
}

QUALITY_CRITERIA_MAPPING: dict[str, str] = {
    "GD1": "Q2",
    "GD2": "Q5",
    "GD3": "Q5",
    "GD4": "Q5",
    "GD5": "Q3",
}

VIOLATION_TYPES: dict[str, IssueType] = {
    "GD1": IssueType.ESCAPE_PHRASE,
    "GD2": IssueType.PREMATURE_COMPLETION,
    "GD3": IssueType.MISSING_CHECKLIST,
    "GD4": IssueType.INVALID_COMPLETION_STATEMENT,
    "GD5": IssueType.SCOPE_REDUCTION,
}

SUGGESTIONS: dict[IssueType, str] = {
    IssueType.ESCAPE_PHRASE: (
        'Remove escape phrases like "if needed", "optional", "consider adding". '
        "Be definitive about what was done."
    ),
    IssueType.PREMATURE_COMPLETION: (
        'Do not claim "basic implementation" or ask user to verify. '
        "Complete all requirements yourself."
    ),
    IssueType.MISSING_CHECKLIST: (
        'Add a requirement checklist with checkbox items: "- [ ] Requirement 1: [status]"'
    ),
    IssueType.INVALID_COMPLETION_STATEMENT: (
        'Use "COMPLETE: All N requirements fulfilled" or "INCOMPLETE: Requirements X, Y, Z remain"'
    ),
    IssueType.SCOPE_REDUCTION: (
        'Do not reduce scope with phrases like "simplified version" or "for now". '
        "Complete the full requirement."
    ),
}

_COMPLETION_FORMAT_HINT = (
    'Expected: "COMPLETE: All N requirements fulfilled" or '
    '"INCOMPLETE: Requirements X, Y, Z remain"'
)
_CONTEXT_RADIUS = 20
_MAX_LISTED = 3
_MAX_EVIDENCE = 3


@dataclass(slots=True, frozen=True)
class Violation:
    phrase: str
    context: str = ""
    line_number: int | None = None


@dataclass(slots=True)
class GoalDriftCriterionResult:
    criteria_id: str
    passed: bool
    detail: str
    violations: list[Violation] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class GoalDriftReason:
    """Machine-readable explanation of one failed criterion."""

    criteria_id: str
    violation_type: IssueType
    description: str
    evidence: tuple[str, ...]


@dataclass(slots=True)
class GoalDriftResult:
    passed: bool
    criteria_results: list[GoalDriftCriterionResult]
    failed_criteria: list[str]
    structured_reasons: list[GoalDriftReason]
    summary: str
    error: str | None = None

    def mapped_criteria(self) -> list[CriteriaResult]:
        """Report each goal-drift result under its quality criterion id."""

        return [
            CriteriaResult(
                criteria_id=QUALITY_CRITERIA_MAPPING[item.criteria_id],
                passed=item.passed,
                detail=f"[{item.criteria_id}] {item.detail}",
            )
            for item in self.criteria_results
        ]

    def mapped_issues(self) -> list[IssueDetail]:
        return [
            IssueDetail(
                type=reason.violation_type,
                description=reason.description,
                suggestion=SUGGESTIONS[reason.violation_type],
            )
            for reason in self.structured_reasons
        ]


def should_run_goal_drift(active_template_id: str | None) -> bool:
    return active_template_id == GOAL_DRIFT_GUARD_TEMPLATE_ID


def _scan_phrases(
    output: str,
    *,
    criteria_id: str,
    phrases: tuple[str, ...],
    label: str,
) -> GoalDriftCriterionResult:
    violations: list[Violation] = []
    for line_number, line in enumerate(output.split("\n"), start=1):
        lowered = line.lower()
        for phrase in phrases:
            index = lowered.find(phrase)
            if index < 0:
                continue
            start = max(0, index - _CONTEXT_RADIUS)
            end = min(len(line), index + len(phrase) + _CONTEXT_RADIUS)
            violations.append(
                Violation(phrase=phrase, context=line[start:end].strip(), line_number=line_number)
            )

    if not violations:
        return GoalDriftCriterionResult(
            criteria_id=criteria_id,
            passed=True,
            detail=f"No {label}s detected",
        )
    listed = ", ".join(f'"{item.phrase}"' for item in violations[:_MAX_LISTED])
    if len(violations) > _MAX_LISTED:
        listed += "..."
    return GoalDriftCriterionResult(
        criteria_id=criteria_id,
        passed=False,
        detail=f"Found {len(violations)} {label}(s): {listed}",
        violations=violations,
    )


def check_no_escape_phrases(output: str) -> GoalDriftCriterionResult:
    return _scan_phrases(output, criteria_id="GD1", phrases=ESCAPE_PHRASES, label="escape phrase")


def check_no_premature_completion(output: str) -> GoalDriftCriterionResult:
    return _scan_phrases(
        output,
        criteria_id="GD2",
        phrases=PREMATURE_COMPLETION_PHRASES,
        label="premature completion pattern",
    )


def check_requirement_checklist(output: str) -> GoalDriftCriterionResult:
    if any(pattern.search(output) for pattern in CHECKLIST_PATTERNS):
        return GoalDriftCriterionResult(
            criteria_id="GD3",
            passed=True,
            detail="Requirement checklist detected",
        )
    return GoalDriftCriterionResult(
        criteria_id="GD3",
        passed=False,
        detail=(
            "No requirement checklist found - Goal Drift Guard requires explicit "
            "requirement tracking"
        ),
        violations=[Violation(phrase="missing checklist")],
    )


def check_completion_statement(output: str) -> GoalDriftCriterionResult:
    for pattern in VALID_COMPLETION_PATTERNS:
        match = pattern.search(output)
        if match is not None:
            return GoalDriftCriterionResult(
                criteria_id="GD4",
                passed=True,
                detail=f'Valid completion statement found: "{match.group(0)}"',
            )

    if any(pattern.search(output) for pattern in AMBIGUOUS_COMPLETION_PATTERNS):
        return GoalDriftCriterionResult(
            criteria_id="GD4",
            passed=False,
            detail=(
                'Ambiguous completion statement found - use "COMPLETE: All N requirements '
                'fulfilled" or "INCOMPLETE: Requirements X, Y, Z remain"'
            ),
            violations=[Violation(phrase="invalid completion statement")],
        )
    return GoalDriftCriterionResult(
        criteria_id="GD4",
        passed=False,
        detail=(
            "No valid completion statement found - Goal Drift Guard requires explicit "
            '"COMPLETE" or "INCOMPLETE" statement'
        ),
        violations=[Violation(phrase="missing completion statement")],
    )


def check_no_scope_reduction(output: str) -> GoalDriftCriterionResult:
    return _scan_phrases(
        output,
        criteria_id="GD5",
        phrases=SCOPE_REDUCTION_PHRASES,
        label="scope reduction pattern",
    )


CHECKERS: tuple[Callable[[str], GoalDriftCriterionResult], ...] = (
    check_no_escape_phrases,
    check_no_premature_completion,
    check_requirement_checklist,
    check_completion_statement,
    check_no_scope_reduction,
)


def _evidence_for(result: GoalDriftCriterionResult) -> tuple[str, ...]:
    if result.criteria_id == "GD3":
        return ("No checkbox-style requirement tracking found",)
    if result.criteria_id == "GD4":
        return (_COMPLETION_FORMAT_HINT,)
    return tuple(
        f'Line {item.line_number}: "{item.phrase}" in "{item.context}"'
        for item in result.violations
    )


def evaluate_goal_drift(output: str) -> GoalDriftResult:
    """Run GD1-GD5 over the output text."""

    criteria_results = [checker(output) for checker in CHECKERS]
    failed = [item for item in criteria_results if not item.passed]
    reasons = [
        GoalDriftReason(
            criteria_id=item.criteria_id,
            violation_type=VIOLATION_TYPES[item.criteria_id],
            description=item.detail,
            evidence=_evidence_for(item),
        )
        for item in failed
    ]
    failed_ids = [item.criteria_id for item in failed]
    if failed_ids:
        summary = (
            f"Goal Drift Guard: {len(failed_ids)} criteria failed ({', '.join(failed_ids)})"
        )
    else:
        summary = "All Goal Drift Guard criteria passed"
    return GoalDriftResult(
        passed=not failed_ids,
        criteria_results=criteria_results,
        failed_criteria=failed_ids,
        structured_reasons=reasons,
        summary=summary,
    )


def failed_goal_drift_result(message: str) -> GoalDriftResult:
    """Result used when the evaluator cannot run: every criterion fails."""

    return GoalDriftResult(
        passed=False,
        criteria_results=[
            GoalDriftCriterionResult(criteria_id=criteria_id, passed=False, detail=message)
            for criteria_id in GOAL_DRIFT_CRITERIA
        ],
        failed_criteria=list(GOAL_DRIFT_CRITERIA),
        structured_reasons=[
            GoalDriftReason(
                criteria_id=criteria_id,
                violation_type=VIOLATION_TYPES[criteria_id],
                description=message,
                evidence=("Evaluator failed - treating as REJECT",),
            )
            for criteria_id in GOAL_DRIFT_CRITERIA
        ],
        summary=message,
        error=message,
    )


def safe_evaluate_goal_drift(output: str | None) -> GoalDriftResult:
    if output is None:
        return failed_goal_drift_result("Executor output is missing")
    try:
        return evaluate_goal_drift(output)
    except Exception as error:  # noqa: BLE001
        logger.warning("Goal drift evaluator failed: %s", error)
        return failed_goal_drift_result(f"Goal Drift Guard evaluator error: {error}")


def goal_drift_prompt_section(result: GoalDriftResult) -> str:
    """Render failed goal-drift criteria for a modification prompt."""

    if result.passed:
        return ""

    lines = [
        "",
        "### Goal Drift Guard Violations",
        "",
        "The following Goal Drift Guard criteria failed:",
        "",
    ]
    for reason in result.structured_reasons:
        lines.append(f"**{reason.criteria_id} - {CRITERIA_NAMES[reason.criteria_id]}**")
        lines.append(f"- {reason.description}")
        if reason.evidence:
            lines.append("- Evidence:")
            lines.extend(f"  - {item}" for item in reason.evidence[:_MAX_EVIDENCE])
            if len(reason.evidence) > _MAX_EVIDENCE:
                lines.append(f"  - ... and {len(reason.evidence) - _MAX_EVIDENCE} more")
        lines.append(f"- Fix: {SUGGESTIONS[reason.violation_type]}")
        lines.append("")

    lines.extend(
        [
            "",
            "**Required Output Format (Goal Drift Guard):**",
            "```",
            "### Requirement Checklist",
            "- [ ] Requirement 1: [status]",
            "- [ ] Requirement 2: [status]",
            "",
            "### Completion Statement",
            "COMPLETE: All N requirements fulfilled",
            "OR",
            "INCOMPLETE: Requirements X, Y, Z remain",
            "```",
            "",
        ]
    )
    return "\n".join(lines)
