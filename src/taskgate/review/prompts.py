"""Modification prompts sent back to the executor after a REJECT."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from taskgate.review.goal_drift import GoalDriftResult, goal_drift_prompt_section
from taskgate.review.models import CriteriaResult, IssueDetail

CORRECTIVE_INSTRUCTIONS: tuple[str, ...] = (
    "Output all code without omitting anything",
    "Do not leave TODO/FIXME markers",
    "Create every expected file",
    'Do not declare completion early ("Done", "That\'s all" and similar)',
)


class ModificationPromptRenderer(Protocol):
    """Template hook for custom modification prompts."""

    def render(self, detected_issues: list[str], original_task: str) -> str: ...


def build_builtin_prompt(
    original_prompt: str,
    criteria_results: Sequence[CriteriaResult],
    issues: Sequence[IssueDetail],
) -> str:
    lines = ["## Issues were detected in the previous output", "", "### Detected Issues"]
    for issue in issues:
        lines.append(f"- **{issue.type.value}**: {issue.description}")
        if issue.location:
            lines.append(f"  Location: {issue.location}")
        if issue.suggestion:
            lines.append(f"  Suggestion: {issue.suggestion}")
    lines.extend(["", "### Failed Quality Criteria"])
    lines.extend(
        f"- {item.criteria_id}: {item.detail}" for item in criteria_results if not item.passed
    )
    lines.extend(
        [
            "",
            "### Required Corrections",
            "Fix the points below and provide the complete implementation again:",
            "",
        ]
    )
    lines.extend(
        f"{index}. {instruction}"
        for index, instruction in enumerate(CORRECTIVE_INSTRUCTIONS, start=1)
    )
    lines.extend(["", "### Previous Task", original_prompt, ""])
    return "\n".join(lines)


def describe_issues(
    criteria_results: Sequence[CriteriaResult],
    issues: Sequence[IssueDetail],
) -> list[str]:
    """Flatten issues and failed criteria into the lines a renderer receives."""

    described: list[str] = []
    for issue in issues:
        text = f"{issue.type.value}: {issue.description}"
        if issue.location:
            text += f" (location: {issue.location})"
        if issue.suggestion:
            text += f" [suggestion: {issue.suggestion}]"
        described.append(text)
    described.extend(
        f"Quality criterion {item.criteria_id} failed: {item.detail}"
        for item in criteria_results
        if not item.passed
    )
    return described


def build_modification_prompt(
    original_prompt: str,
    criteria_results: Sequence[CriteriaResult],
    issues: Sequence[IssueDetail],
    *,
    goal_drift: GoalDriftResult | None = None,
    renderer: ModificationPromptRenderer | None = None,
) -> str:
    if renderer is not None:
        prompt = renderer.render(describe_issues(criteria_results, issues), original_prompt)
    else:
        prompt = build_builtin_prompt(original_prompt, criteria_results, issues)
    if goal_drift is not None and not goal_drift.passed:
        prompt += goal_drift_prompt_section(goal_drift)
    return prompt
