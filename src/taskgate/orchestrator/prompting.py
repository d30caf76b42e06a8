"""Prompt assembly with task-group isolation."""

from __future__ import annotations

from taskgate.orchestrator.models import (
    QueueItemView,
    TaskGroupContext,
)

RECENT_CONVERSATION_ENTRIES = 5
ENTRY_PREVIEW_CHARS = 100


def build_group_prelude(context: TaskGroupContext) -> str:
    """Render the shared context of one task group."""

    lines = ["## Task Group Context", f"Task Group ID: {context.task_group_id}", ""]

    if context.working_files:
        lines.append("### Working Files")
        lines.extend(f"- {path}" for path in context.working_files)
        lines.append("")

    last = context.last_task_result
    if last is not None:
        lines.append("### Previous Task Result")
        lines.append(f"- Task: {last.task_id}")
        lines.append(f"- Status: {last.status.value}")
        lines.append(f"- Summary: {last.summary}")
        if last.files_modified:
            lines.append(f"- Files Modified: {', '.join(last.files_modified)}")
        if last.error:
            lines.append(f"- Error: {last.error}")
        lines.append("")

    if context.conversation_history:
        lines.append("### Recent Conversation")
        for entry in context.conversation_history[-RECENT_CONVERSATION_ENTRIES:]:
            preview = entry.content
            if len(preview) > ENTRY_PREVIEW_CHARS:
                preview = preview[:ENTRY_PREVIEW_CHARS] + "..."
            lines.append(f"- [{entry.role.value}] {preview}")
        lines.append("")

    return "\n".join(lines)


def assemble_task_prompt(task: QueueItemView, context: TaskGroupContext | None) -> str:
    """Group prelude, then the original prompt, then the task's own conversation.

    Raises ValueError when the context or any history entry belongs to another group.
    """

    parts: list[str] = []
    foreign_own = [
        entry.entry_id
        for entry in task.conversation_history
        if entry.task_group_id != task.task_group_id
    ]
    if foreign_own:
        raise ValueError(f"Conversation entries from another task group: {foreign_own}")
    if context is not None:
        if context.task_group_id != task.task_group_id:
            raise ValueError(
                f"Task {task.task_id} belongs to group {task.task_group_id}, "
                f"got context for {context.task_group_id}",
            )
        foreign = [
            entry.entry_id
            for entry in context.conversation_history
            if entry.task_group_id != task.task_group_id
        ]
        if foreign:
            raise ValueError(f"Conversation entries from another task group: {foreign}")
        parts.append(build_group_prelude(context))

    parts.append(task.prompt)

    if task.conversation_history:
        lines = ["## Conversation so far"]
        lines.extend(
            f"[{entry.role.value}] {entry.content.strip()}"
            for entry in task.conversation_history
        )
        parts.append("\n".join(lines))

    return "\n\n".join(part.rstrip("\n") for part in parts)
