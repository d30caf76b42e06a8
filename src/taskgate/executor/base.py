"""Executor contract consumed by the review loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol


class ExecutorStatus(str, Enum):
    """Outcome reported by an executor for one prompt run."""

    COMPLETE = "COMPLETE"
    INCOMPLETE = "INCOMPLETE"
    NO_EVIDENCE = "NO_EVIDENCE"
    ERROR = "ERROR"
    BLOCKED = "BLOCKED"


class TerminationCause(str, Enum):
    TIMEOUT = "TIMEOUT"
    SHUTDOWN = "SHUTDOWN"


@dataclass(slots=True)
class ExecutorTask:
    """One prompt submission."""

    id: str
    prompt: str
    working_dir: Path


@dataclass(slots=True)
class VerifiedFile:
    """Disk check for a file the agent claims to have touched."""

    path: str
    exists: bool
    size: int | None = None
    content_preview: str | None = None


@dataclass(slots=True)
class ExecutorResult:
    """Execution outcome with claimed and verified file evidence."""

    executed: bool
    output: str
    status: ExecutorStatus
    error: str | None = None
    files_modified: list[str] = field(default_factory=list)
    duration_ms: int = 0
    verified_files: list[VerifiedFile] = field(default_factory=list)
    unverified_files: list[str] = field(default_factory=list)
    executor_blocked: bool = False
    blocked_reason: str | None = None
    terminated_by: TerminationCause | None = None

    def has_verified_evidence(self) -> bool:
        return any(verified.exists for verified in self.verified_files)

    def to_dict(self) -> dict[str, Any]:
        return {
            "executed": self.executed,
            "output": self.output,
            "status": self.status.value,
            "error": self.error,
            "files_modified": list(self.files_modified),
            "duration_ms": self.duration_ms,
            "verified_files": [
                {
                    "path": verified.path,
                    "exists": verified.exists,
                    "size": verified.size,
                    "content_preview": verified.content_preview,
                }
                for verified in self.verified_files
            ],
            "unverified_files": list(self.unverified_files),
            "executor_blocked": self.executor_blocked,
            "blocked_reason": self.blocked_reason,
            "terminated_by": self.terminated_by.value if self.terminated_by else None,
        }


class Executor(Protocol):
    """Protocol implemented by agent runners and test doubles."""

    def execute(self, task: ExecutorTask) -> ExecutorResult:
        """Run the prompt and report what changed on disk."""
