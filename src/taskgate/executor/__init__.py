"""Executor implementations."""

from taskgate.executor.base import (
    Executor,
    ExecutorResult,
    ExecutorStatus,
    ExecutorTask,
    TerminationCause,
    VerifiedFile,
)
from taskgate.executor.cli_executor import CliAgentExecutor

__all__ = [
    "CliAgentExecutor",
    "Executor",
    "ExecutorResult",
    "ExecutorStatus",
    "ExecutorTask",
    "TerminationCause",
    "VerifiedFile",
]
