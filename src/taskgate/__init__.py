"""Planner, lifecycle queue and review-loop quality gate for coding-agent tasks."""

__version__ = "0.1.0"
