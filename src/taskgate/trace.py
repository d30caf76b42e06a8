"""Lifecycle event sinks for planner and review-loop observation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class TraceSink(Protocol):
    """Receives structured lifecycle events."""

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        """Record one lifecycle event."""


class LoggingTraceSink:
    """Write lifecycle events to the ``taskgate.trace`` logger."""

    def __init__(self, logger_name: str = "taskgate.trace", level: int = logging.DEBUG) -> None:
        self._logger = logging.getLogger(logger_name)
        self._level = level

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(self._level):
            return
        self._logger.log(
            self._level,
            "%s %s",
            event_type,
            json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str),
        )


@dataclass(slots=True)
class RecordedEvent:
    event_type: str
    payload: dict[str, Any]


@dataclass(slots=True)
class RecordingTraceSink:
    """In-memory sink, handy for tests and CLI dry runs."""

    events: list[RecordedEvent] = field(default_factory=list)

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append(RecordedEvent(event_type=event_type, payload=dict(payload)))

    def event_types(self) -> list[str]:
        return [event.event_type for event in self.events]


def emit_safely(sink: TraceSink | None, event_type: str, payload: dict[str, Any]) -> None:
    """Forward an event to ``sink``; sink failures never reach the caller."""

    if sink is None:
        return
    try:
        sink.emit(event_type, payload)
    except Exception:  # noqa: BLE001
        logger.warning("Trace sink failed for event %s", event_type, exc_info=True)
