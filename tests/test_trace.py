from __future__ import annotations

import logging

import allure
import pytest

from taskgate.trace import LoggingTraceSink, RecordingTraceSink, emit_safely

pytestmark = [
    allure.epic("Observability"),
    allure.feature("Trace Sinks"),
]


class _BrokenSink:
    def emit(self, event_type: str, payload: dict[str, object]) -> None:
        raise OSError("disk full")


def test_logging_sink_writes_json_payload(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="taskgate.trace")

    LoggingTraceSink().emit("PLANNING_START", {"task_id": "t1", "prompt_length": 12})

    [record] = [item for item in caplog.records if item.name == "taskgate.trace"]
    assert record.getMessage() == 'PLANNING_START {"prompt_length": 12, "task_id": "t1"}'


def test_logging_sink_is_silent_below_its_level(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="taskgate.trace")

    LoggingTraceSink().emit("PLANNING_START", {"task_id": "t1"})

    assert [item for item in caplog.records if item.name == "taskgate.trace"] == []


def test_emit_safely_swallows_sink_failures(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="taskgate.trace")

    emit_safely(_BrokenSink(), "ITERATION_START", {"iteration": 1})
    emit_safely(None, "ITERATION_START", {"iteration": 1})

    assert "Trace sink failed for event ITERATION_START" in caplog.text


def test_recording_sink_copies_payloads() -> None:
    sink = RecordingTraceSink()
    payload = {"iteration": 1}

    sink.emit("ITERATION_START", payload)
    payload["iteration"] = 2

    assert sink.event_types() == ["ITERATION_START"]
    assert sink.events[0].payload == {"iteration": 1}
