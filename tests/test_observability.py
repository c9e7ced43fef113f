"""Tests for the event sinks."""

import logging

from insight_copilot.observability import LoggingEventSink, NullEventSink


def test_logging_sink_writes_json_fields(caplog):
    sink = LoggingEventSink(name="test.events")
    with caplog.at_level(logging.INFO, logger="test.events"):
        sink.emit("hop.completed", agent="conversational", hop=1)
    assert caplog.records[0].getMessage() == 'event=hop.completed {"agent": "conversational", "hop": 1}'


def test_logging_sink_respects_level(caplog):
    sink = LoggingEventSink(name="test.quiet", level=logging.DEBUG)
    with caplog.at_level(logging.INFO, logger="test.quiet"):
        sink.emit("run.started", run_id="abc")
    assert caplog.records == []


def test_null_sink_accepts_anything():
    assert NullEventSink().emit("anything", x=object()) is None
