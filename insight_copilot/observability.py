"""
observability.py — Structured event sinks injected into the engine and nodes.

Events are flat (name + JSON-serialisable fields) so a sink can forward them
to logs, metrics or a progress stream without knowing the agent graph.
"""

import json
import logging
from typing import Any, Protocol


class EventSink(Protocol):
    def emit(self, event: str, **fields: Any) -> None: ...


class NullEventSink:
    """Discards every event."""

    def emit(self, event: str, **fields: Any) -> None:
        return None


class LoggingEventSink:
    """
    Writes each event as one log line: `event=<name> {json fields}`.

    Example:
        sink = LoggingEventSink()
        sink.emit("hop.completed", agent="conversational", hop=1)
    """

    def __init__(self, name: str = "insight_copilot.events", level: int = logging.INFO) -> None:
        self._logger = logging.getLogger(name)
        self._level = level

    def emit(self, event: str, **fields: Any) -> None:
        if not self._logger.isEnabledFor(self._level):
            return
        self._logger.log(
            self._level, "event=%s %s", event, json.dumps(fields, default=str, ensure_ascii=False)
        )
