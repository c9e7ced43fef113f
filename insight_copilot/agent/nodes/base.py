"""
base.py — Agent node contract.

A node is one step of the orchestration graph:

    update = await node.execute(view)

`view` is a read-only snapshot of the shared state; `update` is a partial
state update that must carry a `next_agent` directive (Continue / TERMINATE).

Subclasses put their business logic in `run()` and, when they call external
services, declare a `fallback()` update. `execute()` applies the fallback
whenever `run()` raises an ExternalCallError (LLM failure, data-source
failure, timeout), so a node with a fallback never surfaces those errors to
the engine.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from insight_copilot.agent.errors import ExternalCallError
from insight_copilot.observability import EventSink, NullEventSink

logger = logging.getLogger(__name__)


class AgentNode(ABC):
    def __init__(self, agent_id: str, events: EventSink | None = None) -> None:
        self.agent_id = agent_id
        self.events: EventSink = events or NullEventSink()

    @abstractmethod
    async def run(self, state: Mapping[str, Any]) -> dict[str, Any]:
        """Produce this node's partial update."""

    def fallback(self, state: Mapping[str, Any], error: ExternalCallError) -> dict[str, Any] | None:
        """Safe update substituted when an external call fails. None = no fallback."""
        return None

    async def execute(self, state: Mapping[str, Any]) -> dict[str, Any]:
        try:
            return await self.run(state)
        except ExternalCallError as exc:
            update = self.fallback(state, exc)
            if update is None:
                raise
            logger.error("%s: external call failed — using fallback: %s", self.agent_id, exc)
            self.events.emit(
                "node.fallback",
                agent=self.agent_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return update

    def __repr__(self) -> str:
        return f"{type(self).__name__}(agent_id={self.agent_id!r})"
