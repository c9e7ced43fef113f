"""
conversational.py — Conversational node.

Handles capability questions, greetings and anything the router cannot map
to a data intent. One LLM call; always terminal.
"""

import logging
import time
from collections.abc import Mapping
from typing import Any

from insight_copilot.agent.directives import TERMINATE
from insight_copilot.agent.errors import ExternalCallError, LLMCallError
from insight_copilot.agent.nodes.base import AgentNode
from insight_copilot.agent.prompts import CONVERSATIONAL_PROMPT, dataset_context
from insight_copilot.agent.state import Insight, InsightType, Message
from insight_copilot.config import DATASET_CONTEXT_LIMIT
from insight_copilot.llm import LLMCapability
from insight_copilot.observability import EventSink

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = (
    "I'm your AI analytics copilot! I can help you analyze data, create visualizations, "
    "and generate insights. To get started, connect a data source from the sidebar, "
    "or ask me what I can do!"
)


class ConversationalAgent(AgentNode):
    def __init__(
        self,
        llm: LLMCapability,
        agent_id: str = "conversational",
        context_limit: int = DATASET_CONTEXT_LIMIT,
        events: EventSink | None = None,
    ) -> None:
        super().__init__(agent_id, events)
        self.llm = llm
        self.context_limit = context_limit

    def build_prompt(self, state: Mapping[str, Any]) -> str:
        datasets = state.get("relevant_datasets") or ()
        return CONVERSATIONAL_PROMPT.format(
            data_context=dataset_context(datasets, self.context_limit),
            query=state["user_query"],
        )

    async def run(self, state: Mapping[str, Any]) -> dict[str, Any]:
        logger.info("ConversationalAgent: answering query=%r", state["user_query"][:120])
        t0 = time.perf_counter()

        response = await self.llm.invoke(self.build_prompt(state))
        summary = response.content.strip()
        if not summary:
            raise LLMCallError("LLM returned an empty completion")

        logger.info(
            "ConversationalAgent: answer_len=%d, elapsed=%.3fs",
            len(summary), time.perf_counter() - t0,
        )
        return {
            "summary": summary,
            "insights": [
                Insight(
                    type=InsightType.SUMMARY,
                    title="AI Assistant",
                    content="Conversational response generated",
                    confidence=1.0,
                )
            ],
            "messages": [Message(role="assistant", content=summary)],
            "next_agent": TERMINATE,
        }

    def fallback(self, state: Mapping[str, Any], error: ExternalCallError) -> dict[str, Any]:
        return {
            "summary": FALLBACK_SUMMARY,
            "insights": [],
            "messages": [Message(role="assistant", content=FALLBACK_SUMMARY)],
            "next_agent": TERMINATE,
        }
