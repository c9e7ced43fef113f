"""
analyzer.py — Analysis-planning node.

One LLM call that plans how to answer the question over the datasets in
scope (and any web research already gathered). The plan is stored in
`analysis_plan` for the nodes downstream:

  visualization intent  → Continue(visualizer)
  anything else         → Continue(summarizer)

An LLM failure skips the plan and still hands on, so the summarizer can
answer from the dataset context alone.
"""

import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from insight_copilot.agent.directives import TERMINATE, Continue
from insight_copilot.agent.errors import ExternalCallError, LLMCallError
from insight_copilot.agent.nodes.base import AgentNode
from insight_copilot.agent.nodes.retriever import NO_DATASETS_SUMMARY
from insight_copilot.agent.prompts import ANALYSIS_PROMPT, dataset_context, dataset_details
from insight_copilot.agent.router import SUMMARIZER_AGENT, VISUALIZER_AGENT
from insight_copilot.agent.state import Intent, Message
from insight_copilot.config import DATASET_CONTEXT_LIMIT
from insight_copilot.llm import LLMCapability
from insight_copilot.observability import EventSink

logger = logging.getLogger(__name__)


class AnalyzerAgent(AgentNode):
    def __init__(
        self,
        llm: LLMCapability,
        agent_id: str = "analyzer",
        visualizer: str | None = VISUALIZER_AGENT,
        summarizer: str = SUMMARIZER_AGENT,
        context_limit: int = DATASET_CONTEXT_LIMIT,
        events: EventSink | None = None,
    ) -> None:
        super().__init__(agent_id, events)
        self.llm = llm
        self.visualizer = visualizer
        self.summarizer = summarizer
        self.context_limit = context_limit

    def successor(self, state: Mapping[str, Any]) -> str:
        if self.visualizer and state.get("classification") is Intent.VISUALIZATION:
            return self.visualizer
        return self.summarizer

    def build_prompt(self, state: Mapping[str, Any]) -> str:
        datasets = state.get("relevant_datasets") or ()
        intent = state.get("classification")
        search = state.get("search_results")
        return ANALYSIS_PROMPT.format(
            query=state["user_query"],
            intent=getattr(intent, "value", intent) or "analysis",
            data_context=dataset_context(datasets, self.context_limit),
            dataset_details=dataset_details(datasets, self.context_limit),
            search_context=(
                f"\nExternal Research Context (from web search):\n{search.summary}\n"
                if search else ""
            ),
        )

    async def run(self, state: Mapping[str, Any]) -> dict[str, Any]:
        datasets = state.get("relevant_datasets") or ()
        if not datasets:
            return {
                "summary": NO_DATASETS_SUMMARY,
                "messages": [Message(role="assistant", content=NO_DATASETS_SUMMARY)],
                "next_agent": TERMINATE,
            }

        t0 = time.perf_counter()
        response = await self.llm.invoke(self.build_prompt(state))
        plan = response.content.strip()
        if not plan:
            raise LLMCallError("LLM returned an empty analysis plan")

        target = self.successor(state)
        logger.info(
            "AnalyzerAgent: plan_len=%d, next='%s', elapsed=%.3fs",
            len(plan), target, time.perf_counter() - t0,
        )
        return {
            "analysis_plan": plan,
            "metadata": {
                "selected_datasets": [d.id for d in datasets],
                "analysis_planned_at": datetime.now(timezone.utc).isoformat(),
            },
            "next_agent": Continue(target),
        }

    def fallback(self, state: Mapping[str, Any], error: ExternalCallError) -> dict[str, Any]:
        return {
            "metadata": {"analysis_error": str(error)},
            "next_agent": Continue(self.successor(state)),
        }
