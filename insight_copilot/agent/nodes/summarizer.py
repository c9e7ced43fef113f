"""
summarizer.py — Final write-up node.

Turns everything the run has gathered (datasets, analysis plan, chart,
web research) into the user-facing answer. Insights are read off the
answer text: growth / decline wording gives a trend insight, and the
first line becomes a summary insight. Always terminal.
"""

import logging
import re
import time
from collections.abc import Mapping
from typing import Any

from insight_copilot.agent.directives import TERMINATE
from insight_copilot.agent.errors import ExternalCallError, LLMCallError
from insight_copilot.agent.nodes.base import AgentNode
from insight_copilot.agent.nodes.insights import overview_insights
from insight_copilot.agent.prompts import SUMMARY_PROMPT
from insight_copilot.agent.state import Insight, InsightType, Message
from insight_copilot.config import DATASET_CONTEXT_LIMIT
from insight_copilot.llm import LLMCapability
from insight_copilot.observability import EventSink

logger = logging.getLogger(__name__)

_GROWTH_RE = re.compile(r"\b(?:increase[sd]?|increasing|growth|grew|grow(?:s|ing)?)\b")
_DECLINE_RE = re.compile(r"\b(?:decrease[sd]?|decreasing|decline[sd]?|declining|drop(?:s|ped)?)\b")


def extract_insights(summary: str) -> list[Insight]:
    lower = summary.lower()
    insights = []
    if _GROWTH_RE.search(lower):
        insights.append(Insight(
            type=InsightType.TREND, title="Growth Detected",
            content="Analysis indicates a positive growth trend.", confidence=0.7,
        ))
    if _DECLINE_RE.search(lower):
        insights.append(Insight(
            type=InsightType.TREND, title="Decline Observed",
            content="Analysis indicates a declining trend.", confidence=0.7,
        ))
    first_line = next((line.strip() for line in summary.splitlines() if line.strip()), summary)
    insights.append(Insight(
        type=InsightType.SUMMARY, title="Analysis Complete",
        content=first_line[:300], confidence=0.9,
    ))
    return insights


class SummarizerAgent(AgentNode):
    def __init__(
        self,
        llm: LLMCapability,
        agent_id: str = "summarizer",
        context_limit: int = DATASET_CONTEXT_LIMIT,
        events: EventSink | None = None,
    ) -> None:
        super().__init__(agent_id, events)
        self.llm = llm
        self.context_limit = context_limit

    def build_prompt(self, state: Mapping[str, Any]) -> str:
        intent = state.get("classification")
        lines = [
            f'User Query: "{state["user_query"]}"',
            f"Intent: {getattr(intent, 'value', intent) or 'summary'}",
        ]

        search = state.get("search_results")
        if search:
            lines += ["", "External Research Findings:", search.summary]

        datasets = state.get("relevant_datasets") or ()
        if datasets:
            lines += ["", f"Datasets analyzed ({len(datasets)}):"]
            lines += [
                f"- {d.name}: {d.summary or 'No summary available'}"
                for d in datasets[: self.context_limit]
            ]

        plan = state.get("analysis_plan")
        if plan:
            lines += ["", "Analysis performed:", plan]

        chart = state.get("visualization")
        if chart:
            lines += [
                "", "Visualization created:",
                f"Type: {chart.type.value}", f"Title: {chart.title}",
                f"Data points: {len(chart.data)}",
            ]
        return SUMMARY_PROMPT.format(context="\n".join(lines))

    async def run(self, state: Mapping[str, Any]) -> dict[str, Any]:
        t0 = time.perf_counter()
        response = await self.llm.invoke(self.build_prompt(state))
        summary = response.content.strip()
        if not summary:
            raise LLMCallError("LLM returned an empty summary")

        insights = extract_insights(summary)
        logger.info(
            "SummarizerAgent: summary_len=%d, insights=%d, elapsed=%.3fs",
            len(summary), len(insights), time.perf_counter() - t0,
        )
        return {
            "summary": summary,
            "insights": insights,
            "messages": [Message(role="assistant", content=summary)],
            "next_agent": TERMINATE,
        }

    def fallback(self, state: Mapping[str, Any], error: ExternalCallError) -> dict[str, Any]:
        datasets = list(state.get("relevant_datasets") or ())
        summary = "Unable to generate a summary right now. Please try again in a moment."
        return {
            "summary": summary,
            "insights": overview_insights(datasets)[:1] if datasets else [],
            "messages": [Message(role="assistant", content=summary)],
            "next_agent": TERMINATE,
        }
