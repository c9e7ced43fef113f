"""
insights.py — Insight-synthesis node.

One LLM call over the query and the datasets in scope. The model is asked
for a JSON object {"summary": str, "insights": [...]}; whatever comes back
is normalised into Insight records:

  - confidence clamped to [0.7, 0.99]
  - unknown `type` values become "summary"
  - at most `max_insights` kept

Output that is not valid JSON keeps the raw text as the summary and gets
basic dataset-overview insights instead. Always terminal.
"""

import json
import logging
import re
import time
from collections.abc import Mapping, Sequence
from typing import Any

from insight_copilot.agent.directives import TERMINATE
from insight_copilot.agent.errors import ExternalCallError, LLMCallError
from insight_copilot.agent.nodes.base import AgentNode
from insight_copilot.agent.prompts import INSIGHT_PROMPT, dataset_context, dataset_details
from insight_copilot.agent.state import DatasetRef, Insight, InsightType, Message
from insight_copilot.config import DATASET_CONTEXT_LIMIT, MAX_INSIGHTS
from insight_copilot.llm import LLMCapability
from insight_copilot.observability import EventSink

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.7
MAX_CONFIDENCE = 0.99
DEFAULT_CONFIDENCE = 0.85

_FENCE_RE = re.compile(r"```(?:json)?\s*")


def _clamp(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        confidence = DEFAULT_CONFIDENCE
    return min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, confidence))


def _insight_type(value: Any) -> InsightType:
    try:
        return InsightType(str(value).lower())
    except ValueError:
        return InsightType.SUMMARY


def parse_insights(text: str, max_insights: int = MAX_INSIGHTS) -> tuple[str | None, list[Insight]]:
    """
    Parse the model's JSON answer into (summary, insights).

    Raises:
        ValueError: the text is not a JSON object with a usable shape.
    """
    cleaned = _FENCE_RE.sub("", text).strip()
    payload = json.loads(cleaned)
    if isinstance(payload, list):
        payload = {"insights": payload}
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")

    raw_insights = payload.get("insights") or []
    if not isinstance(raw_insights, list):
        raise ValueError("'insights' must be a list")

    insights = []
    for item in raw_insights[:max_insights]:
        if not isinstance(item, dict):
            continue
        insights.append(
            Insight(
                type=_insight_type(item.get("type")),
                title=str(item.get("title") or "Insight"),
                content=str(item.get("content") or ""),
                confidence=_clamp(item.get("confidence")),
            )
        )

    summary = payload.get("summary")
    return (str(summary).strip() or None) if summary else None, insights


def overview_insights(datasets: Sequence[DatasetRef]) -> list[Insight]:
    names = ", ".join(d.name for d in datasets) or "your connected sources"
    return [
        Insight(
            type=InsightType.SUMMARY,
            title="Dataset Overview",
            content=f"Analysis covered {len(datasets)} dataset(s): {names}.",
            confidence=0.90,
        ),
        Insight(
            type=InsightType.RECOMMENDATION,
            title="Further Analysis",
            content="Consider a more specific question about a metric, segment or time "
                    "range to uncover more detailed patterns.",
            confidence=0.80,
        ),
    ]


class InsightSynthesisAgent(AgentNode):
    def __init__(
        self,
        llm: LLMCapability,
        agent_id: str = "insight_synthesis",
        max_insights: int = MAX_INSIGHTS,
        context_limit: int = DATASET_CONTEXT_LIMIT,
        events: EventSink | None = None,
    ) -> None:
        super().__init__(agent_id, events)
        self.llm = llm
        self.max_insights = max_insights
        self.context_limit = context_limit

    def build_prompt(self, state: Mapping[str, Any]) -> str:
        datasets = state.get("relevant_datasets") or ()
        intent = state.get("classification")
        return INSIGHT_PROMPT.format(
            max_insights=self.max_insights,
            query=state["user_query"],
            intent=getattr(intent, "value", intent) or "analysis",
            data_context=dataset_context(datasets, self.context_limit),
            dataset_details=dataset_details(datasets, self.context_limit),
        )

    async def run(self, state: Mapping[str, Any]) -> dict[str, Any]:
        datasets = list(state.get("relevant_datasets") or ())
        logger.info(
            "InsightSynthesisAgent: query=%r, datasets=%d",
            state["user_query"][:120], len(datasets),
        )
        t0 = time.perf_counter()

        response = await self.llm.invoke(self.build_prompt(state))
        text = response.content.strip()
        if not text:
            raise LLMCallError("LLM returned an empty completion")

        try:
            summary, insights = parse_insights(text, self.max_insights)
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError
            logger.warning("InsightSynthesisAgent: unparseable insights JSON (%s)", exc)
            summary, insights = text, overview_insights(datasets)

        if not summary:
            summary = f"Here is what I found across {len(datasets)} dataset(s)."
        if not insights:
            insights = overview_insights(datasets)

        logger.info(
            "InsightSynthesisAgent: %d insights, elapsed=%.3fs",
            len(insights), time.perf_counter() - t0,
        )
        for i, insight in enumerate(insights, 1):
            logger.debug("  %d. [%s] %s", i, insight.type.value, insight.title)

        return {
            "summary": summary,
            "insights": insights,
            "messages": [Message(role="assistant", content=summary)],
            "next_agent": TERMINATE,
        }

    def fallback(self, state: Mapping[str, Any], error: ExternalCallError) -> dict[str, Any]:
        datasets = list(state.get("relevant_datasets") or ())
        names = ", ".join(d.name for d in datasets)
        summary = (
            f"I found {len(datasets)} relevant dataset(s) ({names}) but couldn't generate "
            "insights right now. Please try again in a moment."
            if datasets else
            "I couldn't generate insights right now. Please try again in a moment."
        )
        return {
            "summary": summary,
            "insights": overview_insights(datasets)[:1],
            "messages": [Message(role="assistant", content=summary)],
            "next_agent": TERMINATE,
        }
