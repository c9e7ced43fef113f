"""
visualizer.py — Chart-configuration node.

Asks the LLM for a JSON chart config over the first dataset in scope and
the analyzer's plan, then always hands on to the summarizer. Output that
cannot be parsed into a Visualization becomes an empty "Data Overview"
bar chart.
"""

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from insight_copilot.agent.directives import Continue
from insight_copilot.agent.errors import ExternalCallError
from insight_copilot.agent.nodes.base import AgentNode
from insight_copilot.agent.prompts import VISUALIZATION_PROMPT
from insight_copilot.agent.router import SUMMARIZER_AGENT
from insight_copilot.agent.state import ChartType, Visualization
from insight_copilot.config import VISUALIZATION_MAX_POINTS
from insight_copilot.llm import LLMCapability
from insight_copilot.observability import EventSink

logger = logging.getLogger(__name__)

DEFAULT_VISUALIZATION = Visualization(
    type=ChartType.BAR,
    title="Data Overview",
    description="Unable to generate a custom visualization",
)

_FENCE_RE = re.compile(r"```(?:json)?\s*")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def parse_visualization(text: str, max_points: int = VISUALIZATION_MAX_POINTS) -> Visualization:
    """
    Parse the model's chart JSON.

    Raises:
        ValueError: not JSON, or not a usable chart config.
    """
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", _FENCE_RE.sub("", text)).strip()
    payload = json.loads(cleaned)
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
    if isinstance(payload.get("data"), list):
        payload["data"] = [p for p in payload["data"] if isinstance(p, dict)][:max_points]
    try:
        return Visualization.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


class VisualizerAgent(AgentNode):
    def __init__(
        self,
        llm: LLMCapability,
        agent_id: str = "visualizer",
        successor: str = SUMMARIZER_AGENT,
        max_points: int = VISUALIZATION_MAX_POINTS,
        events: EventSink | None = None,
    ) -> None:
        super().__init__(agent_id, events)
        self.llm = llm
        self.successor = successor
        self.max_points = max_points

    async def run(self, state: Mapping[str, Any]) -> dict[str, Any]:
        datasets = state.get("relevant_datasets") or ()
        if not datasets:
            logger.warning("VisualizerAgent: no datasets in scope — skipping")
            return {
                "metadata": {"visualization_skipped": "no datasets"},
                "next_agent": Continue(self.successor),
            }

        dataset = datasets[0]
        response = await self.llm.invoke(VISUALIZATION_PROMPT.format(
            query=state["user_query"],
            dataset_name=dataset.name,
            source_type=dataset.source_type,
            dataset_summary=dataset.summary or "No summary available",
            analysis_plan=state.get("analysis_plan") or "None",
            max_points=self.max_points,
        ))
        try:
            visualization = parse_visualization(response.content, self.max_points)
        except ValueError as exc:
            logger.warning("VisualizerAgent: unparseable chart JSON (%s) — using default", exc)
            visualization = DEFAULT_VISUALIZATION

        logger.info(
            "VisualizerAgent: type=%s, title=%r, points=%d",
            visualization.type.value, visualization.title, len(visualization.data),
        )
        return {
            "visualization": visualization,
            "metadata": {"has_visualization": True},
            "next_agent": Continue(self.successor),
        }

    def fallback(self, state: Mapping[str, Any], error: ExternalCallError) -> dict[str, Any]:
        return {
            "visualization": DEFAULT_VISUALIZATION,
            "metadata": {"visualization_error": str(error)},
            "next_agent": Continue(self.successor),
        }
