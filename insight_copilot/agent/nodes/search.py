"""
search.py — External web-research node.

For questions that need context beyond the connected data (industry
benchmarks, market trends, competitors):

  1. when datasets are in scope, the LLM rewrites the question into a
     focused search query
  2. the web search capability runs it
  3. the LLM condenses the hits into `search_results.summary`

The node always hands on to its successor (the analyzer by default). When
there is nothing to add the update carries only a metadata note.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from insight_copilot.agent.directives import Continue
from insight_copilot.agent.errors import ExternalCallError, LLMCallError
from insight_copilot.agent.nodes.base import AgentNode
from insight_copilot.agent.prompts import SEARCH_QUERY_PROMPT, SEARCH_SYNTHESIS_PROMPT
from insight_copilot.agent.router import ANALYZER_AGENT
from insight_copilot.agent.state import SearchResults
from insight_copilot.config import SEARCH_MAX_RESULTS
from insight_copilot.llm import LLMCapability
from insight_copilot.observability import EventSink
from insight_copilot.search.web_search import WebSearch

logger = logging.getLogger(__name__)


class WebSearchAgent(AgentNode):
    def __init__(
        self,
        llm: LLMCapability,
        search: WebSearch | None,
        agent_id: str = "search",
        successor: str = ANALYZER_AGENT,
        max_results: int = SEARCH_MAX_RESULTS,
        events: EventSink | None = None,
    ) -> None:
        super().__init__(agent_id, events)
        self.llm = llm
        self.search = search
        self.successor = successor
        self.max_results = max_results

    async def search_query(self, state: Mapping[str, Any]) -> str:
        query = state["user_query"]
        datasets = state.get("relevant_datasets") or ()
        if not datasets:
            return query
        d = datasets[0]
        response = await self.llm.invoke(SEARCH_QUERY_PROMPT.format(
            query=query, dataset=f"{d.name} ({d.source_type}): {d.summary or 'No summary'}",
        ))
        first_line = next((line.strip(' "') for line in response.content.splitlines() if line.strip()), "")
        return first_line or query

    async def run(self, state: Mapping[str, Any]) -> dict[str, Any]:
        if self.search is None:
            logger.info("WebSearchAgent: no search backend configured — skipping")
            return {
                "metadata": {"search_skipped": "no web search backend configured"},
                "next_agent": Continue(self.successor),
            }

        query = await self.search_query(state)
        results = await self.search.search(query, self.max_results)
        if not results:
            logger.info("WebSearchAgent: no results for %r", query)
            return {
                "metadata": {"search_performed": True, "search_result_count": 0},
                "next_agent": Continue(self.successor),
            }

        response = await self.llm.invoke(SEARCH_SYNTHESIS_PROMPT.format(
            query=state["user_query"], results=json.dumps(results, indent=2, default=str),
        ))
        summary = response.content.strip()
        if not summary:
            raise LLMCallError("LLM returned an empty search synthesis")

        logger.info("WebSearchAgent: %d results synthesized for %r", len(results), query)
        return {
            "search_results": SearchResults(query=query, results=results, summary=summary),
            "metadata": {"search_performed": True, "search_result_count": len(results)},
            "next_agent": Continue(self.successor),
        }

    def fallback(self, state: Mapping[str, Any], error: ExternalCallError) -> dict[str, Any]:
        return {
            "metadata": {"search_error": str(error)},
            "next_agent": Continue(self.successor),
        }
