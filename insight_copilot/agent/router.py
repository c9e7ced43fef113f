"""
router.py — Query classification / routing.

Deterministic keyword routing; no LLM call, so the same query and state
always map to the same agent.

Intent detection, most specific first (whole-word matches only):
  - "chart" / "plot" / "visualize" / "show" ...   → visualization
  - "compare" / "vs" / "versus"                   → comparison
  - "summarize" / "summary" / "overview"          → summary
  - "analyze" / "insight" / "trend" / "why" ...   → analysis
  - "sales" / "revenue" / "how many" / "data" ... → query
  - Everything else                               → conversational

Any data intent beats a conversational phrase in the same query.

Routing, once the intent is known:
  conversational                       → conversational
  no datasets in scope                 → retriever
  asks for external context            → search      (then analyzer)
  short summary request                → summarizer
  otherwise                            → route table
                                         (visualization / summary → analyzer,
                                          comparison / analysis → insight_synthesis)
"""

import logging
import re
from collections.abc import Mapping
from typing import Any

from insight_copilot.agent.directives import Continue
from insight_copilot.agent.nodes.base import AgentNode
from insight_copilot.agent.state import Intent
from insight_copilot.observability import EventSink

logger = logging.getLogger(__name__)

CONVERSATIONAL_AGENT = "conversational"
RETRIEVER_AGENT = "retriever"
INSIGHT_AGENT = "insight_synthesis"
ANALYZER_AGENT = "analyzer"
VISUALIZER_AGENT = "visualizer"
SUMMARIZER_AGENT = "summarizer"
SEARCH_AGENT = "search"
ROUTER_AGENT = "router"

# Below this many words a summary request skips the analysis step
SIMPLE_QUERY_WORDS = 5


def _words(*patterns: str) -> re.Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(patterns) + r")\b")


# ─── Keyword routing sets ──────────────────────────────────────────────────────
# Ordered: the first intent with a hit wins.
_INTENT_PATTERNS: tuple[tuple[Intent, re.Pattern[str]], ...] = (
    (Intent.VISUALIZATION, _words(
        r"visuali[sz]\w*", r"visual", r"visulai[sz]\w*", r"charts?", r"graphs?",
        r"plot\w*", r"dashboards?", r"display\w*", r"draw\w*", r"show\w*",
    )),
    (Intent.COMPARISON, _words(r"compar\w*", r"vs", r"versus")),
    (Intent.SUMMARY, _words(r"summari[sz]\w*", r"summary", r"overview")),
    (Intent.ANALYSIS, _words(
        r"analy[sz](?:e|es|ed|ing|is)", r"insights?", r"trends?", r"trending",
        r"patterns?", r"anomal\w*", r"correlat\w*", r"forecast\w*", r"why did",
        r"growth", r"declin\w*",
    )),
    (Intent.QUERY, _words(
        r"datasets?", r"data", r"sales", r"revenue", r"customers?",
        r"orders?(?! to\b)", r"metrics?", r"how many", r"how much", r"total",
        r"average", r"list", r"find", r"which", r"top", r"records?",
    )),
)

# Questions that need context from outside the connected data
_WEB_SEARCH_PATTERN = _words(
    r"industry", r"market", r"competitors?", r"benchmarks?", r"global", r"external",
    r"best practices?", r"compare with", r"stack up", r"other companies",
    r"look up", r"internet", r"online", r"web", r"worldwide",
)

# Intent → agent once datasets are in scope
DEFAULT_ROUTES: Mapping[Intent, str] = {
    Intent.CONVERSATIONAL: CONVERSATIONAL_AGENT,
    Intent.QUERY: RETRIEVER_AGENT,
    Intent.VISUALIZATION: ANALYZER_AGENT,
    Intent.SUMMARY: ANALYZER_AGENT,
    Intent.COMPARISON: INSIGHT_AGENT,
    Intent.ANALYSIS: INSIGHT_AGENT,
}


def detect_intent(query: str) -> Intent:
    """Keyword intent detection. Total: unmatched queries are conversational."""
    lower = query.lower()
    for intent, pattern in _INTENT_PATTERNS:
        if pattern.search(lower):
            return intent
    return Intent.CONVERSATIONAL


def needs_web_search(query: str) -> bool:
    return _WEB_SEARCH_PATTERN.search(query.lower()) is not None


def is_simple(query: str) -> bool:
    return len(query.split()) < SIMPLE_QUERY_WORDS


class Router:
    """
    Maps (query, state) to an agent id.

    Args:
        routes:              Intent → agent id used when datasets are in scope.
        default_agent:       Agent for conversational / unmatched queries.
        retrieval_agent:     Agent that fetches datasets when none are in scope.
        search_agent:        Agent for questions needing external context
                             (None disables web search routing).
        quick_summary_agent: Agent for short summary requests
                             (None sends them through the route table).
    """

    def __init__(
        self,
        routes: Mapping[Intent, str] | None = None,
        default_agent: str = CONVERSATIONAL_AGENT,
        retrieval_agent: str = RETRIEVER_AGENT,
        search_agent: str | None = SEARCH_AGENT,
        quick_summary_agent: str | None = SUMMARIZER_AGENT,
    ) -> None:
        self.routes = dict(DEFAULT_ROUTES if routes is None else routes)
        self.default_agent = default_agent
        self.retrieval_agent = retrieval_agent
        self.search_agent = search_agent
        self.quick_summary_agent = quick_summary_agent

    def agent_ids(self) -> set[str]:
        """Every agent id this router can return."""
        ids = {*self.routes.values(), self.default_agent, self.retrieval_agent}
        return ids | {a for a in (self.search_agent, self.quick_summary_agent) if a}

    def classify(self, query: str, state: Mapping[str, Any]) -> str:
        return self.route(query, state)[1]

    def route(self, query: str, state: Mapping[str, Any]) -> tuple[Intent, str]:
        """Return (intent, agent_id)."""
        intent = detect_intent(query)
        if intent is Intent.CONVERSATIONAL:
            return intent, self.routes.get(intent, self.default_agent)
        if not state.get("relevant_datasets"):
            return intent, self.retrieval_agent
        if self.search_agent and not state.get("search_results") and needs_web_search(query):
            return intent, self.search_agent
        if intent is Intent.SUMMARY and self.quick_summary_agent and is_simple(query):
            return intent, self.quick_summary_agent
        return intent, self.routes.get(intent, self.default_agent)


class RouterAgent(AgentNode):
    """
    Graph node wrapping the Router: records the classification and hands off.

    Used as the entry node when the engine is configured with
    `entry_agent="router"`, or as a hand-off target for nodes that want the
    query re-classified against the state they produced.
    """

    def __init__(self, router: Router, agent_id: str = ROUTER_AGENT,
                 events: EventSink | None = None) -> None:
        super().__init__(agent_id, events)
        self.router = router

    async def run(self, state: Mapping[str, Any]) -> dict[str, Any]:
        intent, target = self.router.route(state["user_query"], state)
        logger.info("RouterAgent: intent='%s' → agent='%s'", intent.value, target)
        return {
            "classification": intent,
            "metadata": {"router_reasoning": f"keyword intent '{intent.value}'"},
            "next_agent": Continue(target),
        }
