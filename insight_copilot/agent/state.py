"""
state.py — Shared state threaded through one orchestration run.

The state dict flows through every node in the graph, accumulating results
as each node executes. Nodes never touch it directly: they receive a
read-only `snapshot()` and return a partial update, which the engine folds
in with `merge_state()`.

Merge rules:
  - `insights`, `messages`  append-only
  - `metadata`              shallow dict merge
  - `next_agent`            cleared on every merge, then set from the
                            update's directive (Continue / Terminate)
  - everything else         last-write-wins, None values are skipped
  - engine-owned fields     ignored when they appear in a node update
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing_extensions import TypedDict

from insight_copilot.agent.directives import directive_target

logger = logging.getLogger(__name__)


# ─── Value types ──────────────────────────────────────────────────────────────

class Intent(str, Enum):
    CONVERSATIONAL = "conversational"
    QUERY = "query"
    VISUALIZATION = "visualization"
    SUMMARY = "summary"
    COMPARISON = "comparison"
    ANALYSIS = "analysis"


class InsightType(str, Enum):
    TREND = "trend"
    ANOMALY = "anomaly"
    CORRELATION = "correlation"
    SUMMARY = "summary"
    RECOMMENDATION = "recommendation"


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class AbortReason(str, Enum):
    HOP_LIMIT = "hop_limit"
    UNKNOWN_AGENT = "unknown_agent"
    NODE_ERROR = "node_error"
    ROUTING_ERROR = "routing_error"
    CANCELLED = "cancelled"


class DatasetRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    # Catalog files use "sourceType" or "type"
    source_type: str = Field(validation_alias=AliasChoices("source_type", "sourceType", "type"))
    summary: str | None = None


class Insight(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: InsightType
    title: str
    content: str
    confidence: float = Field(ge=0.0, le=1.0)


class ChartType(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    SCATTER = "scatter"


class Visualization(BaseModel):
    """Chart configuration rendered by the client; `data` rows are chart points."""
    model_config = ConfigDict(frozen=True)

    type: ChartType
    title: str
    x_axis: str | None = Field(default=None, validation_alias=AliasChoices("x_axis", "xAxis"))
    y_axis: str | None = Field(default=None, validation_alias=AliasChoices("y_axis", "yAxis"))
    data: list[dict[str, Any]] = Field(default_factory=list)
    description: str | None = None


class SearchResults(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    results: list[dict[str, Any]] = Field(default_factory=list)
    summary: str
    retrieved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SessionContext(BaseModel):
    """Prior context supplied by whatever transport invokes the engine."""

    session_id: str | None = None
    datasets: list[DatasetRef] = Field(default_factory=list)
    history: list[Message] = Field(default_factory=list)


# ─── Graph state ──────────────────────────────────────────────────────────────

class AgentState(TypedDict):
    """
    Shared state for the Insight Copilot LangGraph graph.

    Fields:
        user_query:        The original user query (immutable for the run).
        classification:    Router's intent tag, or None before classification.
        relevant_datasets: Datasets in scope for this run.
        insights:          Insights produced so far (append-only).
        analysis_plan:     Analyzer's plan for the question, if one ran.
        visualization:     Chart configuration, if one was generated.
        search_results:    External (web) research context, if a search ran.
        summary:           Latest user-facing text (overwritten).
        messages:          Conversation transcript (append-only).
        next_agent:        Next hop requested by the last node; None = stop.
        hop_count:         Executed agent nodes (engine-owned).
        status:            RunStatus of the run (engine-owned).
        abort_reason:      Why the run was aborted, if it was (engine-owned).
        error:             Error text of a failed hop, else None (engine-owned).
        cancelled:         Set once the run's cancel signal was observed.
        path:              Agent ids in execution order (engine-owned).
        metadata:          Free-form diagnostics (router reasoning, retrieval mode).
    """
    user_query: str
    classification: Intent | None
    relevant_datasets: list[DatasetRef]
    insights: list[Insight]
    analysis_plan: str | None
    visualization: Visualization | None
    search_results: SearchResults | None
    summary: str | None
    messages: list[Message]
    next_agent: str | None
    hop_count: int
    status: RunStatus
    abort_reason: AbortReason | None
    error: str | None
    cancelled: bool
    path: list[str]
    metadata: dict[str, Any]


APPEND_ONLY_FIELDS = frozenset({"insights", "messages"})
NODE_WRITABLE_FIELDS = frozenset({
    "classification", "relevant_datasets", "insights", "summary",
    "analysis_plan", "visualization", "search_results",
    "messages", "next_agent", "metadata",
})


def initial_state(query: str, context: SessionContext | None = None) -> AgentState:
    """Seed a fresh state for one run."""
    context = context or SessionContext()
    return {
        "user_query": query,
        "classification": None,
        "relevant_datasets": list(context.datasets),
        "insights": [],
        "analysis_plan": None,
        "visualization": None,
        "search_results": None,
        "summary": None,
        "messages": [*context.history, Message(role="user", content=query)],
        "next_agent": None,
        "hop_count": 0,
        "status": RunStatus.IDLE,
        "abort_reason": None,
        "error": None,
        "cancelled": False,
        "path": [],
        "metadata": {"session_id": context.session_id} if context.session_id else {},
    }


def merge_state(state: Mapping[str, Any], update: Mapping[str, Any]) -> dict[str, Any]:
    """
    Return a new state with `update` overlaid on `state`.

    `state` is never modified. Fields a node may not write are logged and
    dropped rather than raising, so a sloppy node cannot break the run.
    """
    merged = dict(state)
    merged["next_agent"] = None

    for key, value in update.items():
        if value is None:
            continue
        if key not in NODE_WRITABLE_FIELDS:
            logger.warning("merge_state: ignoring non-writable field %r", key)
            continue

        if key in APPEND_ONLY_FIELDS:
            merged[key] = [*state.get(key, ()), *_as_list(value)]
        elif key == "next_agent":
            merged[key] = directive_target(value)
        elif key == "metadata":
            merged[key] = {**state.get("metadata", {}), **value}
        elif key == "relevant_datasets":
            merged[key] = _as_list(value)
        else:
            merged[key] = value

    return merged


def snapshot(state: Mapping[str, Any]) -> Mapping[str, Any]:
    """
    Read-only view handed to nodes: a mapping proxy with tuples in place of
    lists and `next_agent` already consumed.
    """
    view: dict[str, Any] = {}
    for key, value in state.items():
        if isinstance(value, list):
            view[key] = tuple(value)
        elif isinstance(value, dict):
            view[key] = MappingProxyType(dict(value))
        else:
            view[key] = value
    view["next_agent"] = None
    return MappingProxyType(view)


def _as_list(value: Iterable[Any]) -> list[Any]:
    if isinstance(value, (str, bytes, Mapping)):
        raise TypeError(f"Expected a sequence of records, got {type(value).__name__}")
    return list(value)
