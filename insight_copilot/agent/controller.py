"""
controller.py — LangGraph graph definition and execution controller.

Graph topology:

    START → engine_classify ─┐
                             ▼
              ┌──────► <agent node> ──┐      (one node per registered agent)
              └──────── _route_next ◄─┘
                             │
               engine_finalize / engine_abort → END

`engine_classify` asks the Router for the entry agent (or uses the fixed
`entry_agent`); it is not a hop. Every agent node is wrapped by the engine
and shares one conditional edge, `_route_next`, so registering a new node
type never changes the graph code:

    cancelled / error          → engine_abort
    directive Terminate        → engine_finalize
    hop_count >= max_hops      → engine_abort   (hop_limit)
    unknown agent id           → engine_abort   (unknown_agent)
    otherwise                  → that agent's node

Both terminal steps guarantee a non-empty summary.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from insight_copilot.agent.directives import is_directive
from insight_copilot.agent.errors import MissingDirectiveError, RoutingError
from insight_copilot.agent.nodes.base import AgentNode
from insight_copilot.agent.nodes.conversational import FALLBACK_SUMMARY
from insight_copilot.agent.registry import (
    ABORT_NODE,
    CLASSIFY_NODE,
    FINALIZE_NODE,
    AgentRegistry,
    NodeDependencies,
    build_registry,
    default_node_configs,
    load_node_configs,
)
from insight_copilot.agent.router import Router
from insight_copilot.agent.state import (
    AbortReason,
    AgentState,
    Insight,
    Message,
    RunStatus,
    SessionContext,
    initial_state,
    merge_state,
    snapshot,
)
from insight_copilot.config import (
    DATASET_CATALOG_FILE,
    DATASET_DIRECTORY_BACKEND,
    MAX_HOPS,
    NODE_CONFIG_JSON,
)
from insight_copilot.datasets.directory import (
    QdrantDatasetDirectory,
    StaticDatasetDirectory,
    load_catalog,
)
from insight_copilot.llm import BedrockLLM
from insight_copilot.observability import EventSink, LoggingEventSink, NullEventSink
from insight_copilot.search.web_search import build_web_search

logger = logging.getLogger(__name__)

# Shown when a run ends without any node having produced a summary
SAFETY_NET_SUMMARY = FALLBACK_SUMMARY


@dataclass(frozen=True)
class RunResult:
    """Terminal outcome of one run."""
    status: RunStatus
    state: Mapping[str, Any]
    abort_reason: AbortReason | None = None

    @property
    def summary(self) -> str:
        return self.state["summary"]

    @property
    def insights(self) -> tuple[Insight, ...]:
        return self.state["insights"]

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.state["messages"]

    @property
    def hop_count(self) -> int:
        return self.state["hop_count"]

    @property
    def path(self) -> tuple[str, ...]:
        return self.state["path"]


def _is_set(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _cancel_event(config: RunnableConfig | None) -> asyncio.Event | None:
    return ((config or {}).get("configurable") or {}).get("cancel_event")


class Orchestrator:
    """
    Execution engine: runs one query through the agent graph.

    Args:
        registry:    Agent id → node.
        router:      Classifier used for the entry hop.
        max_hops:    Maximum executed agent nodes per run.
        events:      Structured event sink.
        entry_agent: Start every run at this agent instead of classifying.

    Example:
        engine = build_orchestrator()
        result = await engine.run("What can you do?")
        result.status, result.summary
    """

    def __init__(
        self,
        registry: AgentRegistry,
        router: Router | None = None,
        max_hops: int = MAX_HOPS,
        events: EventSink | None = None,
        entry_agent: str | None = None,
    ) -> None:
        if max_hops < 1:
            raise ValueError(f"max_hops must be >= 1, got {max_hops}")
        if entry_agent is not None and entry_agent not in registry:
            raise ValueError(f"entry_agent {entry_agent!r} is not registered")
        self.registry = registry
        self.router = router or Router()
        self.max_hops = max_hops
        self.events: EventSink = events or NullEventSink()
        self.entry_agent = entry_agent
        self._graph = self._build_graph()

    # ─── Graph construction ──────────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(AgentState)

        graph.add_node(CLASSIFY_NODE, self._classify)
        for agent_id, node in self.registry.items():
            graph.add_node(agent_id, self._wrap(node))
        graph.add_node(FINALIZE_NODE, self._finalize)
        graph.add_node(ABORT_NODE, self._abort)

        path_map = {agent_id: agent_id for agent_id in self.registry}
        path_map[FINALIZE_NODE] = FINALIZE_NODE
        path_map[ABORT_NODE] = ABORT_NODE

        graph.set_entry_point(CLASSIFY_NODE)
        graph.add_conditional_edges(CLASSIFY_NODE, self._route_next, path_map)
        for agent_id in self.registry:
            graph.add_conditional_edges(agent_id, self._route_next, path_map)
        graph.add_edge(FINALIZE_NODE, END)
        graph.add_edge(ABORT_NODE, END)

        compiled = graph.compile()
        logger.info(
            "Graph compiled — agents=%s, max_hops=%d, entry=%s",
            self.registry.ids(), self.max_hops, self.entry_agent or "router",
        )
        return compiled

    # ─── Graph steps ─────────────────────────────────────────────────────────

    def _classify(self, state: AgentState, config: RunnableConfig) -> AgentState:
        if _is_set(_cancel_event(config)):
            return {**state, "status": RunStatus.RUNNING, "cancelled": True}

        if self.entry_agent is not None:
            logger.info("Engine: fixed entry agent '%s'", self.entry_agent)
            return {**state, "status": RunStatus.RUNNING, "next_agent": self.entry_agent}

        try:
            intent, agent_id = self.router.route(state["user_query"], snapshot(state))
        except Exception as exc:
            logger.error("Engine: classification failed: %s", exc, exc_info=True)
            return {
                **state,
                "status": RunStatus.RUNNING,
                "error": f"Classification failed: {exc}",
                "abort_reason": AbortReason.ROUTING_ERROR,
            }

        logger.info("Engine: classified intent='%s' → agent='%s'", intent.value, agent_id)
        return {
            **state,
            "status": RunStatus.RUNNING,
            "classification": intent,
            "next_agent": agent_id,
            "metadata": {
                **state["metadata"],
                "router_reasoning": f"keyword intent '{intent.value}'",
            },
        }

    def _wrap(self, node: AgentNode) -> Callable[..., Any]:
        """Graph node executing one hop of `node`."""

        async def step(state: AgentState, config: RunnableConfig) -> AgentState:
            cancel_event = _cancel_event(config)
            if _is_set(cancel_event):
                logger.warning("Engine: run cancelled before '%s'", node.agent_id)
                return {**state, "cancelled": True}

            hop = state["hop_count"] + 1
            bookkeeping = {"hop_count": hop, "path": [*state["path"], node.agent_id]}
            self.events.emit("hop.started", agent=node.agent_id, hop=hop)
            t0 = time.perf_counter()

            try:
                update = await node.execute(snapshot(state))
                if not isinstance(update, Mapping) or not is_directive(update.get("next_agent")):
                    got = update.get("next_agent") if isinstance(update, Mapping) else update
                    raise MissingDirectiveError(node.agent_id, got)
            except RoutingError as exc:
                logger.error("Engine: routing error in '%s': %s", node.agent_id, exc)
                return {
                    **state, **bookkeeping,
                    "error": str(exc),
                    "abort_reason": AbortReason.ROUTING_ERROR,
                }
            except Exception as exc:
                logger.error("Engine: node '%s' failed: %s", node.agent_id, exc, exc_info=True)
                return {
                    **state, **bookkeeping,
                    "error": f"{type(exc).__name__}: {exc}",
                    "abort_reason": AbortReason.NODE_ERROR,
                }

            if _is_set(cancel_event):
                # Late result of a cancelled run is dropped
                logger.warning("Engine: discarding result of '%s' — run cancelled", node.agent_id)
                return {**state, **bookkeeping, "cancelled": True}

            merged = merge_state(state, update)
            self.events.emit(
                "hop.completed",
                agent=node.agent_id,
                hop=hop,
                next_agent=merged["next_agent"],
                elapsed_s=round(time.perf_counter() - t0, 3),
            )
            return {**merged, **bookkeeping}

        step.__name__ = f"hop_{node.agent_id}"
        return step

    def _route_next(self, state: AgentState) -> str:
        if state.get("cancelled") or state.get("error") or state.get("abort_reason"):
            return ABORT_NODE
        target = state.get("next_agent")
        if target is None:
            return FINALIZE_NODE
        if state["hop_count"] >= self.max_hops:
            return ABORT_NODE
        if target not in self.registry:
            return ABORT_NODE
        return target

    def _finalize(self, state: AgentState) -> AgentState:
        return {
            **state,
            **self._ensure_summary(state),
            "status": RunStatus.COMPLETED,
            "next_agent": None,
        }

    def _abort(self, state: AgentState) -> AgentState:
        reason = state.get("abort_reason")
        if reason is None:
            if state.get("cancelled"):
                reason = AbortReason.CANCELLED
            elif state["hop_count"] >= self.max_hops:
                reason = AbortReason.HOP_LIMIT
            elif state.get("next_agent") not in self.registry:
                reason = AbortReason.UNKNOWN_AGENT
            else:
                reason = AbortReason.ROUTING_ERROR

        if reason is AbortReason.UNKNOWN_AGENT:
            logger.error("Engine: unknown agent id %r — aborting", state.get("next_agent"))
        else:
            logger.warning("Engine: aborting run — reason=%s", reason.value)
        self.events.emit(
            "run.aborted",
            reason=reason.value,
            hop_count=state["hop_count"],
            next_agent=state.get("next_agent"),
            error=state.get("error"),
        )
        return {
            **state,
            **self._ensure_summary(state),
            "status": RunStatus.ABORTED,
            "abort_reason": reason,
            "next_agent": None,
        }

    @staticmethod
    def _ensure_summary(state: Mapping[str, Any]) -> dict[str, Any]:
        if state.get("summary"):
            return {}
        return {
            "summary": SAFETY_NET_SUMMARY,
            "messages": [
                *state.get("messages", ()),
                Message(role="assistant", content=SAFETY_NET_SUMMARY),
            ],
        }

    # ─── Execution ───────────────────────────────────────────────────────────

    @staticmethod
    def _notify(on_update: Callable[[Mapping[str, Any]], None], values: Mapping[str, Any]) -> None:
        """Call the progress callback; its errors are logged and never change the run."""
        try:
            on_update(snapshot(values))
        except Exception as exc:
            logger.warning("Orchestrator: on_update callback failed: %s", exc, exc_info=True)

    async def run(
        self,
        query: str,
        context: SessionContext | None = None,
        cancel_event: asyncio.Event | None = None,
        on_update: Callable[[Mapping[str, Any]], None] | None = None,
    ) -> RunResult:
        """
        Run one query to a terminal state.

        Never raises for node or graph failures; those end the run ABORTED
        with a usable summary. Task cancellation propagates.
        """
        run_id = uuid.uuid4().hex[:12]
        logger.info("Orchestrator: start — run_id=%s, query=%r", run_id, query[:120])
        self.events.emit("run.started", run_id=run_id, query=query[:200])
        t_total = time.perf_counter()

        state: AgentState = initial_state(query, context)
        config: RunnableConfig = {
            # classify + max_hops agent steps + one terminal step
            "recursion_limit": self.max_hops + 3,
            "configurable": {"cancel_event": cancel_event, "run_id": run_id},
        }

        final = state
        try:
            async for values in self._graph.astream(state, config=config, stream_mode="values"):
                final = values
                if on_update is not None:
                    self._notify(on_update, values)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Orchestrator: graph failure: %s", exc, exc_info=True)
            final = self._abort({
                **final,
                "error": f"{type(exc).__name__}: {exc}",
                "abort_reason": AbortReason.NODE_ERROR,
            })

        if final.get("status") not in (RunStatus.COMPLETED, RunStatus.ABORTED):
            # Stream ended without reaching a terminal step
            final = self._abort({**final, "abort_reason": final.get("abort_reason") or AbortReason.ROUTING_ERROR})

        elapsed = time.perf_counter() - t_total
        result = RunResult(
            status=final["status"],
            state=snapshot(final),
            abort_reason=final.get("abort_reason"),
        )
        self.events.emit(
            "run.finished",
            run_id=run_id,
            status=result.status.value,
            abort_reason=result.abort_reason.value if result.abort_reason else None,
            hop_count=result.hop_count,
            path=list(result.path),
            elapsed_s=round(elapsed, 3),
        )
        logger.info(
            "Orchestrator: done — run_id=%s, status=%s, hops=%d, path=%s, total=%.3fs",
            run_id, result.status.value, result.hop_count, "→".join(result.path) or "-", elapsed,
        )
        return result


# ─── Factory ──────────────────────────────────────────────────────────────────

def build_directory():
    """Dataset directory selected by DATASET_DIRECTORY_BACKEND."""
    if DATASET_DIRECTORY_BACKEND == "qdrant":
        return QdrantDatasetDirectory()

    catalog = load_catalog(DATASET_CATALOG_FILE) if DATASET_CATALOG_FILE else []
    return StaticDatasetDirectory(catalog)


def build_orchestrator(
    max_hops: int = MAX_HOPS,
    llm=None,
    directory=None,
    events: EventSink | None = None,
    entry_agent: str | None = None,
    web_search=None,
) -> Orchestrator:
    """Wire the default engine: Bedrock LLM, configured directory and web search, node configs from env."""
    llm = llm or BedrockLLM()
    events = events or LoggingEventSink()
    router = Router()
    deps = NodeDependencies(
        llm=llm,
        directory=directory if directory is not None else build_directory(),
        router=router,
        events=events,
        web_search=web_search if web_search is not None else build_web_search(),
    )
    configs = load_node_configs(NODE_CONFIG_JSON) if NODE_CONFIG_JSON else default_node_configs()
    registry = build_registry(configs, deps)
    return Orchestrator(registry, router, max_hops=max_hops, events=events, entry_agent=entry_agent)
