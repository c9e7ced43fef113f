"""
registry.py — Node configuration and the agent registry.

Node configs are a tagged union on `kind`; each variant carries its own typed
settings and `build_node()` maps it to a concrete AgentNode. Adding a node
type means adding a config variant and a branch here; the engine only ever
sees the registry.

    registry = build_registry(default_node_configs(), deps)
    registry.resolve("conversational")   # → ConversationalAgent

Configs can also come from JSON (env `COPILOT_NODES`):

    [{"kind": "router"}, {"kind": "conversational", "context_limit": 5}]
"""

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from typing_extensions import assert_never

from insight_copilot.agent.errors import UnknownAgentError
from insight_copilot.agent.nodes.analyzer import AnalyzerAgent
from insight_copilot.agent.nodes.base import AgentNode
from insight_copilot.agent.nodes.conversational import ConversationalAgent
from insight_copilot.agent.nodes.insights import InsightSynthesisAgent
from insight_copilot.agent.nodes.retriever import DataRetrievalAgent
from insight_copilot.agent.nodes.search import WebSearchAgent
from insight_copilot.agent.nodes.summarizer import SummarizerAgent
from insight_copilot.agent.nodes.visualizer import VisualizerAgent
from insight_copilot.agent.router import (
    ANALYZER_AGENT,
    CONVERSATIONAL_AGENT,
    INSIGHT_AGENT,
    RETRIEVER_AGENT,
    ROUTER_AGENT,
    SEARCH_AGENT,
    SUMMARIZER_AGENT,
    VISUALIZER_AGENT,
    Router,
    RouterAgent,
)
from insight_copilot.agent.state import AgentState
from insight_copilot.config import (
    DATASET_CONTEXT_LIMIT,
    DATASET_TOP_K,
    MAX_INSIGHTS,
    SEARCH_MAX_RESULTS,
    VISUALIZATION_MAX_POINTS,
)
from insight_copilot.datasets.directory import DatasetDirectory
from insight_copilot.llm import LLMCapability
from insight_copilot.observability import EventSink, NullEventSink
from insight_copilot.search.web_search import WebSearch

logger = logging.getLogger(__name__)

# Engine-internal graph steps
CLASSIFY_NODE = "engine_classify"
FINALIZE_NODE = "engine_finalize"
ABORT_NODE = "engine_abort"
# Graph node names may not collide with engine steps or state keys
RESERVED_IDS = frozenset({
    CLASSIFY_NODE, FINALIZE_NODE, ABORT_NODE, "__start__", "__end__", *AgentState.__annotations__,
})

_AGENT_ID_PATTERN = r"^[A-Za-z0-9_\-]+$"


# ─── Node configs ─────────────────────────────────────────────────────────────

class _NodeConfigBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RouterNodeConfig(_NodeConfigBase):
    kind: Literal["router"] = "router"
    id: str = Field(default=ROUTER_AGENT, pattern=_AGENT_ID_PATTERN)


class ConversationalNodeConfig(_NodeConfigBase):
    kind: Literal["conversational"] = "conversational"
    id: str = Field(default=CONVERSATIONAL_AGENT, pattern=_AGENT_ID_PATTERN)
    context_limit: int = Field(default=DATASET_CONTEXT_LIMIT, ge=0)


class RetrieverNodeConfig(_NodeConfigBase):
    kind: Literal["retriever"] = "retriever"
    id: str = Field(default=RETRIEVER_AGENT, pattern=_AGENT_ID_PATTERN)
    top_k: int = Field(default=DATASET_TOP_K, ge=1)


class InsightSynthesisNodeConfig(_NodeConfigBase):
    kind: Literal["insight_synthesis"] = "insight_synthesis"
    id: str = Field(default=INSIGHT_AGENT, pattern=_AGENT_ID_PATTERN)
    max_insights: int = Field(default=MAX_INSIGHTS, ge=1)
    context_limit: int = Field(default=DATASET_CONTEXT_LIMIT, ge=0)


class AnalyzerNodeConfig(_NodeConfigBase):
    kind: Literal["analyzer"] = "analyzer"
    id: str = Field(default=ANALYZER_AGENT, pattern=_AGENT_ID_PATTERN)
    # None sends visualization requests straight to the summarizer
    visualizer: str | None = VISUALIZER_AGENT
    summarizer: str = Field(default=SUMMARIZER_AGENT, pattern=_AGENT_ID_PATTERN)
    context_limit: int = Field(default=DATASET_CONTEXT_LIMIT, ge=0)


class VisualizerNodeConfig(_NodeConfigBase):
    kind: Literal["visualizer"] = "visualizer"
    id: str = Field(default=VISUALIZER_AGENT, pattern=_AGENT_ID_PATTERN)
    successor: str = Field(default=SUMMARIZER_AGENT, pattern=_AGENT_ID_PATTERN)
    max_points: int = Field(default=VISUALIZATION_MAX_POINTS, ge=1)


class SummarizerNodeConfig(_NodeConfigBase):
    kind: Literal["summarizer"] = "summarizer"
    id: str = Field(default=SUMMARIZER_AGENT, pattern=_AGENT_ID_PATTERN)
    context_limit: int = Field(default=DATASET_CONTEXT_LIMIT, ge=0)


class SearchNodeConfig(_NodeConfigBase):
    kind: Literal["search"] = "search"
    id: str = Field(default=SEARCH_AGENT, pattern=_AGENT_ID_PATTERN)
    successor: str = Field(default=ANALYZER_AGENT, pattern=_AGENT_ID_PATTERN)
    max_results: int = Field(default=SEARCH_MAX_RESULTS, ge=1)


NodeConfig = Annotated[
    Union[
        RouterNodeConfig,
        ConversationalNodeConfig,
        RetrieverNodeConfig,
        InsightSynthesisNodeConfig,
        AnalyzerNodeConfig,
        VisualizerNodeConfig,
        SummarizerNodeConfig,
        SearchNodeConfig,
    ],
    Field(discriminator="kind"),
]

_CONFIG_LIST = TypeAdapter(list[NodeConfig])


def default_node_configs() -> list[NodeConfig]:
    return [
        RouterNodeConfig(),
        ConversationalNodeConfig(),
        RetrieverNodeConfig(),
        InsightSynthesisNodeConfig(),
        AnalyzerNodeConfig(),
        VisualizerNodeConfig(),
        SummarizerNodeConfig(),
        SearchNodeConfig(),
    ]


def load_node_configs(raw: str) -> list[NodeConfig]:
    """
    Parse a JSON list of node configs.

    Raises:
        pydantic.ValidationError: unknown `kind`, bad field or bad id.
    """
    return _CONFIG_LIST.validate_json(raw)


# ─── Building nodes ───────────────────────────────────────────────────────────

@dataclass
class NodeDependencies:
    """External collaborators shared by every node of one engine."""
    llm: LLMCapability
    directory: DatasetDirectory
    router: Router = field(default_factory=Router)
    events: EventSink = field(default_factory=NullEventSink)
    # None leaves the search node in pass-through mode
    web_search: WebSearch | None = None


def build_node(config: NodeConfig, deps: NodeDependencies) -> AgentNode:
    if isinstance(config, RouterNodeConfig):
        return RouterAgent(deps.router, agent_id=config.id, events=deps.events)
    if isinstance(config, ConversationalNodeConfig):
        return ConversationalAgent(
            deps.llm, agent_id=config.id,
            context_limit=config.context_limit, events=deps.events,
        )
    if isinstance(config, RetrieverNodeConfig):
        return DataRetrievalAgent(
            deps.directory, deps.router, agent_id=config.id,
            top_k=config.top_k, events=deps.events,
        )
    if isinstance(config, InsightSynthesisNodeConfig):
        return InsightSynthesisAgent(
            deps.llm, agent_id=config.id, max_insights=config.max_insights,
            context_limit=config.context_limit, events=deps.events,
        )
    if isinstance(config, AnalyzerNodeConfig):
        return AnalyzerAgent(
            deps.llm, agent_id=config.id, visualizer=config.visualizer,
            summarizer=config.summarizer, context_limit=config.context_limit,
            events=deps.events,
        )
    if isinstance(config, VisualizerNodeConfig):
        return VisualizerAgent(
            deps.llm, agent_id=config.id, successor=config.successor,
            max_points=config.max_points, events=deps.events,
        )
    if isinstance(config, SummarizerNodeConfig):
        return SummarizerAgent(
            deps.llm, agent_id=config.id,
            context_limit=config.context_limit, events=deps.events,
        )
    if isinstance(config, SearchNodeConfig):
        return WebSearchAgent(
            deps.llm, deps.web_search, agent_id=config.id, successor=config.successor,
            max_results=config.max_results, events=deps.events,
        )
    assert_never(config)


# ─── Registry ─────────────────────────────────────────────────────────────────

class AgentRegistry:
    """Agent id → node. Ids are unique and may not collide with engine steps."""

    def __init__(self, nodes: Iterable[AgentNode] = ()) -> None:
        self._nodes: dict[str, AgentNode] = {}
        for node in nodes:
            self.register(node)

    def register(self, node: AgentNode) -> None:
        if node.agent_id in RESERVED_IDS:
            raise ValueError(f"Agent id {node.agent_id!r} is reserved")
        if node.agent_id in self._nodes:
            raise ValueError(f"Duplicate agent id {node.agent_id!r}")
        self._nodes[node.agent_id] = node
        logger.debug("AgentRegistry: registered %r", node)

    def resolve(self, agent_id: str) -> AgentNode:
        try:
            return self._nodes[agent_id]
        except KeyError:
            raise UnknownAgentError(agent_id) from None

    def ids(self) -> list[str]:
        return list(self._nodes)

    def items(self):
        return self._nodes.items()

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._nodes

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)


def build_registry(configs: Sequence[NodeConfig], deps: NodeDependencies) -> AgentRegistry:
    registry = AgentRegistry(build_node(c, deps) for c in configs)
    missing = deps.router.agent_ids() - set(registry.ids())
    if missing:
        logger.warning("Router can target unregistered agents: %s", sorted(missing))
    logger.info("AgentRegistry built — agents=%s", registry.ids())
    return registry
