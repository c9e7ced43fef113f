"""Shared fixtures: fake LLM / directory doubles and an engine factory.

No test talks to Bedrock, Qdrant or Tavily: the LLM capability is replaced
by FakeLLM, web search by FakeWebSearch, the dataset directory by the
static in-memory one (or a failing double), and Qdrant/Titan by MagicMocks
where a Qdrant-backed class is under test.
"""

from typing import Any

import pytest

from insight_copilot.agent.controller import Orchestrator
from insight_copilot.agent.errors import DataSourceError
from insight_copilot.agent.registry import (
    AgentRegistry,
    NodeDependencies,
    build_registry,
    default_node_configs,
)
from insight_copilot.agent.router import Router
from insight_copilot.agent.state import DatasetRef
from insight_copilot.datasets.directory import StaticDatasetDirectory
from insight_copilot.llm import LLMResponse


class FakeLLM:
    """LLM capability double: canned replies in order (last one repeats) or a fixed error."""

    def __init__(self, responses: list[str] | None = None, error: Exception | None = None) -> None:
        self.responses = list(responses or ["Hi! I can analyze your data and surface insights."])
        self.error = error
        self.prompts: list[str] = []

    async def invoke(self, prompt: str) -> LLMResponse:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        index = min(len(self.prompts), len(self.responses)) - 1
        return LLMResponse(content=self.responses[index])


class FailingDirectory:
    def __init__(self) -> None:
        self.calls = 0

    async def find(self, query: str, limit: int = 5) -> list[DatasetRef]:
        self.calls += 1
        raise DataSourceError("catalog unreachable")


class FakeWebSearch:
    """Web search double: fixed hits or a fixed error; records queries."""

    def __init__(self, results: list[dict[str, Any]] | None = None, error: Exception | None = None) -> None:
        self.results = results if results is not None else [
            {"title": "Retail benchmarks 2024", "url": "https://example.com/retail", "content": "Average growth 4%"},
        ]
        self.error = error
        self.queries: list[str] = []

    async def search(self, query: str, max_results: int = 5) -> list[dict[str, Any]]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.results[:max_results]


class RecordingEventSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def failing_directory():
    return FailingDirectory()


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def datasets() -> list[DatasetRef]:
    return [
        DatasetRef(id="ds-1", name="Sales 2024", source_type="csv", summary="Monthly sales by region"),
        DatasetRef(id="ds-2", name="Customer Churn", source_type="excel", summary="Churned customers per quarter"),
        DatasetRef(id="ds-3", name="Marketing Spend", source_type="csv"),
        DatasetRef(id="ds-4", name="Support Tickets", source_type="notion"),
        DatasetRef(id="ds-5", name="Inventory Levels", source_type="gdrive"),
    ]


@pytest.fixture
def make_engine(fake_llm, events):
    """Factory for an Orchestrator over the default node set (or a custom registry)."""

    def _make(
        llm=None,
        directory=None,
        max_hops: int = 8,
        entry_agent: str | None = None,
        registry: AgentRegistry | None = None,
        router: Router | None = None,
        web_search=None,
    ) -> Orchestrator:
        router = router or Router()
        if registry is None:
            deps = NodeDependencies(
                llm=llm or fake_llm,
                directory=directory if directory is not None else StaticDatasetDirectory(),
                router=router,
                events=events,
                web_search=web_search,
            )
            registry = build_registry(default_node_configs(), deps)
        return Orchestrator(
            registry, router, max_hops=max_hops, events=events, entry_agent=entry_agent,
        )

    return _make
