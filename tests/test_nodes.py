"""Tests for the agent nodes and the run()/fallback() contract."""

import json
from collections.abc import Mapping
from typing import Any

import pytest

from insight_copilot.agent.directives import TERMINATE, Continue
from insight_copilot.agent.errors import DataSourceError, LLMCallError, SearchError
from insight_copilot.agent.nodes.analyzer import AnalyzerAgent
from insight_copilot.agent.nodes.base import AgentNode
from insight_copilot.agent.nodes.conversational import FALLBACK_SUMMARY, ConversationalAgent
from insight_copilot.agent.nodes.insights import InsightSynthesisAgent, parse_insights
from insight_copilot.agent.nodes.retriever import (
    NO_DATASETS_SUMMARY,
    UNAVAILABLE_SUMMARY,
    DataRetrievalAgent,
)
from insight_copilot.agent.nodes.search import WebSearchAgent
from insight_copilot.agent.nodes.summarizer import SummarizerAgent, extract_insights
from insight_copilot.agent.nodes.visualizer import DEFAULT_VISUALIZATION, VisualizerAgent, parse_visualization
from insight_copilot.agent.router import (
    ANALYZER_AGENT,
    INSIGHT_AGENT,
    SUMMARIZER_AGENT,
    VISUALIZER_AGENT,
    Router,
)
from insight_copilot.agent.state import (
    ChartType,
    InsightType,
    Intent,
    SearchResults,
    SessionContext,
    Visualization,
    initial_state,
    snapshot,
)
from insight_copilot.datasets.directory import StaticDatasetDirectory

from conftest import FakeLLM, FakeWebSearch


def _view(query: str, datasets=()):
    return snapshot(initial_state(query, SessionContext(datasets=list(datasets))))


# ── AgentNode.execute ───────────────────────────────────────────


class _NoFallbackNode(AgentNode):
    async def run(self, state: Mapping[str, Any]) -> dict[str, Any]:
        raise LLMCallError("boom")


class _FallbackNode(_NoFallbackNode):
    def fallback(self, state, error):
        return {"summary": f"fallback: {error}", "next_agent": TERMINATE}


class TestAgentNodeExecute:
    async def test_external_error_without_fallback_propagates(self):
        with pytest.raises(LLMCallError):
            await _NoFallbackNode("n").execute(_view("q"))

    async def test_fallback_substituted_and_reported(self, events):
        update = await _FallbackNode("n", events=events).execute(_view("q"))
        assert update == {"summary": "fallback: boom", "next_agent": TERMINATE}
        assert events.names() == ["node.fallback"]
        assert events.events[0][1]["error_type"] == "LLMCallError"


# ── Conversational ──────────────────────────────────────────────


class TestConversationalAgent:
    async def test_success_returns_terminal_update(self, fake_llm):
        update = await ConversationalAgent(fake_llm).execute(_view("What can you do?"))
        assert update["summary"] == fake_llm.responses[0]
        assert len(update["insights"]) == 1
        assert update["insights"][0].title == "AI Assistant"
        assert update["insights"][0].confidence == 1.0
        assert [m.role for m in update["messages"]] == ["assistant"]
        assert update["next_agent"] is TERMINATE

    async def test_prompt_lists_first_three_datasets(self, fake_llm, datasets):
        await ConversationalAgent(fake_llm).execute(_view("hello", datasets))
        prompt = fake_llm.prompts[0]
        assert "5 datasets available including: Sales 2024, Customer Churn, Marketing Spend" in prompt
        assert "Support Tickets" not in prompt
        assert "Inventory Levels" not in prompt

    async def test_prompt_without_datasets(self, fake_llm):
        await ConversationalAgent(fake_llm).execute(_view("hello"))
        assert "No data sources currently connected." in fake_llm.prompts[0]

    async def test_llm_failure_uses_fixed_fallback(self):
        llm = FakeLLM(error=LLMCallError("LLM call timed out after 30.0s"))
        update = await ConversationalAgent(llm).execute(_view("What can you do?"))
        assert update["summary"] == FALLBACK_SUMMARY
        assert update["insights"] == []
        assert update["messages"][0].content == FALLBACK_SUMMARY
        assert update["next_agent"] is TERMINATE

    async def test_empty_completion_counts_as_failure(self):
        update = await ConversationalAgent(FakeLLM(responses=["   "])).execute(_view("hi"))
        assert update["summary"] == FALLBACK_SUMMARY

    async def test_unexpected_error_is_not_swallowed(self):
        with pytest.raises(RuntimeError):
            await ConversationalAgent(FakeLLM(error=RuntimeError("bug"))).execute(_view("hi"))


# ── Data retrieval ──────────────────────────────────────────────


class TestDataRetrievalAgent:
    async def test_no_datasets_terminates_with_guidance(self):
        node = DataRetrievalAgent(StaticDatasetDirectory(), Router())
        update = await node.execute(_view("How many orders last week?"))
        assert update["relevant_datasets"] == []
        assert update["summary"] == NO_DATASETS_SUMMARY
        assert update["next_agent"] is TERMINATE

    async def test_hands_off_chart_request_to_analyzer(self, datasets):
        node = DataRetrievalAgent(StaticDatasetDirectory(datasets), Router())
        update = await node.execute(_view("Show me sales trends"))
        assert update["next_agent"] == Continue(ANALYZER_AGENT)
        assert update["relevant_datasets"][0].name == "Sales 2024"
        assert "summary" not in update

    async def test_hands_off_analysis_to_insight_agent(self, datasets):
        node = DataRetrievalAgent(StaticDatasetDirectory(datasets), Router())
        update = await node.execute(_view("Analyze sales trends"))
        assert update["next_agent"] == Continue(INSIGHT_AGENT)
        assert update["relevant_datasets"][0].name == "Sales 2024"
        assert "summary" not in update

    async def test_lookup_terminates_with_listing(self, datasets):
        node = DataRetrievalAgent(StaticDatasetDirectory(datasets), Router(), top_k=2)
        update = await node.execute(_view("Which sales data do I have?"))
        assert update["next_agent"] is TERMINATE
        assert update["summary"].startswith("Found 2 relevant datasets: Sales 2024")
        assert len(update["relevant_datasets"]) == 2

    async def test_falls_back_to_session_datasets(self, datasets):
        node = DataRetrievalAgent(StaticDatasetDirectory(), Router())
        update = await node.execute(_view("List churn data", datasets))
        assert update["relevant_datasets"][0].name == "Customer Churn"

    async def test_data_source_failure_uses_fallback(self, failing_directory):
        node = DataRetrievalAgent(failing_directory, Router())
        update = await node.execute(_view("Show me sales trends"))
        assert update["summary"] == UNAVAILABLE_SUMMARY
        assert update["next_agent"] is TERMINATE
        assert failing_directory.calls == 1


# ── Insight synthesis ───────────────────────────────────────────


_GOOD_JSON = json.dumps({
    "summary": "Sales grew 12% in Q3.",
    "insights": [
        {"type": "trend", "title": "Q3 growth", "content": "Up 12%.", "confidence": 0.92},
        {"type": "anomaly", "title": "West dip", "content": "West fell.", "confidence": 0.5},
        {"type": "forecast", "title": "Odd type", "content": "?", "confidence": 1.4},
    ],
})


class TestParseInsights:
    def test_normalises_records(self):
        summary, insights = parse_insights(_GOOD_JSON)
        assert summary == "Sales grew 12% in Q3."
        assert [i.type for i in insights] == [InsightType.TREND, InsightType.ANOMALY, InsightType.SUMMARY]
        assert [i.confidence for i in insights] == [0.92, 0.7, 0.99]

    def test_strips_markdown_fences(self):
        summary, insights = parse_insights(f"```json\n{_GOOD_JSON}\n```")
        assert summary == "Sales grew 12% in Q3."
        assert len(insights) == 3

    def test_caps_count(self):
        _, insights = parse_insights(_GOOD_JSON, max_insights=2)
        assert len(insights) == 2

    def test_bare_array_accepted(self):
        summary, insights = parse_insights('[{"type": "summary", "title": "t", "content": "c"}]')
        assert summary is None
        assert insights[0].confidence == 0.85

    def test_invalid_json_raises_value_error(self):
        with pytest.raises(ValueError):
            parse_insights("Sales look healthy overall.")


class TestInsightSynthesisAgent:
    async def test_success(self, datasets):
        llm = FakeLLM(responses=[_GOOD_JSON])
        update = await InsightSynthesisAgent(llm).execute(_view("Show me sales trends", datasets))
        assert update["summary"] == "Sales grew 12% in Q3."
        assert len(update["insights"]) == 3
        assert update["messages"][0].content == "Sales grew 12% in Q3."
        assert update["next_agent"] is TERMINATE

    async def test_prompt_truncates_dataset_names(self, datasets):
        llm = FakeLLM(responses=[_GOOD_JSON])
        await InsightSynthesisAgent(llm).execute(_view("Show me sales trends", datasets))
        prompt = llm.prompts[0]
        assert "5 datasets available including: Sales 2024, Customer Churn, Marketing Spend" in prompt
        assert "Inventory Levels" not in prompt

    async def test_unparseable_output_keeps_text(self, datasets):
        llm = FakeLLM(responses=["Sales look healthy overall."])
        update = await InsightSynthesisAgent(llm).execute(_view("Analyze sales", datasets))
        assert update["summary"] == "Sales look healthy overall."
        assert update["insights"][0].title == "Dataset Overview"
        assert update["next_agent"] is TERMINATE

    async def test_llm_failure_fallback(self, datasets):
        llm = FakeLLM(error=LLMCallError("throttled"))
        update = await InsightSynthesisAgent(llm).execute(_view("Analyze sales", datasets[:2]))
        assert "Sales 2024" in update["summary"]
        assert "Customer Churn" in update["summary"]
        assert len(update["insights"]) == 1
        assert update["next_agent"] is TERMINATE


# ── Analyzer / visualizer / summarizer / search ─────────────────


def _classified(query: str, intent: Intent, datasets=(), **fields):
    state = initial_state(query, SessionContext(datasets=list(datasets)))
    return snapshot({**state, "classification": intent, **fields})


class TestAnalyzerAgent:
    async def test_chart_request_continues_to_visualizer(self, datasets):
        llm = FakeLLM(responses=["Plan: total sales per month."])
        update = await AnalyzerAgent(llm).execute(
            _classified("Plot sales", Intent.VISUALIZATION, datasets),
        )
        assert update["analysis_plan"] == "Plan: total sales per month."
        assert update["next_agent"] == Continue(VISUALIZER_AGENT)
        assert update["metadata"]["selected_datasets"] == ["ds-1", "ds-2", "ds-3", "ds-4", "ds-5"]

    async def test_other_intents_continue_to_summarizer(self, datasets):
        update = await AnalyzerAgent(FakeLLM()).execute(
            _classified("Give me a summary of sales by region", Intent.SUMMARY, datasets),
        )
        assert update["next_agent"] == Continue(SUMMARIZER_AGENT)

    async def test_prompt_carries_web_research(self, datasets):
        llm = FakeLLM()
        research = SearchResults(query="retail growth", summary="Industry grew 4%.")
        await AnalyzerAgent(llm).execute(
            _classified("How do we compare?", Intent.QUERY, datasets, search_results=research),
        )
        assert "Industry grew 4%." in llm.prompts[0]
        assert "Inventory Levels" not in llm.prompts[0]

    async def test_no_datasets_terminates(self):
        llm = FakeLLM()
        update = await AnalyzerAgent(llm).execute(_classified("Plot sales", Intent.VISUALIZATION))
        assert update["summary"] == NO_DATASETS_SUMMARY
        assert update["next_agent"] is TERMINATE
        assert llm.prompts == []

    async def test_llm_failure_still_hands_on(self, datasets):
        llm = FakeLLM(error=LLMCallError("throttled"))
        update = await AnalyzerAgent(llm).execute(
            _classified("Plot sales", Intent.VISUALIZATION, datasets),
        )
        assert update["next_agent"] == Continue(VISUALIZER_AGENT)
        assert update["metadata"]["analysis_error"] == "throttled"
        assert "analysis_plan" not in update

    async def test_without_visualizer_charts_go_to_summarizer(self, datasets):
        update = await AnalyzerAgent(FakeLLM(), visualizer=None).execute(
            _classified("Plot sales", Intent.VISUALIZATION, datasets),
        )
        assert update["next_agent"] == Continue(SUMMARIZER_AGENT)


class TestParseVisualization:
    def test_camel_case_axes_and_fences(self):
        raw = '```json\n{"type": "bar", "title": "T", "xAxis": "month", "yAxis": "sales", "data": [{"a": 1},]}\n```'
        chart = parse_visualization(raw)
        assert chart.type is ChartType.BAR
        assert (chart.x_axis, chart.y_axis) == ("month", "sales")
        assert chart.data == [{"a": 1}]

    def test_caps_data_points(self):
        raw = json.dumps({"type": "line", "title": "T", "data": [{"i": i} for i in range(30)]})
        assert len(parse_visualization(raw, max_points=20).data) == 20

    @pytest.mark.parametrize("raw", [
        "Here is a bar chart of sales.",
        '["bar"]',
        '{"type": "radar", "title": "T"}',
        '{"type": "bar"}',
    ])
    def test_unusable_output_raises_value_error(self, raw):
        with pytest.raises(ValueError):
            parse_visualization(raw)


class TestVisualizerAgent:
    async def test_builds_chart_from_first_dataset(self, datasets):
        llm = FakeLLM(responses=[json.dumps({"type": "pie", "title": "Share", "data": [{"name": "West", "value": 3}]})])
        update = await VisualizerAgent(llm).execute(
            _classified("Plot sales", Intent.VISUALIZATION, datasets, analysis_plan="Split by region."),
        )
        assert update["visualization"].type is ChartType.PIE
        assert update["next_agent"] == Continue(SUMMARIZER_AGENT)
        assert "Sales 2024" in llm.prompts[0]
        assert "Customer Churn" not in llm.prompts[0]
        assert "Split by region." in llm.prompts[0]

    async def test_unparseable_chart_uses_default(self, datasets):
        update = await VisualizerAgent(FakeLLM(responses=["a nice chart"])).execute(
            _classified("Plot sales", Intent.VISUALIZATION, datasets),
        )
        assert update["visualization"] == DEFAULT_VISUALIZATION
        assert update["visualization"].title == "Data Overview"

    async def test_llm_failure_uses_default(self, datasets):
        update = await VisualizerAgent(FakeLLM(error=LLMCallError("timed out"))).execute(
            _classified("Plot sales", Intent.VISUALIZATION, datasets),
        )
        assert update["visualization"] == DEFAULT_VISUALIZATION
        assert update["metadata"]["visualization_error"] == "timed out"
        assert update["next_agent"] == Continue(SUMMARIZER_AGENT)

    async def test_no_datasets_skips_chart(self):
        llm = FakeLLM()
        update = await VisualizerAgent(llm).execute(_classified("Plot sales", Intent.VISUALIZATION))
        assert "visualization" not in update
        assert update["next_agent"] == Continue(SUMMARIZER_AGENT)
        assert llm.prompts == []


class TestExtractInsights:
    def test_growth_and_decline(self):
        insights = extract_insights("Revenue increased in Q3.\nChurn declined slightly.")
        assert [i.title for i in insights] == ["Growth Detected", "Decline Observed", "Analysis Complete"]
        assert insights[-1].content == "Revenue increased in Q3."

    def test_whole_words_only(self):
        insights = extract_insights("Overgrown backlog; no dropdown changes.")
        assert [i.title for i in insights] == ["Analysis Complete"]


class TestSummarizerAgent:
    async def test_prompt_gathers_run_context(self, datasets):
        llm = FakeLLM(responses=["Sales grew 12%."])
        chart = Visualization(type=ChartType.LINE, title="Monthly sales", data=[{"m": 1}, {"m": 2}])
        research = SearchResults(query="q", summary="Industry grew 4%.")
        update = await SummarizerAgent(llm).execute(_classified(
            "Plot sales", Intent.VISUALIZATION, datasets,
            analysis_plan="Sum per month.", visualization=chart, search_results=research,
        ))
        prompt = llm.prompts[0]
        for expected in ("Sum per month.", "Monthly sales", "Data points: 2", "Industry grew 4%.", "Sales 2024"):
            assert expected in prompt
        assert "Inventory Levels" not in prompt
        assert update["summary"] == "Sales grew 12%."
        assert update["messages"][0].content == "Sales grew 12%."
        assert update["next_agent"] is TERMINATE

    async def test_empty_completion_falls_back(self, datasets):
        update = await SummarizerAgent(FakeLLM(responses=["   "])).execute(
            _classified("Summarize churn", Intent.SUMMARY, datasets),
        )
        assert update["summary"].startswith("Unable to generate a summary")
        assert len(update["insights"]) == 1
        assert update["next_agent"] is TERMINATE

    async def test_llm_failure_without_datasets(self):
        update = await SummarizerAgent(FakeLLM(error=LLMCallError("down"))).execute(
            _classified("Summarize churn", Intent.SUMMARY),
        )
        assert update["insights"] == []
        assert update["next_agent"] is TERMINATE


class TestWebSearchAgent:
    async def test_refines_query_then_synthesizes(self, datasets):
        web = FakeWebSearch()
        llm = FakeLLM(responses=['"retail sales benchmark 2024"\nextra line', "Industry grew 4%."])
        update = await WebSearchAgent(llm, web).execute(
            _classified("How do our sales stack up against the industry?", Intent.QUERY, datasets),
        )
        assert web.queries == ["retail sales benchmark 2024"]
        assert update["search_results"].summary == "Industry grew 4%."
        assert update["search_results"].query == "retail sales benchmark 2024"
        assert update["metadata"] == {"search_performed": True, "search_result_count": 1}
        assert update["next_agent"] == Continue(ANALYZER_AGENT)

    async def test_without_datasets_searches_raw_question(self):
        web = FakeWebSearch()
        llm = FakeLLM(responses=["Markets are growing."])
        await WebSearchAgent(llm, web).execute(_classified("Global market trends", Intent.ANALYSIS))
        assert web.queries == ["Global market trends"]
        assert len(llm.prompts) == 1

    async def test_no_hits_skips_synthesis(self, datasets):
        llm = FakeLLM(responses=["refined query"])
        update = await WebSearchAgent(llm, FakeWebSearch(results=[])).execute(
            _classified("Industry benchmarks", Intent.QUERY, datasets),
        )
        assert "search_results" not in update
        assert update["metadata"]["search_result_count"] == 0
        assert len(llm.prompts) == 1

    async def test_no_backend_passes_through(self, datasets):
        llm = FakeLLM()
        update = await WebSearchAgent(llm, None).execute(
            _classified("Industry benchmarks", Intent.QUERY, datasets),
        )
        assert update["next_agent"] == Continue(ANALYZER_AGENT)
        assert "search_skipped" in update["metadata"]
        assert llm.prompts == []

    async def test_search_failure_uses_fallback(self, datasets, events):
        web = FakeWebSearch(error=SearchError("HTTP 502"))
        update = await WebSearchAgent(FakeLLM(), web, events=events).execute(
            _classified("Industry benchmarks", Intent.QUERY, datasets),
        )
        assert update == {"metadata": {"search_error": "HTTP 502"}, "next_agent": Continue(ANALYZER_AGENT)}
        assert events.names() == ["node.fallback"]
