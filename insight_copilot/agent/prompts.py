"""
prompts.py — Prompt templates and context builders for LLM-backed nodes.
"""

from collections.abc import Sequence

from insight_copilot.agent.state import DatasetRef
from insight_copilot.config import DATASET_CONTEXT_LIMIT


def dataset_context(datasets: Sequence[DatasetRef], limit: int = DATASET_CONTEXT_LIMIT) -> str:
    """
    One-line summary of connected data sources.

    Only the first `limit` dataset names are listed; the count always
    reflects every connected dataset.
    """
    if not datasets:
        return "No data sources currently connected."
    names = ", ".join(d.name for d in datasets[:limit])
    return f"Connected Data Sources: {len(datasets)} datasets available including: {names}"


CONVERSATIONAL_PROMPT = """\
You are an AI-powered analytics copilot assistant. You help users understand and analyze \
their business data through natural conversation.

Your capabilities:
- Connect to Google Drive, OneDrive, Notion, and other data sources
- Analyze structured data (CSV, Excel) and unstructured data (PDFs, documents)
- Generate insights, visualizations, and summaries automatically
- Answer questions about data in natural language
- Detect trends, anomalies, and patterns

Current context:
{data_context}

User Query: "{query}"

Provide a helpful, friendly response. If the user is asking about capabilities, explain what \
you can do. If they need to connect data first, guide them. Be conversational and encouraging.

Keep your response concise (2-3 sentences) unless more detail is needed."""


INSIGHT_PROMPT = """\
You are an expert data analyst. Answer the user's question using the datasets in scope and \
produce up to {max_insights} key insights.

User Query: "{query}"
Intent: {intent}

{data_context}
{dataset_details}

Return ONLY a valid JSON object with this exact structure:
{{
  "summary": "Direct answer to the question (2-3 sentences)",
  "insights": [
    {{"type": "trend", "title": "Brief title (max 50 chars)", "content": "2-3 sentences", "confidence": 0.85}}
  ]
}}

Rules:
- "type" is one of: trend, anomaly, correlation, summary, recommendation
- Confidence should be between 0.7 and 0.99
- Never invent statistics that are not present in the context
- Return ONLY the JSON object, no markdown or explanation."""


def dataset_details(datasets: Sequence[DatasetRef], limit: int = DATASET_CONTEXT_LIMIT) -> str:
    lines = []
    for d in datasets[:limit]:
        lines.append(f"- {d.name} ({d.source_type}): {d.summary or 'No summary available'}")
    return "\n".join(lines)


ANALYSIS_PROMPT = """\
You are a data analysis expert. Plan how to answer the user's question with the datasets in scope.

User Query: "{query}"
Intent: {intent}

{data_context}
{dataset_details}
{search_context}
Tasks:
1. Identify which datasets are most relevant
2. Determine what analysis is needed
3. Identify required columns/fields
4. Suggest the approach (aggregation, filtering, grouping, etc.)
5. Describe expected output format

Provide a clear, structured analysis plan."""


VISUALIZATION_PROMPT = """\
You are a data visualization expert. Based on the user's query and dataset, generate a \
chart configuration.

User Query: "{query}"

Dataset: {dataset_name} ({source_type})
Summary: {dataset_summary}

Analysis Plan:
{analysis_plan}

Return ONLY a valid JSON object with this structure:
{{
  "type": "bar" | "line" | "pie" | "scatter",
  "title": "Chart Title",
  "xAxis": "column for the x axis",
  "yAxis": "column for the y axis",
  "data": [{{"name": "category", "value": 123}}],
  "description": "What this visualization shows"
}}

Rules:
- Scatter charts use {{"x": number, "y": number, "name": "optional label"}} points
- Line charts for time series, bar charts for categories, pie charts for proportions
- At most {max_points} data points
- Never invent data that is not present in the context
- Return ONLY the JSON object, no markdown or explanation."""


SUMMARY_PROMPT = """\
You are an AI data analyst providing insights to a user. Based on the analysis performed, generate:

1. A clear, concise summary (2-3 sentences)
2. Key insights (2-4 bullet points)
3. Notable trends or patterns
4. Actionable recommendations (if applicable)

Context:
{context}

Generate a helpful, professional response that directly answers the user's query.
Be specific with numbers and findings when available.
If analysis is limited, explain what was found and suggest next steps."""


SEARCH_QUERY_PROMPT = """\
Given this user query: "{query}"
And this dataset context: {dataset}

Write ONE concise web search query that would find relevant external data, industry \
benchmarks or market trends to help answer the user's question.

Return only the search query, no explanation."""


SEARCH_SYNTHESIS_PROMPT = """\
You are analyzing web search results to provide context for a data analysis query.

User Query: "{query}"

Search Results:
{results}

Synthesize the results into a concise summary (3-5 short paragraphs max) that highlights \
key findings, trends or benchmarks relevant to the query, cites specific numbers when \
available, and notes the sources."""
