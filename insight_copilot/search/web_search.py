"""
web_search.py — External web search capability (Tavily REST API).

    search = TavilyWebSearch(api_key="tvly-...")
    results = await search.search("retail sales growth benchmarks 2024")
    # [{"title": ..., "url": ..., "content": ...}, ...]

requests is synchronous, so each call runs in a worker thread bounded by
`timeout_s`. Every failure (HTTP error, timeout, unexpected body) surfaces
as SearchError.
"""

import asyncio
import logging
import time
from typing import Any, Protocol

import requests

from insight_copilot.agent.errors import SearchError
from insight_copilot.config import (
    SEARCH_MAX_RESULTS,
    SEARCH_TIMEOUT_S,
    TAVILY_API_KEY,
    TAVILY_ENDPOINT,
)

logger = logging.getLogger(__name__)


class WebSearch(Protocol):
    async def search(self, query: str, max_results: int = SEARCH_MAX_RESULTS) -> list[dict[str, Any]]: ...


class TavilyWebSearch:
    def __init__(
        self,
        api_key: str = TAVILY_API_KEY,
        endpoint: str = TAVILY_ENDPOINT,
        timeout_s: float = SEARCH_TIMEOUT_S,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout_s = timeout_s
        self._session = session or requests.Session()

    def _post(self, query: str, max_results: int) -> list[dict[str, Any]]:
        response = self._session.post(
            self.endpoint,
            json={
                "api_key": self.api_key,
                "query": query,
                "max_results": max_results,
                "search_depth": "basic",
            },
            timeout=self.timeout_s,
        )
        response.raise_for_status()
        data = response.json()
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise ValueError(f"Unexpected Tavily response: {str(data)[:200]}")
        return [item for item in results if isinstance(item, dict)]

    async def search(self, query: str, max_results: int = SEARCH_MAX_RESULTS) -> list[dict[str, Any]]:
        t0 = time.perf_counter()
        try:
            results = await asyncio.wait_for(
                asyncio.to_thread(self._post, query, max_results), timeout=self.timeout_s
            )
        except asyncio.TimeoutError as exc:
            raise SearchError(f"Web search timed out after {self.timeout_s:.1f}s") from exc
        except requests.RequestException as exc:
            raise SearchError(f"Tavily request failed: {exc}") from exc
        except ValueError as exc:
            raise SearchError(str(exc)) from exc

        logger.info(
            "TavilyWebSearch: %d results for query=%r, elapsed=%.3fs",
            len(results), query[:80], time.perf_counter() - t0,
        )
        return results


def build_web_search() -> WebSearch | None:
    """Tavily search when TAVILY_API_KEY is set, else None (search node skips)."""
    if not TAVILY_API_KEY:
        logger.info("TAVILY_API_KEY not set — web search disabled")
        return None
    return TavilyWebSearch(api_key=TAVILY_API_KEY)
