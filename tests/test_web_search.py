"""Tests for the Tavily web search client — the requests session is always a MagicMock."""

import time
from unittest.mock import MagicMock

import pytest
import requests

from insight_copilot.agent.errors import SearchError
from insight_copilot.search import web_search
from insight_copilot.search.web_search import TavilyWebSearch, build_web_search


def _session(payload=None, status_error: Exception | None = None) -> MagicMock:
    response = MagicMock()
    response.json.return_value = payload
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    session = MagicMock()
    session.post.return_value = response
    return session


class TestTavilyWebSearch:
    async def test_returns_result_dicts(self):
        session = _session({"results": [{"title": "A", "url": "u", "content": "c"}, "junk"]})
        search = TavilyWebSearch(api_key="tvly-test", endpoint="https://search.test", session=session)
        results = await search.search("retail growth", max_results=3)

        assert results == [{"title": "A", "url": "u", "content": "c"}]
        args, kwargs = session.post.call_args
        assert args == ("https://search.test",)
        assert kwargs["json"]["query"] == "retail growth"
        assert kwargs["json"]["max_results"] == 3
        assert kwargs["json"]["api_key"] == "tvly-test"

    async def test_http_error_is_search_error(self):
        session = _session(status_error=requests.HTTPError("502 Bad Gateway"))
        with pytest.raises(SearchError, match="502"):
            await TavilyWebSearch(api_key="k", session=session).search("q")

    async def test_connection_error_is_search_error(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("no route to host")
        with pytest.raises(SearchError, match="no route to host"):
            await TavilyWebSearch(api_key="k", session=session).search("q")

    @pytest.mark.parametrize("payload", [{"answer": "no results key"}, ["not", "a", "dict"]])
    async def test_unexpected_body_is_search_error(self, payload):
        with pytest.raises(SearchError, match="Unexpected Tavily response"):
            await TavilyWebSearch(api_key="k", session=_session(payload)).search("q")

    async def test_stalled_request_times_out(self):
        session = MagicMock()
        session.post.side_effect = lambda *a, **kw: time.sleep(0.5)
        search = TavilyWebSearch(api_key="k", timeout_s=0.05, session=session)
        t0 = time.perf_counter()
        with pytest.raises(SearchError, match="timed out"):
            await search.search("q")
        assert time.perf_counter() - t0 < 0.4


class TestBuildWebSearch:
    def test_disabled_without_api_key(self, monkeypatch):
        monkeypatch.setattr(web_search, "TAVILY_API_KEY", "")
        assert build_web_search() is None

    def test_tavily_with_api_key(self, monkeypatch):
        monkeypatch.setattr(web_search, "TAVILY_API_KEY", "tvly-test")
        assert isinstance(build_web_search(), TavilyWebSearch)
