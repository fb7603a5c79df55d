"""Tests for the Tavily search client."""

import json

import httpx
import pytest

from aria.config import Settings
from aria.rag.search import SearchClient, results_to_dicts

TAVILY_URL = "https://api.tavily.com/search"


def _settings(**overrides):
    values = {"tavily_api_key": "tvly-test", "request_timeout": 5.0}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _client(handler, **overrides):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return SearchClient(settings=_settings(**overrides), client=http)


def _hits(n):
    return [
        {"title": f"Title {i}", "url": f"https://e.com/{i}", "content": f"Body {i}", "score": 1 - i / 10}
        for i in range(n)
    ]


class TestSearchClient:

    def test_request_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"results": _hits(1)})

        _client(handler).search("capital of France", max_results=3)
        assert seen["url"] == TAVILY_URL
        body = seen["body"]
        assert body["api_key"] == "tvly-test"
        assert body["query"] == "capital of France"
        assert body["max_results"] == 3
        assert body["search_depth"] == "basic"
        assert body["include_answer"] is True
        assert body["include_raw_content"] is False
        assert body["include_domains"] == []
        assert body["exclude_domains"] == []

    def test_results_in_rank_order(self):
        handler = lambda request: httpx.Response(200, json={"results": _hits(3)})
        results = _client(handler).search("q")
        assert [r.title for r in results] == ["Title 0", "Title 1", "Title 2"]
        assert results[0].url == "https://e.com/0"
        assert results[0].relevance_score == pytest.approx(1.0)

    def test_extra_results_dropped(self):
        handler = lambda request: httpx.Response(200, json={"results": _hits(8)})
        assert len(_client(handler).search("q", max_results=5)) == 5

    def test_missing_fields_default(self):
        handler = lambda request: httpx.Response(200, json={"results": [{"url": "https://x"}]})
        results = _client(handler).search("q")
        assert results[0].title == ""
        assert results[0].content == ""

    @pytest.mark.parametrize("status", [401, 429, 500])
    def test_http_error_returns_empty(self, status):
        handler = lambda request: httpx.Response(status, json={"error": "nope"})
        assert _client(handler).search("q") == []

    def test_transport_error_returns_empty(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)
        assert _client(handler).search("q") == []

    def test_timeout_returns_empty(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)
        assert _client(handler).search("q") == []

    def test_non_json_body_returns_empty(self):
        handler = lambda request: httpx.Response(200, text="<html>oops</html>")
        assert _client(handler).search("q") == []

    def test_malformed_results_return_empty(self):
        handler = lambda request: httpx.Response(200, json={"results": "not a list"})
        assert _client(handler).search("q") == []

    def test_no_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        _client(handler).search("q")
        assert len(calls) == 1

    def test_blank_query_makes_no_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"results": _hits(1)})

        assert _client(handler).search("   ") == []
        assert calls == []

    def test_missing_key_makes_no_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"results": _hits(1)})

        assert _client(handler, tavily_api_key="").search("q") == []
        assert calls == []

    def test_context_manager_closes(self):
        handler = lambda request: httpx.Response(200, json={"results": []})
        with _client(handler) as client:
            assert client.search("q") == []
        assert client.client.is_closed


def test_results_to_dicts():
    handler = lambda request: httpx.Response(200, json={"results": _hits(2)})
    dicts = results_to_dicts(_client(handler).search("q"))
    assert dicts[0]["title"] == "Title 0"
    assert set(dicts[0]) == {"title", "url", "content", "score"}
