"""Tests for the command-line interface."""

import json

from click.testing import CliRunner

from aria.cli import main
from aria.config import get_settings
from aria.models import SearchResult
from aria.rag.compute import GenerationError
from aria.rag.context import NO_INFO_SENTINEL
from aria.rag.pipeline import PipelineError, QueryPipeline
from aria.rag.search import SearchClient


def _fresh_settings(monkeypatch):
    monkeypatch.delenv("TAVILY_API_KEY", raising=False)
    if hasattr(get_settings, "_instance"):
        delattr(get_settings, "_instance")


def test_voices_lists_profiles():
    result = CliRunner().invoke(main, ["voices"])
    assert result.exit_code == 0
    assert "Antoni" in result.output
    assert "Rachel" in result.output


def test_search_context_without_key(monkeypatch):
    _fresh_settings(monkeypatch)
    result = CliRunner().invoke(main, ["search", "capital of France", "--context"])
    assert result.exit_code == 0
    assert NO_INFO_SENTINEL in result.output


def test_search_json(monkeypatch):
    hit = SearchResult(title="France", url="https://example.org/france", content="Capital: Paris", relevance_score=0.91234)
    monkeypatch.setattr(SearchClient, "search", lambda self, query, max_results=5: [hit])
    result = CliRunner().invoke(main, ["search", "capital of France", "--json"])
    assert result.exit_code == 0
    payload = json.loads(result.output[result.output.index("["):])
    assert payload == [
        {"title": "France", "url": "https://example.org/france", "content": "Capital: Paris", "score": 0.912}
    ]


def test_ask_prints_answer(monkeypatch):
    class FakePipeline:
        def answer(self, query):
            return f"Answer to {query}"

    monkeypatch.setattr(QueryPipeline, "from_settings", classmethod(lambda cls, s=None: FakePipeline()))
    result = CliRunner().invoke(main, ["ask", "capital of France"])
    assert result.exit_code == 0
    assert "Answer to capital of France" in result.output


def test_ask_failure_exits_nonzero(monkeypatch):
    class FailingPipeline:
        def answer(self, query):
            raise PipelineError(GenerationError("provider down"))

    monkeypatch.setattr(QueryPipeline, "from_settings", classmethod(lambda cls, s=None: FailingPipeline()))
    result = CliRunner().invoke(main, ["ask", "q"])
    assert result.exit_code == 1
    assert "provider down" in result.output
