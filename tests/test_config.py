"""Tests for configuration."""

import pytest

from aria.config import DEFAULT_GREETING, Settings, get_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "OPENAI_API_KEY", "ARIA_LLM_API_KEY", "ANTHROPIC_API_KEY",
        "ARIA_LLM_PROVIDER", "ARIA_LLM_MODEL", "TAVILY_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


def test_default_settings():
    s = Settings(_env_file=None)
    assert s.llm_provider == "openai"
    assert s.resolved_llm_model == "gpt-4"
    assert s.resolved_llm_base_url == "https://api.openai.com/v1"
    assert s.max_tokens == 1000
    assert s.temperature == 0.7
    assert s.search_max_results == 5
    assert s.search_depth == "basic"
    assert s.capture_window == 3.0
    assert s.happy_hold == 2.0
    assert s.confused_hold == 3.0
    assert s.greeting == DEFAULT_GREETING
    assert s.port == 8100


def test_anthropic_provider_defaults():
    s = Settings(_env_file=None, llm_provider="anthropic")
    assert s.resolved_llm_model == "claude-sonnet-4-20250514"
    assert s.resolved_llm_base_url == "https://api.anthropic.com"


def test_explicit_model_overrides_provider_default():
    s = Settings(_env_file=None, llm_provider="openai", llm_model="gpt-4o-mini")
    assert s.resolved_llm_model == "gpt-4o-mini"


def test_openai_key_falls_back_to_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    s = Settings(_env_file=None)
    assert s.resolved_llm_api_key == "sk-env"
    assert s.generation_available


def test_anthropic_key_used_for_anthropic(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    s = Settings(_env_file=None, llm_provider="anthropic", anthropic_api_key="ak")
    assert s.resolved_llm_api_key == "ak"


def test_availability_flags():
    s = Settings(_env_file=None)
    assert not s.generation_available
    assert not s.search_available
    s = Settings(_env_file=None, tavily_api_key="tvly-1", llm_api_key="sk-1")
    assert s.search_available
    assert s.generation_available


def test_env_aliases(monkeypatch):
    monkeypatch.setenv("ARIA_STREAM_RESPONSES", "true")
    monkeypatch.setenv("ARIA_CAPTURE_WINDOW", "1.5")
    monkeypatch.setenv("TAVILY_API_KEY", "tvly-env")
    s = Settings(_env_file=None)
    assert s.stream_responses is True
    assert s.capture_window == 1.5
    assert s.tavily_api_key == "tvly-env"


def test_get_settings_cached():
    # Clear the cache
    if hasattr(get_settings, "_instance"):
        delattr(get_settings, "_instance")
    s1 = get_settings()
    s2 = get_settings()
    assert s1 is s2
