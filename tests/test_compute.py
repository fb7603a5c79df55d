"""Tests for the generation client (prompt building + both providers)."""

from contextlib import contextmanager
from types import SimpleNamespace

import pytest

from aria.config import Settings
from aria.rag.compute import (
    SYSTEM_INSTRUCTIONS,
    GenerationClient,
    GenerationError,
    build_messages,
)


def _settings(**overrides):
    values = {"llm_api_key": "sk-test", "anthropic_api_key": "ak-test"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ======================================================================
# Fake SDK clients
# ======================================================================

def _chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


class FakeOpenAI:
    """Mimics ``client.chat.completions.create`` for both modes."""

    def __init__(self, answer="Paris is the capital.", chunks=None, fail_after=None, error=None):
        self.answer = answer
        self.chunks = chunks or []
        self.fail_after = fail_after
        self.error = error
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None and self.fail_after is None:
            raise self.error
        if kwargs.get("stream"):
            return self._stream()
        message = SimpleNamespace(content=self.answer)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    def _stream(self):
        for i, text in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise self.error or RuntimeError("connection reset")
            yield _chunk(text)


class FakeAnthropic:
    """Mimics ``client.messages.create`` / ``client.messages.stream``."""

    def __init__(self, answer="Paris.", chunks=None):
        self.answer = answer
        self.chunks = chunks or []
        self.calls = []
        self.messages = SimpleNamespace(create=self._create, stream=self._stream)

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.answer)])

    @contextmanager
    def _stream(self, **kwargs):
        self.calls.append(kwargs)
        yield SimpleNamespace(text_stream=iter(self.chunks))


# ======================================================================
# Prompt construction
# ======================================================================

class TestBuildMessages:

    def test_system_then_user(self):
        messages = build_messages("capital of France", "1. France")
        assert [m["role"] for m in messages] == ["system", "user"]
        assert messages[1]["content"] == "capital of France"

    def test_system_prompt_carries_context(self):
        system = build_messages("q", "CONTEXT BLOCK")[0]["content"]
        assert system.startswith(SYSTEM_INSTRUCTIONS)
        assert system.endswith("\n\nContext:\nCONTEXT BLOCK")

    def test_instructions_ask_for_citations(self):
        assert "cite your sources" in SYSTEM_INSTRUCTIONS


# ======================================================================
# OpenAI provider
# ======================================================================

class TestOpenAIGeneration:

    def test_generate(self):
        fake = FakeOpenAI(answer="Paris is the capital.")
        gen = GenerationClient(settings=_settings(), client=fake)
        assert gen.generate("capital of France", "ctx") == "Paris is the capital."
        call = fake.calls[0]
        assert call["model"] == "gpt-4"
        assert call["temperature"] == 0.7
        assert call["max_tokens"] == 1000
        assert call["stream"] is False
        assert call["messages"] == build_messages("capital of France", "ctx")

    def test_empty_content_raises(self):
        gen = GenerationClient(settings=_settings(), client=FakeOpenAI(answer=""))
        with pytest.raises(GenerationError):
            gen.generate("q", "ctx")

    def test_provider_error_wrapped(self):
        fake = FakeOpenAI(error=RuntimeError("rate limited"))
        gen = GenerationClient(settings=_settings(), client=fake)
        with pytest.raises(GenerationError, match="rate limited") as excinfo:
            gen.generate("q", "ctx")
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_missing_key_raises(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        gen = GenerationClient(settings=_settings(llm_api_key=""))
        assert not gen.available
        with pytest.raises(GenerationError, match="no API key"):
            gen.generate("q", "ctx")

    def test_streaming_delivers_chunks_in_order(self):
        fake = FakeOpenAI(chunks=["Par", "is is", " the capital."])
        gen = GenerationClient(settings=_settings(), client=fake)
        received = []
        gen.generate_streaming("capital of France", "ctx", received.append)
        assert received == ["Par", "is is", " the capital."]
        assert fake.calls[0]["stream"] is True

    def test_streaming_matches_blocking_prompt(self):
        fake = FakeOpenAI(chunks=["a"])
        gen = GenerationClient(settings=_settings(), client=fake)
        gen.generate("q", "ctx")
        gen.generate_streaming("q", "ctx", lambda c: None)
        assert fake.calls[0]["messages"] == fake.calls[1]["messages"]

    def test_streaming_skips_empty_increments(self):
        fake = FakeOpenAI(chunks=["", "Hello", None, " world"])
        gen = GenerationClient(settings=_settings(), client=fake)
        received = []
        gen.generate_streaming("q", "ctx", received.append)
        assert received == ["Hello", " world"]

    def test_mid_stream_failure_keeps_partial(self):
        fake = FakeOpenAI(chunks=["Par", "is", "!"], fail_after=2)
        gen = GenerationClient(settings=_settings(), client=fake)
        received = []
        with pytest.raises(GenerationError) as excinfo:
            gen.generate_streaming("q", "ctx", received.append)
        assert received == ["Par", "is"]
        assert excinfo.value.partial == "Paris"

    def test_empty_stream_raises(self):
        gen = GenerationClient(settings=_settings(), client=FakeOpenAI(chunks=[]))
        with pytest.raises(GenerationError):
            gen.generate_streaming("q", "ctx", lambda c: None)


# ======================================================================
# Anthropic provider
# ======================================================================

class TestAnthropicGeneration:

    def test_generate_uses_system_parameter(self):
        fake = FakeAnthropic(answer="Paris.")
        gen = GenerationClient(settings=_settings(llm_provider="anthropic"), client=fake)
        assert gen.generate("capital of France", "ctx") == "Paris."
        call = fake.calls[0]
        assert call["system"].endswith("Context:\nctx")
        assert call["messages"] == [{"role": "user", "content": "capital of France"}]

    def test_streaming(self):
        fake = FakeAnthropic(chunks=["Par", "is"])
        gen = GenerationClient(settings=_settings(llm_provider="anthropic"), client=fake)
        received = []
        gen.generate_streaming("q", "ctx", received.append)
        assert received == ["Par", "is"]

    def test_client_uses_configured_base_url(self, monkeypatch):
        import anthropic

        seen = {}
        monkeypatch.setattr(anthropic, "Anthropic", lambda **kwargs: seen.update(kwargs) or object())

        GenerationClient(settings=_settings(llm_provider="anthropic"))._get_anthropic_client()
        assert seen["base_url"] == "https://api.anthropic.com"

        seen.clear()
        proxied = _settings(llm_provider="anthropic", llm_base_url="http://localhost:8080")
        GenerationClient(settings=proxied)._get_anthropic_client()
        assert seen["base_url"] == "http://localhost:8080"
        assert seen["max_retries"] == 0
