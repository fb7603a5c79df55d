"""Dual-provider generation client (OpenAI / Anthropic).

Both the blocking and the streaming call build the prompt with
:func:`build_messages`, so the same query and context always produce the
same request regardless of mode.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from aria.config import Settings, get_settings

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTIONS = """\
You are a helpful AI assistant with access to real-time information.

Use the provided context from web search results to answer the user's \
question accurately and comprehensively.
If the context doesn't contain relevant information, acknowledge this and \
provide general knowledge if appropriate.
Always cite your sources when using information from the search results.
Keep your responses conversational but informative."""

ChunkCallback = Callable[[str], None]


class GenerationError(RuntimeError):
    """Raised when the completion provider cannot produce an answer.

    ``partial`` holds whatever text a stream delivered before failing.
    """

    def __init__(self, message: str, partial: str = "") -> None:
        super().__init__(message)
        self.partial = partial


def build_system_prompt(context: str) -> str:
    return f"{SYSTEM_INSTRUCTIONS}\n\nContext:\n{context}"


def build_messages(query: str, context: str) -> list[dict]:
    """Return the ``[system, user]`` turn pair sent to the provider."""
    return [
        {"role": "system", "content": build_system_prompt(context)},
        {"role": "user", "content": query},
    ]


class GenerationClient:
    """Unified completion interface over OpenAI and Anthropic backends.

    Usage::

        client = GenerationClient()            # reads provider from Settings
        text = client.generate(query, context)
        client.generate_streaming(query, context, print)

    A pre-built SDK client for the active provider may be injected via
    ``client``; otherwise one is created lazily on first use.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[object] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client

    @property
    def provider(self) -> str:
        return self.settings.llm_provider

    @property
    def model(self) -> str:
        return self.settings.resolved_llm_model

    @property
    def available(self) -> bool:
        return self._client is not None or self.settings.generation_available

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def generate(self, query: str, context: str) -> str:
        """Single blocking round trip.  Raises ``GenerationError``."""
        self._check_available()
        messages = build_messages(query, context)
        if self.provider == "anthropic":
            text = self._generate_anthropic(messages)
        else:
            text = self._generate_openai(messages)
        if not text.strip():
            raise GenerationError("Completion provider returned no content")
        return text

    def generate_streaming(
        self, query: str, context: str, on_chunk: ChunkCallback
    ) -> None:
        """Stream the answer, calling *on_chunk* once per non-empty increment.

        Chunks are delivered as they arrive, never merged.  On a mid-stream
        failure the chunks already delivered stand, and the raised
        ``GenerationError`` carries them joined in ``partial``.
        """
        self._check_available()
        messages = build_messages(query, context)
        delivered: list[str] = []

        def deliver(text: Optional[str]) -> None:
            if text:
                delivered.append(text)
                on_chunk(text)

        try:
            if self.provider == "anthropic":
                self._stream_anthropic(messages, deliver)
            else:
                self._stream_openai(messages, deliver)
        except GenerationError:
            raise
        except Exception as exc:
            logger.exception(
                "%s stream failed after %d chunks", self.provider, len(delivered)
            )
            raise GenerationError(
                f"{self.provider} stream failed: {exc}", partial="".join(delivered)
            ) from exc

        if not delivered:
            raise GenerationError("Completion provider streamed no content")

    # ------------------------------------------------------------------
    # OpenAI backend
    # ------------------------------------------------------------------
    def _get_openai_client(self):  # -> openai.OpenAI
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(
                api_key=self.settings.resolved_llm_api_key or "not-set",
                base_url=self.settings.resolved_llm_base_url,
                timeout=self.settings.request_timeout,
                max_retries=0,
            )
        return self._client

    def _generate_openai(self, messages: list[dict]) -> str:
        try:
            client = self._get_openai_client()
            response = client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
                stream=False,
            )
            if not response.choices:
                return ""
            return response.choices[0].message.content or ""
        except Exception as exc:
            logger.exception("OpenAI completion failed")
            raise GenerationError(f"OpenAI completion failed: {exc}") from exc

    def _stream_openai(self, messages: list[dict], deliver: ChunkCallback) -> None:
        client = self._get_openai_client()
        stream = client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            stream=True,
        )
        for chunk in stream:
            if not chunk.choices:
                continue
            deliver(chunk.choices[0].delta.content)

    # ------------------------------------------------------------------
    # Anthropic backend
    # ------------------------------------------------------------------
    def _get_anthropic_client(self):  # -> anthropic.Anthropic
        if self._client is None:
            try:
                import anthropic
            except ImportError as exc:
                raise GenerationError(
                    "anthropic SDK not installed.  Run: pip install anthropic"
                ) from exc
            self._client = anthropic.Anthropic(
                api_key=self.settings.anthropic_api_key,
                base_url=self.settings.resolved_llm_base_url,
                timeout=self.settings.request_timeout,
                max_retries=0,
            )
        return self._client

    @staticmethod
    def _split_system(messages: list[dict]) -> tuple[str, list[dict]]:
        # The Messages API takes the system prompt as a separate parameter.
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        turns = [m for m in messages if m["role"] != "system"]
        return system, turns

    def _generate_anthropic(self, messages: list[dict]) -> str:
        system, turns = self._split_system(messages)
        try:
            client = self._get_anthropic_client()
            response = client.messages.create(
                model=self.model,
                max_tokens=self.settings.max_tokens,
                system=system,
                messages=turns,
                temperature=self.settings.temperature,
            )
            parts = []
            for block in response.content:
                if block.type == "text":
                    parts.append(block.text)
            return "\n".join(parts)
        except GenerationError:
            raise
        except Exception as exc:
            logger.exception("Anthropic completion failed")
            raise GenerationError(f"Anthropic completion failed: {exc}") from exc

    def _stream_anthropic(self, messages: list[dict], deliver: ChunkCallback) -> None:
        system, turns = self._split_system(messages)
        client = self._get_anthropic_client()
        with client.messages.stream(
            model=self.model,
            max_tokens=self.settings.max_tokens,
            system=system,
            messages=turns,
            temperature=self.settings.temperature,
        ) as stream:
            for text in stream.text_stream:
                deliver(text)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _check_available(self) -> None:
        if not self.available:
            raise GenerationError(
                f"Generation unavailable: no API key for provider "
                f"'{self.provider}'.  Set OPENAI_API_KEY (or ARIA_LLM_API_KEY) "
                f"or ANTHROPIC_API_KEY."
            )
