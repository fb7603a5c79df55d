"""Central configuration loaded from environment / .env file."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

_PROJECT_ROOT = Path(__file__).resolve().parents[2]

DEFAULT_GREETING = "Hello! I am your AI Agent with real-time web search. Ask me anything!"


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # LLM provider, defaults to OpenAI chat completions
    llm_provider: Literal["openai", "anthropic"] = Field(
        default="openai", alias="ARIA_LLM_PROVIDER"
    )

    # OpenAI-compatible settings
    llm_api_key: str = Field(default="", alias="ARIA_LLM_API_KEY")
    llm_base_url: str = Field(default="", alias="ARIA_LLM_BASE_URL")
    llm_model: str = Field(default="", alias="ARIA_LLM_MODEL")

    # Anthropic-native settings
    anthropic_api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")
    anthropic_model: str = Field(default="claude-sonnet-4-20250514", alias="ANTHROPIC_MODEL")

    # Generation parameters
    max_tokens: int = Field(default=1000, alias="ARIA_MAX_TOKENS")
    temperature: float = Field(default=0.7, alias="ARIA_TEMPERATURE")

    # Web search (Tavily)
    tavily_api_key: str = Field(default="", alias="TAVILY_API_KEY")
    search_url: str = Field(default="https://api.tavily.com/search", alias="ARIA_SEARCH_URL")
    search_depth: Literal["basic", "advanced"] = Field(default="basic", alias="ARIA_SEARCH_DEPTH")
    search_max_results: int = Field(
        default=5, alias="ARIA_SEARCH_MAX_RESULTS",
        description="Results fetched per turn and injected as grounding context",
    )

    # Bounded deadline for every network call (search + generation)
    request_timeout: float = Field(default=30.0, alias="ARIA_REQUEST_TIMEOUT")

    # Voice
    voice_enabled: bool = Field(default=True, alias="ARIA_VOICE_ENABLED")
    capture_window: float = Field(
        default=3.0, alias="ARIA_CAPTURE_WINDOW",
        description="Seconds of audio recorded per capture",
    )
    sample_rate: int = Field(default=16000, alias="ARIA_SAMPLE_RATE")
    stt_backend: Literal["whisper", "openai"] = Field(default="whisper", alias="ARIA_STT_BACKEND")
    whisper_model: str = Field(default="base", alias="ARIA_WHISPER_MODEL")
    whisper_device: str = Field(default="auto", alias="ARIA_WHISPER_DEVICE")
    stt_language: str = Field(default="en", alias="ARIA_STT_LANGUAGE")
    piper_model_path: str = Field(default="", alias="ARIA_PIPER_MODEL")
    piper_voices_dir: str = Field(
        default="", alias="ARIA_PIPER_VOICES_DIR",
        description="Directory holding one <piper_model_name>.onnx per voice profile",
    )
    elevenlabs_api_key: str = Field(default="", alias="ELEVENLABS_API_KEY")
    voice_profile: str = Field(default="male", alias="ARIA_VOICE_PROFILE")

    # Orchestration
    stream_responses: bool = Field(default=False, alias="ARIA_STREAM_RESPONSES")
    happy_hold: float = Field(
        default=2.0, alias="ARIA_HAPPY_HOLD",
        description="Seconds the avatar stays happy after an answer",
    )
    confused_hold: float = Field(
        default=3.0, alias="ARIA_CONFUSED_HOLD",
        description="Seconds the avatar stays confused after a failure",
    )
    greeting: str = Field(default=DEFAULT_GREETING, alias="ARIA_GREETING")

    # Server
    host: str = Field(default="127.0.0.1", alias="ARIA_HOST")
    port: int = Field(default=8100, alias="ARIA_PORT")

    # Logging
    log_level: str = Field(default="INFO", alias="ARIA_LOG_LEVEL")

    model_config = {
        "env_file": str(_PROJECT_ROOT / ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @property
    def resolved_llm_api_key(self) -> str:
        """Return the API key for the active provider.

        For anthropic: uses ANTHROPIC_API_KEY directly.
        For openai: uses ARIA_LLM_API_KEY, falling back to OPENAI_API_KEY.
        """
        if self.llm_provider == "anthropic":
            return self.anthropic_api_key
        if self.llm_api_key:
            return self.llm_api_key
        return os.environ.get("OPENAI_API_KEY", "")

    @property
    def resolved_llm_model(self) -> str:
        """Return the model, defaulting based on provider."""
        if self.llm_provider == "anthropic":
            return self.llm_model or self.anthropic_model
        return self.llm_model or "gpt-4"

    @property
    def resolved_llm_base_url(self) -> str:
        """Return the base URL, defaulting based on provider."""
        if self.llm_base_url:
            return self.llm_base_url
        if self.llm_provider == "anthropic":
            return "https://api.anthropic.com"
        return "https://api.openai.com/v1"

    @property
    def generation_available(self) -> bool:
        """True when the selected provider has an API key configured."""
        return bool(self.resolved_llm_api_key)

    @property
    def search_available(self) -> bool:
        return bool(self.tavily_api_key)


def get_settings() -> Settings:
    """Return a cached Settings instance."""
    if not hasattr(get_settings, "_instance"):
        get_settings._instance = Settings()  # type: ignore[attr-defined]
    return get_settings._instance  # type: ignore[attr-defined]
