"""Conversational presence layer for the agent.

Provides voice I/O (microphone capture, Whisper STT, Piper/ElevenLabs TTS),
the avatar activity-state machine, the turn orchestrator and a WebSocket
bridge for the UI.

Data flow::

    Microphone → Whisper STT → query text          (or typed query)
      → QueryPipeline (web search → context → LLM)
      → Answer message → Piper/ElevenLabs TTS → speaker
      → Activity state → avatar
"""

from aria.interface.agent import AgentEvent, AgentOrchestrator

__all__ = [
    "AgentEvent",
    "AgentOrchestrator",
]
