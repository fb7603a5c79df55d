"""Agent orchestrator: one conversational turn at a time.

Ties the transcript, the query pipeline, the voice arbiter and the
activity-state machine together.  Every entry point (typed query, voice
capture, stop buttons) runs on the event loop; the pipeline itself is
synchronous and runs in the loop's default executor.

Turn flow::

    submit(text)
      → user message + loading placeholder        state: THINKING
      → pipeline.answer / answer_streaming        (executor)
      → placeholder replaced by answer or apology
      → speak (voice on)                          state: SPEAKING
      →                                           state: HAPPY | CONFUSED
      → hold elapses                              state: IDLE

At most one :class:`QueryTicket` exists.  The check and the assignment
happen without an ``await`` in between, so a second query arriving while
the first is in flight is rejected with a notice and leaves the
transcript untouched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from aria.config import DEFAULT_GREETING, Settings, get_settings
from aria.interface.avatar.renderer import ActivityStateMachine, AvatarSnapshot
from aria.interface.voice.arbiter import VoiceArbiter
from aria.interface.voice.errors import DeviceError, VoiceBusyError, VoiceError
from aria.models import (
    ActivityState,
    Conversation,
    Message,
    QueryTicket,
    TurnOutcome,
)
from aria.rag.pipeline import PipelineError, QueryPipeline

logger = logging.getLogger(__name__)

APOLOGY_TEXT = (
    "I apologize, but I encountered an error processing your request. "
    "Please try again."
)
LOADING_TEXT = "Thinking and searching..."

BUSY_ANSWERING = "Service busy: still answering the previous question."
BUSY_LISTENING = "Service busy: already listening."
BUSY_SPEAKING = "Service busy: still speaking."
VOICE_UNAVAILABLE = "Voice input is not available."


@dataclass(frozen=True)
class AgentEvent:
    """Something an observer (UI, avatar, CLI) should react to.

    ``kind`` is one of ``state``, ``transcript``, ``notice`` or ``chunk``.
    """

    kind: str
    payload: dict = field(default_factory=dict)


AgentListener = Callable[[AgentEvent], None]


class AgentOrchestrator:
    """Runs turns against a :class:`QueryPipeline` and reports progress.

    Parameters
    ----------
    pipeline : QueryPipeline
        Answers queries (search → context → generation).
    voice : VoiceArbiter or None
        Microphone/speaker owner.  ``None`` disables voice entirely.
    voice_enabled : bool
        Speak answers when a voice arbiter is present.
    stream_responses : bool
        Use streamed generation and forward increments as ``chunk`` events.
    happy_hold, confused_hold : float
        Seconds the HAPPY / CONFUSED states are shown before IDLE.
    greeting : str
        First assistant message of the transcript; empty for none.
    """

    def __init__(
        self,
        pipeline: QueryPipeline,
        voice: Optional[VoiceArbiter] = None,
        *,
        voice_enabled: bool = True,
        stream_responses: bool = False,
        happy_hold: float = 2.0,
        confused_hold: float = 3.0,
        greeting: str = DEFAULT_GREETING,
    ) -> None:
        self.pipeline = pipeline
        self.voice = voice
        self.voice_enabled = voice_enabled
        self.stream_responses = stream_responses
        self.conversation = Conversation(greeting=greeting)
        self.activity = ActivityStateMachine(
            happy_hold=happy_hold, confused_hold=confused_hold
        )
        self.activity.add_listener(self._on_state_change)
        self._ticket: Optional[QueryTicket] = None
        self._listeners: list[AgentListener] = []
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        pipeline: Optional[QueryPipeline] = None,
        voice: Optional[VoiceArbiter] = None,
    ) -> "AgentOrchestrator":
        settings = settings or get_settings()
        if pipeline is None:
            pipeline = QueryPipeline.from_settings(settings)
        if voice is None and settings.voice_enabled:
            voice = VoiceArbiter.from_settings(settings)
        return cls(
            pipeline,
            voice,
            voice_enabled=settings.voice_enabled,
            stream_responses=settings.stream_responses,
            happy_hold=settings.happy_hold,
            confused_hold=settings.confused_hold,
            greeting=settings.greeting,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> ActivityState:
        return self.activity.state

    @property
    def ticket(self) -> Optional[QueryTicket]:
        return self._ticket

    @property
    def is_listening(self) -> bool:
        if self.activity.state == ActivityState.LISTENING:
            return True
        return self.voice is not None and self.voice.is_listening

    @property
    def is_speaking(self) -> bool:
        if self.activity.state == ActivityState.SPEAKING:
            return True
        return self.voice is not None and self.voice.is_speaking

    @property
    def voice_available(self) -> bool:
        return self.voice is not None

    def snapshot(self) -> AvatarSnapshot:
        return self.activity.snapshot(
            is_listening=self.is_listening, is_speaking=self.is_speaking
        )

    def add_listener(self, listener: AgentListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: AgentListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Typed queries
    # ------------------------------------------------------------------
    async def submit(self, text: str) -> TurnOutcome:
        """Answer *text*, or reject it if another turn is in progress."""
        query = text.strip()
        if not query:
            return TurnOutcome.IGNORED

        reason = self._busy_reason()
        if reason:
            self._notify(reason)
            return TurnOutcome.BUSY
        return await self._accept(query)

    async def _accept(self, query: str) -> TurnOutcome:
        self._ticket = QueryTicket(query=query)
        try:
            return await self._run_turn(query)
        finally:
            self._ticket = None

    async def _run_turn(self, query: str) -> TurnOutcome:
        self.conversation.append(Message(text=query, is_user=True))
        placeholder = self.conversation.append(
            Message(text=LOADING_TEXT, is_user=False, is_loading=True)
        )
        self._emit_transcript()
        self.activity.transition(ActivityState.THINKING)

        try:
            answer = await self._answer(query)
        except asyncio.CancelledError:
            logger.info("Query cancelled: %s", query)
            self.conversation.replace_placeholder(placeholder.id)
            self._emit_transcript()
            self.activity.transition(ActivityState.CONFUSED)
            raise
        except Exception as exc:
            if isinstance(exc, PipelineError):
                logger.warning("Query failed: %s", exc.cause)
            else:
                logger.exception("Unexpected error answering query")
            partial = getattr(exc, "partial", "")
            reply = Message(text=partial or APOLOGY_TEXT, is_user=False)
            self.conversation.replace_placeholder(placeholder.id, reply)
            self._emit_transcript()
            self.activity.transition(ActivityState.CONFUSED)
            return TurnOutcome.FAILED

        self.conversation.replace_placeholder(
            placeholder.id, Message(text=answer, is_user=False)
        )
        self._emit_transcript()

        try:
            if self._should_speak():
                self.activity.transition(ActivityState.SPEAKING)
                await self._speak(answer)
        finally:
            # The answer is delivered even if playback is cut short.
            self.activity.transition(ActivityState.HAPPY)
        return TurnOutcome.ANSWERED

    async def _answer(self, query: str) -> str:
        loop = asyncio.get_running_loop()
        if not self.stream_responses:
            return await loop.run_in_executor(None, self.pipeline.answer, query)

        def on_chunk(chunk: str) -> None:
            # Called from the executor thread.
            loop.call_soon_threadsafe(self._emit, AgentEvent("chunk", {"text": chunk}))

        return await loop.run_in_executor(
            None, self.pipeline.answer_streaming, query, on_chunk
        )

    def _should_speak(self) -> bool:
        if not self.voice_enabled or self.voice is None:
            return False
        return getattr(self.voice.synthesizer, "available", True)

    async def _speak(self, answer: str) -> None:
        assert self.voice is not None
        try:
            await self.voice.speak(answer)
        except VoiceError as exc:
            logger.warning("Could not speak answer: %s", exc)

    # ------------------------------------------------------------------
    # Voice queries
    # ------------------------------------------------------------------
    async def listen(self) -> TurnOutcome:
        """Capture one utterance and answer it."""
        if self.voice is None:
            self._notify(VOICE_UNAVAILABLE)
            return TurnOutcome.IGNORED
        reason = self._busy_reason()
        if reason:
            self._notify(reason)
            return TurnOutcome.BUSY
        if not self.activity.transition(ActivityState.LISTENING):
            self._notify(BUSY_ANSWERING)
            return TurnOutcome.BUSY

        try:
            transcript = await self.voice.start_listening()
        except asyncio.CancelledError:
            logger.info("Voice capture cancelled")
            self.activity.transition(ActivityState.IDLE)
            raise
        except (VoiceBusyError, DeviceError) as exc:
            logger.warning("Voice capture failed: %s", exc)
            self._notify(f"Voice input error: {exc}")
            self.activity.transition(ActivityState.CONFUSED)
            return TurnOutcome.FAILED
        except Exception:
            logger.exception("Unexpected error during voice capture")
            self._notify("Voice input error.")
            self.activity.transition(ActivityState.CONFUSED)
            return TurnOutcome.FAILED

        if not transcript:
            logger.info("Capture produced no transcript")
            self.activity.transition(ActivityState.IDLE)
            return TurnOutcome.IGNORED
        return await self._accept(transcript)

    async def stop_listening(self) -> None:
        if self.voice is not None:
            await self.voice.stop_listening()

    async def stop_speaking(self) -> None:
        if self.voice is not None:
            await self.voice.stop_speaking()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    async def cleanup(self) -> None:
        """Release devices and pending holds.  Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self.activity.reset()
        if self.voice is not None:
            try:
                await self.voice.cleanup()
            except Exception:
                logger.exception("Error releasing voice devices")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def _busy_reason(self) -> str:
        if self._ticket is not None:
            return BUSY_ANSWERING
        if self.is_listening:
            return BUSY_LISTENING
        if self.is_speaking:
            return BUSY_SPEAKING
        return ""

    def _on_state_change(self, old: ActivityState, new: ActivityState) -> None:
        self._emit(AgentEvent("state", self.snapshot().to_dict()))

    def _emit_transcript(self) -> None:
        self._emit(AgentEvent("transcript", {"messages": self.conversation.to_dicts()}))

    def _notify(self, message: str) -> None:
        logger.info("Notice: %s", message)
        self._emit(AgentEvent("notice", {"message": message}))

    def _emit(self, event: AgentEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Agent listener failed")
