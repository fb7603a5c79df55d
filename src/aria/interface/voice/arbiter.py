"""Voice I/O arbiter: single owner of the microphone and the speaker.

Capture and playback are mutually exclusive: asking for one while the
other is active raises ``VoiceBusyError``.  Device work that blocks
(permission checks, opening/closing the stream, transcription) runs in
the event loop's default executor so the loop keeps serving the UI.

The synthesis device reports an utterance through four callbacks fired
from its worker thread; :meth:`VoiceArbiter.speak` folds them into one
future that resolves exactly once.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from pathlib import Path
from typing import Optional

from aria.config import Settings, get_settings
from aria.interface.voice.capture import CaptureDevice, MicrophoneCapture
from aria.interface.voice.errors import DeviceError, SynthesisError, VoiceBusyError
from aria.interface.voice.stt import SpeechRecognizer, create_stt_engine
from aria.interface.voice.tts import (
    VOICE_PROFILES,
    SpeechCallbacks,
    SpeakerSynthesis,
    SpeechOptions,
    SynthesisDevice,
    VoiceProfile,
    build_voice_engines,
)

logger = logging.getLogger(__name__)


class VoiceArbiter:
    """Mutually exclusive capture/playback over injected devices.

    Parameters
    ----------
    capture : CaptureDevice
        Recorder used by :meth:`start_listening`.
    recognizer : SpeechRecognizer
        Turns the recording into text.
    synthesizer : SynthesisDevice
        Speaks answers.
    capture_window : float
        Seconds recorded per :meth:`start_listening` call.
    speech_options : SpeechOptions or None
        Options passed with every utterance.
    """

    def __init__(
        self,
        capture: CaptureDevice,
        recognizer: SpeechRecognizer,
        synthesizer: SynthesisDevice,
        capture_window: float = 3.0,
        speech_options: Optional[SpeechOptions] = None,
    ) -> None:
        self.capture = capture
        self.recognizer = recognizer
        self.synthesizer = synthesizer
        self.capture_window = capture_window
        self.speech_options = speech_options or SpeechOptions()
        self._capturing = False
        self._playing = False
        self._stop_requested: Optional[asyncio.Event] = None
        self._released: Optional[asyncio.Event] = None
        self._utterance: Optional[object] = None  # token of the owning speak() call

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "VoiceArbiter":
        """Wire the default microphone, recognizer and speaker."""
        settings = settings or get_settings()
        return cls(
            capture=MicrophoneCapture(sample_rate=settings.sample_rate),
            recognizer=create_stt_engine(settings),
            synthesizer=SpeakerSynthesis(build_voice_engines(settings)),
            capture_window=settings.capture_window,
            speech_options=SpeechOptions(voice=settings.voice_profile),
        )

    @property
    def is_listening(self) -> bool:
        return self._capturing

    @property
    def is_speaking(self) -> bool:
        return self._playing

    def available_voices(self) -> list[VoiceProfile]:
        return list(VOICE_PROFILES.values())

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------
    async def start_listening(self) -> str:
        """Record for ``capture_window`` seconds and return the transcript.

        Returns ``""`` if :meth:`stop_listening` cancels the capture first.
        """
        if self._capturing:
            raise VoiceBusyError("Already listening")
        if self._playing:
            raise VoiceBusyError("Cannot listen while speaking")

        self._capturing = True
        self._stop_requested = asyncio.Event()
        self._released = asyncio.Event()
        started = False
        try:
            granted = await self._run(self.capture.request_permission)
            if not granted:
                raise VoiceBusyError("Audio recording permission not granted")
            try:
                await self._run(self.capture.start)
            except DeviceError:
                raise
            except Exception as exc:
                raise DeviceError(f"Recording device failed to start: {exc}") from exc
            started = True

            cancelled = await self._wait_for_stop(self.capture_window)
            audio_path = await self._finish_recording()
            started = False
            if cancelled:
                logger.info("Capture cancelled; discarding recording")
                audio_path.unlink(missing_ok=True)
                return ""
            try:
                text = await self._run(self.recognizer.transcribe_file, audio_path)
            finally:
                audio_path.unlink(missing_ok=True)
            logger.info("Transcribed %d chars", len(text))
            return text.strip()
        finally:
            if started:
                # Failure or outer cancellation between start and stop.
                try:
                    path = await self._finish_recording()
                    path.unlink(missing_ok=True)
                except DeviceError:
                    logger.warning("Could not release recording device", exc_info=True)
            self._capturing = False
            self._released.set()

    async def stop_listening(self) -> str:
        """Finalize an in-progress capture early.  No-op when idle.

        The cancelled recording is discarded, so this always returns ``""``.
        """
        if not self._capturing or self._stop_requested is None:
            return ""
        self._stop_requested.set()
        if self._released is not None:
            await self._released.wait()
        return ""

    async def _wait_for_stop(self, timeout: float) -> bool:
        assert self._stop_requested is not None
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _finish_recording(self) -> Path:
        try:
            return Path(await self._run(self.capture.stop))
        except DeviceError:
            raise
        except Exception as exc:
            raise DeviceError(f"Recording device failed to stop: {exc}") from exc

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------
    async def speak(self, text: str) -> None:
        """Speak *text* until it finishes or :meth:`stop_speaking` is called.

        A second call while speaking interrupts the first; utterances are
        never queued.
        """
        if self._capturing:
            raise VoiceBusyError("Cannot speak while listening")
        if self._playing:
            await self.stop_speaking()

        loop = asyncio.get_running_loop()
        finished: asyncio.Future = loop.create_future()
        token = object()
        self._utterance = token
        self._playing = True

        def settle(exc: Optional[Exception] = None) -> None:
            def apply() -> None:
                if finished.done():
                    return
                if exc is None:
                    finished.set_result(None)
                else:
                    finished.set_exception(exc)
            loop.call_soon_threadsafe(apply)

        callbacks = SpeechCallbacks(
            on_start=lambda: logger.debug("Started speaking"),
            on_done=settle,
            on_stopped=settle,
            on_error=lambda err: settle(SynthesisError(f"Speech failed: {err}")),
        )
        try:
            try:
                self.synthesizer.speak(text, self.speech_options, callbacks)
            except Exception as exc:
                raise SynthesisError(f"Speech failed to start: {exc}") from exc
            await finished
            logger.debug("Finished speaking")
        except asyncio.CancelledError:
            if self._utterance is token:
                self._stop_device()
            raise
        finally:
            if self._utterance is token:
                self._playing = False
                self._utterance = None

    async def stop_speaking(self) -> None:
        """Stop the current utterance.  No-op when idle."""
        if not self._playing:
            return
        self._playing = False
        self._utterance = None
        self._stop_device()

    def _stop_device(self) -> None:
        try:
            self.synthesizer.stop()
        except Exception:
            logger.warning("Error stopping speech", exc_info=True)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    async def cleanup(self) -> None:
        """Best-effort release of both devices.  Never raises."""
        try:
            await self.stop_listening()
        except Exception:
            logger.exception("Error stopping capture during cleanup")
        try:
            await self.stop_speaking()
        except Exception:
            logger.exception("Error stopping speech during cleanup")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    @staticmethod
    async def _run(func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))
