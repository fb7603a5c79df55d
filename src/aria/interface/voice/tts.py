"""Text-to-speech for spoken answers.

Two engines:

1. **Piper TTS**: fast, local, no API key.  Requires ``piper-tts`` and
   a downloaded voice model (``.onnx`` + ``.json``).
2. **ElevenLabs**: cloud API, higher quality, requires API key.

Both produce 16-bit PCM WAV.  :class:`SpeakerSynthesis` plays that audio
on the default output device through ``sounddevice`` and reports the
utterance lifecycle through :class:`SpeechCallbacks`.
"""

from __future__ import annotations

import io
import logging
import re
import threading
import wave
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Protocol

from aria.config import Settings, get_settings
from aria.interface.voice.stt import pcm_to_wav

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Common interface
# ---------------------------------------------------------------------------

class TTSEngine(Protocol):
    """Protocol that all TTS backends implement."""

    def synthesize(self, text: str) -> bytes:
        """Return WAV audio bytes for the given text."""
        ...

    @property
    def available(self) -> bool:
        ...


@dataclass(frozen=True)
class VoiceProfile:
    """A selectable voice, mapped onto each engine's own voice ids."""

    id: str
    label: str
    description: str
    elevenlabs_voice_id: str
    piper_model_name: str


VOICE_PROFILES: dict[str, VoiceProfile] = {
    "male": VoiceProfile(
        id="male",
        label="Antoni",
        description="Warm, calm male voice",
        elevenlabs_voice_id="ErXwobaYiN019PkySvjV",
        piper_model_name="en_US-ryan-high",
    ),
    "female": VoiceProfile(
        id="female",
        label="Rachel",
        description="Clear, neutral female voice",
        elevenlabs_voice_id="21m00Tcm4TlvDq8ikWAM",
        piper_model_name="en_US-amy-medium",
    ),
}

DEFAULT_VOICE = "male"


# ---------------------------------------------------------------------------
# Speech text preparation
# ---------------------------------------------------------------------------

def truncate_for_speech(text: str, max_chars: int = 1500) -> str:
    """Truncate text for TTS, breaking at sentence boundaries."""
    if len(text) <= max_chars:
        return text
    truncated = text[:max_chars]
    for sep in [". ", ".\n", "! ", "? "]:
        idx = truncated.rfind(sep)
        if idx > max_chars // 2:
            return truncated[: idx + 1]
    return truncated


def clean_for_speech(text: str) -> str:
    """Strip markdown and URLs that read badly aloud."""
    text = re.sub(r"```[\s\S]*?```", " ", text)
    text = re.sub(r"`([^`]+)`", r"\1", text)
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)
    text = re.sub(r"https?://\S+", "link", text)
    text = re.sub(r"#{1,6}\s*", "", text)
    text = re.sub(r"\*{1,3}([^*]+)\*{1,3}", r"\1", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


@dataclass
class SpeechOptions:
    """Per-utterance synthesis options."""

    voice: str = DEFAULT_VOICE  # key into VOICE_PROFILES
    max_chars: int = 1500

    def prepare(self, text: str) -> str:
        return truncate_for_speech(clean_for_speech(text), self.max_chars)


def _noop(*_args) -> None:
    return None


@dataclass
class SpeechCallbacks:
    """Lifecycle hooks fired by a synthesis device, from any thread."""

    on_start: Callable[[], None] = field(default=_noop)
    on_done: Callable[[], None] = field(default=_noop)
    on_stopped: Callable[[], None] = field(default=_noop)
    on_error: Callable[[Exception], None] = field(default=_noop)


class SynthesisDevice(Protocol):
    """Speaks text and reports back through callbacks."""

    def speak(self, text: str, options: SpeechOptions, callbacks: SpeechCallbacks) -> None:
        """Start speaking; must return without waiting for playback."""
        ...

    def stop(self) -> None:
        """Stop the current utterance (fires ``on_stopped``)."""
        ...


# ---------------------------------------------------------------------------
# Piper TTS (local)
# ---------------------------------------------------------------------------

class PiperTTS:
    """Local text-to-speech via Piper.

    Parameters
    ----------
    model_path : str or Path
        Path to the Piper ONNX voice model file.
    config_path : str or Path or None
        Path to the model's JSON config.  If None, ``{model_path}.json``.
    """

    def __init__(
        self,
        model_path: str | Path = "",
        config_path: str | Path | None = None,
    ) -> None:
        self.model_path = Path(model_path) if model_path else None
        self.config_path = Path(config_path) if config_path else None
        self._voice: object = None
        self._available: Optional[bool] = None

    @property
    def available(self) -> bool:
        if self._available is not None:
            return self._available
        try:
            import piper  # noqa: F401  # type: ignore[import-untyped]
            self._available = self.model_path is not None and self.model_path.exists()
        except ImportError:
            self._available = False
        return self._available

    def _ensure_voice(self) -> None:
        if self._voice is not None:
            return
        from piper import PiperVoice  # type: ignore[import-untyped]

        config = self.config_path or self.model_path.with_suffix(  # type: ignore[union-attr]
            self.model_path.suffix + ".json"  # type: ignore[union-attr]
        )
        self._voice = PiperVoice.load(str(self.model_path), config_path=str(config))
        logger.info("Loaded Piper voice: %s", self.model_path)

    def synthesize(self, text: str) -> bytes:
        if not self.available:
            raise RuntimeError("Piper TTS not available; check model path and installation")
        self._ensure_voice()

        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            # piper-tts >= 1.3 renamed the WAV writer to synthesize_wav.
            writer = getattr(self._voice, "synthesize_wav", None) or self._voice.synthesize  # type: ignore[attr-defined]
            writer(text, wf)
        return buf.getvalue()


# ---------------------------------------------------------------------------
# ElevenLabs TTS (cloud)
# ---------------------------------------------------------------------------

class ElevenLabsTTS:
    """Cloud text-to-speech via the ElevenLabs API."""

    def __init__(
        self,
        api_key: str = "",
        voice_id: str = VOICE_PROFILES[DEFAULT_VOICE].elevenlabs_voice_id,
        model_id: str = "eleven_monolingual_v1",
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def synthesize(self, text: str) -> bytes:
        if not self.available:
            raise RuntimeError("ElevenLabs TTS not available; set ELEVENLABS_API_KEY")
        import httpx

        url = f"https://api.elevenlabs.io/v1/text-to-speech/{self.voice_id}"
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/*",
        }
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
        }
        # pcm_16000 is raw PCM; wrap it so every engine yields WAV.
        resp = httpx.post(
            url,
            params={"output_format": "pcm_16000"},
            json=payload,
            headers=headers,
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return pcm_to_wav(resp.content, sample_rate=16000)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def create_tts_engine(
    piper_model: str = "",
    elevenlabs_key: str = "",
    elevenlabs_voice: str = VOICE_PROFILES[DEFAULT_VOICE].elevenlabs_voice_id,
    timeout: float = 30.0,
) -> TTSEngine:
    """Create the best available TTS engine.

    Prefers Piper (local, no latency) if a model is provided and the
    library is installed.  Falls back to ElevenLabs if an API key is set.
    Raises RuntimeError if neither is available.
    """
    if piper_model:
        piper = PiperTTS(model_path=piper_model)
        if piper.available:
            logger.info("Using Piper TTS (local)")
            return piper  # type: ignore[return-value]

    if elevenlabs_key:
        logger.info("Using ElevenLabs TTS (cloud)")
        return ElevenLabsTTS(  # type: ignore[return-value]
            api_key=elevenlabs_key, voice_id=elevenlabs_voice, timeout=timeout
        )

    raise RuntimeError(
        "No TTS engine available. Provide a Piper model path or "
        "set ELEVENLABS_API_KEY."
    )


def piper_model_for(profile: VoiceProfile, settings: Settings) -> str:
    """Piper model for *profile*.

    Looks for ``<piper_voices_dir>/<piper_model_name>.onnx`` and falls back
    to the single ``piper_model_path`` when the profile has no model there.
    """
    if settings.piper_voices_dir:
        candidate = Path(settings.piper_voices_dir) / f"{profile.piper_model_name}.onnx"
        if candidate.exists():
            return str(candidate)
    return settings.piper_model_path


def build_voice_engines(settings: Optional[Settings] = None) -> dict[str, TTSEngine]:
    """One engine per voice profile; profiles with no usable engine are omitted."""
    settings = settings or get_settings()
    engines: dict[str, TTSEngine] = {}
    for profile_id, profile in VOICE_PROFILES.items():
        try:
            engines[profile_id] = create_tts_engine(
                piper_model=piper_model_for(profile, settings),
                elevenlabs_key=settings.elevenlabs_api_key,
                elevenlabs_voice=profile.elevenlabs_voice_id,
                timeout=settings.request_timeout,
            )
        except RuntimeError:
            continue
    return engines


# ---------------------------------------------------------------------------
# Playback device
# ---------------------------------------------------------------------------

_PLAYBACK_BLOCK_FRAMES = 1024


class SpeakerSynthesis:
    """Synthesis device: TTS engine + ``sounddevice`` playback thread.

    Each :meth:`speak` runs synthesis and playback on a worker thread and
    fires exactly one of ``on_done`` / ``on_stopped`` / ``on_error``.
    """

    def __init__(self, engines: dict[str, TTSEngine]) -> None:
        self.engines = engines
        self._stop_event: Optional[threading.Event] = None
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return bool(self.engines)

    def speak(self, text: str, options: SpeechOptions, callbacks: SpeechCallbacks) -> None:
        engine = self.engines.get(options.voice) or next(iter(self.engines.values()), None)
        if engine is None:
            callbacks.on_error(RuntimeError("No TTS engine configured"))
            return

        stop_event = threading.Event()
        with self._lock:
            if self._stop_event is not None:
                self._stop_event.set()
            self._stop_event = stop_event

        worker = threading.Thread(
            target=self._run,
            args=(engine, options.prepare(text), callbacks, stop_event),
            name="aria-speech",
            daemon=True,
        )
        worker.start()

    def stop(self) -> None:
        with self._lock:
            if self._stop_event is not None:
                self._stop_event.set()
                self._stop_event = None

    def _run(
        self,
        engine: TTSEngine,
        text: str,
        callbacks: SpeechCallbacks,
        stop_event: threading.Event,
    ) -> None:
        try:
            wav = engine.synthesize(text)
            if stop_event.is_set():
                callbacks.on_stopped()
                return
            callbacks.on_start()
            completed = self._play(wav, stop_event)
        except Exception as exc:
            logger.exception("Speech synthesis failed")
            callbacks.on_error(exc)
            return
        if completed:
            callbacks.on_done()
        else:
            callbacks.on_stopped()

    @staticmethod
    def _play(wav: bytes, stop_event: threading.Event) -> bool:
        """Blocking playback.  Returns False if stopped early."""
        import sounddevice as sd  # type: ignore[import-untyped]

        with wave.open(io.BytesIO(wav), "rb") as wf:
            if wf.getsampwidth() != 2:
                raise ValueError("Only 16-bit PCM audio can be played")
            with sd.RawOutputStream(
                samplerate=wf.getframerate(),
                channels=wf.getnchannels(),
                dtype="int16",
            ) as stream:
                while True:
                    if stop_event.is_set():
                        return False
                    block = wf.readframes(_PLAYBACK_BLOCK_FRAMES)
                    if not block:
                        return True
                    stream.write(block)
