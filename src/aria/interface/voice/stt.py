"""Speech-to-text for captured utterances.

Two recognizers:

1. **WhisperSTT**: local Whisper via ``faster-whisper`` (preferred,
   CTranslate2) or ``openai-whisper``.  No network, needs a model download.
2. **OpenAITranscriber**: the hosted OpenAI transcription endpoint.

Both take a recorded WAV file (what :class:`MicrophoneCapture` produces)
and return the recognized text, or an empty string for silence.
"""

from __future__ import annotations

import importlib.util
import io
import logging
import struct
import wave
from pathlib import Path
from typing import Optional, Protocol

from aria.config import Settings, get_settings

logger = logging.getLogger(__name__)


class SpeechRecognizer(Protocol):
    """Protocol that all STT backends implement."""

    def transcribe_file(self, path: Path) -> str:
        """Return the text spoken in the WAV file at *path*."""
        ...

    @property
    def available(self) -> bool:
        ...


# ---------------------------------------------------------------------------
# Audio helpers
# ---------------------------------------------------------------------------

def pcm_to_wav(pcm_bytes: bytes, sample_rate: int = 16000, channels: int = 1) -> bytes:
    """Wrap raw 16-bit PCM in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)  # 16-bit
        wf.setframerate(sample_rate)
        wf.writeframes(pcm_bytes)
    return buf.getvalue()


def _is_wav(data: bytes) -> bool:
    """Check if data starts with a RIFF/WAVE header."""
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def _wav_frames(data: bytes) -> bytes:
    """Return the PCM payload of a WAV file, or b"" if it cannot be read."""
    try:
        with wave.open(io.BytesIO(data), "rb") as wf:
            return wf.readframes(wf.getnframes())
    except (wave.Error, EOFError):
        return b""


def _compute_rms(audio_bytes: bytes) -> float:
    """Compute RMS amplitude of 16-bit PCM samples."""
    n_samples = len(audio_bytes) // 2
    if n_samples == 0:
        return 0.0
    samples = struct.unpack(f"<{n_samples}h", audio_bytes[:n_samples * 2])
    mean_sq = sum(s * s for s in samples) / n_samples
    return mean_sq ** 0.5


# Recordings quieter than this RMS are treated as silence and not sent
# to a recognizer.
_SILENCE_RMS_THRESHOLD = 50.0


def is_silent(wav_data: bytes) -> bool:
    pcm = _wav_frames(wav_data) if _is_wav(wav_data) else wav_data
    return _compute_rms(pcm) < _SILENCE_RMS_THRESHOLD


# ---------------------------------------------------------------------------
# Local Whisper
# ---------------------------------------------------------------------------

def _detect_backend() -> str:
    """Detect which Whisper backend is installed.

    Uses ``importlib.util.find_spec`` so detection never triggers the
    heavy native imports; those happen lazily in
    :meth:`WhisperSTT._ensure_model`.
    """
    if importlib.util.find_spec("faster_whisper") is not None:
        logger.info("STT backend: faster-whisper")
        return "faster_whisper"
    if importlib.util.find_spec("whisper") is not None:
        logger.info("STT backend: openai-whisper")
        return "openai_whisper"
    logger.warning(
        "No Whisper backend found. Install faster-whisper or openai-whisper."
    )
    return "none"


def _resolve_device(device: str) -> str:
    if device != "auto":
        return device
    try:
        import torch
    except ImportError:
        return "cpu"
    return "cuda" if torch.cuda.is_available() else "cpu"


class WhisperSTT:
    """Local Whisper speech-to-text engine.

    Parameters
    ----------
    model_size : str
        ``tiny``, ``base``, ``small``, ``medium`` or ``large-v3``.
    device : str
        ``cuda``, ``cpu`` or ``auto`` (GPU if torch sees one).
    language : str
        ISO language code passed to the model.
    """

    def __init__(
        self,
        model_size: str = "base",
        device: str = "auto",
        language: str = "en",
    ) -> None:
        self.model_size = model_size
        self.device = device
        self.language = language
        self._model: object = None
        self._backend = _detect_backend()

    @property
    def available(self) -> bool:
        return self._backend != "none"

    def _ensure_model(self) -> None:
        """Load the model on first use.

        A failed import downgrades the backend to ``"none"`` so later
        calls return empty strings instead of retrying the broken import.
        """
        if self._model is not None:
            return
        device = _resolve_device(self.device)
        try:
            if self._backend == "faster_whisper":
                from faster_whisper import WhisperModel  # type: ignore[import-untyped]

                compute_type = "float16" if device == "cuda" else "int8"
                self._model = WhisperModel(
                    self.model_size, device=device, compute_type=compute_type
                )
            elif self._backend == "openai_whisper":
                import whisper  # type: ignore[import-untyped]

                self._model = whisper.load_model(self.model_size, device=device)
        except Exception as exc:
            logger.error(
                "Whisper model load failed (%s: %s); STT disabled",
                type(exc).__name__, exc,
            )
            self._backend = "none"
            return
        logger.info("Loaded %s %s on %s", self._backend, self.model_size, device)

    def transcribe_file(self, path: Path) -> str:
        return self.transcribe(Path(path).read_bytes())

    def transcribe(self, audio: bytes, sample_rate: int = 16000) -> str:
        """Transcribe WAV or raw 16-bit PCM bytes.

        Returns an empty string on silence, when no backend is installed,
        or when the model fails.
        """
        if not self.available:
            return ""
        wav_data = audio if _is_wav(audio) else pcm_to_wav(audio, sample_rate=sample_rate)
        if is_silent(wav_data):
            return ""

        self._ensure_model()
        if self._model is None:
            return ""

        try:
            if self._backend == "faster_whisper":
                segments, _ = self._model.transcribe(  # type: ignore[union-attr]
                    io.BytesIO(wav_data), language=self.language, beam_size=5
                )
                return " ".join(seg.text.strip() for seg in segments).strip()
            # openai-whisper wants a path or an array; hand it a temp file.
            import tempfile

            with tempfile.NamedTemporaryFile(suffix=".wav") as tmp:
                tmp.write(wav_data)
                tmp.flush()
                result = self._model.transcribe(  # type: ignore[union-attr]
                    tmp.name, language=self.language
                )
            return result.get("text", "").strip()
        except Exception:
            logger.exception("Whisper transcription failed")
            return ""


# ---------------------------------------------------------------------------
# Hosted transcription
# ---------------------------------------------------------------------------

class OpenAITranscriber:
    """Speech-to-text via the OpenAI audio transcription endpoint."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "whisper-1",
        language: str = "en",
        timeout: float = 30.0,
        client: Optional[object] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.language = language
        self.timeout = timeout
        self._client = client

    @property
    def available(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self):  # -> openai.OpenAI
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    def transcribe_file(self, path: Path) -> str:
        if not self.available:
            return ""
        path = Path(path)
        if is_silent(path.read_bytes()):
            return ""
        try:
            with path.open("rb") as fh:
                result = self._get_client().audio.transcriptions.create(
                    model=self.model, file=fh, language=self.language
                )
        except Exception:
            logger.exception("OpenAI transcription failed")
            return ""
        return (getattr(result, "text", "") or "").strip()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_stt_engine(settings: Optional[Settings] = None) -> SpeechRecognizer:
    """Create the recognizer selected by ``ARIA_STT_BACKEND``.

    Falls back to the hosted endpoint when no local Whisper is installed
    but an OpenAI key is configured.
    """
    settings = settings or get_settings()
    hosted = OpenAITranscriber(
        api_key=settings.resolved_llm_api_key if settings.llm_provider == "openai" else "",
        language=settings.stt_language,
        timeout=settings.request_timeout,
    )
    if settings.stt_backend == "openai":
        return hosted

    local = WhisperSTT(
        model_size=settings.whisper_model,
        device=settings.whisper_device,
        language=settings.stt_language,
    )
    if not local.available and hosted.available:
        logger.info("Using OpenAI transcription (no local Whisper installed)")
        return hosted
    return local
