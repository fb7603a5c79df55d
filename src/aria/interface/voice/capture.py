"""Microphone capture for the voice arbiter.

The arbiter only needs three primitives from a recorder: ask for
permission, start, and stop-and-hand-over-the-recording.  The concrete
:class:`MicrophoneCapture` records 16-bit mono PCM through
``sounddevice`` (``pip install sounddevice``, needs PortAudio) and writes
each recording to a temporary WAV file.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from aria.interface.voice.errors import DeviceError
from aria.interface.voice.stt import pcm_to_wav

logger = logging.getLogger(__name__)


class CaptureDevice(Protocol):
    """Protocol that all recorders implement."""

    def request_permission(self) -> bool:
        """Return True if audio may be recorded."""
        ...

    def start(self) -> None:
        """Begin recording.  Raises ``DeviceError`` if the device fails."""
        ...

    def stop(self) -> Path:
        """Finish recording and return the path of the WAV file."""
        ...


class MicrophoneCapture:
    """Default input device recorder backed by ``sounddevice``.

    Parameters
    ----------
    sample_rate : int
        Capture rate in Hz.  Whisper expects 16 kHz.
    device : int, str or None
        PortAudio device index or name.  ``None`` picks the default input.
    output_dir : Path or None
        Where recordings are written.  Defaults to the system temp dir.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        device: int | str | None = None,
        output_dir: Path | str | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = 1
        self.device = device
        self.output_dir = Path(output_dir) if output_dir else None
        self._stream: Optional[object] = None
        self._frames: list[bytes] = []

    def request_permission(self) -> bool:
        try:
            import sounddevice as sd  # type: ignore[import-untyped]
        except (ImportError, OSError) as exc:
            # OSError: the wheel is installed but PortAudio is missing.
            logger.warning("sounddevice unavailable (%s); microphone disabled", exc)
            return False
        try:
            sd.check_input_settings(
                device=self.device,
                channels=self.channels,
                samplerate=self.sample_rate,
                dtype="int16",
            )
        except Exception as exc:
            logger.warning("Microphone not usable: %s", exc)
            return False
        return True

    def start(self) -> None:
        if self._stream is not None:
            raise DeviceError("Recording already in progress")
        try:
            import sounddevice as sd  # type: ignore[import-untyped]
        except (ImportError, OSError) as exc:
            raise DeviceError(f"sounddevice unavailable: {exc}") from exc

        self._frames = []

        def _callback(indata, frames, time_info, status) -> None:
            if status:
                logger.debug("Capture stream status: %s", status)
            self._frames.append(bytes(indata))

        try:
            stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                device=self.device,
                callback=_callback,
            )
            stream.start()
        except Exception as exc:
            raise DeviceError(f"Could not open microphone: {exc}") from exc
        self._stream = stream
        logger.info("Recording started (%d Hz)", self.sample_rate)

    def stop(self) -> Path:
        if self._stream is None:
            raise DeviceError("No recording in progress")
        stream, self._stream = self._stream, None
        try:
            stream.stop()  # type: ignore[attr-defined]
            stream.close()  # type: ignore[attr-defined]
        except Exception as exc:
            raise DeviceError(f"Could not finalize recording: {exc}") from exc

        pcm = b"".join(self._frames)
        self._frames = []
        wav = pcm_to_wav(pcm, sample_rate=self.sample_rate, channels=self.channels)
        with tempfile.NamedTemporaryFile(
            suffix=".wav", delete=False, dir=self.output_dir
        ) as tmp:
            tmp.write(wav)
            path = Path(tmp.name)
        logger.info("Recording stopped, audio saved to %s", path)
        return path
