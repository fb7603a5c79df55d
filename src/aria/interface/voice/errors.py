"""Voice I/O error types."""

from __future__ import annotations


class VoiceError(RuntimeError):
    """Base class for capture and playback failures."""


class VoiceBusyError(VoiceError):
    """The voice device is held by another operation, or permission was denied."""


class DeviceError(VoiceError):
    """The recording device could not be initialized or finalized."""


class SynthesisError(VoiceError):
    """Text-to-speech synthesis or playback failed."""
