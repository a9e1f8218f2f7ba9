"""
Exception types for the ATC session.
"""


class SkyCommandError(Exception):
    """Base class for SkyCommand errors."""


class MissingCredentialError(SkyCommandError, ValueError):
    """No API key configured for the model gateway."""


class SpeechInputError(SkyCommandError):
    """Speech recognition failed (transient unless a subclass says otherwise)."""


class MicrophonePermissionError(SpeechInputError):
    """Microphone access denied. Recognition must not be retried."""


class FrameSourceError(SkyCommandError):
    """The video source could not be opened."""
