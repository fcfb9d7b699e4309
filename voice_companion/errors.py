"""
Exception types shared by the client, the session controller and the backend.

Everything raised on purpose derives from ``VoiceCompanionError`` so the
session controller can catch the whole family at one boundary and turn it
into a single user-facing message.
"""

from __future__ import annotations


class VoiceCompanionError(Exception):
    """Base class for all errors raised by voice_companion."""


# ---------------------------------------------------------------------------
# Microphone
# ---------------------------------------------------------------------------


class MicrophoneError(VoiceCompanionError):
    """The microphone could not be acquired."""


class MicrophonePermissionError(MicrophoneError):
    """Access to the microphone was denied by the OS or the user.

    Terminal for the session until access is granted; never retried
    automatically.
    """


class MicrophoneUnavailableError(MicrophoneError):
    """No usable input device, or the device failed to open."""


# ---------------------------------------------------------------------------
# Pipeline (network + protocol)
# ---------------------------------------------------------------------------


class PipelineError(VoiceCompanionError):
    """A turn or greeting request failed; the session itself survives."""


class PipelineHTTPError(PipelineError):
    """The backend answered with a non-success status."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class PipelineTimeoutError(PipelineError):
    """The backend did not answer within the configured timeout."""


class EmptyResponseError(PipelineError):
    """The response carried no body."""


class ProtocolError(PipelineError):
    """The streamed response did not start with a JSON header line."""


# ---------------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------------


class PlaybackError(VoiceCompanionError):
    """Audio output failed. Caught inside the player; never blocks a turn."""
