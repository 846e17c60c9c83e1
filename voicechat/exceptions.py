"""Custom exceptions for the voice chat client."""

from __future__ import annotations

from typing import Optional


class ChatClientError(RuntimeError):
    """Raised when the chat service responds with an error or cannot be reached."""


class TransportError(ChatClientError):
    """
    Non-2xx response or network failure while talking to the chat endpoint.

    Attributes:
        status: HTTP status code, or None when the server was never reached.
        body: Response body text (empty for network failures).
    """

    def __init__(self, message: str, *, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class FramingNoise(ValueError):
    """An event-stream payload line that is not JSON. Never leaves the parser."""


class RecognitionUnavailable(RuntimeError):
    """Speech recognition could not be started."""


class PermissionDenied(RecognitionUnavailable):
    """The user refused microphone / speech recognition permission."""


class CapabilityUnavailable(RecognitionUnavailable):
    """No speech recognition provider is usable on this machine."""
