"""Protocol interfaces for dependency injection."""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, Sequence

from .models import ChatMessage, ChatResponse, KillSwitchResult, RecognitionOptions

TokenCallback = Callable[[str], None]


class ChatClient(Protocol):
    """Talks to an OpenAI-compatible chat completion endpoint."""

    def chat(
        self,
        messages: Sequence[ChatMessage],
        on_token: Optional[TokenCallback] = None,
        conversation_id: Optional[str] = None,
    ) -> ChatResponse:
        """Send the conversation and return the final assistant text."""

    def health(self) -> bool:
        """Return True when the endpoint answers successfully."""

    def kill_switch(self) -> KillSwitchResult:
        """Ask the server to stop every running agent session."""


class Subscription(Protocol):
    """Handle returned by :meth:`SpeechRecognizer.add_listener`."""

    def remove(self) -> None:
        """Stop delivering events to the handler."""


class SpeechRecognizer(Protocol):
    """
    Event-emitting speech recognition provider.

    Events:
        result: :class:`~voicechat.models.RecognitionResult`
        error: :class:`~voicechat.models.RecognitionError`
        end: no payload (handler receives None)
        volume: float level, only when requested in the start options
    """

    name: str

    def is_available(self) -> bool:
        """Probe whether this provider can run in the current environment."""

    async def get_permission(self) -> bool:
        """Return True if capture is already permitted."""

    async def request_permission(self) -> bool:
        """Ask for capture permission and return whether it was granted."""

    async def start(self, options: RecognitionOptions) -> None:
        """Begin recognition; returns once the provider confirms start."""

    async def stop(self) -> None:
        """Request recognition to finish; `end` follows once results are flushed."""

    def add_listener(self, event: str, handler: Callable[[Any], None]) -> Subscription:
        """Subscribe to a recognizer event."""


class TextToSpeech(Protocol):
    """Speaks assistant responses."""

    def speak(self, text: str) -> None:
        """Render speech for the provided text."""


class KeyValueStore(Protocol):
    """String key-value storage used for config and session persistence."""

    def get_item(self, key: str) -> Optional[str]:
        """Return the stored value or None."""

    def set_item(self, key: str, value: str) -> None:
        """Store a value."""

    def remove_item(self, key: str) -> None:
        """Delete a value if present."""
