"""Shared dataclasses for the voice chat client."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

Role = Literal["system", "user", "assistant"]

DEFAULT_SESSION_TITLE = "New Chat"
SESSION_TITLE_LENGTH = 50


def generate_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class ChatMessage:
    """Represents a single committed chat turn."""

    role: Role
    content: str
    id: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        """Convert to the API shape expected by the chat endpoint."""
        return {"role": self.role, "content": self.content}


@dataclass
class ChatResponse:
    """Final result of a chat request."""

    content: str
    conversation_id: Optional[str] = None


@dataclass
class KillSwitchResult:
    """Outcome of an emergency-stop request. Never raised, always returned."""

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    processes_killed: Optional[int] = None


class PendingReply:
    """
    The in-flight assistant message.

    Tokens are appended while the response streams in. Once the conversation
    commits the reply, the pending slot is closed and later tokens are dropped.
    """

    def __init__(self) -> None:
        self._content = ""
        self._closed = False

    @property
    def content(self) -> str:
        return self._content

    @property
    def closed(self) -> bool:
        return self._closed

    def append(self, token: str) -> None:
        if self._closed or not token:
            return
        self._content += token

    def _close(self) -> None:
        self._closed = True


class Conversation:
    """
    Ordered transcript of committed messages plus at most one pending reply.

    Usage:
        >>> convo = Conversation()
        >>> convo.append(ChatMessage(role="user", content="Hi"))
        >>> pending = convo.begin_reply()
        >>> pending.append("Hel")
        >>> convo.commit_reply("Hello!").content
        'Hello!'
    """

    def __init__(
        self,
        messages: Sequence[ChatMessage] = (),
        *,
        server_conversation_id: Optional[str] = None,
    ) -> None:
        self._messages: Tuple[ChatMessage, ...] = tuple(messages)
        self._pending: Optional[PendingReply] = None
        self.server_conversation_id = server_conversation_id

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return self._messages

    @property
    def pending(self) -> Optional[PendingReply]:
        return self._pending

    @property
    def transcript(self) -> Tuple[ChatMessage, ...]:
        """Committed messages followed by a snapshot of the pending reply."""
        if self._pending is None:
            return self._messages
        return self._messages + (ChatMessage(role="assistant", content=self._pending.content),)

    def append(self, message: ChatMessage) -> ChatMessage:
        if message.id is None:
            message = replace(message, id=generate_message_id())
        self._messages = self._messages + (message,)
        return message

    def begin_reply(self) -> PendingReply:
        if self._pending is not None:
            raise RuntimeError("A reply is already in flight for this conversation")
        self._pending = PendingReply()
        return self._pending

    def commit_reply(self, content: str) -> ChatMessage:
        """Replace the pending reply wholesale with the authoritative final text."""
        if self._pending is None:
            raise RuntimeError("No reply is in flight for this conversation")
        self._pending._close()
        self._pending = None
        return self.append(ChatMessage(role="assistant", content=content))

    def update_conversation_id(self, conversation_id: Optional[str]) -> None:
        if conversation_id:
            self.server_conversation_id = conversation_id

    def request_messages(self) -> List[Dict[str, str]]:
        return [message.as_dict() for message in self._messages]


@dataclass
class Session:
    """A persisted conversation as stored by :class:`~voicechat.store.SessionStore`."""

    id: str
    title: str
    created_at: int
    updated_at: int
    messages: List[ChatMessage] = field(default_factory=list)
    server_conversation_id: Optional[str] = None

    @classmethod
    def create(cls, first_message: Optional[str] = None) -> "Session":
        now = int(time.time() * 1000)
        title = DEFAULT_SESSION_TITLE
        if first_message and first_message.strip():
            title = first_message.strip()[:SESSION_TITLE_LENGTH]
        return cls(id=f"session_{now}_{uuid.uuid4().hex[:8]}", title=title, created_at=now, updated_at=now)

    def to_conversation(self) -> Conversation:
        return Conversation(self.messages, server_conversation_id=self.server_conversation_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messages": [
                {"id": m.id, "role": m.role, "content": m.content} for m in self.messages
            ],
            "serverConversationId": self.server_conversation_id,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Session":
        messages = [
            ChatMessage(role=m["role"], content=m.get("content") or "", id=m.get("id"))
            for m in raw.get("messages", [])
            if isinstance(m, dict) and m.get("role") in ("system", "user", "assistant")
        ]
        return cls(
            id=str(raw["id"]),
            title=str(raw.get("title") or DEFAULT_SESSION_TITLE),
            created_at=int(raw.get("createdAt") or 0),
            updated_at=int(raw.get("updatedAt") or 0),
            messages=messages,
            server_conversation_id=raw.get("serverConversationId") or None,
        )


@dataclass(frozen=True)
class RecognitionOptions:
    """
    Options passed to a speech recognizer on start.

    Attributes:
        lang: BCP-47 language tag (e.g., "en-US").
        interim_results: Whether partial results should be emitted.
        continuous: Keep listening across utterances (hands-free mode).
        volume_interval: Seconds between volume events; None disables them.
    """

    lang: str = "en-US"
    interim_results: bool = True
    continuous: bool = False
    volume_interval: Optional[float] = None


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    is_final: bool


@dataclass(frozen=True)
class RecognitionError:
    reason: str
