"""Core orchestration: voice/typed input in, streamed assistant replies out."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Callable, List, Optional

from .capture import append_to_draft
from .exceptions import TransportError
from .interfaces import ChatClient, TextToSpeech
from .models import ChatMessage, Conversation, PendingReply, Session
from .store import SessionStore

logger = logging.getLogger(__name__)


class VoiceChatAssistant:
    """
    Owns the active conversation and turns user text into assistant replies.

    The chat request runs in an executor thread; streamed tokens are handed
    back to the event loop and appended to the conversation's pending reply,
    which is replaced by the final response text once the request completes.

    Usage:
        assistant = VoiceChatAssistant(
            chat_client=StreamingChatClient(config.base_url, api_key=config.api_key, model=config.model),
            sessions=SessionStore(JsonFileStore(config.state_path)),
            tts=ConsoleTextToSpeech(),
        )
        await assistant.send("What's the weather like on Mars?")
    """

    def __init__(
        self,
        *,
        chat_client: ChatClient,
        sessions: SessionStore,
        tts: Optional[TextToSpeech] = None,
        system_prompt: Optional[str] = None,
        on_token: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._chat_client = chat_client
        self._sessions = sessions
        self._tts = tts
        self._system_prompt = system_prompt
        self._on_token = on_token
        self._send_lock = asyncio.Lock()
        self._tasks: set = set()
        self.draft = ""

        self._session: Optional[Session] = sessions.current_session()
        self._conversation = self._session.to_conversation() if self._session else Conversation()

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def new_session(self) -> None:
        """Start a fresh conversation; the session is created on the first message."""
        self._session = None
        self._conversation = Conversation()
        self._sessions.set_current_session(None)

    def open_session(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        self._session = session
        self._conversation = session.to_conversation()
        self._sessions.set_current_session(session.id)
        return True

    def append_draft(self, text: str) -> str:
        self.draft = append_to_draft(self.draft, text)
        return self.draft

    def submit(self, text: str) -> None:
        """Schedule :meth:`send` from synchronous callbacks such as capture events."""
        task = asyncio.ensure_future(self.send(text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every submitted message to be answered."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def send(self, text: str) -> Optional[ChatMessage]:
        """Append the user turn, stream the reply and return the committed assistant message."""
        text = text.strip()
        if not text:
            return None

        async with self._send_lock:
            if self._session is None:
                self._session = self._sessions.create_session(text)
            conversation = self._conversation
            conversation.append(ChatMessage(role="user", content=text))
            self._persist()

            pending = conversation.begin_reply()
            loop = asyncio.get_running_loop()

            def on_token(token: str) -> None:
                loop.call_soon_threadsafe(self._deliver_token, pending, token)

            call = partial(
                self._chat_client.chat,
                self._request_messages(),
                on_token,
                conversation.server_conversation_id,
            )
            try:
                response = await loop.run_in_executor(None, call)
            except TransportError as exc:
                logger.error("Chat error: %s", exc)
                return self._commit_error(conversation, exc)
            except asyncio.CancelledError:
                conversation.commit_reply(pending.content or "Error: request cancelled")
                self._persist()
                raise
            except Exception as exc:
                logger.exception("Chat request failed unexpectedly")
                return self._commit_error(conversation, exc)

            final_text = response.content or pending.content
            reply = conversation.commit_reply(final_text)
            conversation.update_conversation_id(response.conversation_id)
            if conversation.server_conversation_id:
                self._sessions.set_server_conversation_id(self._session.id, conversation.server_conversation_id)
            self._persist()

        if final_text and self._tts is not None:
            await loop.run_in_executor(None, self._tts.speak, final_text)
        return reply

    def _commit_error(self, conversation: Conversation, exc: Exception) -> ChatMessage:
        reply = conversation.commit_reply(f"Error: {exc}")
        self._persist()
        return reply

    def _deliver_token(self, pending: PendingReply, token: str) -> None:
        if pending.closed:
            return
        pending.append(token)
        if self._on_token is not None:
            self._on_token(token)

    def _request_messages(self) -> List[ChatMessage]:
        messages = list(self._conversation.messages)
        if self._system_prompt and not any(m.role == "system" for m in messages):
            messages.insert(0, ChatMessage(role="system", content=self._system_prompt))
        return messages

    def _persist(self) -> None:
        if self._session is not None:
            self._sessions.update_messages(self._session.id, list(self._conversation.messages))
