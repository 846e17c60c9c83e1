"""
Tests for the assistant orchestration between sessions and the chat client.
"""

import http.client
from typing import List, Optional

import pytest

from voicechat.exceptions import TransportError
from voicechat.models import ChatResponse
from voicechat.pipeline import VoiceChatAssistant
from voicechat.store import MemoryStore, SessionStore


class FakeChatClient:
    def __init__(self, tokens=("Hel", "lo"), final="Hello!", conversation_id: Optional[str] = "conv-1"):
        self.tokens = list(tokens)
        self.final = final
        self.conversation_id = conversation_id
        self.error: Optional[Exception] = None
        self.calls: List[dict] = []

    def chat(self, messages, on_token=None, conversation_id=None):
        self.calls.append(
            {"messages": [m.as_dict() for m in messages], "conversation_id": conversation_id}
        )
        if self.error is not None:
            raise self.error
        for token in self.tokens:
            if on_token:
                on_token(token)
        return ChatResponse(content=self.final, conversation_id=self.conversation_id)


class RecordingTTS:
    def __init__(self):
        self.spoken: List[str] = []

    def speak(self, text: str) -> None:
        self.spoken.append(text)


def make_assistant(client=None, **kwargs):
    client = client or FakeChatClient()
    sessions = SessionStore(MemoryStore())
    assistant = VoiceChatAssistant(chat_client=client, sessions=sessions, **kwargs)
    return assistant, client, sessions


class TestSend:
    @pytest.mark.asyncio
    async def test_final_text_replaces_streamed_tokens(self):
        streamed = []
        assistant, _, _ = make_assistant(
            FakeChatClient(tokens=["Hel", "lo Hel"], final="Hello!"),
            on_token=streamed.append,
        )

        reply = await assistant.send("hi")

        assert reply.content == "Hello!"
        assert [m.content for m in assistant.conversation.messages] == ["hi", "Hello!"]
        assert assistant.conversation.pending is None
        assert streamed == ["Hel", "lo Hel"]

    @pytest.mark.asyncio
    async def test_empty_final_falls_back_to_streamed_text(self):
        assistant, _, _ = make_assistant(FakeChatClient(tokens=["a", "b"], final=""))

        reply = await assistant.send("hi")

        assert reply.content == "ab"

    @pytest.mark.asyncio
    async def test_blank_input_is_ignored(self):
        assistant, client, sessions = make_assistant()

        assert await assistant.send("   ") is None
        assert client.calls == []
        assert sessions.sessions == []

    @pytest.mark.asyncio
    async def test_conversation_id_sent_on_next_request(self):
        assistant, client, sessions = make_assistant()

        await assistant.send("first")
        await assistant.send("second")

        assert client.calls[0]["conversation_id"] is None
        assert client.calls[1]["conversation_id"] == "conv-1"
        assert sessions.current_session().server_conversation_id == "conv-1"

    @pytest.mark.asyncio
    async def test_history_is_sent_with_each_request(self):
        assistant, client, _ = make_assistant()

        await assistant.send("first")
        await assistant.send("second")

        assert client.calls[1]["messages"] == [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "user", "content": "second"},
        ]

    @pytest.mark.asyncio
    async def test_system_prompt_prepended(self):
        assistant, client, _ = make_assistant(system_prompt="Be brief.")

        await assistant.send("hi")

        assert client.calls[0]["messages"][0] == {"role": "system", "content": "Be brief."}
        assert [m.role for m in assistant.conversation.messages] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_transport_error_becomes_assistant_message(self):
        client = FakeChatClient()
        client.error = TransportError("HTTP 500: boom", status=500, body="boom")
        tts = RecordingTTS()
        assistant, _, _ = make_assistant(client, tts=tts)

        reply = await assistant.send("hi")

        assert reply.role == "assistant"
        assert reply.content == "Error: HTTP 500: boom"
        assert tts.spoken == []

    @pytest.mark.asyncio
    async def test_unexpected_failure_does_not_block_next_send(self):
        client = FakeChatClient()
        client.error = http.client.BadStatusLine("HELLO WORLD")
        assistant, _, sessions = make_assistant(client)

        failed = await assistant.send("one")
        client.error = None
        reply = await assistant.send("two")

        assert failed.content == "Error: HELLO WORLD"
        assert assistant.conversation.pending is None
        assert reply.content == "Hello!"
        assert [m.content for m in sessions.current_session().messages] == [
            "one",
            "Error: HELLO WORLD",
            "two",
            "Hello!",
        ]

    @pytest.mark.asyncio
    async def test_reply_is_spoken(self):
        tts = RecordingTTS()
        assistant, _, _ = make_assistant(tts=tts)

        await assistant.send("hi")

        assert tts.spoken == ["Hello!"]


class TestSessions:
    @pytest.mark.asyncio
    async def test_first_message_creates_session(self):
        assistant, _, sessions = make_assistant()

        await assistant.send("What is the time?")

        session = sessions.current_session()
        assert session is not None
        assert session.title == "What is the time?"
        assert [m.content for m in session.messages] == ["What is the time?", "Hello!"]

    @pytest.mark.asyncio
    async def test_new_session_starts_empty(self):
        assistant, client, sessions = make_assistant()
        await assistant.send("one")

        assistant.new_session()
        await assistant.send("two")

        assert len(sessions.sessions) == 2
        assert client.calls[1]["conversation_id"] is None
        assert [m.content for m in assistant.conversation.messages] == ["two", "Hello!"]

    @pytest.mark.asyncio
    async def test_open_session_restores_history(self):
        assistant, _, sessions = make_assistant()
        await assistant.send("one")
        first_id = sessions.current_session_id
        assistant.new_session()

        assert assistant.open_session(first_id)
        assert [m.content for m in assistant.conversation.messages] == ["one", "Hello!"]
        assert assistant.conversation.server_conversation_id == "conv-1"
        assert not assistant.open_session("missing")


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_then_drain(self):
        assistant, client, _ = make_assistant()

        assistant.submit("queued one")
        assistant.submit("queued two")
        await assistant.drain()

        assert [call["messages"][-1]["content"] for call in client.calls] == ["queued one", "queued two"]

    def test_append_draft(self):
        assistant, _, _ = make_assistant()
        assistant.append_draft("hello")
        assert assistant.append_draft("world") == "hello world"
