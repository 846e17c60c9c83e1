"""
Tests for conversation and message dataclasses.
"""

import dataclasses

import pytest

from voicechat.models import ChatMessage, Conversation, Session


class TestConversation:
    def test_append_assigns_ids_and_keeps_order(self):
        convo = Conversation()
        first = convo.append(ChatMessage(role="user", content="one"))
        second = convo.append(ChatMessage(role="assistant", content="two"))

        assert first.id and second.id and first.id != second.id
        assert [m.content for m in convo.messages] == ["one", "two"]

    def test_messages_are_immutable(self):
        message = ChatMessage(role="user", content="fixed")
        with pytest.raises(dataclasses.FrozenInstanceError):
            message.content = "changed"

    def test_commit_replaces_streamed_content(self):
        convo = Conversation()
        pending = convo.begin_reply()
        pending.append("Hel")
        pending.append("lo Hel")

        reply = convo.commit_reply("Hello!")

        assert reply.content == "Hello!"
        assert convo.messages[-1].content == "Hello!"
        assert convo.pending is None

    def test_tokens_after_commit_are_dropped(self):
        convo = Conversation()
        pending = convo.begin_reply()
        convo.commit_reply("done")

        pending.append("late")

        assert pending.closed
        assert pending.content == ""
        assert convo.messages[-1].content == "done"

    def test_only_one_pending_reply(self):
        convo = Conversation()
        convo.begin_reply()
        with pytest.raises(RuntimeError):
            convo.begin_reply()

    def test_commit_without_pending_reply(self):
        with pytest.raises(RuntimeError):
            Conversation().commit_reply("x")

    def test_transcript_includes_pending_snapshot(self):
        convo = Conversation([ChatMessage(role="user", content="hi", id="m1")])
        pending = convo.begin_reply()
        pending.append("typing")

        transcript = convo.transcript

        assert [m.content for m in transcript] == ["hi", "typing"]
        assert convo.request_messages() == [{"role": "user", "content": "hi"}]

    def test_conversation_id_last_write_wins(self):
        convo = Conversation()
        convo.update_conversation_id("a")
        convo.update_conversation_id(None)
        convo.update_conversation_id("")
        assert convo.server_conversation_id == "a"

        convo.update_conversation_id("b")
        assert convo.server_conversation_id == "b"


class TestSession:
    def test_title_from_first_message(self):
        session = Session.create("x" * 80)
        assert session.title == "x" * 50

    def test_default_title(self):
        assert Session.create().title == "New Chat"
        assert Session.create("   ").title == "New Chat"

    def test_dict_round_trip_keeps_server_id(self):
        session = Session.create("hello")
        session.messages.append(ChatMessage(role="user", content="hello", id="m1"))
        session.server_conversation_id = "srv-1"

        restored = Session.from_dict(session.to_dict())

        assert restored == session
        assert restored.to_conversation().server_conversation_id == "srv-1"
