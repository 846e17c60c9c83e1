"""
Tests for the event-stream parser shared by buffered and incremental reads.
"""

import json

from conftest import delta

from voicechat.services.event_stream import (
    EventStreamParser,
    extract_token,
    is_control_event,
    parse_event_stream,
)


def _collect(body: str, **kwargs):
    tokens = []
    parser = parse_event_stream(body, on_token=tokens.append, **kwargs)
    return parser, tokens


class TestEventParsing:
    """Framing and accumulation."""

    def test_text_is_concatenation_of_tokens(self):
        body = "".join(f"data: {delta(t)}\n\n" for t in ["Hel", "lo", ", ", "world"])
        parser, tokens = _collect(body)

        assert tokens == ["Hel", "lo", ", ", "world"]
        assert parser.text == "Hello, world"
        assert parser.text == "".join(tokens)

    def test_noise_lines_are_skipped(self):
        body = (
            ": keep-alive\n\n"
            "event: ping\n\n"
            "data: not json at all\n\n"
            f"data: {delta('ok')}\n\n"
            "data: {broken\n\n"
        )
        parser, tokens = _collect(body)

        assert tokens == ["ok"]
        assert parser.text == "ok"

    def test_prefix_without_space_and_crlf_framing(self):
        body = f"data:{delta('a')}\r\n\r\ndata: {delta('b')}\r\n\r\n"
        parser, tokens = _collect(body)

        assert tokens == ["a", "b"]

    def test_message_content_fallback(self):
        full = json.dumps({"choices": [{"message": {"content": "whole reply"}}]})
        parser, tokens = _collect(f"data: {full}\n\n")

        assert tokens == ["whole reply"]
        assert parser.text == "whole reply"

    def test_chunks_without_content_are_ignored(self):
        role_only = json.dumps({"choices": [{"delta": {"role": "assistant"}}]})
        empty = json.dumps({"choices": []})
        parser, tokens = _collect(f"data: {role_only}\n\ndata: {empty}\n\ndata: {delta('x')}\n\n")

        assert tokens == ["x"]

    def test_feeding_one_character_at_a_time_matches_whole_body(self):
        body = "".join(f"data: {delta(t)}\n\n" for t in ["un", "ic", "ødé ✓"])
        tokens = []
        parser = EventStreamParser(on_token=tokens.append)
        for char in body:
            parser.feed(char)

        assert parser.close() == "unicødé ✓"
        assert tokens == ["un", "ic", "ødé ✓"]

    def test_partial_event_waits_for_next_chunk(self):
        tokens = []
        parser = EventStreamParser(on_token=tokens.append)
        event = f"data: {delta('later')}\n\n"

        parser.feed(event[:10])
        assert tokens == []
        parser.feed(event[10:])
        assert tokens == ["later"]

    def test_unterminated_tail_is_processed_on_close(self):
        parser, tokens = _collect(f"data: {delta('a')}\n\ndata: {delta('b')}")

        assert tokens == ["a", "b"]

    def test_stream_without_terminator_returns_accumulated_text(self):
        parser, _ = _collect(f"data: {delta('partial answer')}\n\n")

        assert parser.done is False
        assert parser.text == "partial answer"


class TestTermination:
    """`[DONE]` stops everything after it."""

    def test_done_discards_later_events(self):
        body = f"data: {delta('keep')}\n\ndata: [DONE]\n\ndata: {delta('garbage')}\n\ntrailing junk"
        parser, tokens = _collect(body)

        assert parser.done is True
        assert parser.text == "keep"
        assert tokens == ["keep"]

    def test_quoted_done_marker(self):
        parser, tokens = _collect(f'data: {delta("a")}\n\ndata: "[DONE]"\n\ndata: {delta("b")}\n\n')

        assert parser.text == "a"

    def test_done_mid_event_drops_following_lines(self):
        body = f"data: {delta('a')}\ndata: [DONE]\ndata: {delta('b')}\n\n"
        parser, tokens = _collect(body)

        assert tokens == ["a"]

    def test_feed_after_done_is_ignored(self):
        parser = EventStreamParser()
        assert parser.feed("data: [DONE]\n\n") is True
        assert parser.feed(f"data: {delta('late')}\n\n") is True
        assert parser.close() == ""


class TestControlEvents:
    """Embedded `data-operation` payloads never reach the caller."""

    def test_data_operation_token_is_dropped(self):
        control = json.dumps({"type": "data-operation", "data": {"op": "refresh"}})
        body = f"data: {delta('before ')}\n\ndata: {delta(control)}\n\ndata: {delta('after')}\n\n"
        parser, tokens = _collect(body)

        assert tokens == ["before ", "after"]
        assert control not in parser.text

    def test_brace_token_that_is_not_json_is_forwarded(self):
        parser, tokens = _collect(f"data: {delta('{ not json')}\n\n")

        assert tokens == ["{ not json"]

    def test_json_token_without_marker_is_forwarded(self):
        other = json.dumps({"type": "something-else"})
        parser, tokens = _collect(f"data: {delta(other)}\n\n")

        assert tokens == [other]

    def test_is_control_event_ignores_leading_whitespace(self):
        assert is_control_event('  {"type": "data-operation"}')
        assert not is_control_event('["data-operation"]')
        assert not is_control_event("plain text")


class TestConversationId:
    def test_last_value_wins(self):
        first = json.dumps({"conversation_id": "c1", "choices": [{"delta": {"content": "a"}}]})
        second = json.dumps({"conversation_id": "c2", "choices": [{"delta": {"content": "b"}}]})
        parser, _ = _collect(f"data: {first}\n\ndata: {second}\n\n", conversation_id="c0")

        assert parser.conversation_id == "c2"

    def test_previous_value_kept_when_none_seen(self):
        parser, _ = _collect(f"data: {delta('a')}\n\n", conversation_id="known")

        assert parser.conversation_id == "known"

    def test_empty_value_does_not_overwrite(self):
        chunk = json.dumps({"conversation_id": "", "choices": [{"delta": {"content": "a"}}]})
        parser, _ = _collect(f"data: {chunk}\n\n", conversation_id="known")

        assert parser.conversation_id == "known"


def test_extract_token_prefers_delta():
    obj = {"choices": [{"delta": {"content": "d"}, "message": {"content": "m"}}]}
    assert extract_token(obj) == "d"
    assert extract_token({"choices": "nope"}) is None
