"""Incremental parser for `text/event-stream` chat completion responses."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from ..exceptions import FramingNoise
from ..interfaces import TokenCallback

logger = logging.getLogger(__name__)

DONE_MARKERS = frozenset({"[DONE]", '"[DONE]"'})
CONTROL_EVENT_TYPE = "data-operation"

_DATA_PREFIX = re.compile(r"^data:\s?")


class EventStreamParser:
    """
    Rebuilds assistant text from server-sent event chunks.

    Feed decoded text as it arrives; complete events (separated by a blank
    line) are processed immediately and any partial tail is kept until the
    next chunk. Parsing stops for good at the first `[DONE]` marker.

    Usage:
        >>> parser = EventStreamParser(on_token=print)
        >>> parser.feed('data: {"choices":[{"delta":{"content":"Hi"}}]}\\n\\n')
        Hi
        False
        >>> parser.feed("data: [DONE]\\n\\n")
        True
        >>> parser.text
        'Hi'
    """

    def __init__(
        self,
        *,
        on_token: Optional[TokenCallback] = None,
        conversation_id: Optional[str] = None,
    ) -> None:
        self._on_token = on_token
        self._buffer = ""
        self._parts: list[str] = []
        self.conversation_id = conversation_id
        self.done = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: str) -> bool:
        """
        Add decoded text and process every complete event in the buffer.

        Returns:
            True once the termination marker has been seen.
        """
        if self.done:
            return True

        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")
        while not self.done:
            idx = self._buffer.find("\n\n")
            if idx == -1:
                break
            event = self._buffer[:idx]
            self._buffer = self._buffer[idx + 2:]
            self._process_event(event)

        if self.done:
            self._buffer = ""
        return self.done

    def close(self) -> str:
        """Process any unterminated tail and return the accumulated text."""
        if not self.done and self._buffer.strip():
            tail, self._buffer = self._buffer, ""
            self._process_event(tail)
        self._buffer = ""
        return self.text

    def _process_event(self, event: str) -> None:
        for raw_line in event.split("\n"):
            payload = _DATA_PREFIX.sub("", raw_line).strip()
            if not payload:
                continue
            if payload in DONE_MARKERS:
                logger.debug("Event stream finished with explicit terminator")
                self.done = True
                return
            try:
                obj = _parse_payload(payload)
            except FramingNoise:
                logger.debug("Ignoring non-JSON stream line: %.80s", payload)
                continue
            self._handle_object(obj)

    def _handle_object(self, obj: Any) -> None:
        if not isinstance(obj, dict):
            return

        conversation_id = obj.get("conversation_id")
        if conversation_id:
            self.conversation_id = str(conversation_id)

        token = extract_token(obj)
        if not token or is_control_event(token):
            return

        self._parts.append(token)
        if self._on_token is not None:
            self._on_token(token)


def parse_event_stream(
    body: str,
    *,
    on_token: Optional[TokenCallback] = None,
    conversation_id: Optional[str] = None,
) -> EventStreamParser:
    """Run the parser over a complete body at once."""
    parser = EventStreamParser(on_token=on_token, conversation_id=conversation_id)
    parser.feed(body)
    parser.close()
    return parser


def extract_token(obj: Dict[str, Any]) -> Optional[str]:
    """
    Pull the text fragment out of a chunk.

    Accepted shapes (first match wins):
        {"choices": [{"delta": {"content": "text"}}]}
        {"choices": [{"message": {"content": "text"}}]}
    """
    choices = obj.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        return None

    for key in ("delta", "message"):
        part = choice.get(key)
        if isinstance(part, dict):
            content = part.get("content")
            if isinstance(content, str) and content:
                return content
    return None


def is_control_event(token: str) -> bool:
    """True when the token is an embedded `data-operation` control message."""
    if not token.strip().startswith("{"):
        return False
    try:
        inner = json.loads(token)
    except ValueError:
        return False
    return isinstance(inner, dict) and inner.get("type") == CONTROL_EVENT_TYPE


def _parse_payload(payload: str) -> Any:
    try:
        return json.loads(payload)
    except ValueError as exc:
        raise FramingNoise(payload) from exc
