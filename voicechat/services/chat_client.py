"""HTTP client for OpenAI-compatible `/chat/completions` endpoints."""

from __future__ import annotations

import codecs
import http.client
import json
import logging
import ssl
import urllib.error
import urllib.request
from typing import Any, Dict, Optional, Sequence

from ..config import normalize_base_url
from ..exceptions import TransportError
from ..interfaces import TokenCallback
from ..models import ChatMessage, ChatResponse, KillSwitchResult
from .event_stream import EventStreamParser, parse_event_stream

logger = logging.getLogger(__name__)

EVENT_STREAM = "text/event-stream"
READ_CHUNK_SIZE = 4096


class StreamingChatClient:
    """
    Chat client that tolerates buffered JSON and server-sent event responses.

    The request always asks for `stream: true`; what comes back decides how
    the reply is decoded:

        - non-2xx status: :class:`TransportError`
        - JSON (or any non event-stream) body: parsed in one go, no tokens
        - event stream without an incremental reader: whole body parsed at once,
          tokens still reported in document order
        - event stream with an incremental reader: parsed as bytes arrive

    Usage:
        >>> client = StreamingChatClient("https://api.openai.com/v1", api_key="sk-...")
        >>> reply = client.chat(
        ...     [ChatMessage(role="user", content="Hello")],
        ...     on_token=lambda tok: print(tok, end="", flush=True),
        ... )
        >>> reply.content
        'Hi there!'
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        model: Optional[str] = None,
        timeout: float = 60.0,
        incremental: bool = True,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self._base_url = normalize_base_url(base_url)
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._incremental = incremental
        self._ssl_context = ssl_context

    @property
    def base_url(self) -> str:
        return self._base_url

    def chat(
        self,
        messages: Sequence[ChatMessage],
        on_token: Optional[TokenCallback] = None,
        conversation_id: Optional[str] = None,
    ) -> ChatResponse:
        """Send the conversation and return the accumulated assistant reply."""
        if not messages:
            raise ValueError("chat() requires at least one message")

        url = self._url("/chat/completions")
        payload: Dict[str, Any] = {
            "model": self._model,
            "messages": [message.as_dict() for message in messages],
            "stream": True,
        }
        if conversation_id:
            payload["conversation_id"] = conversation_id

        logger.info("Chat request to %s (model=%s, %d messages)", url, self._model, len(messages))
        logger.debug("Conversation id: %s", conversation_id or "none (new conversation)")

        request = urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers=self._headers(),
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout, context=self._ssl_context) as response:  # type: ignore[arg-type]
                status = getattr(response, "status", 200)
                if not 200 <= status < 300:
                    body = response.read().decode("utf-8", errors="replace")
                    raise TransportError(f"Chat failed: {status} {body}", status=status, body=body)
                return self._read_reply(response, on_token, conversation_id)
        except urllib.error.HTTPError as exc:
            body = _read_error_body(exc)
            logger.error("Chat request failed with %s: %s", exc.code, body)
            raise TransportError(f"Chat failed: {exc.code} {body}", status=exc.code, body=body) from exc
        except urllib.error.URLError as exc:
            raise TransportError(f"Chat request could not reach the server: {exc.reason}") from exc
        except OSError as exc:
            raise TransportError(f"Chat request failed: {exc}") from exc
        except http.client.HTTPException as exc:
            logger.error("Chat response was malformed or cut off: %r", exc)
            raise TransportError(f"Chat response was malformed or cut off: {exc!r}") from exc

    def health(self) -> bool:
        """GET `/models`; True iff the endpoint answers with a 2xx status."""
        url = self._url("/models")
        request = urllib.request.Request(url, headers=self._headers(), method="GET")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout, context=self._ssl_context) as response:  # type: ignore[arg-type]
                status = getattr(response, "status", 200)
        except urllib.error.HTTPError as exc:
            logger.warning("Health check %s returned %s", url, exc.code)
            return False
        except (OSError, ValueError, http.client.HTTPException) as exc:
            logger.warning("Health check %s failed: %s", url, exc)
            return False
        logger.debug("Health check %s returned %s", url, status)
        return 200 <= status < 300

    def kill_switch(self) -> KillSwitchResult:
        """POST `/emergency-stop` to halt every agent process on the server."""
        url = self._url("/emergency-stop")
        request = urllib.request.Request(url, data=b"{}", headers=self._headers(), method="POST")
        logger.info("Triggering emergency stop: %s", url)

        try:
            with urllib.request.urlopen(request, timeout=self._timeout, context=self._ssl_context) as response:  # type: ignore[arg-type]
                status = getattr(response, "status", 200)
                data = _json_object(response.read())
        except urllib.error.HTTPError as exc:
            status = exc.code
            data = _json_object(exc.read() if exc.fp is not None else b"")
        except (OSError, ValueError, http.client.HTTPException) as exc:
            logger.error("Kill switch request failed: %s", exc)
            reason = getattr(exc, "reason", None) or str(exc)
            return KillSwitchResult(success=False, error=str(reason) or "Failed to connect to server")

        if not 200 <= status < 300:
            logger.error("Kill switch error (%s): %s", status, data)
            return KillSwitchResult(
                success=False,
                error=data.get("error") or f"Kill switch failed: {status}",
            )

        processes_killed = data.get("processesKilled")
        return KillSwitchResult(
            success=True,
            message=data.get("message") or "Emergency stop executed",
            processes_killed=processes_killed if isinstance(processes_killed, int) else None,
        )

    def _read_reply(
        self,
        response: Any,
        on_token: Optional[TokenCallback],
        conversation_id: Optional[str],
    ) -> ChatResponse:
        content_type = response.headers.get("Content-Type", "") or ""

        if EVENT_STREAM not in content_type:
            logger.debug("Buffered response (%s)", content_type or "no content type")
            text = response.read().decode("utf-8", errors="replace")
            return _buffered_reply(text, conversation_id)

        read1 = getattr(response, "read1", None)
        if not self._incremental or not callable(read1):
            logger.debug("Event stream without incremental reader; parsing whole body")
            text = response.read().decode("utf-8", errors="replace")
            parser = parse_event_stream(text, on_token=on_token, conversation_id=conversation_id)
            return ChatResponse(content=parser.text, conversation_id=parser.conversation_id)

        logger.debug("Streaming event-stream response")
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        parser = EventStreamParser(on_token=on_token, conversation_id=conversation_id)
        while True:
            chunk = read1(READ_CHUNK_SIZE)
            if not chunk:
                parser.feed(decoder.decode(b"", final=True))
                break
            if parser.feed(decoder.decode(chunk)):
                break
        return ChatResponse(content=parser.close(), conversation_id=parser.conversation_id)

    def _url(self, endpoint: str) -> str:
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"
        return f"{self._base_url}{endpoint}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }


def _buffered_reply(text: str, conversation_id: Optional[str]) -> ChatResponse:
    """
    Normalize a non-streamed body.

    `{"choices": [{"message": {"content": "text"}}]}` yields the content; a
    body that is not JSON is returned verbatim.
    """
    try:
        payload = json.loads(text)
    except ValueError:
        return ChatResponse(content=text, conversation_id=conversation_id)

    if not isinstance(payload, dict):
        return ChatResponse(content=text, conversation_id=conversation_id)

    if payload.get("conversation_id"):
        conversation_id = str(payload["conversation_id"])

    content: Any = ""
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict) and message.get("content") is not None:
            content = message["content"]

    return ChatResponse(
        content=content if isinstance(content, str) else text,
        conversation_id=conversation_id,
    )


def _json_object(raw: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(raw.decode("utf-8"))
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _read_error_body(exc: urllib.error.HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace")
    except (OSError, AttributeError):
        return ""
