"""
Pytest fixtures shared by the voice chat tests.
"""

import asyncio
from typing import List, Optional

import pytest

from voicechat.models import RecognitionError, RecognitionOptions, RecognitionResult
from voicechat.services.recognizer import RecognizerEvents


class FakeResponse:
    """Stand-in for an `http.client.HTTPResponse` without an incremental reader."""

    def __init__(self, body: bytes = b"", *, content_type: str = "application/json", status: int = 200):
        self.status = status
        self.headers = {"Content-Type": content_type}
        self._body = body
        self.read_calls = 0

    def read(self, amt: Optional[int] = None) -> bytes:
        self.read_calls += 1
        body, self._body = self._body, b""
        return body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


class StreamingFakeResponse(FakeResponse):
    """Response that hands out the body in fixed chunks through `read1`."""

    def __init__(self, chunks: List[bytes], **kwargs):
        super().__init__(b"".join(chunks), **kwargs)
        self._chunks = list(chunks)
        self.read1_calls = 0

    def read1(self, amt: int = -1) -> bytes:
        self.read1_calls += 1
        if not self._chunks:
            return b""
        return self._chunks.pop(0)


class FakeRecognizer(RecognizerEvents):
    """Scriptable recognizer; tests push events with :meth:`result`, :meth:`error`, :meth:`end`."""

    name = "fake"

    def __init__(
        self,
        *,
        available: bool = True,
        permitted: bool = True,
        grant: bool = True,
        end_on_stop: bool = True,
        start_error: Optional[Exception] = None,
    ):
        super().__init__()
        self.available = available
        self.permitted = permitted
        self.grant = grant
        self.end_on_stop = end_on_stop
        self.start_error = start_error
        self.start_gate: Optional[asyncio.Event] = None
        self.start_calls: List[RecognitionOptions] = []
        self.stop_calls = 0
        self.permission_requests = 0

    def is_available(self) -> bool:
        return self.available

    async def get_permission(self) -> bool:
        return self.permitted

    async def request_permission(self) -> bool:
        self.permission_requests += 1
        return self.grant

    async def start(self, options: RecognitionOptions) -> None:
        self.start_calls.append(options)
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_error is not None:
            raise self.start_error

    async def stop(self) -> None:
        self.stop_calls += 1
        if self.end_on_stop:
            self.emit("end")

    def result(self, text: str, final: bool = False) -> None:
        self.emit("result", RecognitionResult(text=text, is_final=final))

    def error(self, reason: str) -> None:
        self.emit("error", RecognitionError(reason=reason))

    def end(self) -> None:
        self.emit("end")


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def recognizer():
    return FakeRecognizer()


@pytest.fixture
def clock():
    return FakeClock()


def sse(*payloads: str) -> bytes:
    """Frame payloads as `data: ...` events."""
    return "".join(f"data: {payload}\n\n" for payload in payloads).encode("utf-8")


def delta(content: str) -> str:
    import json

    return json.dumps({"choices": [{"delta": {"content": content}}]}, ensure_ascii=False)
