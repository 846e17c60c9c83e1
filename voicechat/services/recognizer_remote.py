"""Hosted speech recognizer that sends captured audio to a remote Whisper service."""

from __future__ import annotations

import importlib.util
import json
import ssl
import struct
import urllib.error
import urllib.parse
import urllib.request
from typing import Optional

import numpy as np

from .recognizer import MicrophoneRecognizer, pcm16


class RemoteWhisperRecognizer(MicrophoneRecognizer):
    """
    Microphone recognizer that transcribes through a Whisper HTTP API.

    Args:
        base_url: Base URL for the Whisper service (e.g., "http://whisper:9000").
        timeout: HTTP timeout in seconds.
        ssl_context: Optional SSL context for HTTPS.

    Expected API format:
        POST /transcribe?language=<code>
        Content-Type: audio/wav
        Body: 16-bit mono WAV

        Response: {"text": "transcribed text"} or plain text
    """

    name = "remote-whisper"

    def __init__(
        self,
        *,
        base_url: Optional[str],
        timeout: float = 30.0,
        ssl_context: Optional[ssl.SSLContext] = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._base_url = (base_url or "").strip().rstrip("/")
        self._timeout = timeout
        self._ssl_context = ssl_context

    def is_available(self) -> bool:
        if not self._base_url:
            return False
        if importlib.util.find_spec("sounddevice") is None:
            return False
        return self._has_input_device()

    def _transcribe(self, audio: np.ndarray) -> str:
        endpoint = f"{self._base_url}/transcribe"
        language = (self.language or "").split("-")[0]
        if language:
            endpoint = f"{endpoint}?{urllib.parse.urlencode({'language': language})}"

        request = urllib.request.Request(
            endpoint,
            data=wav_bytes(pcm16(audio), self.sample_rate),
            headers={"Content-Type": "audio/wav"},
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout, context=self._ssl_context) as response:  # type: ignore[arg-type]
                body = response.read()
                content_type = response.headers.get("Content-Type", "")
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="ignore")
            raise RuntimeError(f"Whisper request failed ({exc.code}): {detail}") from exc
        except urllib.error.URLError as exc:
            raise RuntimeError(f"Whisper request could not reach the server: {exc.reason}") from exc

        if "application/json" in content_type:
            try:
                payload = json.loads(body.decode("utf-8"))
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                return str(payload.get("text", "")).strip()

        # Fallback: plain text response
        return body.decode("utf-8", errors="ignore").strip()


def wav_bytes(pcm_data: bytes, sample_rate: int) -> bytes:
    """Wrap 16-bit mono PCM in a RIFF/WAVE header."""
    channels = 1
    bits_per_sample = 16
    byte_rate = sample_rate * channels * bits_per_sample // 8
    block_align = channels * bits_per_sample // 8
    data_size = len(pcm_data)

    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_size,
    )
    return header + pcm_data
