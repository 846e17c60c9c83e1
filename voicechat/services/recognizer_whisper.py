"""On-device speech recognizer backed by OpenAI Whisper."""

from __future__ import annotations

import importlib.util
from functools import lru_cache
from typing import Optional

import numpy as np

from .recognizer import MicrophoneRecognizer


class WhisperRecognizer(MicrophoneRecognizer):
    """
    Microphone recognizer that runs Whisper locally.

    Args:
        model_size: Whisper model name (e.g., "tiny", "base", "small").
        device: Device string passed to whisper (e.g., "cpu", "cuda").

    Notes:
        - Requires the `whisper` package, ffmpeg and `sounddevice`.
        - The model is loaded lazily on first transcription and cached.
    """

    name = "whisper"

    def __init__(self, *, model_size: str = "base", device: Optional[str] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.model_size = model_size
        self.device = device

    def is_available(self) -> bool:
        if importlib.util.find_spec("whisper") is None:
            return False
        if importlib.util.find_spec("sounddevice") is None:
            return False
        return self._has_input_device()

    def _transcribe(self, audio: np.ndarray) -> str:
        model = _load_whisper(self.model_size, self.device)
        language = (self.language or "").split("-")[0] or None
        result = model.transcribe(audio.astype(np.float32), language=language, fp16=False)
        return str(result.get("text", "")).strip()


@lru_cache(maxsize=1)
def _load_whisper(model_size: str, device: Optional[str]):
    try:
        import whisper  # type: ignore
    except ImportError as exc:  # pragma: no cover - runtime dependency
        raise RuntimeError("whisper package is required for WhisperRecognizer. Install via pip.") from exc

    return whisper.load_model(model_size, device=device)
