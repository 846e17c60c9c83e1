"""Piper TTS adapter that calls the `piper` CLI and plays audio via sounddevice."""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Optional

import numpy as np

from ..interfaces import TextToSpeech

logger = logging.getLogger(__name__)


class PiperTextToSpeech(TextToSpeech):
    """
    Reads assistant replies aloud with the `piper` command-line binary.

    Args:
        model_path: Path to a Piper `.onnx` model.
        binary_path: Piper executable name or path (default: "piper").
        speaker: Optional speaker ID/name, passed via `--speaker`.
        sample_rate: Playback sample rate (Hz); must match the model.

    Notes:
        - Markdown emphasis and code fences are stripped before synthesis.
        - Playback blocks until the utterance finishes.
    """

    def __init__(
        self,
        *,
        model_path: str,
        binary_path: str = "piper",
        speaker: Optional[str] = None,
        sample_rate: int = 22050,
    ) -> None:
        if not shutil.which(binary_path):
            raise RuntimeError(
                f"Piper binary '{binary_path}' not found. Install Piper and adjust VOICECHAT_PIPER_BINARY or PATH."
            )
        self.model_path = model_path
        self.binary_path = binary_path
        self.speaker = speaker
        self.sample_rate = sample_rate

    def speak(self, text: str) -> None:
        spoken = speakable_text(text)
        if not spoken:
            return

        cmd = [self.binary_path, "--model", self.model_path, "--output-raw"]
        if self.speaker:
            cmd.extend(["--speaker", self.speaker])

        try:
            proc = subprocess.run(cmd, input=spoken.encode("utf-8"), capture_output=True, check=True)
        except subprocess.CalledProcessError as exc:  # pragma: no cover - external tool
            raise RuntimeError(
                f"Piper failed (exit {exc.returncode}): {exc.stderr.decode('utf-8', errors='ignore')}"
            ) from exc

        if not proc.stdout:
            logger.warning("Piper produced no audio for %d characters", len(spoken))
            return

        sd = _lazy_import_sounddevice()
        pcm = np.frombuffer(proc.stdout, dtype=np.int16).astype(np.float32) / 32768.0
        sd.play(pcm, samplerate=self.sample_rate)
        sd.wait()


def speakable_text(text: str) -> str:
    """Drop code fences and markdown markers that read badly aloud."""
    lines = []
    in_fence = False
    for line in text.splitlines():
        if line.strip().startswith("```"):
            in_fence = not in_fence
            continue
        if not in_fence:
            lines.append(line.replace("**", "").replace("`", "").lstrip("#").strip())
    return " ".join(part for part in lines if part).strip()


def _lazy_import_sounddevice():
    try:
        import sounddevice as sd  # type: ignore
    except (ImportError, OSError) as exc:  # pragma: no cover - runtime dependency
        raise RuntimeError("sounddevice is required for Piper playback. Install via pip.") from exc
    return sd
