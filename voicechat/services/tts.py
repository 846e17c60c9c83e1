"""Console TTS implementation that prints assistant responses."""

from __future__ import annotations

from ..interfaces import TextToSpeech


class ConsoleTextToSpeech(TextToSpeech):
    """
    Speaks by printing to stdout.

    Used when no speech output is configured; the streamed tokens are already
    on screen, so only a closing line break is written.
    """

    def speak(self, text: str) -> None:
        print()
