"""Speech recognizer plumbing: event listeners, microphone capture, provider selection."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from ..exceptions import CapabilityUnavailable
from ..interfaces import SpeechRecognizer
from ..models import RecognitionError, RecognitionOptions, RecognitionResult

logger = logging.getLogger(__name__)

RECOGNIZER_EVENTS = ("result", "error", "end", "volume")

RecognizerFactory = Callable[[], SpeechRecognizer]
Handler = Callable[[Any], None]


class ListenerSubscription:
    """Removes one handler from a recognizer's listener list."""

    def __init__(self, listeners: List[Handler], handler: Handler) -> None:
        self._listeners = listeners
        self._handler = handler

    def remove(self) -> None:
        if self._handler in self._listeners:
            self._listeners.remove(self._handler)


class RecognizerEvents:
    """Listener registry shared by recognizer providers."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Handler]] = {event: [] for event in RECOGNIZER_EVENTS}

    def add_listener(self, event: str, handler: Handler) -> ListenerSubscription:
        if event not in self._listeners:
            raise ValueError(f"Unknown recognizer event '{event}'")
        self._listeners[event].append(handler)
        return ListenerSubscription(self._listeners[event], handler)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, payload: Any = None) -> None:
        for handler in list(self._listeners[event]):
            handler(payload)


class MicrophoneRecognizer(RecognizerEvents):
    """
    Base for recognizers that capture the default microphone with sounddevice.

    Audio blocks arrive on the PortAudio thread and are handed to the event
    loop. Subclasses only implement :meth:`_transcribe`, which runs in the
    default executor.

    Continuous mode splits speech on silence and emits one final result per
    utterance. Otherwise everything captured until :meth:`stop` is one
    utterance. Interim results re-transcribe the growing utterance every
    `interim_interval` seconds, one at a time.

    Args:
        sample_rate: Capture sample rate (Hz).
        silence_threshold: RMS level below which a block counts as silence.
        silence_duration: Seconds of silence that close an utterance (continuous mode).
        interim_interval: Seconds between interim transcriptions.
        block_seconds: Length of each captured block.
    """

    name = "microphone"

    def __init__(
        self,
        *,
        sample_rate: int = 16000,
        silence_threshold: float = 0.01,
        silence_duration: float = 1.0,
        interim_interval: float = 1.0,
        block_seconds: float = 0.1,
    ) -> None:
        super().__init__()
        self.sample_rate = sample_rate
        self.silence_threshold = silence_threshold
        self.silence_duration = silence_duration
        self.interim_interval = interim_interval
        self.block_seconds = block_seconds
        self.language: Optional[str] = None

        self._stream: Any = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._options = RecognitionOptions()
        self._blocks: List[np.ndarray] = []
        self._speech_started = False
        self._silent_samples = 0
        self._generation = 0
        self._last_volume_at = 0.0
        self._last_interim_at = 0.0
        self._interim_task: Optional[asyncio.Task] = None
        self._final_lock = asyncio.Lock()
        self._tasks: set = set()
        self._stopping = False
        self._failed = False

    def is_available(self) -> bool:
        raise NotImplementedError

    async def get_permission(self) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._has_input_device)

    async def request_permission(self) -> bool:
        # Desktop audio has no runtime prompt; a usable input device is the grant.
        return await self.get_permission()

    async def start(self, options: RecognitionOptions) -> None:
        if self._stream is not None:
            raise RuntimeError(f"{self.name} recognizer is already running")

        sd = _lazy_import_sounddevice()
        self._loop = asyncio.get_running_loop()
        self._options = options
        self.language = options.lang
        self._final_lock = asyncio.Lock()
        self._reset_utterance()
        self._stopping = False
        self._failed = False
        self._last_volume_at = self._last_interim_at = self._loop.time()

        stream = sd.InputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            blocksize=int(self.sample_rate * self.block_seconds),
            callback=self._audio_callback,
        )
        stream.start()
        self._stream = stream
        logger.debug("%s recognizer started (continuous=%s)", self.name, options.continuous)

    async def stop(self) -> None:
        if self._stream is None or self._stopping:
            return
        self._stopping = True
        stream, self._stream = self._stream, None
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _close_stream, stream)

        self._generation += 1
        audio = self._take_utterance()
        if audio is not None:
            await self._finalize(audio)
        else:
            async with self._final_lock:
                pass

        if not self._failed:
            self.emit("end")
        logger.debug("%s recognizer stopped", self.name)

    def _transcribe(self, audio: np.ndarray) -> str:
        """Return the text for mono float32 audio. Runs off the event loop."""
        raise NotImplementedError

    def _has_input_device(self) -> bool:
        try:
            sd = _lazy_import_sounddevice()
        except RuntimeError:
            return False
        try:
            sd.query_devices(kind="input")
        except (sd.PortAudioError, ValueError) as exc:
            logger.info("No usable input device: %s", exc)
            return False
        return True

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("Input stream status: %s", status)
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._on_block, indata[:, 0].copy())

    def _on_block(self, block: np.ndarray) -> None:
        if self._stream is None or self._stopping or self._loop is None:
            return

        now = self._loop.time()
        level = float(np.sqrt(np.mean(np.square(block)))) if block.size else 0.0
        interval = self._options.volume_interval
        if interval and now - self._last_volume_at >= interval:
            self._last_volume_at = now
            self.emit("volume", level)

        if level > self.silence_threshold:
            self._speech_started = True
            self._silent_samples = 0
        elif self._speech_started:
            self._silent_samples += len(block)
        else:
            return
        self._blocks.append(block)

        if self._options.continuous and self._silent_samples >= self.silence_duration * self.sample_rate:
            self._generation += 1
            audio = self._take_utterance()
            if audio is not None:
                self._spawn(self._finalize(audio))
            return

        if (
            self._options.interim_results
            and self._interim_task is None
            and now - self._last_interim_at >= self.interim_interval
        ):
            self._last_interim_at = now
            self._interim_task = self._spawn(self._interim(np.concatenate(self._blocks), self._generation))

    async def _interim(self, audio: np.ndarray, generation: int) -> None:
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, self._transcribe, audio)
        except Exception as exc:
            logger.debug("Interim transcription failed: %s", exc)
            return
        finally:
            self._interim_task = None
        if text and generation == self._generation and not self._failed:
            self.emit("result", RecognitionResult(text=text, is_final=False))

    async def _finalize(self, audio: np.ndarray) -> None:
        loop = asyncio.get_running_loop()
        async with self._final_lock:
            if self._failed:
                return
            try:
                text = await loop.run_in_executor(None, self._transcribe, audio)
            except Exception as exc:
                logger.error("%s transcription failed: %s", self.name, exc)
                self._fail(str(exc))
                return
            if text:
                self.emit("result", RecognitionResult(text=text, is_final=True))

    def _fail(self, reason: str) -> None:
        if self._failed:
            return
        self._failed = True
        stream, self._stream = self._stream, None
        if stream is not None:
            _close_stream(stream)
        self.emit("error", RecognitionError(reason=reason))
        self.emit("end")

    def _take_utterance(self) -> Optional[np.ndarray]:
        if not self._speech_started or not self._blocks:
            self._reset_utterance()
            return None
        audio = np.concatenate(self._blocks)
        self._reset_utterance()
        return audio

    def _reset_utterance(self) -> None:
        self._blocks = []
        self._speech_started = False
        self._silent_samples = 0

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def select_recognizer(factories: Sequence[RecognizerFactory]) -> SpeechRecognizer:
    """
    Return the first provider that reports itself available.

    Factories are tried in preference order; one that cannot even be built
    (missing optional dependency) is skipped.

    Raises:
        CapabilityUnavailable: when no provider can be used.
    """
    for factory in factories:
        try:
            recognizer = factory()
        except (ImportError, RuntimeError) as exc:
            logger.debug("Recognizer provider unavailable: %s", exc)
            continue
        if recognizer.is_available():
            logger.info("Using %s speech recognizer", recognizer.name)
            return recognizer
        logger.debug("%s speech recognizer is not available", recognizer.name)
    raise CapabilityUnavailable("No speech recognition provider is available")


def pcm16(audio: np.ndarray) -> bytes:
    """Convert float32 [-1.0, 1.0] samples to 16-bit PCM bytes."""
    clipped = np.clip(audio, -1.0, 1.0)
    return (clipped * 32767).astype("<i2").tobytes()


def _close_stream(stream: Any) -> None:
    try:
        stream.stop()
    finally:
        stream.close()


def _lazy_import_sounddevice():
    try:
        import sounddevice as sd  # type: ignore
    except (ImportError, OSError) as exc:  # pragma: no cover - runtime dependency
        raise RuntimeError("sounddevice is required for microphone capture. Install via pip.") from exc
    return sd
