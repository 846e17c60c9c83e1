"""Voice capture session: turns a gesture and a speech recognizer into send / draft / discard."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, List, Optional, Sequence

from .exceptions import CapabilityUnavailable, PermissionDenied
from .interfaces import SpeechRecognizer, Subscription
from .models import RecognitionError, RecognitionOptions, RecognitionResult
from .services.recognizer import RecognizerFactory, select_recognizer

logger = logging.getLogger(__name__)

MIN_HOLD_SECONDS = 0.2
CANCEL_THRESHOLD = 80.0
VOLUME_INTERVAL = 0.25

TextCallback = Callable[[str], None]


class CaptureState(enum.Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    LISTENING = "listening"
    FINALIZING = "finalizing"


class CaptureMode(enum.Enum):
    MANUAL = "manual"
    HANDS_FREE = "hands_free"


@dataclass
class CaptureContext:
    """
    Mutable state for one capture attempt.

    Recognizer handlers are bound to the context they were registered for, so
    events from an earlier attempt can be recognised and dropped.
    """

    mode: CaptureMode
    grant_time: float
    origin_y: Optional[float] = None
    gesture_active: bool = False
    cancel_intent: bool = False
    cancel_on_finalize: bool = False
    partial: str = ""
    segments: List[str] = field(default_factory=list)
    recognizer: Optional[SpeechRecognizer] = None
    subscriptions: List[Subscription] = field(default_factory=list)
    started: bool = False
    abandoned: bool = False
    ended_early: bool = False
    deferred_stop: Optional[asyncio.TimerHandle] = None

    @property
    def hands_free(self) -> bool:
        return self.mode is CaptureMode.HANDS_FREE

    def resolved_text(self) -> str:
        committed = " ".join(s.strip() for s in self.segments if s.strip())
        return committed or self.partial.strip()

    def release(self) -> None:
        for subscription in self.subscriptions:
            subscription.remove()
        self.subscriptions = []
        if self.deferred_stop is not None:
            self.deferred_stop.cancel()
            self.deferred_stop = None


def append_to_draft(draft: str, text: str) -> str:
    """Append captured text to an editable draft, space separated."""
    return f"{draft} {text}" if draft else text


class VoiceCaptureSession:
    """
    Drives speech capture from a push-to-talk or hands-free gesture.

    Manual mode: :meth:`press` starts listening, :meth:`release` stops it
    (never sooner than `min_hold` after the press) and the whole capture is
    resolved once. Dragging the gesture `cancel_threshold` away from where it
    started routes the transcript into the draft instead of sending it.

    Hands-free mode: :meth:`tap` toggles listening, the recognizer runs in
    continuous mode and every finalized utterance is sent straight away.

    Outcomes are reported through the callbacks:

        on_send(text)        transcript to send as a user message
        on_draft(text)       transcript to append to the editable draft
        on_transcript(text)  live partial transcript ("" when cleared)
        on_volume(level)     microphone level, hands-free only
        on_state(state)      every state change

    Usage:
        session = VoiceCaptureSession(
            [lambda: WhisperRecognizer(), lambda: RemoteWhisperRecognizer(base_url=url)],
            on_send=assistant.submit,
        )
        await session.press(y=640)
        ...
        await session.release()
    """

    def __init__(
        self,
        recognizers: Sequence[RecognizerFactory],
        *,
        mode: CaptureMode = CaptureMode.MANUAL,
        language: str = "en-US",
        on_send: Optional[TextCallback] = None,
        on_draft: Optional[TextCallback] = None,
        on_transcript: Optional[TextCallback] = None,
        on_volume: Optional[Callable[[float], None]] = None,
        on_state: Optional[Callable[[CaptureState], None]] = None,
        min_hold: float = MIN_HOLD_SECONDS,
        cancel_threshold: float = CANCEL_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._recognizers = list(recognizers)
        self._mode = mode
        self._language = language
        self._on_send = on_send
        self._on_draft = on_draft
        self._on_transcript = on_transcript
        self._on_volume = on_volume
        self._on_state = on_state
        self._min_hold = min_hold
        self._cancel_threshold = cancel_threshold
        self._clock = clock
        self._state = CaptureState.IDLE
        self._context: Optional[CaptureContext] = None
        self._tasks: set = set()

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def mode(self) -> CaptureMode:
        return self._mode

    @mode.setter
    def mode(self, mode: CaptureMode) -> None:
        # Applies from the next capture attempt on.
        self._mode = mode

    @property
    def context(self) -> Optional[CaptureContext]:
        return self._context

    @property
    def cancel_intent(self) -> bool:
        return self._context is not None and self._context.cancel_intent

    # Gestures

    async def press(self, y: Optional[float] = None) -> None:
        """
        Start of a gesture.

        In hands-free mode a press while listening stops the capture instead.
        """
        if self._mode is CaptureMode.HANDS_FREE and self._state is not CaptureState.IDLE:
            await self.stop()
            return
        ctx = CaptureContext(
            mode=self._mode,
            grant_time=self._clock(),
            origin_y=y,
            gesture_active=True,
        )
        await self._run_attempt(ctx)

    def move(self, y: float) -> None:
        """Track gesture displacement; past the threshold the capture goes to the draft."""
        ctx = self._context
        if ctx is None or not ctx.gesture_active or ctx.origin_y is None:
            return
        ctx.cancel_intent = abs(y - ctx.origin_y) >= self._cancel_threshold

    async def release(self) -> None:
        """End of a press-and-hold gesture."""
        ctx = self._context
        if ctx is None or not ctx.gesture_active:
            return
        ctx.gesture_active = False
        if ctx.hands_free:
            return

        delay = max(0.0, self._min_hold - (self._clock() - ctx.grant_time))
        if delay > 0:
            logger.debug("Release after short hold; stopping in %.3fs", delay)
            loop = asyncio.get_running_loop()
            ctx.deferred_stop = loop.call_later(delay, self._deferred_stop, ctx)
            return
        await self.stop()

    async def tap(self) -> None:
        if self._state is CaptureState.IDLE:
            await self.start()
        else:
            await self.stop()

    # Lifecycle

    async def start(self) -> None:
        """Begin a capture attempt; ignored unless the session is idle."""
        await self._run_attempt(CaptureContext(mode=self._mode, grant_time=self._clock()))

    async def stop(self) -> None:
        """Ask the recognizer to finish; the transcript is resolved on its `end` event."""
        ctx = self._context
        if ctx is None:
            return

        if self._state is CaptureState.REQUESTING:
            logger.debug("Stop requested while recognizer start is pending; abandoning attempt")
            ctx.abandoned = True
            return
        recognizer = ctx.recognizer
        if self._state is not CaptureState.LISTENING or recognizer is None:
            return

        self._enter_finalizing(ctx)
        try:
            await recognizer.stop()
        except Exception as exc:
            logger.warning("Recognizer stop failed: %s", exc)
            if ctx is self._context:
                self._resolve(ctx)

    async def close(self) -> None:
        """Drop the current attempt without producing output and release the recognizer."""
        ctx = self._context
        if ctx is None:
            return
        ctx.abandoned = True
        self._teardown(ctx)
        if ctx.recognizer is not None and ctx.started:
            try:
                await ctx.recognizer.stop()
            except Exception as exc:
                logger.warning("Recognizer stop during close failed: %s", exc)

    async def _run_attempt(self, ctx: CaptureContext) -> None:
        if self._state is not CaptureState.IDLE:
            logger.debug("Capture already %s; start ignored", self._state.value)
            return

        self._context = ctx
        self._set_state(CaptureState.REQUESTING)

        try:
            recognizer = select_recognizer(self._recognizers)
        except CapabilityUnavailable as exc:
            logger.warning("Voice capture unavailable: %s", exc)
            self._teardown(ctx)
            return

        ctx.recognizer = recognizer
        ctx.subscriptions = [
            recognizer.add_listener("result", partial(self._handle_result, ctx)),
            recognizer.add_listener("error", partial(self._handle_error, ctx)),
            recognizer.add_listener("end", partial(self._handle_end, ctx)),
            recognizer.add_listener("volume", partial(self._handle_volume, ctx)),
        ]

        try:
            await self._ensure_permission(recognizer)
        except PermissionDenied as exc:
            logger.warning("Voice capture not permitted: %s", exc)
            self._teardown(ctx)
            return

        if ctx.abandoned or ctx is not self._context:
            self._teardown(ctx)
            return

        options = RecognitionOptions(
            lang=self._language,
            interim_results=True,
            continuous=ctx.hands_free,
            volume_interval=VOLUME_INTERVAL if ctx.hands_free else None,
        )
        try:
            await recognizer.start(options)
        except Exception as exc:
            logger.warning("%s recognizer failed to start: %s", recognizer.name, exc)
            self._teardown(ctx)
            return
        ctx.started = True

        if ctx.abandoned or ctx is not self._context:
            self._teardown(ctx)
            try:
                await recognizer.stop()
            except Exception as exc:
                logger.warning("Recognizer stop after abandoned start failed: %s", exc)
            return

        self._set_state(CaptureState.LISTENING)
        if ctx.ended_early:
            self._enter_finalizing(ctx)
            self._resolve(ctx)

    async def _ensure_permission(self, recognizer: SpeechRecognizer) -> None:
        try:
            if await recognizer.get_permission():
                return
            granted = await recognizer.request_permission()
        except Exception as exc:
            logger.warning("Permission check failed, trying to start anyway: %s", exc)
            return
        if not granted:
            raise PermissionDenied(f"{recognizer.name}: microphone/speech permission not granted")

    def _deferred_stop(self, ctx: CaptureContext) -> None:
        ctx.deferred_stop = None
        if ctx is not self._context:
            return
        task = asyncio.ensure_future(self.stop())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Recognizer events

    def _handle_result(self, ctx: CaptureContext, result: RecognitionResult) -> None:
        if ctx is not self._context:
            return
        if not result.is_final:
            ctx.partial = result.text
            self._emit_transcript(result.text)
            return

        if ctx.hands_free:
            ctx.partial = ""
            self._emit_transcript("")
            text = result.text.strip()
            if text and self._on_send is not None:
                self._on_send(text)
            return

        ctx.segments.append(result.text)
        ctx.partial = ""
        self._emit_transcript(ctx.resolved_text())

    def _handle_error(self, ctx: CaptureContext, error: RecognitionError) -> None:
        if ctx is not self._context:
            return
        logger.warning("Speech recognition error: %s", getattr(error, "reason", error))
        self._handle_end(ctx)

    def _handle_end(self, ctx: CaptureContext, _payload: object = None) -> None:
        if ctx is not self._context:
            return
        if self._state is CaptureState.REQUESTING:
            ctx.ended_early = True
            return
        if self._state is CaptureState.LISTENING:
            self._enter_finalizing(ctx)
        self._resolve(ctx)

    def _handle_volume(self, ctx: CaptureContext, level: float) -> None:
        if ctx is self._context and ctx.hands_free and self._on_volume is not None:
            self._on_volume(level)

    # Transitions

    def _enter_finalizing(self, ctx: CaptureContext) -> None:
        ctx.gesture_active = False
        ctx.cancel_on_finalize = ctx.cancel_intent
        if ctx.deferred_stop is not None:
            ctx.deferred_stop.cancel()
            ctx.deferred_stop = None
        self._set_state(CaptureState.FINALIZING)

    def _resolve(self, ctx: CaptureContext) -> None:
        text = ctx.resolved_text()
        to_draft = ctx.cancel_on_finalize
        self._teardown(ctx)

        if not text:
            logger.debug("Capture ended with an empty transcript")
        elif to_draft:
            logger.debug("Capture routed to draft")
            if self._on_draft is not None:
                self._on_draft(text)
        elif self._on_send is not None:
            self._on_send(text)

    def _teardown(self, ctx: CaptureContext) -> None:
        had_transcript = bool(ctx.partial or ctx.segments)
        ctx.release()
        ctx.partial = ""
        ctx.segments = []
        if ctx is not self._context:
            return
        self._context = None
        if had_transcript:
            self._emit_transcript("")
        self._set_state(CaptureState.IDLE)

    def _set_state(self, state: CaptureState) -> None:
        if state is self._state:
            return
        logger.debug("Capture %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state is not None:
            self._on_state(state)

    def _emit_transcript(self, text: str) -> None:
        if self._on_transcript is not None:
            self._on_transcript(text)
