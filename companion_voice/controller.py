"""
The one stateful orchestrator of a client conversation.

One turn: capture -> transcribe -> append user message -> complete with the
prior history -> append assistant message -> speak. States move
IDLE -> RECORDING -> PROCESSING -> SPEAKING -> IDLE, and every failure passes
through ERROR back to IDLE with `last_error` set for the UI.

Blocking work runs in worker threads; the controller itself lives on one
event loop, so stages never overlap within a conversation. Each turn takes a
number from `_turn`; results that arrive after the turn was abandoned are
dropped instead of being appended.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from companion_ai.errors import (
    CompanionError,
    DurationError,
    NotFoundError,
    UpstreamError,
)

from . import monitoring
from .config import ClientSettings
from .interfaces import (
    AudioCapture,
    ConversationClient,
    ManualEntry,
    SpeechPlayback,
    TranscriptionClient,
)
from .models import ErrorCause, Failure, Message, RecordingSession, Role, VoiceState

logger = monitoring.get_logger("controller")

FALLBACK_PROMPT = "Voice transcription unavailable right now.\nPlease TYPE what you said: "

Listener = Callable[[VoiceState, VoiceState], None]


class ConversationController:
    def __init__(
        self,
        therapist_id: str,
        *,
        capture: AudioCapture,
        transcriber: TranscriptionClient,
        conversation: ConversationClient,
        playback: SpeechPlayback,
        manual_entry: Optional[ManualEntry] = None,
        settings: Optional[ClientSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not therapist_id:
            raise ValueError("therapist_id is required")
        self.therapist_id = therapist_id
        self.capture = capture
        self.transcriber = transcriber
        self.conversation = conversation
        self.playback = playback
        self.manual_entry = manual_entry
        self.settings = settings or ClientSettings()
        self.monitor = monitoring.PipelineMonitor(clock)
        self.last_error: Optional[Failure] = None

        self._clock = clock
        self._state = VoiceState.IDLE
        self._messages: list[Message] = []
        self._session: Optional[RecordingSession] = None
        self._turn = 0
        self._utterance = 0
        self._listeners: list[Listener] = []

    # ---------------------------
    # Read-only views
    # ---------------------------
    @property
    def state(self) -> VoiceState:
        return self._state

    @property
    def history(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def recording(self) -> Optional[RecordingSession]:
        return self._session

    def recording_elapsed(self) -> float:
        """Seconds since capture started, for a live timer display."""
        session = self._session
        if session is None or not session.in_progress:
            return 0.0
        return self._clock() - session.started_at

    def last_assistant_message(self) -> Optional[Message]:
        return next((m for m in reversed(self._messages) if m.role is Role.ASSISTANT), None)

    def add_listener(self, listener: Listener) -> None:
        """Call `listener(old, new)` on every state change."""
        self._listeners.append(listener)

    # ---------------------------
    # Internals
    # ---------------------------
    def _set_state(self, new: VoiceState) -> None:
        old, self._state = self._state, new
        if old is new:
            return
        logger.debug("state %s -> %s", old.value, new.value)
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:
                logger.exception("state listener failed")

    def _fail(self, cause: ErrorCause, message: str, error: Optional[Exception] = None) -> None:
        self.last_error = Failure(cause, message, error)
        logger.warning("[%s] %s (%s)", cause.value, message, error)
        self._set_state(VoiceState.ERROR)
        self._set_state(VoiceState.IDLE)

    def _append(self, role: Role, content: str) -> None:
        self._messages.append(Message(role, content))

    async def _call(self, service: str, fn, *args):
        """Run a blocking client call with the configured upper bound."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args),
                timeout=self.settings.request_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamError(f"{service} timed out", service=service) from e

    async def _release_capture(self, keep: bool) -> Optional[bytes]:
        if keep:
            return await asyncio.to_thread(self.capture.close)
        try:
            await asyncio.to_thread(self.capture.discard)
        except Exception:
            logger.exception("releasing the microphone failed")
        return None

    # ---------------------------
    # Operations
    # ---------------------------
    async def start(self) -> bool:
        """Acquire the microphone and begin a recording. Only valid from IDLE."""
        if self._state is not VoiceState.IDLE:
            logger.info("start ignored while %s", self._state.value)
            return False
        self.last_error = None
        self._turn += 1
        turn = self._turn
        session = RecordingSession(started_at=self._clock(), in_progress=False)
        self._session = session
        self.monitor.reset()
        self.monitor.stage_start("capture")
        self._set_state(VoiceState.RECORDING)

        try:
            await asyncio.to_thread(self.capture.open)
        except Exception as e:
            self.monitor.stage_end("capture", success=False, msg=str(e))
            if turn != self._turn:
                return False
            self._session = None
            message = str(e) if isinstance(e, CompanionError) else "Could not access microphone. Please check permissions."
            self._fail(ErrorCause.PERMISSION, message, e)
            return False

        if turn != self._turn:
            await self._release_capture(keep=False)
            return False
        session.started_at = self._clock()
        session.in_progress = True
        return True

    async def stop(self) -> bool:
        """End the recording and run the turn. Returns True when a reply was produced."""
        session = self._session
        if self._state is not VoiceState.RECORDING or session is None or not session.in_progress:
            return False
        turn = self._turn
        session.duration = self._clock() - session.started_at
        session.in_progress = False
        self._session = None

        minimum = self.settings.min_recording_seconds
        if session.duration < minimum:
            await self._release_capture(keep=False)
            self.monitor.stage_end("capture", success=False, msg="too short")
            if turn == self._turn:
                error = DurationError(
                    self.settings.too_short_message, duration=session.duration, minimum=minimum
                )
                self._fail(ErrorCause.TOO_SHORT, self.settings.too_short_message, error)
            return False

        try:
            audio = await self._release_capture(keep=True)
        except Exception as e:
            self.monitor.stage_end("capture", success=False, msg=str(e))
            if turn == self._turn:
                self._fail(ErrorCause.PERMISSION, "Could not read from the microphone.", e)
            return False
        self.monitor.stage_end("capture", msg=f"{session.duration:.2f}s")

        if turn != self._turn:
            return False
        self._set_state(VoiceState.PROCESSING)
        return await self._run_turn(turn, audio)

    async def _run_turn(self, turn: int, audio: bytes) -> bool:
        transcript = await self._transcribe(turn, audio)
        if transcript is None or turn != self._turn:
            return False

        prior = self.history
        self._append(Role.USER, transcript)

        self.monitor.stage_start("complete")
        try:
            reply = await self._call("completion", self.conversation.reply, self.therapist_id, transcript, prior)
        except Exception as e:
            self.monitor.stage_end("complete", success=False, msg=str(e))
            if turn != self._turn:
                return False
            if isinstance(e, NotFoundError):
                message = "Could not load therapist profile. Please check the identifier."
            else:
                if not isinstance(e, CompanionError):
                    logger.exception("unexpected completion failure")
                message = "Something went wrong. Please try again."
            self._fail(ErrorCause.COMPLETION, message, e)
            return False
        self.monitor.stage_end("complete", msg=f"len={len(reply)}")

        if turn != self._turn:
            return False
        self._append(Role.ASSISTANT, reply)
        await self._speak(reply)
        return True

    async def _transcribe(self, turn: int, audio: bytes) -> Optional[str]:
        self.monitor.stage_start("transcribe")
        try:
            text = await self._call("transcription", self.transcriber.transcribe, audio)
        except UpstreamError as e:
            self.monitor.stage_end("transcribe", success=False, msg=str(e))
            if turn != self._turn:
                return None
            return await self._manual_entry(turn, e)
        except Exception as e:
            self.monitor.stage_end("transcribe", success=False, msg=str(e))
            if turn == self._turn:
                if not isinstance(e, CompanionError):
                    logger.exception("unexpected transcription failure")
                self._fail(ErrorCause.TRANSCRIPTION, "Transcription failed. Please try again.", e)
            return None
        self.monitor.stage_end("transcribe", msg=f"len={len(text or '')}")

        text = (text or "").strip()
        if not text:
            if turn == self._turn:
                self._fail(ErrorCause.TRANSCRIPTION, "No speech detected. Please try again.")
            return None
        return text

    async def _manual_entry(self, turn: int, error: UpstreamError) -> Optional[str]:
        """Offer typed input in place of an unavailable transcription service."""
        logger.warning("transcription unavailable, offering manual entry: %s", error)
        if self.manual_entry is None:
            self._fail(ErrorCause.TRANSCRIPTION, "Voice transcription is unavailable.", error)
            return None
        try:
            typed = await asyncio.to_thread(self.manual_entry.ask, FALLBACK_PROMPT)
        except Exception as e:
            logger.exception("manual entry failed")
            if turn == self._turn:
                self._fail(ErrorCause.TRANSCRIPTION, "Transcription failed. Please try again.", e)
            return None
        if turn != self._turn:
            return None
        typed = (typed or "").strip()
        if not typed:
            self._fail(
                ErrorCause.TRANSCRIPTION,
                "Transcription failed and no text was entered. Voice input needs the transcription service.",
                error,
            )
            return None
        return typed

    async def _speak(self, text: str) -> None:
        self._utterance += 1
        utterance = self._utterance
        self._set_state(VoiceState.SPEAKING)
        self.monitor.stage_start("speak")
        try:
            await asyncio.to_thread(self.playback.cancel)
            await asyncio.to_thread(self.playback.speak, text)
            self.monitor.stage_end("speak")
        except Exception as e:
            # synthesis problems never surface to the user
            logger.debug("speech synthesis failed: %s", e)
            self.monitor.stage_end("speak", success=False, msg=str(e))
        finally:
            if utterance == self._utterance and self._state is VoiceState.SPEAKING:
                self._set_state(VoiceState.IDLE)

    async def replay(self) -> bool:
        """Speak the latest assistant message again. No-op when there is none."""
        if self._state not in (VoiceState.IDLE, VoiceState.SPEAKING):
            return False
        last = self.last_assistant_message()
        if last is None:
            return False
        await self._speak(last.content)
        return True

    async def abandon(self) -> None:
        """Drop the active recording or in-flight turn and return to IDLE."""
        self._turn += 1
        session, self._session = self._session, None
        if self._state is VoiceState.RECORDING and session is not None and session.in_progress:
            await self._release_capture(keep=False)
            self.monitor.stage_end("capture", success=False, msg="abandoned")
        if self._state is VoiceState.SPEAKING:
            self._utterance += 1
            try:
                await asyncio.to_thread(self.playback.cancel)
            except Exception:
                logger.exception("cancelling speech failed")
        self._set_state(VoiceState.IDLE)

