"""Drives one simulated receptionist call at a time.

The controller is the only writer of the conversation state. A call runs as
a single background task that alternates between listening and speaking:

  permission -> greeting -> [capture -> transcribe -> reply -> (extract) -> speak]*

Listening and speaking are strictly sequential, so the microphone and the
speaker are never open together. ``end_call()`` may arrive at any await in
that loop: it clears the active call id, tears down whichever device is
open, and every continuation compares its call id before touching the
transcript or the state, so late results are dropped.
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Callable, Optional

from testcall.backend import BackendClient
from testcall.booking import BookingClient, build_job_payload
from testcall.capture import AudioCaptureSession, CapturedAudio
from testcall.config import HarnessSettings, ReceptionistConfig
from testcall.device import DeviceAudio
from testcall.dialogue import DialogueEngine
from testcall.errors import CaptureError, ReplyGenerationError, TranscriptionError
from testcall.extraction import ExtractionGateway, JobExtraction
from testcall.playback import SpeechPlayback
from testcall.session import CallSession
from testcall.states import ConversationState
from testcall.transcript import ASSISTANT, CALLER, ConversationTurn, to_plain_text, to_timestamped_dump
from testcall.transcription import TranscriptionGateway

logger = logging.getLogger(__name__)


class Notice(Enum):
    PERMISSION_DENIED = "Please enable microphone access to test your AI receptionist."
    CAPTURE_FAILED = "Failed to start recording. Tap the mic to try again."
    NOT_UNDERSTOOD = "Sorry, I couldn't understand that. Please try again."
    REPLY_FAILED = "Something went wrong generating a response. Please try again."


class ConversationController:
    def __init__(
        self,
        *,
        device: DeviceAudio,
        capture: AudioCaptureSession,
        playback: SpeechPlayback,
        transcriber: TranscriptionGateway,
        client: BackendClient,
        settings: Optional[HarnessSettings] = None,
        booking: Optional[BookingClient] = None,
        on_state: Optional[Callable[[ConversationState], None]] = None,
        on_turn: Optional[Callable[[ConversationTurn], None]] = None,
        on_notice: Optional[Callable[[Notice], None]] = None,
    ):
        self._device = device
        self._capture = capture
        self._playback = playback
        self._transcriber = transcriber
        self._client = client
        self.settings = settings or HarnessSettings()
        self._booking = booking
        self._on_state = on_state
        self._on_turn = on_turn
        self._on_notice = on_notice

        self.state = ConversationState.IDLE
        self.session: Optional[CallSession] = None
        self.last_notice: Optional[Notice] = None
        self._active_call_id: Optional[str] = None
        self._dialogue: Optional[DialogueEngine] = None
        self._extractor: Optional[ExtractionGateway] = None
        self._task: Optional[asyncio.Task] = None
        self._close_timer: Optional[asyncio.Task] = None
        self._listen_gate = asyncio.Event()
        self._changed = asyncio.Event()

    # ── Read-only views ──

    @property
    def extraction(self) -> Optional[JobExtraction]:
        return self.session.extraction if self.session else None

    @property
    def turns(self) -> tuple:
        return self.session.transcript.turns if self.session else ()

    @property
    def muted(self) -> bool:
        return bool(self.session and self.session.muted)

    async def wait_for_state(self, *states: ConversationState, timeout: Optional[float] = None) -> ConversationState:
        async def _wait():
            while self.state not in states:
                changed = self._changed
                await changed.wait()
            return self.state

        return await asyncio.wait_for(_wait(), timeout)

    # ── User actions ──

    async def start_call(self, config: ReceptionistConfig) -> bool:
        if self.state is not ConversationState.IDLE:
            logger.warning("start_call ignored in state %s", self.state.value)
            return False

        session = CallSession(config=config.snapshot(), start_time=time.time())
        self.session = session
        self._active_call_id = session.call_id
        self.last_notice = None
        self._dialogue = DialogueEngine(session.config, self._client)
        self._extractor = ExtractionGateway(
            self._client,
            turn_threshold=self.settings.extraction_turn_threshold,
            confidence_threshold=self.settings.confidence_threshold,
        )
        self._listen_gate.set()
        self._set_state(ConversationState.REQUESTING_PERMISSION)
        self._task = asyncio.create_task(self._run_call(session))
        return True

    async def send(self) -> bool:
        """Close the open capture now instead of waiting for the ceiling."""
        if self.state is not ConversationState.ACTIVE or not self._capture.is_open:
            return False
        return await self._capture.stop() is not None

    async def toggle_mute(self) -> bool:
        session = self.session
        if session is None or not self.state.is_live:
            return False
        session.muted = not session.muted
        logger.info("[%s] Microphone %s", session.call_id, "muted" if session.muted else "unmuted")
        if session.muted:
            self._listen_gate.clear()
            if self._capture.is_open:
                await self._capture.stop(reason="mute")
        else:
            self._listen_gate.set()
        return session.muted

    def resume_listening(self) -> bool:
        """Retry opening the microphone after a capture failure."""
        if self.session is None or not self.state.is_live or self.session.muted:
            return False
        self._listen_gate.set()
        return True

    async def end_call(self) -> None:
        """End the current call from any live state. Safe to call repeatedly."""
        if not self.state.is_live:
            logger.debug("end_call ignored in state %s", self.state.value)
            return

        session = self.session
        self._active_call_id = None
        self._set_state(ConversationState.ENDED)
        self._listen_gate.set()
        await self._teardown()
        self._log_transcript(session)

        job = session.extraction
        if job is not None and job.is_confident(self.settings.confidence_threshold):
            self._set_state(ConversationState.REVIEWING_EXTRACTION)
        else:
            self._close_timer = asyncio.create_task(self._auto_close(session))

    async def accept_extraction(self) -> Optional[dict]:
        """Hand the reviewed job to the booking webhook and reset to Idle."""
        if self.state is not ConversationState.REVIEWING_EXTRACTION:
            return None
        session = self.session
        payload = build_job_payload(session, session.extraction)
        result = {"success": True, "job": payload}
        if self._booking is not None:
            result = await self._booking.send_job(payload)
        self._reset()
        return result

    async def dismiss(self) -> None:
        """Close the harness from any state and return to Idle."""
        if self.state.is_live:
            await self.end_call()
        self._reset()

    # ── Call loop ──

    def _is_current(self, session: CallSession) -> bool:
        return (
            self._active_call_id is not None
            and session.call_id == self._active_call_id
            and self.state.is_live
        )

    async def _run_call(self, session: CallSession) -> None:
        try:
            await self._converse(session)
        except Exception:
            logger.exception("[%s] Unexpected error in test call", session.call_id)
            if self._is_current(session):
                self._notify(Notice.REPLY_FAILED)
                await self.end_call()

    async def _converse(self, session: CallSession) -> None:
        try:
            granted = await self._device.request_microphone_permission()
        except Exception:
            logger.exception("[%s] Permission request failed", session.call_id)
            granted = False
        if not self._is_current(session):
            logger.debug("[%s] Stale permission result discarded", session.call_id)
            return
        if not granted:
            self._notify(Notice.PERMISSION_DENIED)
            self._reset()
            return

        self._set_state(ConversationState.ACTIVE)
        greeting = session.config.greeting
        self._append(session, ASSISTANT, greeting)
        self._dialogue.record_greeting(greeting)
        await self._playback.speak(greeting, session.config.voice)

        while self._is_current(session):
            captured = await self._listen(session)
            if not self._is_current(session):
                return
            if captured is None:
                continue
            self._set_state(ConversationState.PROCESSING)
            await self._process(session, captured)
            if not self._is_current(session):
                return
            self._set_state(ConversationState.ACTIVE)

    async def _listen(self, session: CallSession) -> Optional[CapturedAudio]:
        await self._listen_gate.wait()
        if not self._is_current(session):
            return None
        try:
            await self._capture.start()
        except CaptureError as e:
            logger.warning("[%s] Could not start capture: %s", session.call_id, e)
            self._listen_gate.clear()
            self._notify(Notice.CAPTURE_FAILED)
            return None

        captured = await self._capture.wait_closed()
        if captured is None and self._is_current(session):
            self._notify(Notice.CAPTURE_FAILED)
        return captured

    async def _process(self, session: CallSession, captured: CapturedAudio) -> None:
        try:
            text = await self._transcriber.transcribe(captured)
        except TranscriptionError as e:
            if self._is_current(session):
                logger.warning("[%s] Transcription failed: %s", session.call_id, e)
                self._notify(Notice.NOT_UNDERSTOOD)
            return
        if not self._is_current(session):
            logger.debug("[%s] Stale transcription discarded", session.call_id)
            return
        if not text:
            return

        try:
            reply = await self._dialogue.next_reply(text)
        except ReplyGenerationError as e:
            if self._is_current(session):
                logger.warning("[%s] Reply generation failed: %s", session.call_id, e)
                self._notify(Notice.REPLY_FAILED)
            return
        if not self._is_current(session):
            logger.debug("[%s] Stale reply discarded", session.call_id)
            return

        self._append(session, CALLER, text)
        self._append(session, ASSISTANT, reply)

        if self._extractor.should_extract(session.transcript.caller_turn_count()):
            session.extraction_attempted = True
            job = await self._extractor.extract(to_plain_text(session.transcript))
            if not self._is_current(session):
                logger.debug("[%s] Stale extraction discarded", session.call_id)
                return
            if job is not None:
                session.extraction = job

        await self._playback.speak(reply, session.config.voice)

    # ── Teardown ──

    async def _teardown(self) -> None:
        for name, release in (("capture", self._capture.cancel), ("playback", self._playback.cancel)):
            try:
                await release()
            except Exception:
                logger.exception("Ignoring %s teardown error", name)

    async def _auto_close(self, session: CallSession) -> None:
        await asyncio.sleep(self.settings.auto_close_seconds)
        if self.session is session and self.state is ConversationState.ENDED:
            self._reset()

    def _reset(self) -> None:
        if self._close_timer is not None and self._close_timer is not asyncio.current_task():
            self._close_timer.cancel()
        self._close_timer = None
        self._active_call_id = None
        self.session = None
        self._dialogue = None
        self._extractor = None
        self._listen_gate.set()
        if self.state is not ConversationState.IDLE:
            self._set_state(ConversationState.IDLE)

    # ── Helpers ──

    def _set_state(self, new_state: ConversationState) -> None:
        old = self.state
        self.state = new_state
        call_id = self.session.call_id if self.session else "-"
        logger.info("[%s] %s -> %s", call_id, old.value, new_state.value)
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()
        self._emit(self._on_state, new_state)

    def _append(self, session: CallSession, role: str, text: str) -> None:
        turn = session.transcript.append(role, text)
        logger.info("[%s] %s: %s", session.call_id, role.capitalize(), text)
        self._emit(self._on_turn, turn)

    def _notify(self, notice: Notice) -> None:
        self.last_notice = notice
        self._emit(self._on_notice, notice)

    def _log_transcript(self, session: CallSession) -> None:
        dump = to_timestamped_dump(session.transcript, session.call_id, self.state.value)
        dump["extraction_attempted"] = session.extraction_attempted
        if session.extraction is not None:
            dump["extraction"] = session.extraction.to_dict()
        logger.info("TRANSCRIPT_DUMP|%s", json.dumps(dump))

    @staticmethod
    def _emit(callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning("Listener callback raised: %s", e)
