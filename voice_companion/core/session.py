from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from voice_companion.audio.capture import AudioStream
from voice_companion.audio.level import LevelMonitor
from voice_companion.audio.playback import ProgressiveAudioPlayer
from voice_companion.client.pipeline import PipelineClient, StreamedReply
from voice_companion.config import TurnConfig
from voice_companion.core.state import ConversationState
from voice_companion.errors import (
    MicrophoneError,
    MicrophonePermissionError,
    VoiceCompanionError,
)
from voice_companion.models import ActivityState, AssessmentReport, Role
from voice_companion.vad.turn_detector import CompletedTurn, TurnDetector

logger = logging.getLogger(__name__)

FALLBACK_GREETING = "How has your day been so far? I'd love to hear about it."

ErrorCallback = Callable[[Exception, str], None]


class SessionController:
    """Owns the microphone for a session and drives the turn lifecycle.

    Usage
    -----
        ctl = SessionController(state, client, player)
        await ctl.start_session()   # greeting, then listening
        ...                         # turns complete on their own
        ctl.end_session()

    One rule decides when turns start and stop (``on_flags_changed``): while
    the session is active and no reply is being processed, a turn is
    listening; as soon as processing starts, a listening turn is stopped and
    its audio dropped. The rule runs only when one of those two flags
    changes.

    Parameters
    ----------
    state : ConversationState
        Written by this controller only.
    client : PipelineClient
        Backend access.
    player : ProgressiveAudioPlayer
        Reply playback.
    detector : TurnDetector, optional
        End-of-utterance detection; built from ``turn_config`` if omitted.
    level_monitor : LevelMonitor, optional
        Loudness per microphone block.
    microphone_factory : callable, optional
        Returns an unopened microphone (``open()``, ``close()``,
        ``frames()``). Defaults to a sounddevice ``AudioStream``.
    on_error : callable, optional
        ``on_error(exc, message)`` for every surfaced error.
    clock : callable, optional
        Monotonic seconds; injectable for tests.
    """

    def __init__(
        self,
        state: ConversationState,
        client: PipelineClient,
        player: ProgressiveAudioPlayer,
        *,
        detector: TurnDetector | None = None,
        level_monitor: LevelMonitor | None = None,
        turn_config: TurnConfig | None = None,
        microphone_factory: Callable[[], AudioStream] | None = None,
        on_error: ErrorCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        cfg = turn_config or (detector.config if detector is not None else TurnConfig())
        self.state = state
        self.client = client
        self.player = player
        self.detector = detector or TurnDetector(cfg)
        self.level_monitor = level_monitor or LevelMonitor()
        self._microphone_factory = microphone_factory or (
            lambda: AudioStream(sample_rate=cfg.sample_rate, block_size=cfg.block_size)
        )
        self._on_error = on_error
        self._clock = clock

        self._mic: Optional[AudioStream] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._process_task: Optional[asyncio.Task] = None
        self._starting = False
        self._epoch = 0
        self._listening_turn_id: Optional[int] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def start_session(self) -> None:
        """Acquire the microphone, play the greeting, then start listening."""
        if self._starting or self.state.is_session_active:
            logger.debug("start_session ignored: session already starting or active")
            return
        self._starting = True
        epoch = self._epoch
        try:
            mic = self._microphone_factory()
            await mic.open()
        except MicrophoneError as exc:
            if epoch == self._epoch:
                self._surface_error(exc, "Could not access the microphone")
                self.state.set_activity(ActivityState.IDLE)
            return
        finally:
            self._starting = False

        if epoch != self._epoch:
            # Ended while the microphone was opening (e.g. a permission prompt).
            mic.close()
            logger.info("Session ended before the microphone opened")
            return

        self._mic = mic
        self._epoch += 1
        epoch = self._epoch
        self.state.set_error(None)
        # The greeting counts as processing: nobody listens while it plays.
        self._set_flags(processing=True)
        self._set_flags(session_active=True)
        self.state.set_activity(ActivityState.THINKING)
        self._pump_task = asyncio.create_task(self._pump_frames(mic))
        logger.info("Session %s started", self.state.session_id)

        await self._request_greeting(epoch)

    def end_session(self) -> None:
        """Stop recording and playback, release the microphone, go idle."""
        self._epoch += 1
        self._set_flags(session_active=False)
        self._set_flags(processing=False)
        self.player.stop()
        self.level_monitor.stop()

        task, self._process_task = self._process_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        pump, self._pump_task = self._pump_task, None
        if pump is not None and not pump.done():
            pump.cancel()
        mic, self._mic = self._mic, None
        if mic is not None:
            mic.close()

        self.state.set_activity(ActivityState.IDLE)
        logger.info("Session %s ended", self.state.session_id)

    def reset(self) -> None:
        """End the session, forget the conversation and issue a new session id."""
        self.end_session()
        self.state.clear_messages()
        self.state.set_error(None)
        self.state.new_session_id()

    def stop_speaking(self) -> None:
        """Cut the current reply short."""
        self.player.stop()
        if self.state.activity is ActivityState.SPEAKING:
            self.state.set_activity(self._resting_activity())

    async def analyze(self) -> AssessmentReport:
        """Structured report for the conversation so far."""
        return await self.client.analyze(self.state.transcript())

    def on_flags_changed(self) -> None:
        """Start or stop the listening turn to match session/processing flags."""
        active = self.state.is_session_active
        processing = self.state.is_processing
        if active and not processing:
            if not self.detector.is_active():
                self._start_turn()
        elif self.detector.is_active():
            self._stop_turn()

    async def process_user_audio(self, audio: bytes) -> None:
        """Send one utterance and play the reply. Ignored while busy."""
        if self.state.is_processing:
            return
        epoch = self._epoch
        self._set_flags(processing=True)
        self.state.set_error(None)
        self.state.set_activity(ActivityState.THINKING)
        try:
            prior = [m.as_chat() for m in self.state.messages]
            reply = await self.client.submit_turn(audio, prior)
            async with reply:
                if epoch != self._epoch:
                    return
                await self._handle_turn_reply(reply)
        except VoiceCompanionError as exc:
            if epoch == self._epoch:
                self._surface_error(exc, "An error occurred")
        except Exception as exc:
            logger.exception("Unexpected error while processing a turn")
            if epoch == self._epoch:
                self._surface_error(exc, "An error occurred")
        finally:
            if epoch == self._epoch:
                self.state.set_activity(self._resting_activity())
                self._set_flags(processing=False)

    # ------------------------------------------------------------------
    # Replies
    # ------------------------------------------------------------------
    async def _handle_turn_reply(self, reply: StreamedReply) -> None:
        transcript = reply.transcript_text
        if not transcript.strip():
            logger.info("Empty transcription; back to listening")
            return
        # Both lines appear before a single byte of audio is played.
        self.state.add_message(Role.USER, transcript)
        self.state.add_message(Role.ASSISTANT, reply.reply_text)
        self.state.set_activity(ActivityState.SPEAKING)
        await self.player.play(reply.reader, reply.first_chunk)

    async def _request_greeting(self, epoch: int) -> None:
        try:
            reply = await self.client.submit_session_start()
            async with reply:
                if epoch != self._epoch:
                    return
                if reply.reply_text.strip():
                    self.state.add_message(Role.ASSISTANT, reply.reply_text)
                self.state.set_activity(ActivityState.SPEAKING)
                await self.player.play(reply.reader, reply.first_chunk)
        except Exception as exc:
            if not isinstance(exc, VoiceCompanionError):
                logger.exception("Unexpected error while fetching the greeting")
            if epoch == self._epoch:
                self._surface_error(exc, "Could not start conversation")
                # Give the user something to respond to.
                self.state.add_message(Role.ASSISTANT, FALLBACK_GREETING)
        finally:
            if epoch == self._epoch:
                self.state.set_activity(self._resting_activity())
                self._set_flags(processing=False)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------
    def _start_turn(self) -> None:
        turn_id = self.detector.start(self._clock())
        if turn_id is None:
            return
        self._listening_turn_id = turn_id
        self.level_monitor.start()
        self.state.set_activity(ActivityState.LISTENING)
        logger.info("Listening (turn %d)", turn_id)

    def _stop_turn(self) -> None:
        self.level_monitor.stop()
        self._listening_turn_id = None
        self.detector.stop(self._clock(), send=False)

    def _on_turn_complete(self, done: CompletedTurn) -> None:
        if done.turn_id != self._listening_turn_id:
            logger.debug("Ignoring stale completion of turn %d", done.turn_id)
            return
        self._listening_turn_id = None
        self.level_monitor.stop()
        if not done.speech_observed:
            return
        self._process_task = asyncio.create_task(self.process_user_audio(done.to_wav_bytes()))

    async def _pump_frames(self, mic: AudioStream) -> None:
        """Route microphone blocks to the listening turn; drop them otherwise."""
        async for block in mic.frames():
            if not self.detector.is_active():
                continue
            level = self.level_monitor.sample(block)
            if level is None:
                continue
            done = self.detector.feed(level, block, self._clock())
            if done is not None:
                self._on_turn_complete(done)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _set_flags(self, *, session_active: bool | None = None, processing: bool | None = None) -> None:
        if self.state.set_flags(session_active=session_active, processing=processing):
            self.on_flags_changed()

    def _resting_activity(self) -> ActivityState:
        return ActivityState.LISTENING if self.state.is_session_active else ActivityState.IDLE

    def _surface_error(self, exc: Exception, default: str) -> None:
        message = str(exc) or default
        if isinstance(exc, MicrophonePermissionError):
            logger.error("Microphone permission denied: %s", exc)
        else:
            logger.error("%s: %s", default, exc)
        self.state.set_error(message)
        if self._on_error is not None:
            self._on_error(exc, message)
