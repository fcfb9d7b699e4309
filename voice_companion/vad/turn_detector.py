from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import colorama
import numpy as np

from voice_companion.config import TurnConfig
from voice_companion.core.buffers import TurnAudio, encode_wav

logger = logging.getLogger(__name__)


class DetectorState(str, Enum):
    IDLE = "idle"
    WARMING = "warming"
    ACTIVE_SPEECH = "active-speech"
    TRAILING_SILENCE = "trailing-silence"


@dataclass
class Turn:
    """Mutable bookkeeping for the utterance currently being recorded."""

    turn_id: int
    started_at: float
    audio: TurnAudio
    speech_observed: bool = False
    silence_started_at: Optional[float] = None


@dataclass(frozen=True)
class CompletedTurn:
    """A finished utterance, frozen and ready to hand off."""

    turn_id: int
    started_at: float
    ended_at: float
    audio: np.ndarray = field(repr=False)
    sample_rate: int
    speech_observed: bool

    @property
    def duration_sec(self) -> float:
        return len(self.audio) / self.sample_rate

    def to_wav_bytes(self) -> bytes:
        return encode_wav(self.audio, self.sample_rate)


class TurnDetector:
    """Loudness-driven end-of-utterance detector.

    Usage
    -----
        det = TurnDetector(TurnConfig())
        det.start(now)
        done = det.feed(level, block, now)   # for each microphone block
        if done is not None:
            submit(done)

    A turn completes only after speech has been observed *and* both the
    warmup and the minimum-duration guards have elapsed *and* loudness has
    stayed below the threshold for longer than ``silence_ms``. Turns that
    never saw speech never complete; their audio is discarded.

    All timestamps are seconds from the caller's clock (``time.monotonic``
    in production), so the detector itself is deterministic.
    """

    def __init__(self, config: TurnConfig | None = None) -> None:
        self.config = config or TurnConfig()
        self._turn: Optional[Turn] = None
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def state(self) -> DetectorState:
        turn = self._turn
        if turn is None:
            return DetectorState.IDLE
        if turn.silence_started_at is not None:
            return DetectorState.TRAILING_SILENCE
        if turn.speech_observed:
            return DetectorState.ACTIVE_SPEECH
        return DetectorState.WARMING

    @property
    def current_turn_id(self) -> Optional[int]:
        return self._turn.turn_id if self._turn is not None else None

    def is_active(self) -> bool:
        """Return True while a turn is recording."""
        return self._turn is not None

    def start(self, now: float) -> Optional[int]:
        """Begin a new turn and return its id.

        Idempotent: if a turn is already recording, nothing changes and None
        is returned.
        """
        if self._turn is not None:
            return None
        self._turn = Turn(
            turn_id=next(self._ids),
            started_at=now,
            audio=TurnAudio(self.config.sample_rate),
        )
        logger.debug("Turn %d started", self._turn.turn_id)
        return self._turn.turn_id

    def feed(self, level: float, block: np.ndarray, now: float) -> Optional[CompletedTurn]:
        """Consume one loudness sample and its audio block.

        Returns the completed turn when trailing silence has lasted long
        enough, otherwise None.
        """
        turn = self._turn
        if turn is None:
            return None
        turn.audio.append(block)

        cfg = self.config
        if level >= cfg.threshold:
            if turn.silence_started_at is not None:
                logger.debug("Turn %d: speech resumed", turn.turn_id)
            turn.speech_observed = True
            turn.silence_started_at = None
            return None

        if not turn.speech_observed or not self._guards_elapsed(turn, now):
            return None

        if turn.silence_started_at is None:
            turn.silence_started_at = now
            return None

        silence_ms = (now - turn.silence_started_at) * 1000.0
        if silence_ms > cfg.silence_ms:
            return self._finalize(now)
        return None

    def stop(self, now: float, *, send: bool = False) -> Optional[CompletedTurn]:
        """Forcibly end the current turn.

        The buffered audio is discarded unless ``send`` is set and speech was
        observed, in which case the turn is returned as completed.
        """
        turn = self._turn
        if turn is None:
            return None
        if send and turn.speech_observed:
            return self._finalize(now)
        logger.debug(
            "Turn %d stopped; discarding %.2fs of audio (%d blocks)",
            turn.turn_id,
            turn.audio.duration_sec,
            turn.audio.block_count,
        )
        self._turn = None
        return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _guards_elapsed(self, turn: Turn, now: float) -> bool:
        elapsed_ms = (now - turn.started_at) * 1000.0
        return elapsed_ms >= self.config.warmup_ms and elapsed_ms >= self.config.min_duration_ms

    def _finalize(self, now: float) -> CompletedTurn:
        turn = self._turn
        assert turn is not None
        self._turn = None
        done = CompletedTurn(
            turn_id=turn.turn_id,
            started_at=turn.started_at,
            ended_at=now,
            audio=turn.audio.samples(),
            sample_rate=turn.audio.sample_rate,
            speech_observed=turn.speech_observed,
        )
        logger.info(
            "%s[TurnDetector] Turn %d finalized | %.2fs of audio%s",
            colorama.Fore.GREEN,
            done.turn_id,
            done.duration_sec,
            colorama.Style.RESET_ALL,
        )
        return done
