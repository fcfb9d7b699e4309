from __future__ import annotations

import asyncio
import io
import logging
import shutil
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

from voice_companion.client.protocol import iter_audio
from voice_companion.config import PlayerConfig
from voice_companion.errors import PipelineError, PlaybackError

logger = logging.getLogger(__name__)


class PlaybackStrategy(ABC):
    """One way of turning a streamed MP3 body into sound.

    ``play`` resolves when playback ends naturally, fails, or is stopped; it
    never raises for playback failures. ``stop`` interrupts the active
    playback, if any, including one still waiting for its first audio byte.

    Every ``play`` call holds a cancel token from start to finish. ``stop``
    (or the next ``play``) sets it, and the playback checks it at each
    suspension point before producing sound.
    """

    name = "abstract"
    _cancel: Optional[asyncio.Event] = None

    @abstractmethod
    async def play(self, reader: AsyncIterator[bytes], first_chunk: bytes = b"") -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    @property
    def is_playing(self) -> bool:
        return self._cancel is not None

    def _begin(self) -> asyncio.Event:
        self.stop()
        self._cancel = asyncio.Event()
        return self._cancel

    def _end(self, cancelled: asyncio.Event) -> None:
        if self._cancel is cancelled:
            self._cancel = None

    def _cancel_current(self) -> None:
        cancelled, self._cancel = self._cancel, None
        if cancelled is not None:
            cancelled.set()


class PipePlayback(PlaybackStrategy):
    """Append strategy: feed an external streaming decoder through stdin.

    Sound starts as soon as the decoder has its first frame. Each chunk is
    written and drained before the next one is written, so at most one append
    is in flight. Closing stdin signals end-of-stream; playback resolves when
    the decoder process exits.
    """

    name = "pipe"

    def __init__(self, command: List[str]) -> None:
        self.command = list(command)
        self._proc: Optional[asyncio.subprocess.Process] = None

    async def play(self, reader: AsyncIterator[bytes], first_chunk: bytes = b"") -> None:
        cancelled = self._begin()
        proc: Optional[asyncio.subprocess.Process] = None
        appended = 0
        try:
            try:
                async for chunk in iter_audio(first_chunk, reader):
                    if cancelled.is_set():
                        break
                    if proc is None:
                        proc = await self._spawn(cancelled)
                        if proc is None:
                            break
                    if not await self._append(proc, chunk):
                        break
                    appended += len(chunk)
            except PipelineError as exc:
                logger.warning("Audio stream error, playing what arrived: %s", exc)

            if proc is None:
                return  # zero-byte stream, or stopped before any audio
            await self._finish(proc)
            logger.info("Pipe playback finished (%d bytes)", appended)
        finally:
            self._end(cancelled)

    def stop(self) -> None:
        self._cancel_current()
        proc, self._proc = self._proc, None
        if proc is not None and proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _spawn(self, cancelled: asyncio.Event) -> Optional[asyncio.subprocess.Process]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.error("Could not start audio decoder %s: %s", self.command[0], exc)
            return None
        if cancelled.is_set():
            # Stopped while the decoder was starting.
            proc.kill()
            await proc.wait()
            return None
        self._proc = proc
        return proc

    @staticmethod
    async def _append(proc: asyncio.subprocess.Process, chunk: bytes) -> bool:
        if proc.stdin is None:
            return False
        try:
            proc.stdin.write(chunk)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.warning("Audio decoder closed its input early")
            return False
        return True

    async def _finish(self, proc: asyncio.subprocess.Process) -> None:
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
            try:
                await proc.stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                pass
        code = await proc.wait()
        if code not in (0, None) and proc is self._proc:
            logger.warning("Audio decoder exited with code %s", code)
        if self._proc is proc:
            self._proc = None


class BufferedPlayback(PlaybackStrategy):
    """Fallback: collect the whole body, decode it once, then play it."""

    name = "buffer"

    def __init__(self) -> None:
        self._sounding = False

    async def play(self, reader: AsyncIterator[bytes], first_chunk: bytes = b"") -> None:
        cancelled = self._begin()
        try:
            chunks: List[bytes] = []
            try:
                async for chunk in iter_audio(first_chunk, reader):
                    if cancelled.is_set():
                        return
                    chunks.append(chunk)
            except PipelineError as exc:
                logger.warning("Audio stream error, playing what arrived: %s", exc)
            if not chunks or cancelled.is_set():
                return

            try:
                audio, sample_rate = self.decode(b"".join(chunks))
            except PlaybackError as exc:
                logger.error("Audio playback failed: %s", exc)
                return

            loop = asyncio.get_running_loop()
            self._sounding = True
            try:
                sd.play(audio, sample_rate)
                await loop.run_in_executor(None, sd.wait)
            except sd.PortAudioError as exc:
                logger.error("Audio playback failed: %s", exc)
            finally:
                if not cancelled.is_set():
                    self._sounding = False
        finally:
            self._end(cancelled)

    def stop(self) -> None:
        self._cancel_current()
        if self._sounding:
            self._sounding = False
            sd.stop()

    @staticmethod
    def decode(data: bytes) -> tuple[np.ndarray, int]:
        try:
            audio, sample_rate = sf.read(io.BytesIO(data), dtype="float32")
        except RuntimeError as exc:
            raise PlaybackError(f"could not decode reply ({exc})") from exc
        return audio, sample_rate


# -----------------------------------------------------------------------------
# Strategy selection (once, at player construction)
# -----------------------------------------------------------------------------


def _pipe_command(backend: str) -> Optional[List[str]]:
    mpv = shutil.which("mpv")
    ffplay = shutil.which("ffplay")
    if backend in ("auto", "mpv") and mpv:
        return [mpv, "--no-video", "--really-quiet", "--cache=yes", "--cache-secs=0.2", "-"]
    if backend in ("auto", "ffplay") and ffplay:
        return [
            ffplay,
            "-hide_banner",
            "-loglevel",
            "warning",
            "-nodisp",
            "-autoexit",
            "-f",
            "mp3",
            "-i",
            "pipe:0",
        ]
    return None


def select_strategy(config: PlayerConfig | None = None) -> PlaybackStrategy:
    """Look for a streaming decoder and pick a strategy."""
    backend = (config or PlayerConfig()).backend
    if backend != "buffer":
        command = _pipe_command(backend)
        if command is not None:
            logger.info("Progressive playback via %s", command[0])
            return PipePlayback(command)
        logger.warning("No streaming decoder found for backend=%r; buffering replies", backend)
    return BufferedPlayback()


class ProgressiveAudioPlayer:
    """Single playback slot in front of a chosen strategy.

    Starting a new playback stops whatever is playing first.
    """

    def __init__(self, strategy: PlaybackStrategy | None = None, config: PlayerConfig | None = None):
        self.strategy = strategy or select_strategy(config)

    @property
    def is_playing(self) -> bool:
        return self.strategy.is_playing

    async def play(self, reader: AsyncIterator[bytes], first_chunk: bytes = b"") -> None:
        self.stop()
        await self.strategy.play(reader, first_chunk)

    def stop(self) -> None:
        self.strategy.stop()
