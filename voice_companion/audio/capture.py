import asyncio
import logging
from typing import AsyncGenerator, Optional

import numpy as np
import sounddevice as sd

from voice_companion.errors import MicrophonePermissionError, MicrophoneUnavailableError

logger = logging.getLogger(__name__)

# PortAudio reports a denied microphone through the host API error text.
_PERMISSION_HINTS = ("permission", "denied", "not authorized", "not permitted")


def classify_portaudio_error(exc: Exception) -> Exception:
    """Map a PortAudio failure onto the microphone error taxonomy."""
    text = str(exc).lower()
    if any(hint in text for hint in _PERMISSION_HINTS):
        return MicrophonePermissionError(f"Microphone access denied: {exc}")
    return MicrophoneUnavailableError(f"Could not open microphone: {exc}")


class AudioStream:
    """Asynchronous microphone reader that yields raw PCM blocks.

    The session controller holds one ``AudioStream`` for the whole session;
    turns only consume blocks from it.

    Example
    -------
    >>> async with AudioStream() as mic:
    ...     async for block in mic.frames():
    ...         process(block)
    """

    def __init__(
        self,
        sample_rate: int = 16_000,
        block_size: int = 512,
        channels: int = 1,
        dtype: str = "float32",
        queue_maxsize: int = 128,
    ) -> None:
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.channels = channels
        self.dtype = dtype

        # Filled by the PortAudio callback thread
        self._queue: "asyncio.Queue[Optional[np.ndarray]]" = asyncio.Queue(maxsize=queue_maxsize)

        # Underlying sounddevice stream (created in open())
        self._sd_stream: Optional[sd.InputStream] = None
        self.dropped_blocks = 0

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------
    async def open(self) -> "AudioStream":
        if self._sd_stream is not None:
            return self
        loop = asyncio.get_running_loop()

        def _callback(indata: np.ndarray, frames: int, time, status) -> None:  # noqa: D401
            if status:
                logger.warning("Sounddevice status: %s", status)

            # Flatten to 1-D mono float32 array.
            mono = indata.copy().reshape(-1)
            loop.call_soon_threadsafe(self._safe_put, mono)

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                channels=self.channels,
                dtype=self.dtype,
                callback=_callback,
            )
            stream.start()
        except sd.PortAudioError as exc:
            raise classify_portaudio_error(exc) from exc
        except (OSError, ValueError) as exc:
            raise MicrophoneUnavailableError(f"Could not open microphone: {exc}") from exc

        self._sd_stream = stream
        logger.info("Microphone opened (%d Hz, block=%d)", self.sample_rate, self.block_size)
        return self

    def close(self) -> None:
        if self._sd_stream is None:
            return
        stream, self._sd_stream = self._sd_stream, None
        try:
            stream.stop()
        finally:
            stream.close()
        # Wake any consumer blocked in frames(); the sentinel must fit
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped_blocks += 1
        self._queue.put_nowait(None)
        if self.dropped_blocks:
            logger.warning("Microphone released (%d blocks dropped)", self.dropped_blocks)
        else:
            logger.info("Microphone released")

    @property
    def is_open(self) -> bool:
        return self._sd_stream is not None

    async def __aenter__(self) -> "AudioStream":
        return await self.open()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ------------------------------------------------------------------
    # Public async generator
    # ------------------------------------------------------------------
    async def frames(self) -> AsyncGenerator[np.ndarray, None]:
        """Yield raw PCM frames from the microphone until it is closed."""
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame

    def _safe_put(self, item: Optional[np.ndarray]) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            # Drop block if queue full
            self.dropped_blocks += 1
