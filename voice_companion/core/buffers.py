from __future__ import annotations

import io
from typing import List

import numpy as np
import soundfile as sf


class TurnAudio:
    """Microphone blocks recorded for one turn, in arrival order.

    Blocks are kept as-is and only joined when the turn is handed off, so
    appending stays O(1) for the whole utterance.

    Parameters
    ----------
    sample_rate : int
        Rate of every appended block; used for durations and WAV encoding.
    """

    def __init__(self, sample_rate: int = 16_000) -> None:
        self.sample_rate = sample_rate
        self._blocks: List[np.ndarray] = []
        self._samples = 0

    def __len__(self) -> int:
        """Number of samples recorded so far."""
        return self._samples

    def append(self, block: np.ndarray) -> None:
        if block.ndim != 1:
            raise ValueError(f"expected a mono 1-D block, got shape {block.shape}")
        self._blocks.append(block)
        self._samples += block.shape[0]

    @property
    def duration_sec(self) -> float:
        return self._samples / self.sample_rate

    @property
    def block_count(self) -> int:
        return len(self._blocks)

    def samples(self) -> np.ndarray:
        """All recorded audio as one float32 array."""
        if not self._blocks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(self._blocks).astype(np.float32, copy=False)


def encode_wav(audio: np.ndarray, sample_rate: int) -> bytes:
    """16-bit PCM WAV file, in memory, ready for a multipart upload."""
    out = io.BytesIO()
    sf.write(out, audio, sample_rate, format="WAV", subtype="PCM_16")
    return out.getvalue()
