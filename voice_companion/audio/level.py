from __future__ import annotations

import logging
from typing import Callable, List, Optional

import numpy as np

from voice_companion.config import LevelConfig

logger = logging.getLogger(__name__)

LevelListener = Callable[[float], None]


class LevelMonitor:
    """Turns one microphone block into a 0-100 loudness value.

    The value mirrors what a browser analyser node reports: per-bin spectral
    magnitudes in dB are mapped from ``[min_db, max_db]`` onto 0..255, the
    bins are averaged, and the average is rescaled against
    ``reference_ceiling`` so that ``reference_ceiling`` maps to 100. Anything
    louder is clamped at 100.

    Parameters
    ----------
    config : LevelConfig, optional
        dB window and reference ceiling.
    """

    MAX_LEVEL = 100.0

    def __init__(self, config: LevelConfig | None = None) -> None:
        self.config = config or LevelConfig()
        self._listeners: List[LevelListener] = []
        self._running = False
        self.last_level: float = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        """Stop sampling; further blocks are ignored until ``start``."""
        self._running = False
        self.last_level = 0.0

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, listener: LevelListener) -> None:
        """Register a callback (e.g. a UI level meter) for every sample."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------
    def sample(self, block: np.ndarray) -> Optional[float]:
        """Compute and publish the loudness of ``block``.

        Returns None when the monitor is stopped.
        """
        if not self._running:
            return None
        level = self.measure(block)
        self.last_level = level
        for listener in self._listeners:
            listener(level)
        return level

    def measure(self, block: np.ndarray) -> float:
        if block.size == 0:
            return 0.0
        cfg = self.config
        windowed = block.astype(np.float32) * np.hanning(block.size).astype(np.float32)
        mags = np.abs(np.fft.rfft(windowed)) / block.size
        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(mags)
        scaled = (db - cfg.min_db) / (cfg.max_db - cfg.min_db) * 255.0
        scaled = np.clip(np.nan_to_num(scaled, neginf=0.0), 0.0, 255.0)
        average = float(scaled.mean())
        return min(self.MAX_LEVEL, average / cfg.reference_ceiling * self.MAX_LEVEL)
