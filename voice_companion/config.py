from __future__ import annotations

import os
from dataclasses import dataclass

# -----------------------------------------------------------------------------
# Defaults. Every value can be overridden by keyword or by a VOICE_COMPANION_*
# environment variable through the matching ``from_env``.
# -----------------------------------------------------------------------------
SAMPLE_RATE = 16_000
BLOCK_SIZE = 512  # one level tick = 32 ms at 16 kHz

SPEECH_THRESHOLD = 15.0
SILENCE_MS = 2000
WARMUP_MS = 1500
MIN_DURATION_MS = 500

MIN_DB = -100.0
MAX_DB = -30.0
REFERENCE_CEILING = 128.0

BASE_URL = "http://127.0.0.1:8000"
REQUEST_TIMEOUT_SEC = 30.0
CONNECT_TIMEOUT_SEC = 5.0

PLAYBACK_BACKEND = "auto"  # auto | mpv | ffplay | buffer

_ENV_PREFIX = "VOICE_COMPANION_"


def _env(name: str, default, cast=float):
    raw = os.getenv(_ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    return cast(raw)


@dataclass(frozen=True)
class TurnConfig:
    """Tuning knobs for the turn detector.

    ``warmup_ms`` and ``min_duration_ms`` are independent guards: both must
    have elapsed since the turn started before trailing silence can end it.
    """

    threshold: float = SPEECH_THRESHOLD
    silence_ms: int = SILENCE_MS
    warmup_ms: int = WARMUP_MS
    min_duration_ms: int = MIN_DURATION_MS
    sample_rate: int = SAMPLE_RATE
    block_size: int = BLOCK_SIZE

    @classmethod
    def from_env(cls) -> "TurnConfig":
        return cls(
            threshold=_env("THRESHOLD", SPEECH_THRESHOLD),
            silence_ms=_env("SILENCE_MS", SILENCE_MS, int),
            warmup_ms=_env("WARMUP_MS", WARMUP_MS, int),
            min_duration_ms=_env("MIN_DURATION_MS", MIN_DURATION_MS, int),
            sample_rate=_env("SAMPLE_RATE", SAMPLE_RATE, int),
            block_size=_env("BLOCK_SIZE", BLOCK_SIZE, int),
        )


@dataclass(frozen=True)
class LevelConfig:
    min_db: float = MIN_DB
    max_db: float = MAX_DB
    reference_ceiling: float = REFERENCE_CEILING

    @classmethod
    def from_env(cls) -> "LevelConfig":
        return cls(
            min_db=_env("MIN_DB", MIN_DB),
            max_db=_env("MAX_DB", MAX_DB),
            reference_ceiling=_env("REFERENCE_CEILING", REFERENCE_CEILING),
        )


@dataclass(frozen=True)
class ClientConfig:
    base_url: str = BASE_URL
    timeout_sec: float = REQUEST_TIMEOUT_SEC
    connect_timeout_sec: float = CONNECT_TIMEOUT_SEC

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(
            base_url=_env("BASE_URL", BASE_URL, str),
            timeout_sec=_env("TIMEOUT_SEC", REQUEST_TIMEOUT_SEC),
            connect_timeout_sec=_env("CONNECT_TIMEOUT_SEC", CONNECT_TIMEOUT_SEC),
        )


@dataclass(frozen=True)
class PlayerConfig:
    backend: str = PLAYBACK_BACKEND

    @classmethod
    def from_env(cls) -> "PlayerConfig":
        return cls(backend=_env("PLAYBACK_BACKEND", PLAYBACK_BACKEND, str))
