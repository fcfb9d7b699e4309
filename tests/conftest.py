import asyncio
from typing import AsyncIterator, List, Optional

import numpy as np
import pytest

from voice_companion.audio.level import LevelMonitor
from voice_companion.client.pipeline import StreamedReply
from voice_companion.config import TurnConfig
from voice_companion.core.state import ConversationState
from voice_companion.models import ReplyHeader

BLOCK = 512

REPORT = {
    "memory": {"score": 8, "observations": ["Recalled breakfast"], "concerns": []},
    "language": {"score": 9, "observations": [], "concerns": []},
    "attention": {"score": 7, "observations": [], "concerns": ["Lost the thread once"]},
    "orientation": {"score": 9, "observations": [], "concerns": []},
    "executiveFunction": {"score": 8, "observations": [], "concerns": []},
    "overallSeverity": "normal",
    "summary": "You chatted easily about your day.",
    "recommendations": ["Keep up your daily walks"],
}


def level_block(level: float) -> np.ndarray:
    """A microphone block whose scripted loudness is ``level``."""
    return np.full(BLOCK, level / 100.0, dtype=np.float32)


async def iter_chunks(chunks) -> AsyncIterator[bytes]:
    for chunk in chunks:
        await asyncio.sleep(0)
        yield chunk


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def make_reply(text: str = "", transcript: Optional[str] = None, audio=(b"ID3", b"mp3")) -> StreamedReply:
    chunks = list(audio)
    first = chunks[0] if chunks else b""
    return StreamedReply(ReplyHeader(text=text, transcript=transcript), first, iter_chunks(chunks[1:]))


class TickClock:
    """Monotonic clock that advances a fixed step every time it is read."""

    def __init__(self, step: float = 0.1) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class ScriptedLevelMonitor(LevelMonitor):
    """Reads the loudness straight out of blocks built by ``level_block``."""

    def measure(self, block: np.ndarray) -> float:
        return float(block[0]) * 100.0


class FakeMicrophone:
    def __init__(self, open_error: Optional[Exception] = None, open_gate: Optional[asyncio.Event] = None) -> None:
        self.open_error = open_error
        self.open_gate = open_gate
        self.open_count = 0
        self.close_count = 0
        self._queue: asyncio.Queue = asyncio.Queue()

    async def open(self) -> "FakeMicrophone":
        await asyncio.sleep(0)
        if self.open_gate is not None:
            await self.open_gate.wait()
        self.open_count += 1
        if self.open_error is not None:
            raise self.open_error
        return self

    def close(self) -> None:
        self.close_count += 1
        self._queue.put_nowait(None)

    def push(self, *levels: float) -> None:
        for level in levels:
            self._queue.put_nowait(level_block(level))

    async def frames(self):
        while True:
            block = await self._queue.get()
            if block is None:
                return
            yield block


class FakePipelineClient:
    """Scripted backend: one greeting and a queue of turn replies."""

    def __init__(self) -> None:
        self.greeting: object = make_reply("How are you?")
        self.turn_replies: List[object] = []
        self.greeting_calls = 0
        self.turns: List[tuple] = []

    async def submit_session_start(self) -> StreamedReply:
        self.greeting_calls += 1
        await asyncio.sleep(0)
        if isinstance(self.greeting, Exception):
            raise self.greeting
        return self.greeting

    async def submit_turn(self, audio: bytes, prior_messages=()) -> StreamedReply:
        self.turns.append((audio, list(prior_messages)))
        await asyncio.sleep(0)
        reply = self.turn_replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def analyze(self, transcript: str):
        self.analyzed = transcript
        return None


class RecordingPlayer:
    """Stands in for ProgressiveAudioPlayer; keeps what it was asked to play."""

    def __init__(self, state: Optional[ConversationState] = None) -> None:
        self.state = state
        self.played: List[bytes] = []
        self.messages_at_play: List[tuple] = []
        self.stop_count = 0

    @property
    def is_playing(self) -> bool:
        return False

    async def play(self, reader, first_chunk: bytes = b"") -> None:
        if self.state is not None:
            self.messages_at_play.append(tuple((m.role.value, m.content) for m in self.state.messages))
        data = bytearray(first_chunk)
        async for chunk in reader:
            data += chunk
        self.played.append(bytes(data))

    def stop(self) -> None:
        self.stop_count += 1


@pytest.fixture
def fast_turns() -> TurnConfig:
    # Guards off so a handful of 100 ms ticks finish a turn
    return TurnConfig(warmup_ms=0, min_duration_ms=0, silence_ms=250)


@pytest.fixture
def state() -> ConversationState:
    return ConversationState()


@pytest.fixture
def mic() -> FakeMicrophone:
    return FakeMicrophone()


@pytest.fixture
def backend() -> FakePipelineClient:
    return FakePipelineClient()


@pytest.fixture
def player(state) -> RecordingPlayer:
    return RecordingPlayer(state)
