import io

import numpy as np
import pytest
import soundfile as sf

from voice_companion.audio import capture
from voice_companion.audio.capture import AudioStream, classify_portaudio_error
from voice_companion.config import ClientConfig, TurnConfig
from voice_companion.core.buffers import TurnAudio, encode_wav
from voice_companion.errors import MicrophonePermissionError, MicrophoneUnavailableError


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Error opening InputStream: Permission denied [PaErrorCode -9999]", MicrophonePermissionError),
        ("Input device is not authorized", MicrophonePermissionError),
        ("Error querying device -1", MicrophoneUnavailableError),
        ("Invalid sample rate [PaErrorCode -9997]", MicrophoneUnavailableError),
    ],
)
def test_classify_portaudio_error(message, expected):
    assert isinstance(classify_portaudio_error(Exception(message)), expected)


def test_turn_audio_encodes_wav():
    buf = TurnAudio(16_000)
    assert len(buf) == 0
    buf.append(np.zeros(800, dtype=np.float32))
    buf.append(np.full(800, 0.25, dtype=np.float32))
    assert buf.block_count == 2
    assert buf.duration_sec == pytest.approx(0.1)

    audio, sr = sf.read(io.BytesIO(encode_wav(buf.samples(), buf.sample_rate)), dtype="float32")
    assert sr == 16_000
    assert len(audio) == 1600
    assert audio[-1] == pytest.approx(0.25, abs=1e-3)


def test_empty_turn_audio_has_no_samples():
    assert TurnAudio().samples().shape == (0,)


def test_turn_audio_rejects_multichannel():
    with pytest.raises(ValueError):
        TurnAudio().append(np.zeros((10, 2), dtype=np.float32))


def test_turn_config_from_env(monkeypatch):
    monkeypatch.setenv("VOICE_COMPANION_THRESHOLD", "22.5")
    monkeypatch.setenv("VOICE_COMPANION_SILENCE_MS", "1200")
    cfg = TurnConfig.from_env()
    assert cfg.threshold == 22.5
    assert cfg.silence_ms == 1200
    assert cfg.warmup_ms == 1500


def test_client_config_defaults(monkeypatch):
    monkeypatch.delenv("VOICE_COMPANION_BASE_URL", raising=False)
    cfg = ClientConfig.from_env()
    assert cfg.base_url == "http://127.0.0.1:8000"
    assert cfg.timeout_sec == 30.0


class FakeInputStream:
    def __init__(self, **kwargs) -> None:
        self.callback = kwargs["callback"]
        self.stopped = False
        self.closed = False

    def start(self) -> None:
        pass

    def stop(self) -> None:
        self.stopped = True

    def close(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_close_reports_dropped_blocks_and_ends_frames(monkeypatch, caplog):
    monkeypatch.setattr(capture.sd, "InputStream", FakeInputStream)
    mic = await AudioStream(queue_maxsize=2).open()
    for _ in range(4):
        mic._safe_put(np.zeros(512, dtype=np.float32))
    assert mic.dropped_blocks == 2

    mic.close()
    mic.close()
    received = [block async for block in mic.frames()]

    assert not mic.is_open
    assert len(received) == 1  # oldest block gave way to the end marker
    assert "Microphone released (3 blocks dropped)" in caplog.text
