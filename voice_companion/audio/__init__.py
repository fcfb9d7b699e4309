from .capture import AudioStream
from .level import LevelMonitor
from .playback import BufferedPlayback, PipePlayback, ProgressiveAudioPlayer, select_strategy

__all__ = [
    "AudioStream",
    "LevelMonitor",
    "BufferedPlayback",
    "PipePlayback",
    "ProgressiveAudioPlayer",
    "select_strategy",
]
