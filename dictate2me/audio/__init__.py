"""Audio capture, recording and playback."""

from .capture import AudioCapture
from .recording import RecordingBuffer
from .playback import AudioPlayback

__all__ = [
    'AudioCapture',
    'RecordingBuffer',
    'AudioPlayback',
]
