"""Data models for the Dictate2Me application."""

from .audio import AudioStats, AudioChunk, RecordedAudio, encode_wav
from .session import Session, SessionMode, SessionStatus
from .transcription import SpeechEngine, TranscriptFragment, BatchTranscriptionResult
from .events import BufferUpdateEvent, SessionEvent, PlaybackEvent
from .text_buffer import TextBuffer

__all__ = [
    "AudioStats",
    "AudioChunk",
    "RecordedAudio",
    "encode_wav",
    "Session",
    "SessionMode",
    "SessionStatus",
    "SpeechEngine",
    "TranscriptFragment",
    "BatchTranscriptionResult",
    # Pubsub events
    "BufferUpdateEvent",
    "SessionEvent",
    "PlaybackEvent",
    "TextBuffer",
]
