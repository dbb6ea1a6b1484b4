"""Transcription-related data models."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SpeechEngine(Enum):
    """Engine identifiers accepted by the batch transcription endpoint."""
    GLADIA = "Gladia"
    WHISPER = "OpenAI Whisper"
    DEEPGRAM = "Deepgram"

    @classmethod
    def parse(cls, value: str) -> "SpeechEngine":
        """Look up an engine by value or by member name, case-insensitively."""
        for engine in cls:
            if value.lower() in (engine.value.lower(), engine.name.lower()):
                return engine
        raise ValueError(f"Unknown speech engine: {value}")


@dataclass(frozen=True)
class TranscriptFragment:
    """A unit of transcribed text, provisional (interim) or committed (final)."""
    text: str
    is_final: bool
    sequence: int


@dataclass
class BatchTranscriptionResult:
    """Result of a batch (or local) transcription of a complete recording."""
    text: str
    service: str
    audio_url: Optional[str] = None
    processing_time: float = 0.0
