"""Audio-related data models."""

import io
import wave
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


def encode_wav(pcm: bytes, sample_rate: int, channels: int = 1, sample_width: int = 2) -> bytes:
    """Wrap raw PCM frames in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buffer.getvalue()


@dataclass
class AudioStats:
    """Audio recording statistics."""
    is_recording: bool
    duration_seconds: float
    sample_rate: int
    chunk_size: int
    total_chunks: int
    peak_level: float = 0.0


@dataclass
class AudioChunk:
    """One captured segment of 16-bit PCM audio."""
    data: bytes
    sequence: int
    timestamp: float  # Unix time when the chunk was read from the device
    sample_rate: int = 16000
    channels: int = 1
    peak_level: float = 0.0

    @property
    def duration_ms(self) -> int:
        bytes_per_second = self.sample_rate * self.channels * 2
        return int(len(self.data) * 1000 / bytes_per_second) if bytes_per_second else 0

    def to_wav(self) -> bytes:
        """Encode this chunk as a standalone WAV payload."""
        return encode_wav(self.data, self.sample_rate, self.channels)


@dataclass
class RecordedAudio:
    """Playable asset for a finished session or an uploaded file."""
    session_id: str
    data: bytes  # Complete file contents (WAV for recordings)
    sample_rate: int = 16000
    channels: int = 1
    chunk_count: int = 0
    duration_seconds: float = 0.0
    source: str = "recording"  # "recording" | "upload"
    filename: str = "dictation.wav"
    content_type: str = "audio/wav"
    audio_url: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_chunks(cls, session_id: str, chunks: List[AudioChunk],
                    sample_rate: int = 16000, channels: int = 1) -> "RecordedAudio":
        """Concatenate chunks in capture order into a single WAV asset."""
        ordered = sorted(chunks, key=lambda c: c.sequence)
        pcm = b''.join(chunk.data for chunk in ordered)
        bytes_per_second = sample_rate * channels * 2
        return cls(
            session_id=session_id,
            data=encode_wav(pcm, sample_rate, channels),
            sample_rate=sample_rate,
            channels=channels,
            chunk_count=len(ordered),
            duration_seconds=len(pcm) / bytes_per_second if bytes_per_second else 0.0,
            filename=f"dictation_{session_id}.wav",
        )

    @property
    def size_bytes(self) -> int:
        return len(self.data)
