"""Accumulates the chunks of one session for playback and batch fallback."""

import logging
import threading
from typing import List

from ..models.audio import AudioChunk, RecordedAudio

logger = logging.getLogger(__name__)


class RecordingBuffer:
    """Keeps every chunk of the current session in capture order."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1):
        self.sample_rate = sample_rate
        self.channels = channels

        self.chunks: List[AudioChunk] = []
        self.lock = threading.Lock()
        self.total_bytes = 0

    def add_chunk(self, chunk: AudioChunk) -> None:
        """Add a captured chunk to the recording."""
        if not chunk.data:
            return

        with self.lock:
            self.chunks.append(chunk)
            self.total_bytes += len(chunk.data)
            logger.debug(f"Recorded chunk #{chunk.sequence}: {len(chunk.data)} bytes, "
                         f"{len(self.chunks)} chunks ({self.total_bytes} bytes) total")

    def get_chunks(self) -> List[AudioChunk]:
        with self.lock:
            return list(self.chunks)

    def to_recorded_audio(self, session_id: str) -> RecordedAudio:
        """Concatenate everything recorded so far into one WAV asset."""
        recorded = RecordedAudio.from_chunks(
            session_id, self.get_chunks(), self.sample_rate, self.channels
        )
        logger.info(f"Recording for {session_id}: {recorded.chunk_count} chunks, "
                    f"{recorded.duration_seconds:.1f}s")
        return recorded
