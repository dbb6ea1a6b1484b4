"""Microphone capture that emits fixed-interval audio chunks."""

import pyaudio
import time
import logging
from threading import Thread, Event
from typing import Optional, Callable
from datetime import datetime
import numpy as np

from ..errors import DeviceUnavailableError, MicrophonePermissionError
from ..models.audio import AudioChunk, AudioStats


logger = logging.getLogger(__name__)

_PERMISSION_HINTS = ("permission", "denied", "not authorized", "access")


def peak_level(data: bytes) -> float:
    """Peak amplitude of 16-bit PCM data, normalized to 0..1."""
    if len(data) < 2:
        return 0.0
    samples = np.frombuffer(data[:len(data) - len(data) % 2], dtype=np.int16)
    return float(np.abs(samples.astype(np.int32)).max()) / 32768.0


class AudioCapture:
    """Holds the microphone for one session and delivers chunks to a callback.

    The callback runs on the capture thread; callers that live on an event
    loop must hop back with ``loop.call_soon_threadsafe``.
    """

    def __init__(
        self,
        callback: Callable[[AudioChunk], None],
        sample_rate: int = 16000,
        chunk_interval_ms: int = 1000,
        channels: int = 1,
        format: int = pyaudio.paInt16,
        error_callback: Optional[Callable[[Exception], None]] = None,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            callback: Receives every AudioChunk in capture order
            sample_rate: Audio sample rate in Hz
            chunk_interval_ms: Length of each emitted chunk (500 streaming, 1000 batch)
            channels: Number of audio channels (1 for mono)
            format: Audio format (16-bit signed int)
            error_callback: Called from the capture thread if reading fails
        """
        self.audio_chunk_callback = callback
        self.error_callback = error_callback
        self.sample_rate = sample_rate
        self.chunk_interval_ms = chunk_interval_ms
        self.chunk_size = max(1, int(sample_rate * chunk_interval_ms / 1000))
        self.channels = channels
        self.format = format

        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.is_recording = False

        # Statistics tracking
        self.start_time: Optional[datetime] = None
        self.total_chunks = 0
        self.peak_level = 0.0

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None

    def acquire(self):
        """Open the default input device and start emitting chunks.

        Returns:
            The open PyAudio stream

        Raises:
            MicrophonePermissionError: access to the microphone was refused
            DeviceUnavailableError: no input device exists or it cannot be opened
        """
        if self.is_recording:
            logger.warning("Microphone already acquired")
            return self.stream

        self.pyaudio_instance = pyaudio.PyAudio()
        try:
            self.pyaudio_instance.get_default_input_device_info()
        except OSError as e:
            self._terminate()
            raise DeviceUnavailableError(f"No audio input device available: {e}") from e

        try:
            self.stream = self.pyaudio_instance.open(
                format=self.format,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.chunk_size,
                stream_callback=None
            )
        except OSError as e:
            self._terminate()
            message = str(e).lower()
            if any(hint in message for hint in _PERMISSION_HINTS):
                raise MicrophonePermissionError(f"Microphone access denied: {e}") from e
            raise DeviceUnavailableError(f"Could not open audio input device: {e}") from e

        logger.info(f"Audio stream opened: {self.sample_rate}Hz, "
                    f"{self.chunk_size} samples/chunk ({self.chunk_interval_ms}ms)")

        self.stop_event.clear()
        self.start_time = datetime.now()
        self.total_chunks = 0
        self.peak_level = 0.0

        self.recording_thread = Thread(target=self._record_continuously, daemon=True)
        self.recording_thread.name = "AudioCaptureThread"
        self.is_recording = True
        self.recording_thread.start()
        return self.stream

    def release(self) -> None:
        """Stop capturing and give the device back. Safe to call repeatedly."""
        if not self.is_recording and self.pyaudio_instance is None:
            return

        logger.info("Releasing microphone")
        self.stop_event.set()

        if self.recording_thread and self.recording_thread.is_alive():
            self.recording_thread.join(timeout=self.chunk_interval_ms / 1000.0 + 2.0)
            if self.recording_thread.is_alive():
                logger.warning("Recording thread did not stop cleanly")

        self._close_stream()
        self.is_recording = False
        logger.info(f"Microphone released. Total chunks: {self.total_chunks}")

    def _close_stream(self) -> None:
        stream, self.stream = self.stream, None
        if stream is not None:
            try:
                stream.stop_stream()
                stream.close()
            except OSError as e:
                logger.warning(f"Error closing audio stream: {e}")
        self._terminate()

    def _terminate(self) -> None:
        if self.pyaudio_instance is not None:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None

    def _read_audio_chunk(self) -> bytes:
        audio_chunk = self.stream.read(
            self.chunk_size,
            exception_on_overflow=False
        )
        self.total_chunks += 1
        return audio_chunk

    def _publish_audio_chunk(self, data: bytes) -> None:
        level = peak_level(data)
        self.peak_level = max(self.peak_level, level)
        chunk = AudioChunk(
            data=data,
            sequence=self.total_chunks - 1,
            timestamp=time.time(),
            sample_rate=self.sample_rate,
            channels=self.channels,
            peak_level=level,
        )
        self.audio_chunk_callback(chunk)

    def _record_continuously(self) -> None:
        """Internal method: capture loop running on the recording thread."""
        try:
            while not self.stop_event.is_set():
                data = self._read_audio_chunk()
                if self.stop_event.is_set() and not data:
                    break
                self._publish_audio_chunk(data)
        except OSError as e:
            logger.error(f"Audio capture failed: {e}")
            if self.error_callback:
                self.error_callback(DeviceUnavailableError(f"Audio capture failed: {e}"))

    def get_recording_stats(self) -> AudioStats:
        """Get current recording statistics."""
        duration = 0.0
        if self.start_time:
            duration = (datetime.now() - self.start_time).total_seconds()

        return AudioStats(
            is_recording=self.is_recording,
            duration_seconds=duration,
            sample_rate=self.sample_rate,
            chunk_size=self.chunk_size,
            total_chunks=self.total_chunks,
            peak_level=self.peak_level,
        )
