"""Pytest configuration and fixtures for Dictate2Me tests."""

import asyncio
import time
import wave
import logging
import tempfile
from pathlib import Path
from typing import List, Optional
from unittest.mock import Mock, patch

import numpy as np
import pytest

from dictate2me.models.audio import AudioChunk
from dictate2me.models.text_buffer import TextBuffer
from dictate2me.publisher import DebouncedPublisher, TEXT_TOPIC


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without network or audio hardware")
    config.addinivalue_line("markers", "integration: tests against local aiohttp servers")
    config.addinivalue_line("markers", "hardware: tests that need a real microphone")


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def sample_audio_chunk():
    """Generate 1024 samples of a 440Hz sine wave as 16-bit PCM."""
    sample_rate = 16000
    duration = 1024 / sample_rate
    t = np.linspace(0, duration, 1024, False)
    wave_data = np.sin(2 * np.pi * 440 * t)
    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


@pytest.fixture
def make_chunk(sample_audio_chunk):
    """Factory for AudioChunks with a given sequence number."""
    def _make(sequence: int, data: Optional[bytes] = None) -> AudioChunk:
        return AudioChunk(data=sample_audio_chunk if data is None else data,
                          sequence=sequence, timestamp=time.time())
    return _make


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        mock_stream.read.return_value = b'\x00' * 32000
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.get_default_input_device_info.return_value = {
            'index': 0, 'name': 'Test Microphone', 'maxInputChannels': 1}
        mock_pyaudio_instance.get_sample_size.return_value = 2
        mock_pyaudio_instance.get_format_from_width.return_value = 8

        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


@pytest.fixture
def sample_audio_file(temp_data_dir, sample_audio_chunk):
    """Create a sample WAV file for testing."""
    file_path = Path(temp_data_dir) / "test_audio.wav"

    with wave.open(str(file_path), 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(16000)
        for _ in range(20):
            wf.writeframes(sample_audio_chunk)

    return str(file_path)


@pytest.fixture
def text_buffer():
    """TextBuffer that publishes every update immediately."""
    return TextBuffer(publisher=DebouncedPublisher(TEXT_TOPIC, delay_seconds=0))


class FakeCapture:
    """Stands in for AudioCapture; chunks are pushed by the test."""

    def __init__(self, events: List[str], name: str, callback, chunk_interval_ms: int,
                 error_callback=None, acquire_error: Optional[Exception] = None):
        self.events = events
        self.name = name
        self.callback = callback
        self.chunk_interval_ms = chunk_interval_ms
        self.error_callback = error_callback
        self.acquire_error = acquire_error
        self.acquired = False
        self.release_delay = 0.0

    def acquire(self):
        if self.acquire_error is not None:
            raise self.acquire_error
        self.acquired = True
        self.events.append(f"acquire:{self.name}")

    def release(self):
        if self.release_delay:
            # Mimics joining a capture thread blocked in stream.read
            time.sleep(self.release_delay)
        if self.acquired:
            self.acquired = False
            self.events.append(f"release:{self.name}")

    def emit(self, chunk: AudioChunk) -> None:
        """Deliver a chunk the way the capture thread does."""
        self.callback(chunk)

    def get_recording_stats(self):
        return None


@pytest.fixture
def capture_factory():
    """Factory producing FakeCaptures that log acquire/release order."""
    class Factory:
        def __init__(self):
            self.events: List[str] = []
            self.captures: List[FakeCapture] = []
            self.acquire_error: Optional[Exception] = None

        def __call__(self, callback, chunk_interval_ms, error_callback=None):
            capture = FakeCapture(self.events, f"mic{len(self.captures)}", callback,
                                  chunk_interval_ms, error_callback, self.acquire_error)
            self.captures.append(capture)
            return capture

        @property
        def last(self) -> FakeCapture:
            return self.captures[-1]

    return Factory()


class FakeConnection:
    """In-memory WebSocketConnection; the test plays the server."""

    def __init__(self, events: Optional[List[str]] = None, name: str = "ws"):
        self.sent: List[str] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.events = events if events is not None else []
        self.name = name
        self.fail_send: Optional[Exception] = None

    async def send_str(self, data: str) -> None:
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(data)

    async def receive_str(self) -> Optional[str]:
        return await self.incoming.get()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.events.append(f"close:{self.name}")
            self.incoming.put_nowait(None)

    def push(self, raw: Optional[str]) -> None:
        self.incoming.put_nowait(raw)


class FakeConnector:
    """Hands out FakeConnections, or fails/hangs when told to."""

    def __init__(self, events: Optional[List[str]] = None):
        self.events = events if events is not None else []
        self.connections: List[FakeConnection] = []
        self.error: Optional[Exception] = None
        self.hang = False

    async def connect(self, url: str) -> FakeConnection:
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error
        connection = FakeConnection(self.events, f"ws{len(self.connections)}")
        self.connections.append(connection)
        self.events.append(f"connect:{connection.name}")
        return connection

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


@pytest.fixture
def fake_connector(capture_factory):
    """FakeConnector logging into the same event list as the fake microphones."""
    return FakeConnector(capture_factory.events)
