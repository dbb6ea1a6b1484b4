"""Unit tests for DictationSessionManager with fake capture, transport and batch client."""

import asyncio
import json
from functools import partial
from pathlib import Path
from typing import Optional
from unittest.mock import Mock

import pytest

from dictate2me.errors import (
    DeviceUnavailableError,
    MicrophonePermissionError,
    SessionError,
    TranscriptionError,
    TransportConnectionError,
)
from dictate2me.models.audio import encode_wav
from dictate2me.models.session import SessionMode, SessionStatus
from dictate2me.models.transcription import BatchTranscriptionResult, SpeechEngine
from dictate2me.services.session_manager import DictationSessionManager
from dictate2me.transcription.fallback import FallbackRecognizer
from dictate2me.transcription.streaming import StreamingTransport


class FakeBatchClient:
    """Batch endpoint stand-in that can be held open by a gate."""

    def __init__(self, text: str = "Fallback transcript."):
        self.text = text
        self.calls = []
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.called: Optional[asyncio.Event] = None

    async def transcribe(self, recorded, engine):
        self.calls.append((recorded, engine))
        if self.called is not None:
            self.called.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return BatchTranscriptionResult(text=self.text, service=engine.value)

    async def upload(self, path, engine):
        self.calls.append((path, engine))
        return BatchTranscriptionResult(text="Uploaded text.", service=engine.value,
                                        audio_url="/uploads/test_audio.wav")


def transcription(text, is_final=False):
    return json.dumps({"type": "transcription", "text": text, "isFinal": is_final})


def tick():
    return asyncio.sleep(0.02)


@pytest.fixture
def batch_client():
    return FakeBatchClient()


@pytest.fixture
def connector(fake_connector):
    return fake_connector


@pytest.fixture
def make_manager(text_buffer, capture_factory, connector, batch_client):
    def _make(streaming: bool = True, **kwargs) -> DictationSessionManager:
        transport_factory = partial(StreamingTransport, "ws://test/ws",
                                    connector=connector, close_grace=0.01)
        return DictationSessionManager(
            buffer=text_buffer,
            capture_factory=capture_factory,
            fallback=FallbackRecognizer(batch_client),
            transport_factory=transport_factory,
            playback=Mock(),
            streaming_enabled=streaming,
            publisher=Mock(),
            **kwargs,
        )
    return _make


def published_events(manager):
    return [c.args[0].event_type for c in manager.publisher.publish.call_args_list]


@pytest.mark.unit
class TestStreamingSession:

    def test_streaming_end_to_end(self, make_manager, text_buffer, capture_factory,
                                  connector, batch_client, make_chunk):
        manager = make_manager()

        async def scenario():
            session = await manager.start()
            assert session.status == SessionStatus.LISTENING
            capture_factory.last.emit(make_chunk(0))
            await tick()

            connection = connector.last
            connection.push(transcription("testing"))
            connection.push(transcription("testing one"))
            connection.push(transcription("testing one two.", is_final=True))
            await tick()
            return await manager.stop(), connection

        session, connection = asyncio.run(scenario())

        assert text_buffer.text == "testing one two."
        assert session.status == SessionStatus.STOPPED
        assert session.mode == SessionMode.STREAMING
        assert batch_client.calls == []
        assert [json.loads(raw)["type"] for raw in connection.sent] == ["start", "audio", "stop"]
        assert connection.closed
        assert not capture_factory.last.acquired
        assert manager.recorded.chunk_count == 1
        manager.playback.load.assert_called_once_with(manager.recorded)
        assert published_events(manager) == ["started", "status", "stopped"]

    def test_streaming_uses_short_chunk_interval(self, make_manager, capture_factory):
        manager = make_manager(streaming_chunk_ms=250, batch_chunk_ms=1000)

        async def scenario():
            await manager.start()
            await manager.stop()

        asyncio.run(scenario())

        assert capture_factory.last.chunk_interval_ms == 250

    def test_open_run_committed_when_stream_ends(self, make_manager, text_buffer,
                                                 capture_factory, connector, make_chunk):
        manager = make_manager()

        async def scenario():
            await manager.start()
            capture_factory.last.emit(make_chunk(0))
            connector.last.push(transcription("testing one"))
            await tick()
            await manager.stop()

        asyncio.run(scenario())

        assert text_buffer.text == "testing one"

    def test_every_captured_chunk_is_sent(self, make_manager, capture_factory,
                                         connector, make_chunk):
        manager = make_manager()

        async def scenario():
            await manager.start()
            for sequence in range(3):
                capture_factory.last.emit(make_chunk(sequence))
            await tick()
            await manager.stop()

        asyncio.run(scenario())

        types = [json.loads(raw)["type"] for raw in connector.last.sent]
        assert types == ["start", "audio", "audio", "audio", "stop"]


@pytest.mark.unit
class TestFallback:

    def test_transport_error_mid_session_falls_back(self, make_manager, text_buffer, capture_factory,
                                                    connector, batch_client, make_chunk):
        manager = make_manager()
        chunks = [make_chunk(0), make_chunk(1), make_chunk(2)]

        async def scenario():
            await manager.start()
            capture = capture_factory.last
            capture.emit(chunks[0])
            connector.last.push(transcription("partial"))
            await tick()
            assert text_buffer.text == "partial..."

            connector.last.fail_send = TransportConnectionError("connection reset")
            capture.emit(chunks[1])
            capture.emit(chunks[2])
            await tick()
            return await manager.stop()

        session = asyncio.run(scenario())

        assert len(batch_client.calls) == 1
        recorded, engine = batch_client.calls[0]
        assert recorded.chunk_count == 3
        assert recorded.data == encode_wav(b"".join(c.data for c in chunks), 16000)
        assert engine == SpeechEngine.GLADIA

        assert text_buffer.text == "Fallback transcript."
        assert text_buffer.text.count("Fallback transcript.") == 1
        assert session.status == SessionStatus.STOPPED
        assert session.fallback_tier == "batch"
        assert manager.streaming_enabled is False
        assert "fallback" in published_events(manager)

    def test_handshake_failure_falls_back(self, make_manager, text_buffer, capture_factory,
                                          connector, batch_client, make_chunk):
        connector.error = TransportConnectionError("connection refused")
        manager = make_manager()

        async def scenario():
            await manager.start()
            capture_factory.last.emit(make_chunk(0))
            await tick()
            return await manager.stop()

        session = asyncio.run(scenario())

        assert len(batch_client.calls) == 1
        assert text_buffer.text == "Fallback transcript."
        assert session.status == SessionStatus.STOPPED

    def test_batch_mode_transcribes_at_stop(self, make_manager, text_buffer, capture_factory,
                                            connector, batch_client, make_chunk):
        manager = make_manager(streaming=False)

        async def scenario():
            session = await manager.start(engine=SpeechEngine.WHISPER)
            capture_factory.last.emit(make_chunk(0))
            capture_factory.last.emit(make_chunk(1))
            await tick()
            return session, await manager.stop()

        started, session = asyncio.run(scenario())

        assert started.mode == SessionMode.BATCH
        assert capture_factory.last.chunk_interval_ms == 1000
        assert connector.connections == []
        assert batch_client.calls[0][0].chunk_count == 2
        assert batch_client.calls[0][1] == SpeechEngine.WHISPER
        assert text_buffer.text == "Fallback transcript."

    def test_fallback_appends_after_existing_text(self, make_manager, text_buffer,
                                                  capture_factory, make_chunk):
        text_buffer.edit("Notes:")
        manager = make_manager(streaming=False)

        async def scenario():
            await manager.start()
            capture_factory.last.emit(make_chunk(0))
            await tick()
            await manager.stop()

        asyncio.run(scenario())

        assert text_buffer.text == "Notes: Fallback transcript."

    def test_all_tiers_exhausted(self, make_manager, text_buffer, capture_factory,
                                 batch_client, make_chunk):
        batch_client.error = TranscriptionError("503 Service Unavailable")
        manager = make_manager(streaming=False)

        async def scenario():
            await manager.start()
            capture_factory.last.emit(make_chunk(0))
            await tick()
            return await manager.stop()

        session = asyncio.run(scenario())

        assert session.status == SessionStatus.ERROR
        assert "503 Service Unavailable" in session.error
        assert "playback and download" in session.error
        assert text_buffer.text == ""
        assert manager.recorded is not None
        manager.playback.load.assert_called_once_with(manager.recorded)
        assert published_events(manager)[-1] == "error"

    def test_no_audio_skips_transcription(self, make_manager, batch_client):
        manager = make_manager(streaming=False)

        async def scenario():
            await manager.start()
            return await manager.stop()

        session = asyncio.run(scenario())

        assert session.status == SessionStatus.STOPPED
        assert batch_client.calls == []

    def test_streaming_stays_disabled_until_enabled(self, make_manager, connector, capture_factory,
                                                    make_chunk):
        connector.error = TransportConnectionError("connection refused")
        manager = make_manager()

        async def scenario():
            await manager.start()
            await manager.stop()
            second = await manager.start()
            await manager.stop()
            return second

        second = asyncio.run(scenario())

        assert second.mode == SessionMode.BATCH
        assert manager.streaming_enabled is False
        manager.enable_streaming()
        assert manager.streaming_enabled is True

    def test_enable_streaming_without_transport(self, text_buffer, capture_factory, batch_client):
        manager = DictationSessionManager(text_buffer, capture_factory, FallbackRecognizer(batch_client),
                                          publisher=Mock())

        assert manager.streaming_enabled is False
        with pytest.raises(SessionError):
            manager.enable_streaming()


@pytest.mark.unit
class TestSessionLifecycle:

    def test_stale_batch_response_is_dropped(self, make_manager, text_buffer, capture_factory,
                                             batch_client, make_chunk):
        manager = make_manager(streaming=False)

        async def scenario():
            session_a = await manager.start()
            capture_factory.captures[0].emit(make_chunk(0))
            await tick()

            batch_client.gate = asyncio.Event()
            batch_client.called = asyncio.Event()
            stop_a = asyncio.create_task(manager.stop())
            await batch_client.called.wait()

            session_b = await manager.start()
            batch_client.gate.set()
            await stop_a
            assert text_buffer.text == ""

            batch_client.gate = None
            batch_client.text = "Second session."
            capture_factory.captures[1].emit(make_chunk(0))
            await tick()
            await manager.stop()
            return session_a, session_b

        session_a, session_b = asyncio.run(scenario())

        assert text_buffer.text == "Second session."
        assert session_a.status == SessionStatus.STOPPED
        assert "discarded" in session_a.error
        assert session_b.status == SessionStatus.STOPPED

    def test_loop_keeps_running_while_microphone_releases(self, make_manager, capture_factory):
        manager = make_manager(streaming=False)
        ticks = []

        async def heartbeat():
            while True:
                ticks.append(asyncio.get_running_loop().time())
                await asyncio.sleep(0.01)

        async def scenario():
            await manager.start()
            capture_factory.last.release_delay = 0.2
            task = asyncio.create_task(heartbeat())
            await asyncio.sleep(0)
            before = len(ticks)
            await manager.stop()
            task.cancel()
            return len(ticks) - before

        assert asyncio.run(scenario()) >= 5
        assert not capture_factory.last.acquired

    def test_new_session_releases_previous_resources_first(self, make_manager, capture_factory,
                                                           connector):
        manager = make_manager()

        async def scenario():
            first = await manager.start()
            second = await manager.start()
            await manager.stop()
            return first, second

        first, second = asyncio.run(scenario())

        assert capture_factory.events == [
            "acquire:mic0", "connect:ws0",
            "release:mic0", "close:ws0",
            "acquire:mic1", "connect:ws1",
            "release:mic1", "close:ws1",
        ]
        assert first.status == SessionStatus.STOPPED
        assert second.status == SessionStatus.STOPPED
        assert first.id != second.id

    def test_permission_denied(self, make_manager, capture_factory, connector):
        capture_factory.acquire_error = MicrophonePermissionError("Microphone access denied")
        manager = make_manager()

        with pytest.raises(MicrophonePermissionError):
            asyncio.run(manager.start())

        assert manager.session.status == SessionStatus.ERROR
        assert manager.session.error == "Microphone access denied"
        assert not manager.is_active
        assert connector.connections == []
        assert published_events(manager) == ["error"]

    def test_capture_error_stops_session(self, make_manager, capture_factory, batch_client, make_chunk):
        manager = make_manager(streaming=False)

        async def scenario():
            session = await manager.start()
            capture = capture_factory.last
            capture.emit(make_chunk(0))
            capture.error_callback(DeviceUnavailableError("Audio device disconnected"))
            await tick()
            await manager.shutdown()
            return session

        session = asyncio.run(scenario())

        assert not manager.is_active
        assert session.status.is_terminal
        assert session.error == "Audio device disconnected"
        assert len(batch_client.calls) == 1

    def test_stop_without_session(self, make_manager):
        manager = make_manager()

        assert asyncio.run(manager.stop()) is None


@pytest.mark.unit
class TestUploadAudio:

    def test_upload_replaces_buffer_text(self, make_manager, text_buffer, batch_client, sample_audio_file):
        text_buffer.edit("old text")
        manager = make_manager()

        result = asyncio.run(manager.upload_audio(sample_audio_file))

        assert result.text == "Uploaded text."
        assert text_buffer.text == "Uploaded text."
        assert text_buffer.last_origin == "upload"
        assert manager.recorded.source == "upload"
        assert manager.recorded.filename == "test_audio.wav"
        assert manager.recorded.audio_url == "/uploads/test_audio.wav"
        assert manager.recorded.data == Path(sample_audio_file).read_bytes()
        manager.playback.load.assert_called_once_with(manager.recorded)

    def test_upload_without_endpoint(self, text_buffer, capture_factory, sample_audio_file):
        manager = DictationSessionManager(text_buffer, capture_factory, FallbackRecognizer(),
                                          publisher=Mock())

        with pytest.raises(TranscriptionError):
            asyncio.run(manager.upload_audio(sample_audio_file))
