"""Dictation session manager: one active session owning mic, transport and reconciler."""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Optional, Set

from ..audio.recording import RecordingBuffer
from ..errors import (
    DictationError,
    DeviceUnavailableError,
    MicrophonePermissionError,
    SessionError,
    TranscriptionError,
    TransportError,
)
from ..models.audio import AudioChunk, AudioStats, RecordedAudio
from ..models.events import SessionEvent
from ..models.session import Session, SessionMode, SessionStatus, new_session_id
from ..models.text_buffer import TextBuffer
from ..models.transcription import SpeechEngine, TranscriptFragment, BatchTranscriptionResult
from ..publisher import EventPublisher, SESSION_TOPIC
from ..transcription.batch_client import guess_content_type
from ..transcription.fallback import FallbackRecognizer
from ..transcription.reconciler import TranscriptReconciler

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """Everything owned by the active session."""
    session: Session
    capture: Any
    recording: RecordingBuffer
    reconciler: TranscriptReconciler
    queue: asyncio.Queue
    transport: Any = None
    pump_task: Optional[asyncio.Task] = None
    unsent: Deque[AudioChunk] = field(default_factory=deque)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    transport_error: Optional[TransportError] = None
    capture_error: Optional[DictationError] = None


class DictationSessionManager:
    """Runs dictation sessions against a TextBuffer.

    Capture and transport are created per session through factories so the
    manager never holds more than one microphone handle or connection. All
    methods must be called from the same event loop.
    """

    def __init__(self,
                 buffer: TextBuffer,
                 capture_factory: Callable[..., Any],
                 fallback: FallbackRecognizer,
                 transport_factory: Optional[Callable[..., Any]] = None,
                 playback=None,
                 engine: SpeechEngine = SpeechEngine.GLADIA,
                 streaming_enabled: bool = True,
                 streaming_chunk_ms: int = 500,
                 batch_chunk_ms: int = 1000,
                 sample_rate: int = 16000,
                 channels: int = 1,
                 provisional_marker: str = "...",
                 publisher: Optional[EventPublisher] = None):
        """Initialize the session manager.

        Args:
            buffer: Text buffer the transcript is written into
            capture_factory: ``factory(callback=, chunk_interval_ms=, error_callback=)``
                returning an object with ``acquire()`` and ``release()``
            fallback: Batch/local recognizer used when streaming is unavailable
            transport_factory: ``factory(on_fragment=, on_error=, on_status=)``
                returning a StreamingTransport; None disables streaming
            playback: Optional AudioPlayback that receives each finished recording
            engine: Default speech engine for batch transcription
            streaming_enabled: Start sessions in streaming mode
        """
        self.buffer = buffer
        self.capture_factory = capture_factory
        self.transport_factory = transport_factory
        self.fallback = fallback
        self.playback = playback
        self.engine = engine
        self.streaming_enabled = streaming_enabled and transport_factory is not None
        self.streaming_chunk_ms = streaming_chunk_ms
        self.batch_chunk_ms = batch_chunk_ms
        self.sample_rate = sample_rate
        self.channels = channels
        self.provisional_marker = provisional_marker
        self.publisher = publisher or EventPublisher(SESSION_TOPIC)

        self.session: Optional[Session] = None
        self.recorded: Optional[RecordedAudio] = None
        self._active: Optional[SessionContext] = None
        self._contexts: Dict[str, SessionContext] = {}
        self._latest_id: Optional[str] = None
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def is_active(self) -> bool:
        return self._active is not None

    def get_audio_stats(self) -> Optional[AudioStats]:
        """Capture statistics of the active session, if any."""
        ctx = self._active
        if ctx is None:
            return None
        return ctx.capture.get_recording_stats()

    def enable_streaming(self) -> None:
        """Re-enable streaming after a transport failure disabled it."""
        if self.transport_factory is None:
            raise SessionError("No streaming transport configured")
        self.streaming_enabled = True
        logger.info("Streaming mode enabled")

    def disable_streaming(self) -> None:
        self.streaming_enabled = False
        logger.info("Streaming mode disabled")

    async def start(self, engine: Optional[SpeechEngine] = None) -> Session:
        """Start a new session, stopping the active one first.

        Raises:
            MicrophonePermissionError: microphone access refused
            DeviceUnavailableError: no input device
        """
        if self._active is not None:
            logger.info(f"Stopping session {self._active.session.id} before starting a new one")
            await self.stop()

        mode = SessionMode.STREAMING if self.streaming_enabled else SessionMode.BATCH
        session = Session(mode=mode, engine=engine or self.engine)
        self.session = session
        self._latest_id = session.id
        logger.info(f"Starting session {session.id} ({mode.value}, engine={session.engine.value})")

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def on_chunk(chunk: AudioChunk) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, chunk)

        def on_capture_error(error: DictationError) -> None:
            loop.call_soon_threadsafe(self._on_capture_error, session.id, error)

        interval = self.streaming_chunk_ms if mode == SessionMode.STREAMING else self.batch_chunk_ms
        capture = self.capture_factory(callback=on_chunk, chunk_interval_ms=interval,
                                       error_callback=on_capture_error)
        try:
            await loop.run_in_executor(None, capture.acquire)
        except (MicrophonePermissionError, DeviceUnavailableError) as e:
            logger.error(f"Failed to start dictation: {e}")
            self._finish(session, SessionStatus.ERROR, str(e))
            raise

        ctx = SessionContext(
            session=session,
            capture=capture,
            recording=RecordingBuffer(self.sample_rate, self.channels),
            reconciler=TranscriptReconciler(self.buffer, marker=self.provisional_marker),
            queue=queue,
        )
        self._active = ctx
        self._contexts[session.id] = ctx
        ctx.pump_task = asyncio.create_task(self._pump_chunks(ctx))

        session.status = SessionStatus.LISTENING
        self._publish(session, "started", "Listening...",
                      mode=mode.value, engine=session.engine.value)

        if mode == SessionMode.STREAMING:
            ctx.transport = self.transport_factory(
                on_fragment=lambda fragment: self._on_fragment(session.id, fragment),
                on_error=lambda error: self._on_transport_error(session.id, error),
                on_status=lambda status: logger.debug(f"Session {session.id} server status: {status}"),
            )
            if await ctx.transport.connect():
                await self._flush_unsent(ctx)

        return session

    async def stop(self) -> Optional[Session]:
        """Stop the active session and produce its final transcript.

        Returns:
            The finished session, or the last session if none was active
        """
        ctx = self._active
        if ctx is None:
            logger.warning("No dictation in progress")
            return self.session
        self._active = None
        session = ctx.session

        session.status = SessionStatus.TRANSCRIBING
        self._publish(session, "status", "Processing...")

        # Release the microphone first, then drain what it already delivered.
        # Joining the capture thread blocks, so it runs off the loop.
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, ctx.capture.release)
        loop.call_soon(ctx.queue.put_nowait, None)
        await ctx.pump_task

        if ctx.transport is not None:
            await self._flush_unsent(ctx)
            await ctx.transport.close()

        recorded = ctx.recording.to_recorded_audio(session.id)
        self.recorded = recorded
        if self.playback is not None:
            self.playback.load(recorded)

        self._contexts.pop(session.id, None)
        streamed = ctx.transport is not None and ctx.transport_error is None
        if streamed:
            ctx.reconciler.commit_open_run()
            self._finish(session, SessionStatus.STOPPED, self._capture_error_message(ctx))
        elif recorded.chunk_count == 0:
            logger.warning(f"Session {session.id} captured no audio")
            self._finish(session, SessionStatus.STOPPED, self._capture_error_message(ctx))
        else:
            await self._run_fallback(ctx, recorded)

        return session

    async def upload_audio(self, path: str, engine: Optional[SpeechEngine] = None) -> BatchTranscriptionResult:
        """Transcribe a pre-recorded file and replace the buffer text with the result.

        Raises:
            TranscriptionError: no upload endpoint, or the upload failed
        """
        batch_client = self.fallback.batch_client
        if batch_client is None:
            raise TranscriptionError("No audio upload endpoint configured")
        if self._active is not None:
            await self.stop()

        upload_id = new_session_id()
        self._latest_id = upload_id
        result = await batch_client.upload(path, engine or self.engine)

        if self._latest_id != upload_id:
            logger.warning(f"Discarding stale upload result for {path}")
            return result

        self.buffer.write(result.text, origin="upload")
        file_path = Path(path)
        recorded = RecordedAudio(
            session_id=upload_id,
            data=file_path.read_bytes(),
            source="upload",
            filename=file_path.name,
            content_type=guess_content_type(file_path),
            audio_url=result.audio_url,
        )
        self.recorded = recorded
        if self.playback is not None:
            self.playback.load(recorded)
        logger.info(f"Uploaded audio {file_path.name} transcribed via {result.service}")
        return result

    async def shutdown(self) -> None:
        """Stop any active session and wait for background work."""
        if self._active is not None:
            await self.stop()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    async def _pump_chunks(self, ctx: SessionContext) -> None:
        """Record chunks in capture order and forward them to an open transport."""
        while True:
            chunk = await ctx.queue.get()
            if chunk is None:
                break
            ctx.recording.add_chunk(chunk)
            if ctx.transport is not None and ctx.transport_error is None:
                ctx.unsent.append(chunk)
                await self._flush_unsent(ctx)

    async def _flush_unsent(self, ctx: SessionContext) -> None:
        async with ctx.send_lock:
            while ctx.unsent and ctx.transport is not None and ctx.transport.is_open:
                if not await ctx.transport.send_audio(ctx.unsent[0]):
                    break
                ctx.unsent.popleft()

    async def _run_fallback(self, ctx: SessionContext, recorded: RecordedAudio) -> None:
        session = ctx.session
        if self._latest_id == session.id:
            ctx.reconciler.discard_open_run()
        self._publish(session, "fallback", "Transcribing the complete recording...",
                      chunks=recorded.chunk_count)

        try:
            outcome = await self.fallback.recognize(recorded, session.engine)
        except TranscriptionError as e:
            logger.error(f"All transcription tiers failed for {session.id}: {e}")
            self._finish(session, SessionStatus.ERROR,
                         f"{e}. The recording is still available for playback and download.")
            return

        session.fallback_tier = outcome.tier
        if outcome.result.audio_url:
            recorded.audio_url = outcome.result.audio_url

        if self._latest_id != session.id:
            logger.warning(f"Discarding transcript of session {session.id}: "
                           f"session {self._latest_id} has started since")
            self._finish(session, SessionStatus.STOPPED, "Transcript discarded: a newer session started")
            return

        ctx.reconciler.append_final(outcome.text, origin="fallback")
        self._finish(session, SessionStatus.STOPPED, self._capture_error_message(ctx))

    def _on_fragment(self, session_id: str, fragment: TranscriptFragment) -> None:
        ctx = self._context_for(session_id)
        if ctx is None:
            logger.debug(f"Ignoring fragment for stale session {session_id}")
            return
        ctx.reconciler.apply(fragment)

    def _on_transport_error(self, session_id: str, error: TransportError) -> None:
        ctx = self._context_for(session_id)
        if ctx is None:
            return
        ctx.transport_error = error
        ctx.unsent.clear()
        self.streaming_enabled = False
        logger.warning(f"Real-time transcription failed for {session_id} "
                       f"({type(error).__name__}); falling back to batch mode")
        self._publish(ctx.session, "fallback",
                      "Failed to establish real-time transcription connection. "
                      "Falling back to batch mode.",
                      error_type=type(error).__name__, error=str(error))

    def _on_capture_error(self, session_id: str, error: DictationError) -> None:
        ctx = self._active
        if ctx is None or ctx.session.id != session_id:
            return
        ctx.capture_error = error
        self._publish(ctx.session, "error", str(error))
        task = asyncio.create_task(self.stop())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _context_for(self, session_id: str) -> Optional[SessionContext]:
        """The context of ``session_id`` if it is still the latest session."""
        if session_id != self._latest_id:
            return None
        # Trailing events may still arrive while the session is stopping
        return self._contexts.get(session_id)

    @staticmethod
    def _capture_error_message(ctx: SessionContext) -> Optional[str]:
        return str(ctx.capture_error) if ctx.capture_error else None

    def _finish(self, session: Session, status: SessionStatus, error: Optional[str] = None) -> None:
        session.status = status
        session.ended_at = datetime.now()
        session.error = error
        if status == SessionStatus.ERROR:
            self._publish(session, "error", error or "Dictation failed")
        else:
            self._publish(session, "stopped", "Transcribed" if not error else error,
                          fallback_tier=session.fallback_tier)
        logger.info(f"Session {session.id} finished: {status.value}"
                    + (f" ({error})" if error else ""))

    def _publish(self, session: Session, event_type: str, message: str = "", **metadata) -> None:
        self.publisher.publish(SessionEvent(session_id=session.id, event_type=event_type,
                                            message=message, metadata=metadata))
