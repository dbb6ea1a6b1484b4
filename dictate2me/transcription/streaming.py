"""WebSocket transport for real-time transcription.

One connection per session. The client sends ``start``, a sequence of
``audio`` frames and ``stop``; the server answers with ``transcription``,
``status`` and ``error`` messages.

    disconnected -> connecting -> open -> closing -> closed
            \\            \\          \\         \\
             +------------+----------+---------+--> errored

Any transport failure moves the state to ``errored`` and calls the error
callback exactly once. Closing a transport that is not open is a no-op.
"""

import asyncio
import base64
import contextlib
import logging
from enum import Enum
from typing import Callable, Optional, Protocol

import aiohttp
from pydantic import BaseModel, ValidationError

from ..errors import TransportError, TransportConnectionError, ProtocolError, ServerError
from ..models.audio import AudioChunk
from ..models.messages import (
    ClientStart,
    ClientAudio,
    ClientStop,
    ServerTranscription,
    ServerStatus,
    ServerErrorMessage,
    server_message_adapter,
)
from ..models.transcription import TranscriptFragment

logger = logging.getLogger(__name__)


class TransportState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    ERRORED = "errored"


class WebSocketConnection(Protocol):
    """Minimal text-frame connection the transport needs."""

    async def send_str(self, data: str) -> None:
        ...

    async def receive_str(self) -> Optional[str]:
        """Next text frame, or None once the peer closed the connection."""
        ...

    async def close(self) -> None:
        ...


class AiohttpWebSocketConnection:
    """WebSocketConnection over an aiohttp client websocket."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse,
                 session: Optional[aiohttp.ClientSession] = None):
        self.ws = ws
        self._session = session

    async def send_str(self, data: str) -> None:
        try:
            await self.ws.send_str(data)
        except (ConnectionResetError, aiohttp.ClientError) as e:
            raise TransportConnectionError(f"Failed to send frame: {e}") from e

    async def receive_str(self) -> Optional[str]:
        msg = await self.ws.receive()
        if msg.type == aiohttp.WSMsgType.TEXT:
            return msg.data
        if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING,
                        aiohttp.WSMsgType.CLOSED):
            return None
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise TransportConnectionError(f"WebSocket error: {self.ws.exception()}")
        raise ProtocolError(f"Unexpected {msg.type.name} frame from server")

    async def close(self) -> None:
        try:
            await self.ws.close()
        finally:
            if self._session is not None:
                await self._session.close()


class AiohttpWebSocketConnector:
    """Opens aiohttp websocket connections."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None,
                 heartbeat: Optional[float] = None):
        self.session = session
        self.heartbeat = heartbeat

    async def connect(self, url: str) -> AiohttpWebSocketConnection:
        session = self.session or aiohttp.ClientSession()
        owns_session = self.session is None
        try:
            ws = await session.ws_connect(url, heartbeat=self.heartbeat)
        except (aiohttp.ClientError, OSError) as e:
            if owns_session:
                await session.close()
            raise TransportConnectionError(f"Could not connect to {url}: {e}") from e
        except asyncio.CancelledError:
            if owns_session:
                await session.close()
            raise
        return AiohttpWebSocketConnection(ws, session if owns_session else None)


class StreamingTransport:
    """Streams audio chunks and turns server events into TranscriptFragments."""

    def __init__(self,
                 url: str,
                 on_fragment: Callable[[TranscriptFragment], None],
                 on_error: Callable[[TransportError], None],
                 connector=None,
                 handshake_timeout: float = 5.0,
                 close_grace: float = 0.5,
                 on_status: Optional[Callable[[str], None]] = None):
        """Initialize the transport.

        Args:
            url: WebSocket URL of the transcription endpoint
            on_fragment: Receives every transcription event as a fragment
            on_error: Called once when the transport enters ``errored``
            connector: Object with ``async connect(url)``; aiohttp by default
            handshake_timeout: Seconds to wait in ``connecting``
            close_grace: Seconds to wait for trailing events after ``stop``
            on_status: Receives server status strings
        """
        self.url = url
        self.on_fragment = on_fragment
        self.on_error = on_error
        self.on_status = on_status
        self.connector = connector or AiohttpWebSocketConnector()
        self.handshake_timeout = handshake_timeout
        self.close_grace = close_grace

        self.state = TransportState.DISCONNECTED
        self.connection: Optional[WebSocketConnection] = None
        self.error: Optional[TransportError] = None
        self.frames_sent = 0

        self._reader_task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()
        self._next_sequence = 0

    @property
    def is_open(self) -> bool:
        return self.state == TransportState.OPEN

    def _set_state(self, state: TransportState) -> None:
        logger.debug(f"Transport {self.state.value} -> {state.value}")
        self.state = state

    async def connect(self) -> bool:
        """Open the connection and send ``start``. Returns True when open."""
        if self.state != TransportState.DISCONNECTED:
            logger.warning(f"connect() called in state {self.state.value}")
            return self.is_open

        self._set_state(TransportState.CONNECTING)
        try:
            connection = await asyncio.wait_for(self.connector.connect(self.url),
                                                self.handshake_timeout)
        except asyncio.TimeoutError:
            await self._fail(TransportConnectionError(
                f"Handshake with {self.url} timed out after {self.handshake_timeout}s"))
            return False
        except TransportError as e:
            await self._fail(e)
            return False

        if self.state != TransportState.CONNECTING:
            # Closed while the handshake was in flight
            await connection.close()
            return False

        self.connection = connection
        self._set_state(TransportState.OPEN)
        logger.info(f"Streaming connection open: {self.url}")

        try:
            await self._send(ClientStart())
        except TransportError as e:
            await self._fail(e)
            return False

        self._reader_task = asyncio.create_task(self._read_loop())
        return True

    async def send_audio(self, chunk: AudioChunk) -> bool:
        """Send one chunk as an independently decodable WAV frame."""
        if self.state != TransportState.OPEN:
            return False
        payload = base64.b64encode(chunk.to_wav()).decode('ascii')
        try:
            await self._send(ClientAudio(audio=payload))
        except TransportError as e:
            await self._fail(e)
            return False
        self.frames_sent += 1
        return True

    async def close(self) -> None:
        """Send ``stop``, wait for trailing events, then close."""
        if self.state in (TransportState.DISCONNECTED, TransportState.CLOSING,
                          TransportState.CLOSED, TransportState.ERRORED):
            return
        if self.state == TransportState.CONNECTING:
            self._set_state(TransportState.CLOSED)
            return

        self._set_state(TransportState.CLOSING)
        try:
            await self._send(ClientStop())
        except TransportError as e:
            logger.warning(f"Could not send stop signal: {e}")
        else:
            try:
                await asyncio.wait_for(self._stopped.wait(), self.close_grace)
            except asyncio.TimeoutError:
                logger.debug(f"No 'stopped' status within {self.close_grace}s, closing anyway")

        await self._shutdown()
        if self.state == TransportState.CLOSING:
            self._set_state(TransportState.CLOSED)
            logger.info(f"Streaming connection closed after {self.frames_sent} audio frames")

    async def _send(self, message: BaseModel) -> None:
        await self.connection.send_str(message.model_dump_json())

    async def _read_loop(self) -> None:
        try:
            while True:
                raw = await self.connection.receive_str()
                if raw is None:
                    if self.state == TransportState.OPEN:
                        raise TransportConnectionError("Connection closed by server")
                    break
                self._handle_message(raw)
        except TransportError as e:
            await self._fail(e)

    def _handle_message(self, raw: str) -> None:
        try:
            message = server_message_adapter.validate_json(raw)
        except ValidationError as e:
            raise ProtocolError(f"Malformed message from server: {raw[:200]!r}") from e

        if isinstance(message, ServerTranscription):
            sequence = message.sequence if message.sequence is not None else self._next_sequence
            self._next_sequence = max(self._next_sequence, sequence + 1)
            self.on_fragment(TranscriptFragment(text=message.text,
                                                is_final=message.isFinal,
                                                sequence=sequence))
        elif isinstance(message, ServerStatus):
            logger.info(f"Server status: {message.status}")
            if message.status == "stopped":
                self._stopped.set()
            if self.on_status:
                self.on_status(message.status)
        elif isinstance(message, ServerErrorMessage):
            raise ServerError(message.message)

    async def _fail(self, error: TransportError) -> None:
        if self.state in (TransportState.ERRORED, TransportState.CLOSED):
            return
        logger.error(f"Streaming transport failed ({type(error).__name__}): {error}")
        self.error = error
        self._set_state(TransportState.ERRORED)
        await self._shutdown()
        self.on_error(error)

    async def _shutdown(self) -> None:
        task, self._reader_task = self._reader_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        connection, self.connection = self.connection, None
        if connection is not None:
            try:
                await connection.close()
            except (OSError, aiohttp.ClientError) as e:
                logger.warning(f"Error closing streaming connection: {e}")
