"""HTTP client for the batch transcription and audio upload endpoints."""

import asyncio
import time
import logging
from pathlib import Path
from typing import Optional

import aiohttp
from pydantic import ValidationError

from ..errors import TranscriptionError
from ..models.audio import RecordedAudio
from ..models.messages import BatchTranscriptionResponse
from ..models.transcription import SpeechEngine, BatchTranscriptionResult

logger = logging.getLogger(__name__)


class BatchTranscriptionClient:
    """Posts complete recordings as multipart forms and returns the transcript."""

    def __init__(self, url: str, upload_url: Optional[str] = None, timeout_seconds: float = 60.0):
        """Initialize batch transcription client.

        Args:
            url: Batch transcription endpoint (multipart ``audio`` + ``engine``)
            upload_url: Endpoint for pre-recorded files, same contract as ``url``
            timeout_seconds: Total timeout for a single request
        """
        self.url = url
        self.upload_url = upload_url or url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.service_name = "batch"

        logger.info(f"BatchTranscriptionClient initialized: {url}")

    async def transcribe(self, recorded: RecordedAudio, engine: SpeechEngine) -> BatchTranscriptionResult:
        """Transcribe a finished recording.

        Raises:
            TranscriptionError: the request failed or the response was unusable
        """
        return await self._post(self.url, recorded.data, recorded.filename,
                                recorded.content_type, engine)

    async def upload(self, path: str, engine: SpeechEngine) -> BatchTranscriptionResult:
        """Transcribe a pre-recorded audio file."""
        file_path = Path(path)
        try:
            data = file_path.read_bytes()
        except OSError as e:
            raise TranscriptionError(f"Could not read audio file {file_path}: {e}") from e
        return await self._post(self.upload_url, data, file_path.name,
                                guess_content_type(file_path), engine)

    async def _post(self, url: str, data: bytes, filename: str, content_type: str,
                    engine: SpeechEngine) -> BatchTranscriptionResult:
        form = aiohttp.FormData()
        form.add_field("audio", data, filename=filename, content_type=content_type)
        form.add_field("engine", engine.value)

        logger.info(f"Sending {len(data)} bytes to {url} (engine={engine.value})")
        start_time = time.time()
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(url, data=form) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise TranscriptionError(
                            f"Transcription failed: {response.status} - {error_text[:200]}")
                    payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise TranscriptionError(f"Transcription request to {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TranscriptionError(f"Transcription request to {url} timed out") from e

        try:
            body = BatchTranscriptionResponse.model_validate(payload)
        except ValidationError as e:
            raise TranscriptionError(f"Unexpected transcription response: {payload!r}") from e

        processing_time = time.time() - start_time
        logger.info(f"Batch transcription returned {len(body.text)} characters "
                    f"in {processing_time:.2f}s")
        return BatchTranscriptionResult(
            text=body.text,
            service=body.engine or engine.value,
            audio_url=body.audioUrl,
            processing_time=processing_time,
        )


def guess_content_type(path: Path) -> str:
    return {
        ".wav": "audio/wav",
        ".webm": "audio/webm",
        ".mp3": "audio/mpeg",
        ".m4a": "audio/mp4",
        ".ogg": "audio/ogg",
        ".flac": "audio/flac",
    }.get(path.suffix.lower(), "application/octet-stream")
