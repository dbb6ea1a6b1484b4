"""Batch and local recognition used when streaming is unavailable."""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from .base import AbstractTranscriptionBackend
from .batch_client import BatchTranscriptionClient
from ..errors import TranscriptionError
from ..models.audio import RecordedAudio
from ..models.transcription import SpeechEngine, BatchTranscriptionResult

logger = logging.getLogger(__name__)

BATCH_TIER = "batch"
LOCAL_TIER = "local"


@dataclass
class FallbackResult:
    """Transcript produced by one of the fallback tiers."""
    tier: str
    result: BatchTranscriptionResult

    @property
    def text(self) -> str:
        return self.result.text


class FallbackRecognizer:
    """Tries the remote batch endpoint first, then a local recognizer."""

    def __init__(self,
                 batch_client: Optional[BatchTranscriptionClient] = None,
                 local_backend: Optional[AbstractTranscriptionBackend] = None):
        self.batch_client = batch_client
        self.local_backend = local_backend

    @property
    def is_available(self) -> bool:
        return self.batch_client is not None or self._local_available()

    def _local_available(self) -> bool:
        return self.local_backend is not None and self.local_backend.is_available()

    async def recognize(self, recorded: RecordedAudio, engine: SpeechEngine) -> FallbackResult:
        """Transcribe a complete recording with the first tier that succeeds.

        Raises:
            TranscriptionError: every tier was unavailable or failed
        """
        failures: List[str] = []

        if self.batch_client is not None:
            try:
                result = await self.batch_client.transcribe(recorded, engine)
                logger.info(f"Batch tier transcribed {recorded.session_id}")
                return FallbackResult(tier=BATCH_TIER, result=result)
            except TranscriptionError as e:
                logger.warning(f"Batch transcription failed, trying local recognizer: {e}")
                failures.append(f"batch: {e}")
        else:
            failures.append("batch: not configured")

        if self._local_available():
            loop = asyncio.get_running_loop()
            try:
                result = await loop.run_in_executor(None, self.local_backend.transcribe, recorded)
                logger.info(f"Local tier transcribed {recorded.session_id}")
                return FallbackResult(tier=LOCAL_TIER, result=result)
            except TranscriptionError as e:
                logger.warning(f"Local recognition failed: {e}")
                failures.append(f"local: {e}")
        else:
            failures.append("local: not available")

        raise TranscriptionError("Failed to transcribe audio (" + "; ".join(failures) + ")")
