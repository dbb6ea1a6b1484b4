"""Google Speech-to-Text recognizer used as the local fallback tier."""

import io
import time
import wave
import logging
from typing import Optional

from .base import AbstractTranscriptionBackend
from ..errors import TranscriptionError
from ..models.audio import RecordedAudio
from ..models.transcription import BatchTranscriptionResult

from google.cloud import speech
from google.api_core import exceptions as gax_exceptions
from google.auth import exceptions as auth_exceptions
from google.oauth2 import service_account

logger = logging.getLogger(__name__)


class GoogleSpeechBackend(AbstractTranscriptionBackend):
    """Synchronous Google Speech-to-Text recognition of a whole recording."""

    def __init__(self,
                 credentials_path: Optional[str] = None,
                 language: str = "en-US",
                 enable_automatic_punctuation: bool = True,
                 timeout: float = 30.0):
        """Initialize Google Speech backend.

        Args:
            credentials_path: Path to Google Cloud service account JSON file
            language: Language code (e.g., 'en-US', 'es-ES')
            enable_automatic_punctuation: Enable automatic punctuation
            timeout: Per-request deadline in seconds
        """
        super().__init__(language)
        if not credentials_path:
            raise ValueError("Google credentials path is required - cannot initialize without credentials")
        self.credentials_path = credentials_path
        self.enable_automatic_punctuation = enable_automatic_punctuation
        self.timeout = timeout
        self.client = None
        self.project_id = None
        self.service_name = "Google Speech-to-Text"

    def initialize(self) -> bool:
        """Initialize Google Speech client and verify credentials."""
        logger.info(f"Loading Google credentials from: {self.credentials_path}")
        try:
            credentials = service_account.Credentials.from_service_account_file(self.credentials_path)
        except (OSError, ValueError, auth_exceptions.GoogleAuthError) as e:
            logger.error(f"Could not load Google credentials: {e}")
            return False

        self.client = speech.SpeechClient(credentials=credentials)
        self.project_id = credentials.project_id
        self.is_initialized = True
        logger.info(f"Google Speech-to-Text backend initialized (project: {self.project_id})")
        return True

    def transcribe(self, recorded: RecordedAudio) -> BatchTranscriptionResult:
        """Transcribe a recording using Google Speech-to-Text."""
        if not self.is_initialized:
            raise TranscriptionError("Google Speech backend is not initialized")

        pcm, sample_rate = _read_pcm(recorded)
        logger.debug(f"Recognizing {len(pcm)} bytes at {sample_rate}Hz; language: {self.language}")

        config = speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=sample_rate,
            language_code=self.language,
            enable_automatic_punctuation=self.enable_automatic_punctuation,
        )
        audio = speech.RecognitionAudio(content=pcm)

        start_time = time.time()
        try:
            response = self.client.recognize(config=config, audio=audio, timeout=self.timeout)
        except gax_exceptions.DeadlineExceeded as e:
            logger.error("Google STT recognize deadline exceeded for %s", recorded.session_id)
            raise TranscriptionError(f"Google Speech recognize timeout: {e}") from e
        except gax_exceptions.GoogleAPICallError as e:
            logger.error("Google STT API call error for %s: %s", recorded.session_id, e)
            raise TranscriptionError(f"Google Speech API error: {e}") from e
        processing_time = time.time() - start_time

        transcripts = [result.alternatives[0].transcript.strip()
                       for result in response.results if result.alternatives]
        text = " ".join(t for t in transcripts if t)
        if not text:
            raise TranscriptionError("No speech detected in recording")

        logger.debug(f"Google transcription: '{text}' ({processing_time:.3f}s)")
        return BatchTranscriptionResult(
            text=text,
            service=self.service_name,
            processing_time=processing_time,
        )

    def cleanup(self) -> None:
        """Clean up Google Speech client resources."""
        self.client = None
        self.is_initialized = False


def _read_pcm(recorded: RecordedAudio):
    """Raw PCM frames and sample rate of a WAV asset."""
    try:
        with wave.open(io.BytesIO(recorded.data), 'rb') as wf:
            return wf.readframes(wf.getnframes()), wf.getframerate()
    except (wave.Error, EOFError) as e:
        raise TranscriptionError(f"Recording is not a readable WAV file: {e}") from e
