"""Abstract base class for local recognizer backends."""

from abc import ABC, abstractmethod
import logging

from ..models.audio import RecordedAudio
from ..models.transcription import BatchTranscriptionResult

logger = logging.getLogger(__name__)


class AbstractTranscriptionBackend(ABC):
    """A recognizer available in the runtime, used as the last fallback tier.

    ``transcribe`` is blocking and performs a single non-continuous pass over
    a complete recording; callers on an event loop run it in an executor.
    """

    def __init__(self, language: str = "en-US"):
        """Initialize backend with language preference."""
        self.language = language
        self.is_initialized = False

    @abstractmethod
    def initialize(self) -> bool:
        """Initialize backend resources and verify configuration.

        Returns:
            True if initialization successful, False otherwise
        """
        pass

    @abstractmethod
    def transcribe(self, recorded: RecordedAudio) -> BatchTranscriptionResult:
        """Transcribe a complete recording.

        Raises:
            TranscriptionError: recognition failed
        """
        pass

    def is_available(self) -> bool:
        """Whether this backend can be used right now."""
        return self.is_initialized

    @abstractmethod
    def cleanup(self) -> None:
        """Clean up backend resources."""
        pass
