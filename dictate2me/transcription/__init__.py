"""Transcription module for Dictate2Me."""

from .base import AbstractTranscriptionBackend
from .batch_client import BatchTranscriptionClient
from .fallback import FallbackRecognizer, FallbackResult
from .reconciler import TranscriptReconciler
from .streaming import StreamingTransport, TransportState, AiohttpWebSocketConnector

__all__ = [
    "AbstractTranscriptionBackend",
    "BatchTranscriptionClient",
    "FallbackRecognizer",
    "FallbackResult",
    "TranscriptReconciler",
    "StreamingTransport",
    "TransportState",
    "AiohttpWebSocketConnector",
]
