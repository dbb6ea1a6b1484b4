"""Session-related data models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .transcription import SpeechEngine


class SessionMode(Enum):
    """How audio reaches the transcription service."""
    STREAMING = "streaming"
    BATCH = "batch"


class SessionStatus(Enum):
    """Lifecycle status of a dictation session."""
    IDLE = "idle"
    LISTENING = "listening"
    TRANSCRIBING = "transcribing"
    STOPPED = "stopped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.STOPPED, SessionStatus.ERROR)


def new_session_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"


@dataclass
class Session:
    """One continuous dictation attempt."""
    mode: SessionMode
    engine: SpeechEngine
    id: str = field(default_factory=new_session_id)
    status: SessionStatus = SessionStatus.IDLE
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
    fallback_tier: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        end = self.ended_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "mode": self.mode.value,
            "engine": self.engine.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "error": self.error,
            "fallback_tier": self.fallback_tier,
        }
