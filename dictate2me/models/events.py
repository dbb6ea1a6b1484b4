"""Event models published on the pubsub topics."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any, Dict


@dataclass
class BufferUpdateEvent:
    """The text buffer changed."""
    text: str
    revision: int
    origin: str  # "dictation" | "fallback" | "upload" | "user"
    provisional: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class SessionEvent:
    """Session lifecycle event."""
    session_id: str
    event_type: str  # "started", "status", "fallback", "stopped", "error"
    message: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PlaybackEvent:
    """Playback state changed (only on confirmation from the output device)."""
    is_playing: bool
    event_type: str  # "started", "paused", "ended", "error"
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
