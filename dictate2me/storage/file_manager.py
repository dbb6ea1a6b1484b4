"""File management module for recordings and session data."""

import json
import logging
from pathlib import Path
from datetime import datetime
from typing import Optional

from ..models.audio import RecordedAudio
from ..models.session import Session


logger = logging.getLogger(__name__)


class FileManager:
    """Manages the data directory: recordings, transcripts and session metadata."""

    def __init__(self, data_dir: str = "./data"):
        """Initialize file manager with data directory.

        Args:
            data_dir: Base directory for storing all data
        """
        self.data_dir = Path(data_dir)
        self.recordings_dir = self.data_dir / "recordings"
        self.sessions_dir = self.data_dir / "sessions"
        self.logs_dir = self.data_dir / "logs"

        self._ensure_directories()

        logger.info(f"FileManager initialized with data_dir: {self.data_dir}")

    def _ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        for directory in [self.data_dir, self.recordings_dir, self.sessions_dir, self.logs_dir]:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

    def save_transcript(self, text: str, filename: str) -> str:
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.info(f"Transcript saved: {path} ({len(text)} characters)")
        return str(path)

    def save_session_info(self, session: Session, transcript: str,
                          recorded: Optional[RecordedAudio] = None) -> str:
        """Save session metadata and its transcript to JSON.

        Args:
            session: Finished session
            transcript: Buffer text at the end of the session
            recorded: Recording of the session, if any

        Returns:
            Path to saved session info file
        """
        session_path = self.sessions_dir / session.id
        session_path.mkdir(parents=True, exist_ok=True)
        info_file = session_path / "session_info.json"

        info = session.to_dict()
        info["transcript"] = transcript
        info["saved_at"] = datetime.now().isoformat()
        if recorded is not None:
            info["audio"] = {
                "filename": recorded.filename,
                "size_bytes": recorded.size_bytes,
                "duration_seconds": recorded.duration_seconds,
                "chunk_count": recorded.chunk_count,
                "audio_url": recorded.audio_url,
            }

        try:
            with open(info_file, 'w') as f:
                json.dump(info, f, indent=2)
        except OSError as e:
            logger.error(f"Error saving session info: {e}")
            raise

        logger.info(f"Session info saved: {info_file}")
        return str(info_file)
