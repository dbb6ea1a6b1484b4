"""Services layer for Dictate2Me application logic."""

from .session_manager import DictationSessionManager, SessionContext

__all__ = [
    "DictationSessionManager",
    "SessionContext",
]
