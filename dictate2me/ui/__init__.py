"""Terminal user interface."""

from .dictation_screen import DictationScreen, DictationStatus

__all__ = ["DictationScreen", "DictationStatus"]
