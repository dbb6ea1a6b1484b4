"""Dictate2Me - streaming dictation with transcript reconciliation and fallback."""

__version__ = "0.1.0"
