"""Storage layer for recordings and session data."""

from .file_manager import FileManager

__all__ = ["FileManager"]
