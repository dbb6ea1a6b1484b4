"""The shared text buffer that dictation writes into."""

import logging
from typing import Optional

from .events import BufferUpdateEvent
from ..publisher import DebouncedPublisher, TEXT_TOPIC

logger = logging.getLogger(__name__)


class TextBuffer:
    """Single mutable text target shared with the rest of the application.

    Every write bumps ``revision`` and records who made it, so a writer can
    tell whether the text it last wrote has since been edited by someone
    else. A provisional write also records ``open_run_base``, the committed
    text the open run was appended to; any later write clears it.
    """

    def __init__(self, text: str = "", publisher: Optional[DebouncedPublisher] = None):
        self._text = text
        self.revision = 0
        self.last_origin = "user"
        self.open_run_base: Optional[str] = None
        self.publisher = publisher or DebouncedPublisher(TEXT_TOPIC, delay_seconds=0.2)

    @property
    def text(self) -> str:
        return self._text

    def write(self, text: str, origin: str = "dictation", provisional: bool = False,
              run_base: Optional[str] = None) -> int:
        """Replace the buffer contents and notify listeners.

        Args:
            text: New buffer contents
            origin: Who wrote it ("dictation", "fallback", "upload", "user")
            provisional: The text ends in an open run that may still change
            run_base: For provisional writes, the text before the open run

        Returns:
            The new revision number
        """
        self._text = text
        self.revision += 1
        self.last_origin = origin
        self.open_run_base = (run_base or "") if provisional else None
        self.publisher.publish(
            BufferUpdateEvent(text=text, revision=self.revision,
                              origin=origin, provisional=provisional),
            provisional=provisional,
        )
        return self.revision

    def edit(self, text: str) -> int:
        """Manual edit by the user."""
        logger.debug(f"User edit: {len(text)} characters")
        return self.write(text, origin="user")

    def clear(self) -> int:
        return self.write("", origin="user")

    def __str__(self) -> str:
        return self._text
