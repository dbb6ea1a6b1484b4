"""Pubsub publishers for buffer, session and playback events."""

import asyncio
import logging
from typing import Any, Optional

from pubsub import pub

logger = logging.getLogger(__name__)

TEXT_TOPIC = "dictation.text"
SESSION_TOPIC = "dictation.session"
PLAYBACK_TOPIC = "dictation.playback"


class EventPublisher:
    """Publishes events using pubsub.pub."""

    def __init__(self, topic: str):
        """Initialize event publisher.

        Args:
            topic: Pub/sub topic name
        """
        self.topic = topic
        logger.debug(f"EventPublisher initialized with topic: {topic}")

    def publish(self, event: Any) -> None:
        """Publish an event to the pub/sub topic."""
        pub.sendMessage(self.topic, event=event)


class DebouncedPublisher(EventPublisher):
    """Coalesces provisional events so listeners see at most one per window.

    Non-provisional events are delivered immediately and drop any pending
    provisional one. Without a running event loop everything is immediate.
    """

    def __init__(self, topic: str, delay_seconds: float = 0.2):
        super().__init__(topic)
        self.delay_seconds = delay_seconds
        self._pending: Optional[Any] = None
        self._handle: Optional[asyncio.TimerHandle] = None

    def publish(self, event: Any, provisional: bool = False) -> None:
        if not provisional or self.delay_seconds <= 0:
            self._cancel()
            super().publish(event)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            super().publish(event)
            return

        self._pending = event
        if self._handle is None:
            self._handle = loop.call_later(self.delay_seconds, self._flush)

    def _flush(self) -> None:
        event, self._pending = self._pending, None
        self._handle = None
        if event is not None:
            super().publish(event)

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._pending = None

    def flush(self) -> None:
        """Deliver any pending provisional event now."""
        if self._handle is not None:
            self._handle.cancel()
        self._flush()
