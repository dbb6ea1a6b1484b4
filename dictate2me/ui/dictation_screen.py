"""Terminal dictation screen with a live view of the text buffer."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from pubsub import pub
from rich.align import Align
from rich.console import Console
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..models.events import BufferUpdateEvent, PlaybackEvent, SessionEvent
from ..publisher import TEXT_TOPIC, SESSION_TOPIC, PLAYBACK_TOPIC


logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "started": "Listening...",
    "status": "Processing...",
    "fallback": "Processing...",
    "stopped": "Transcribed",
    "error": "Error",
}


@dataclass
class DictationStatus:
    """Current state shown on the screen."""
    session_id: Optional[str] = None
    status_label: str = "Ready"
    mode: str = "streaming"
    engine: str = ""
    text: str = ""
    provisional: bool = False
    revision: int = 0
    is_playing: bool = False
    duration_seconds: float = 0.0
    total_chunks: int = 0
    peak_level: float = 0.0
    notices: List[str] = field(default_factory=list)


class DictationScreen:
    """Renders dictation state from pubsub events into a rich layout."""

    def __init__(self, console: Optional[Console] = None, max_notices: int = 3):
        self.console = console or Console()
        self.max_notices = max_notices
        self.status = DictationStatus()
        self._subscribed = False

    def subscribe(self) -> None:
        """Start listening to buffer, session and playback events."""
        if self._subscribed:
            return
        pub.subscribe(self.on_text_update, TEXT_TOPIC)
        pub.subscribe(self.on_session_event, SESSION_TOPIC)
        pub.subscribe(self.on_playback_event, PLAYBACK_TOPIC)
        self._subscribed = True
        logger.debug("DictationScreen subscribed to dictation topics")

    def unsubscribe(self) -> None:
        if not self._subscribed:
            return
        pub.unsubscribe(self.on_text_update, TEXT_TOPIC)
        pub.unsubscribe(self.on_session_event, SESSION_TOPIC)
        pub.unsubscribe(self.on_playback_event, PLAYBACK_TOPIC)
        self._subscribed = False

    def on_text_update(self, event: BufferUpdateEvent) -> None:
        self.status.text = event.text
        self.status.provisional = event.provisional
        self.status.revision = event.revision

    def on_session_event(self, event: SessionEvent) -> None:
        self.status.session_id = event.session_id
        self.status.status_label = STATUS_LABELS.get(event.event_type, self.status.status_label)
        if "mode" in event.metadata:
            self.status.mode = event.metadata["mode"]
        if "engine" in event.metadata:
            self.status.engine = event.metadata["engine"]
        if event.event_type == "fallback":
            self.status.mode = "batch"
        if event.event_type in ("fallback", "error") and event.message:
            self._add_notice(event.message)

    def on_playback_event(self, event: PlaybackEvent) -> None:
        self.status.is_playing = event.is_playing
        if event.error:
            self._add_notice(f"Playback error: {event.error}")

    def update_audio(self, stats) -> None:
        """Copy capture statistics into the screen state."""
        if stats is None:
            return
        self.status.duration_seconds = stats.duration_seconds
        self.status.total_chunks = stats.total_chunks
        self.status.peak_level = stats.peak_level

    def _add_notice(self, message: str) -> None:
        self.status.notices.append(message)
        del self.status.notices[:-self.max_notices]

    def create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main", ratio=1),
            Layout(name="footer", size=5),
        )
        layout["main"].split_row(
            Layout(name="audio_panel", ratio=1),
            Layout(name="text_panel", ratio=2),
        )
        return layout

    def render(self) -> Layout:
        """Build the full screen for the current state."""
        layout = self.create_layout()
        self.update_header(layout)
        self.update_audio_panel(layout)
        self.update_text_panel(layout)
        self.update_footer(layout)
        return layout

    def update_header(self, layout: Layout) -> None:
        listening = self.status.status_label == "Listening..."
        header_text = Text.assemble(
            ("Dictate2Me", "bold blue"), "  |  ",
            (self.status.status_label, "bold red" if listening else "bold yellow"),
            "  |  ",
            f"Mode: {self.status.mode}",
            "  |  ",
            f"Session: {self.status.session_id or 'None'}",
        )
        layout["header"].update(Panel(Align.center(header_text), style="bright_blue"))

    def update_audio_panel(self, layout: Layout) -> None:
        audio_table = Table(title="Audio", show_header=True, header_style="bold magenta")
        audio_table.add_column("Metric", style="cyan")
        audio_table.add_column("Value", style="white")

        audio_table.add_row("Duration", f"{self.status.duration_seconds:.1f}s")
        audio_table.add_row("Chunks", str(self.status.total_chunks))
        peak_bar = "#" * int(self.status.peak_level * 20)
        audio_table.add_row("Peak Level", f"{peak_bar:<20} {self.status.peak_level:.3f}")
        audio_table.add_row("Engine", self.status.engine or "-")
        audio_table.add_row("Playback", "Playing" if self.status.is_playing else "Stopped")

        layout["audio_panel"].update(Panel(audio_table, border_style="green"))

    def update_text_panel(self, layout: Layout) -> None:
        if self.status.text:
            body = Text(self.status.text, style="dim white" if self.status.provisional else "white")
        else:
            body = Text("Start speaking to dictate...", style="dim white italic")
        layout["text_panel"].update(Panel(body, title=f"Transcript (rev {self.status.revision})",
                                          border_style="blue"))

    def update_footer(self, layout: Layout) -> None:
        if self.status.notices:
            footer = Text("\n".join(self.status.notices), style="yellow")
        else:
            footer = Text.assemble(("Controls: ", "bold"), ("Ctrl+C", "bold red"), " Stop dictation")
        layout["footer"].update(Panel(footer, style="bright_black"))
