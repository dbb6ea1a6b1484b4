"""Playback and download of the most recently recorded audio."""

import io
import wave
import asyncio
import logging
import pyaudio
from pathlib import Path
from threading import Thread, Event
from typing import Optional

from ..errors import PlaybackError
from ..models.audio import RecordedAudio
from ..models.events import PlaybackEvent
from ..publisher import EventPublisher, PLAYBACK_TOPIC

logger = logging.getLogger(__name__)


class AudioPlayback:
    """Plays, pauses and exports the latest RecordedAudio.

    ``is_playing`` only changes when the output thread confirms it: after the
    output stream has opened, after the last frame was written, or after an
    error. A new asset replaces the previous one wholesale.

    Playback events are published on the event loop that called play(),
    or on the playback thread when there is none.
    """

    def __init__(self, publisher: Optional[EventPublisher] = None,
                 frames_per_buffer: int = 1024, start_timeout: float = 2.0,
                 download_dir: str = "."):
        self.publisher = publisher or EventPublisher(PLAYBACK_TOPIC)
        self.download_dir = Path(download_dir)
        self.frames_per_buffer = frames_per_buffer
        self.start_timeout = start_timeout

        self.recorded: Optional[RecordedAudio] = None
        self.is_playing = False
        self.position_frames = 0
        self.last_error: Optional[str] = None

        self.playback_thread: Optional[Thread] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.pause_event = Event()
        self._started_event = Event()

    @property
    def has_audio(self) -> bool:
        return self.recorded is not None

    def load(self, recorded: RecordedAudio) -> None:
        """Replace the current asset with a newly completed one."""
        if self.is_playing:
            self.pause()
        self.recorded = recorded
        self.position_frames = 0
        self.last_error = None
        logger.info(f"Playback asset replaced: {recorded.filename} "
                    f"({recorded.size_bytes} bytes, source={recorded.source})")

    def play(self) -> bool:
        """Start or resume playback; returns once the device confirmed it.

        Raises:
            PlaybackError: nothing recorded yet, or the output device refused
        """
        if self.recorded is None:
            raise PlaybackError("There is no recorded audio available to play. "
                                "Please record some dictation first.")
        if self.is_playing:
            return True

        try:
            self.loop = asyncio.get_running_loop()
        except RuntimeError:
            self.loop = None

        self.pause_event.clear()
        self._started_event.clear()
        self.last_error = None
        self.playback_thread = Thread(target=self._play_from_position, daemon=True)
        self.playback_thread.name = "AudioPlaybackThread"
        self.playback_thread.start()

        self._started_event.wait(timeout=self.start_timeout)
        if self.last_error:
            raise PlaybackError(f"Failed to play the audio: {self.last_error}")
        if not self.is_playing and self.playback_thread.is_alive():
            raise PlaybackError("Audio output did not confirm playback start")
        return self.is_playing

    def pause(self) -> None:
        """Pause playback, keeping the position for the next play()."""
        if self.playback_thread is None or not self.playback_thread.is_alive():
            return
        self.pause_event.set()
        self.playback_thread.join(timeout=2.0)

    def toggle(self) -> bool:
        """Play when paused, pause when playing. Returns the new playing state."""
        if self.is_playing:
            self.pause()
        else:
            self.play()
        return self.is_playing

    def download(self, filename: Optional[str] = None) -> str:
        """Write the latest asset and return the full path.

        Args:
            filename: Target path; defaults to the asset's own filename
                inside ``download_dir``
        """
        if self.recorded is None:
            raise PlaybackError("There is no recorded audio available to download. "
                                "Please record some dictation first.")
        path = Path(filename) if filename else self.download_dir / self.recorded.filename
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(self.recorded.data)
        except OSError as e:
            raise PlaybackError(f"Failed to save audio to {path}: {e}") from e
        logger.info(f"Audio saved to {path} ({self.recorded.size_bytes} bytes)")
        return str(path)

    def _publish(self, event_type: str, error: Optional[str] = None) -> None:
        event = PlaybackEvent(is_playing=self.is_playing, event_type=event_type, error=error)
        if self.loop is not None and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self.publisher.publish, event)
        else:
            self.publisher.publish(event)

    def _play_from_position(self) -> None:
        """Internal method: output loop running on the playback thread."""
        pyaudio_instance = None
        stream = None
        try:
            with wave.open(io.BytesIO(self.recorded.data), 'rb') as wf:
                pyaudio_instance = pyaudio.PyAudio()
                stream = pyaudio_instance.open(
                    format=pyaudio_instance.get_format_from_width(wf.getsampwidth()),
                    channels=wf.getnchannels(),
                    rate=wf.getframerate(),
                    output=True,
                )
                wf.setpos(min(self.position_frames, wf.getnframes()))

                self.is_playing = True
                self._started_event.set()
                self._publish("started")

                while not self.pause_event.is_set():
                    frames = wf.readframes(self.frames_per_buffer)
                    if not frames:
                        break
                    stream.write(frames)

                if self.pause_event.is_set():
                    self.position_frames = wf.tell()
                    self.is_playing = False
                    self._publish("paused")
                else:
                    self.position_frames = 0
                    self.is_playing = False
                    self._publish("ended")
        except (wave.Error, EOFError, OSError) as e:
            logger.error(f"Audio playback error: {e}")
            self.is_playing = False
            self.last_error = str(e)
            self._publish("error", error=str(e))
        finally:
            self._started_event.set()
            if stream is not None:
                stream.stop_stream()
                stream.close()
            if pyaudio_instance is not None:
                pyaudio_instance.terminate()
