"""Main application entry point for Dictate2Me."""

import sys
import time
import signal
import asyncio
import logging
from functools import partial
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.live import Live

from . import __version__
from .audio import AudioCapture, AudioPlayback
from .config import Dictate2MeConfig
from .errors import DictationError, TranscriptionError
from .models.session import SessionStatus
from .models.text_buffer import TextBuffer
from .models.transcription import SpeechEngine
from .publisher import DebouncedPublisher, TEXT_TOPIC
from .services import DictationSessionManager
from .storage import FileManager
from .transcription import BatchTranscriptionClient, FallbackRecognizer, StreamingTransport
from .transcription.google_backend import GoogleSpeechBackend
from .ui import DictationScreen

logger = logging.getLogger(__name__)


class DictationApp:
    """Builds the dictation components from configuration."""

    def __init__(self, config: Dictate2MeConfig):
        self.config = config
        self.file_manager = FileManager(config.get_data_directory())

        debounce_ms = config.get('buffer.debounce_ms', 200)
        self.buffer = TextBuffer(publisher=DebouncedPublisher(TEXT_TOPIC, delay_seconds=debounce_ms / 1000))
        self.playback = AudioPlayback(download_dir=str(self.file_manager.recordings_dir))
        self.manager: Optional[DictationSessionManager] = None

    def init(self, engine: Optional[SpeechEngine] = None, batch_only: bool = False) -> DictationSessionManager:
        logger.info("Initializing services...")

        sample_rate = self.config.get('audio.sample_rate', 16000)
        channels = self.config.get('audio.channels', 1)
        logger.info(f"Audio settings: {sample_rate}Hz, {channels} channels")

        streaming_enabled = self.config.get('transcription.streaming.enabled', True) and not batch_only
        transport_factory = None
        if self.config.get('transcription.streaming.url'):
            transport_factory = partial(
                StreamingTransport,
                self.config.get('transcription.streaming.url'),
                handshake_timeout=self.config.get('transcription.streaming.handshake_timeout_seconds', 5.0),
                close_grace=self.config.get('transcription.streaming.close_grace_seconds', 0.5),
            )

        self.manager = DictationSessionManager(
            buffer=self.buffer,
            capture_factory=partial(AudioCapture, sample_rate=sample_rate, channels=channels),
            fallback=FallbackRecognizer(self._create_batch_client(), self._create_local_backend()),
            transport_factory=transport_factory,
            playback=self.playback,
            engine=engine or self.config.get_engine(),
            streaming_enabled=streaming_enabled,
            streaming_chunk_ms=self.config.get('audio.streaming_chunk_ms', 500),
            batch_chunk_ms=self.config.get('audio.batch_chunk_ms', 1000),
            sample_rate=sample_rate,
            channels=channels,
            provisional_marker=self.config.get('buffer.provisional_marker', '...'),
        )
        return self.manager

    def _create_batch_client(self) -> Optional[BatchTranscriptionClient]:
        url = self.config.get('transcription.batch.url')
        if not url:
            logger.warning("No batch transcription endpoint configured")
            return None
        return BatchTranscriptionClient(
            url,
            upload_url=self.config.get('transcription.batch.upload_url'),
            timeout_seconds=self.config.get('transcription.batch.timeout_seconds', 60.0),
        )

    def _create_local_backend(self) -> Optional[GoogleSpeechBackend]:
        if not self.config.get('local_recognizer.enabled', False):
            return None
        credentials_path = self.config.get_google_credentials_path()
        if credentials_path is None:
            logger.warning("Local recognizer enabled but no credentials configured")
            return None

        backend = GoogleSpeechBackend(
            credentials_path=credentials_path,
            language=self.config.get('local_recognizer.language', 'en-US'),
        )
        if not backend.initialize():
            logger.warning("Local recognizer could not be initialized; it will be skipped")
            return None
        return backend

    async def run_dictation(self, screen: DictationScreen, duration: Optional[int]) -> None:
        """Dictate until ``duration`` elapses or the user presses Ctrl+C."""
        stop_requested = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, stop_requested.set)
        except NotImplementedError:
            logger.debug("Signal handlers unsupported on this platform; relying on --duration")

        screen.subscribe()
        try:
            await self.manager.start()
            started = time.time()
            with Live(screen.render(), console=screen.console, refresh_per_second=4) as live:
                while not stop_requested.is_set():
                    if duration and time.time() - started >= duration:
                        break
                    if not self.manager.is_active:
                        break
                    screen.update_audio(self.manager.get_audio_stats())
                    live.update(screen.render())
                    await asyncio.sleep(0.25)

                await self.manager.stop()
                self.buffer.publisher.flush()
                live.update(screen.render())
            await self.manager.shutdown()
        finally:
            screen.unsubscribe()
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except NotImplementedError:
                logger.debug("No SIGINT handler to remove")

    def save_results(self, save_audio: Optional[str], output: Optional[str]) -> None:
        session = self.manager.session
        recorded = self.manager.recorded
        if session is not None:
            self.file_manager.save_session_info(session, self.buffer.text, recorded)
        if recorded is not None:
            self.playback.download(save_audio)
        if output:
            self.file_manager.save_transcript(self.buffer.text, output)


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/dictate2me.log')
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    # Console handler - warnings and above only, the live screen owns stdout
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("Dictate2Me starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def _parse_engine(ctx, param, value) -> Optional[SpeechEngine]:
    if value is None:
        return None
    try:
        return SpeechEngine.parse(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


ENGINE_OPTION = click.option(
    "--engine",
    callback=_parse_engine,
    help="Speech engine for batch transcription: " + ", ".join(e.value for e in SpeechEngine),
)


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False),
              help="Path to configuration YAML file (default: built-in settings)")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Set logging level (overrides config)")
@click.version_option(__version__, prog_name="Dictate2Me")
@click.pass_context
def cli(ctx, config_path, log_level):
    """Dictate2Me - voice dictation with real-time transcription."""
    try:
        config = Dictate2MeConfig(config_path)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e))
    setup_logging(config, log_level or config.get('logging.level', 'INFO'))
    ctx.obj = config


@cli.command()
@click.option("--duration", type=int, help="Stop automatically after N seconds")
@click.option("--batch", "batch_only", is_flag=True, help="Skip real-time streaming and transcribe at the end")
@ENGINE_OPTION
@click.option("--save-audio", type=click.Path(dir_okay=False), help="Save the recording to this file instead of the recordings directory")
@click.option("--output", type=click.Path(dir_okay=False), help="Write the transcript to this file")
@click.pass_obj
def dictate(config, duration, batch_only, engine, save_audio, output):
    """Record from the microphone and show the transcript live."""
    console = Console()
    app = DictationApp(config)
    app.init(engine=engine, batch_only=batch_only)

    try:
        asyncio.run(app.run_dictation(DictationScreen(console), duration))
    except DictationError as e:
        logger.error(f"Dictation failed: {e}")
        raise click.ClickException(str(e))

    session = app.manager.session
    app.save_results(save_audio, output)
    if not output:
        click.echo(app.buffer.text)
    if session is not None and session.status == SessionStatus.ERROR:
        raise click.ClickException(session.error or "Dictation failed")


@cli.command()
@click.argument("audio_file", type=click.Path(exists=True, dir_okay=False))
@ENGINE_OPTION
@click.pass_obj
def upload(config, audio_file, engine):
    """Transcribe a pre-recorded audio file."""
    app = DictationApp(config)
    manager = app.init(engine=engine)

    try:
        result = asyncio.run(manager.upload_audio(audio_file, engine))
    except TranscriptionError as e:
        logger.error(f"Upload failed: {e}")
        raise click.ClickException(f"Upload Failed: {e}")

    click.echo(result.text)
    if result.audio_url:
        click.echo(f"Audio URL: {result.audio_url}", err=True)


def main() -> None:
    """Main entry point for Dictate2Me."""
    cli(prog_name="dictate2me")


if __name__ == "__main__":
    main()
