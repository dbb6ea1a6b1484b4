"""Unit tests for Dictate2MeConfig."""

from pathlib import Path

import pytest

from dictate2me.config import Dictate2MeConfig, DEFAULT_CONFIG
from dictate2me.models.transcription import SpeechEngine


def write_config(directory, content: str) -> str:
    path = Path(directory) / "dictate2me.yaml"
    path.write_text(content)
    return str(path)


@pytest.mark.unit
class TestDictate2MeConfig:

    def test_defaults_without_file(self):
        config = Dictate2MeConfig()

        assert config.get('audio.sample_rate') == 16000
        assert config.get('transcription.streaming.url') == "ws://localhost:5000/ws"
        assert config.get('buffer.provisional_marker') == "..."
        assert config.get_engine() == SpeechEngine.GLADIA
        assert config.get_google_credentials_path() is None

    def test_defaults_are_not_shared(self):
        config = Dictate2MeConfig()
        config.set('audio.sample_rate', 8000)

        assert DEFAULT_CONFIG['audio']['sample_rate'] == 16000

    def test_file_overrides_defaults(self, temp_data_dir):
        path = write_config(temp_data_dir, """
transcription:
  engine: OpenAI Whisper
  streaming:
    enabled: false
audio:
  streaming_chunk_ms: 250
""")
        config = Dictate2MeConfig(path)

        assert config.get_engine() == SpeechEngine.WHISPER
        assert config.get('transcription.streaming.enabled') is False
        assert config.get('transcription.streaming.handshake_timeout_seconds') == 5.0
        assert config.get('audio.streaming_chunk_ms') == 250
        assert config.get('audio.batch_chunk_ms') == 1000

    def test_relative_paths_resolve_against_config_file(self, temp_data_dir):
        path = write_config(temp_data_dir, """
storage:
  data_directory: store
logging:
  file_path: logs/app.log
""")
        config = Dictate2MeConfig(path)

        assert config.get('storage.data_directory') == str(Path(temp_data_dir) / "store")
        assert config.get('logging.file_path') == str(Path(temp_data_dir) / "logs" / "app.log")

    def test_missing_credentials_file(self, temp_data_dir):
        path = write_config(temp_data_dir, """
local_recognizer:
  enabled: true
  credentials_path: missing.json
""")
        config = Dictate2MeConfig(path)

        with pytest.raises(FileNotFoundError):
            config.get_google_credentials_path()

    def test_missing_file(self, temp_data_dir):
        with pytest.raises(FileNotFoundError):
            Dictate2MeConfig(str(Path(temp_data_dir) / "nope.yaml"))

    def test_invalid_yaml(self, temp_data_dir):
        path = write_config(temp_data_dir, "audio: [unclosed")

        with pytest.raises(ValueError, match="Invalid YAML"):
            Dictate2MeConfig(path)

    def test_empty_file(self, temp_data_dir):
        path = write_config(temp_data_dir, "")

        with pytest.raises(ValueError, match="empty"):
            Dictate2MeConfig(path)

    def test_get_and_set_dot_paths(self):
        config = Dictate2MeConfig()

        config.set('transcription.engine', 'deepgram')
        config.set('new.nested.key', 1)

        assert config.get_engine() == SpeechEngine.DEEPGRAM
        assert config.get('new.nested.key') == 1
        assert config.get('does.not.exist', 'fallback') == 'fallback'

    def test_unknown_engine(self):
        config = Dictate2MeConfig()
        config.set('transcription.engine', 'Sphinx')

        with pytest.raises(ValueError):
            config.get_engine()
