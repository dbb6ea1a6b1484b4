"""Exception hierarchy for dictation sessions."""


class DictationError(Exception):
    """Base class for all dictation errors."""


class MicrophonePermissionError(DictationError, PermissionError):
    """Microphone access was refused. Fatal to the session, never retried."""


class DeviceUnavailableError(DictationError):
    """No usable audio input (or output) device exists."""


class TransportError(DictationError):
    """Base class for streaming transport failures.

    All transport errors trigger the same fallback; the subclasses only
    exist so the failure can be reported accurately.
    """


class TransportConnectionError(TransportError, ConnectionError):
    """Network-level failure: refused connection, handshake timeout, dropped socket."""


class ProtocolError(TransportError):
    """The server sent a message with an unexpected shape."""


class ServerError(TransportError):
    """The server reported an explicit error event."""


class TranscriptionError(DictationError):
    """A batch or local transcription attempt failed."""


class PlaybackError(DictationError):
    """Playback or download of recorded audio failed."""


class SessionError(DictationError):
    """Invalid session lifecycle operation."""
