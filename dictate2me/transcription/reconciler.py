"""Merges interim and final transcript fragments into the text buffer.

The buffer is modelled as ``committed`` text followed by at most one open
run. An interim fragment replaces the open run, which is shown with a
trailing provisional marker. A final fragment drops the open run and is
appended to ``committed``; once there it is never rewritten.

Fragments carry sequence numbers and arrive in order over one channel.
Redelivered fragments (same or older sequence) are ignored. Missing
fragments are not recovered.

The user may edit the buffer between fragments. When the buffer revision
no longer matches the reconciler's last write, the edited text becomes the
new committed base. Only an open run left behind by a provisional write,
such as one from an earlier session, is dropped; user edits and final text
are kept verbatim.
"""

import logging
from typing import Optional

from ..models.transcription import TranscriptFragment
from ..models.text_buffer import TextBuffer

logger = logging.getLogger(__name__)

_LEADING_PUNCTUATION = ".,!?;:)"


def join_text(base: str, text: str) -> str:
    """Append ``text`` to ``base`` with a single separating space where needed."""
    if not base:
        return text
    if not text:
        return base
    if base[-1].isspace() or text[0] in _LEADING_PUNCTUATION:
        return base + text
    return f"{base} {text}"


class TranscriptReconciler:
    """Applies TranscriptFragments of one session to a TextBuffer."""

    def __init__(self, buffer: TextBuffer, marker: str = "...", origin: str = "dictation"):
        self.buffer = buffer
        self.marker = marker
        self.origin = origin

        self.committed = ""
        self.pending = ""
        self.last_sequence = -1
        self._revision: Optional[int] = None
        self.applied_count = 0

    @property
    def run_open(self) -> bool:
        return bool(self.pending)

    @property
    def display_text(self) -> str:
        if not self.pending:
            return self.committed
        return join_text(self.committed, self.pending) + self.marker

    def next_sequence(self) -> int:
        return self.last_sequence + 1

    def apply(self, fragment: TranscriptFragment, origin: Optional[str] = None) -> bool:
        """Apply one fragment. Returns False when it was a duplicate or empty."""
        if fragment.sequence <= self.last_sequence:
            logger.debug(f"Ignoring redelivered fragment #{fragment.sequence} "
                         f"(last applied #{self.last_sequence})")
            return False
        self.last_sequence = fragment.sequence

        text = fragment.text.strip()
        if not text:
            return False

        base = self._sync_with_buffer()
        if fragment.is_final:
            self.committed = join_text(base, text)
            self.pending = ""
            self._write(self.committed, provisional=False, origin=origin)
            logger.debug(f"Committed fragment #{fragment.sequence}: '{text}'")
        else:
            self.pending = text
            self._write(join_text(base, text) + self.marker, provisional=True,
                        origin=origin, run_base=base)

        self.applied_count += 1
        return True

    def append_final(self, text: str, origin: Optional[str] = None) -> bool:
        """Append text that did not come from the stream, e.g. a fallback transcript."""
        return self.apply(TranscriptFragment(text=text, is_final=True,
                                             sequence=self.next_sequence()), origin=origin)

    def commit_open_run(self) -> bool:
        """Promote the open run to final text, used when a stream ends without a final."""
        base = self._sync_with_buffer()
        if not self.pending:
            return False
        self.committed = join_text(base, self.pending)
        self.pending = ""
        self._write(self.committed, provisional=False)
        return True

    def discard_open_run(self) -> bool:
        """Remove the open run and its marker from the buffer."""
        base = self._sync_with_buffer()
        if not self.pending:
            return False
        self.pending = ""
        self._write(base, provisional=False)
        return True

    def _sync_with_buffer(self) -> str:
        """Return the committed base, adopting any edit made outside the reconciler."""
        if self._revision is not None and self.buffer.revision == self._revision:
            return self.committed

        if self.buffer.open_run_base is not None:
            # Stale open run from an earlier writer
            text = self.buffer.open_run_base
        else:
            text = self.buffer.text
        if self._revision is not None:
            logger.info("Buffer was edited outside dictation; continuing after the edit")

        self.committed = text
        self.pending = ""
        self._revision = self.buffer.revision
        return text

    def _write(self, text: str, provisional: bool, origin: Optional[str] = None,
               run_base: Optional[str] = None) -> None:
        self._revision = self.buffer.write(text, origin=origin or self.origin,
                                           provisional=provisional, run_base=run_base)
