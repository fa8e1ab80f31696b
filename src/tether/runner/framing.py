"""Incremental newline framing for subprocess output."""

from __future__ import annotations

import codecs
import logging

logger = logging.getLogger(__name__)

#: Maximum characters buffered for a single unterminated line (1 MB).
MAX_LINE_CHARS = 1_048_576


class LineFramer:
    """Split arriving output chunks into complete newline-terminated lines.

    Bytes are decoded incrementally, so a multi-byte UTF-8 sequence split
    across two chunks is reassembled rather than replaced.  A partial
    line is kept until its newline arrives (or :meth:`flush` is called at
    EOF).  A partial line that grows beyond *max_line_chars* is dropped
    along with the rest of that line.
    """

    def __init__(self, max_line_chars: int = MAX_LINE_CHARS) -> None:
        self._max_line_chars = max_line_chars
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""
        self._discarding = False

    @property
    def pending(self) -> str:
        """Buffered text of the current unterminated line."""
        return self._partial

    def feed(self, chunk: bytes | str) -> list[str]:
        """Add *chunk* and return every line it completed (without ``\\n``)."""
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if not text:
            return []

        pieces = text.split("\n")
        lines: list[str] = []
        for piece in pieces[:-1]:
            if self._discarding:
                # Tail of an oversized line; drop it and resync.
                self._discarding = False
                self._partial = ""
                continue
            lines.append(_strip_cr(self._partial + piece))
            self._partial = ""

        tail = pieces[-1]
        if self._discarding:
            return lines
        self._partial += tail
        if len(self._partial) > self._max_line_chars:
            logger.warning(
                "Output line exceeds %d characters, skipping", self._max_line_chars
            )
            self._partial = ""
            self._discarding = True
        return lines

    def flush(self) -> str | None:
        """Return the trailing unterminated line at EOF, if any."""
        self._partial += self._decoder.decode(b"", final=True)
        line, self._partial = self._partial, ""
        if self._discarding:
            self._discarding = False
            return None
        line = _strip_cr(line)
        return line or None


def _strip_cr(line: str) -> str:
    return line[:-1] if line.endswith("\r") else line
