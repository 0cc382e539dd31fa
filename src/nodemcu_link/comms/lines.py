"""
Line Assembly and Prompt Detection
==================================

The NodeMCU interpreter output arrives as arbitrary raw chunks. Two
independent views are taken of that stream:

- **Lines**: chunks are accumulated until a chunk ends in a newline, and
  the accumulated text (without that newline) becomes one line.
- **Prompts**: the interpreter's "> " readiness marker is never newline
  terminated, so it is looked for in the raw stream. PromptDetector keeps
  the tail of the stream, so a prompt split over several chunks is still
  seen.

Framing Rules
-------------
- Only the final character of a chunk decides whether a line completes.
  A chunk "a\\nb\\n" completes the single line "a\\nb".
- Carriage returns are kept: a "\\r\\n" device yields lines ending in "\\r".
- A chunk consisting only of "\\n" flushes the pending text, which may
  be the empty string.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, Optional

from nodemcu_link.errors import BufferOverflowError

if TYPE_CHECKING:
    from nodemcu_link.comms.session import Session

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

LINE_TERMINATOR: Final[str] = "\n"

# Interpreter readiness marker (0x3E 0x20)
PROMPT_MARKER: Final[str] = "> "


# =============================================================================
# Line Event
# =============================================================================

@dataclass(frozen=True)
class LineEvent:
    """
    One completed line received from a session.

    Attributes:
        session: The session the line arrived on
        text: Line text without its terminating newline
    """

    session: "Session"
    text: str


# =============================================================================
# Line Assembler
# =============================================================================

class LineAssembler:
    """
    Accumulates raw chunks into lines.

    feed() is called once per received chunk and returns at most one line.
    Each session owns its own assembler.

    Example:
        >>> assembler = LineAssembler()
        >>> assembler.feed("node ") is None
        True
        >>> assembler.feed("mcu\\n")
        'node mcu'
    """

    def __init__(self, max_line_length: Optional[int] = None):
        """
        Args:
            max_line_length: Cap on pending unterminated text. None means
                             unbounded.
        """
        self.max_line_length = max_line_length
        self._buffer: list[str] = []
        self._size = 0

    @property
    def pending(self) -> str:
        """Text received since the last completed line."""
        return "".join(self._buffer)

    def reset(self) -> None:
        """Discard pending text."""
        self._buffer.clear()
        self._size = 0

    def feed(self, chunk: str) -> Optional[str]:
        """
        Add a raw chunk and return the completed line, if any.

        Args:
            chunk: Decoded chunk text.

        Returns:
            The completed line without its trailing newline, or None.

        Raises:
            BufferOverflowError: If the pending text would exceed
                max_line_length. The pending text is discarded.
        """
        if not chunk:
            return None

        size = self._size + len(chunk)
        if chunk.endswith(LINE_TERMINATOR):
            size -= 1

        if self.max_line_length is not None and size > self.max_line_length:
            self.reset()
            raise BufferOverflowError(self.max_line_length, size)

        if chunk.endswith(LINE_TERMINATOR):
            self._buffer.append(chunk[:-1])
            line = "".join(self._buffer)
            self.reset()
            return line

        self._buffer.append(chunk)
        self._size = size
        return None


# =============================================================================
# Prompt Detection
# =============================================================================

def is_prompt_chunk(chunk: str, marker: str = PROMPT_MARKER) -> bool:
    """
    Return True if a raw chunk ends with the interpreter prompt.

    This must be applied to raw chunks, not assembled lines: the prompt is
    not followed by a newline, so it never shows up as a line.

    >>> is_prompt_chunk("> ")
    True
    >>> is_prompt_chunk("> x") or is_prompt_chunk(">")
    False
    """
    return chunk.endswith(marker)


class PromptDetector:
    """
    Watches the raw stream for the prompt across chunk boundaries.

    A serial reader hands over whatever bytes are waiting, which at
    9600 baud is often a single byte, so "> " commonly arrives as ">"
    then " ". The detector keeps the last few characters of the stream
    and reports a prompt whenever the stream as received so far ends
    with the marker.

    Example:
        >>> detector = PromptDetector()
        >>> detector.feed(">")
        False
        >>> detector.feed(" ")
        True
    """

    def __init__(self, marker: str = PROMPT_MARKER):
        self.marker = marker
        self._tail = ""

    def reset(self) -> None:
        self._tail = ""

    def feed(self, chunk: str) -> bool:
        """Add a raw chunk; return True if the stream now ends with the marker."""
        if not chunk:
            return False
        self._tail = (self._tail + chunk)[-len(self.marker):]
        return is_prompt_chunk(self._tail, self.marker)
