"""
Prompt-Paced Uploads
====================

The NodeMCU interpreter reads one line at a time and prints "> " when it
is ready for the next. Sending faster than that overruns its input
buffer, so every upload here is paced by the prompt:

    host                                  device
      | ── line 1 ─────────────────────→  |   (first send is unconditional)
      | ←──────────────── output... "> "  |
      | ── line 2 ─────────────────────→  |
      | ←──────────────────────────  "> " |
      |            ...                    |

Two flavours are provided:

- send_multiline_data(): type a script into the interpreter line by line.
- send_as_file(): store text as a file on the device's flash using the
  firmware's file module:

      file.open("init.lua", "w")
      file.writeline("first line")
      ...
      file.close()

If the prompt does not come back within LinkConfig.prompt_timeout the
upload is aborted with UploadStalledError. The error carries the job, so
the caller can see how far it got.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Final, Optional

from nodemcu_link.comms.session import PendingOperation, Session
from nodemcu_link.config import LinkConfig
from nodemcu_link.console import Console
from nodemcu_link.errors import UploadStalledError

logger = logging.getLogger(__name__)

# Type alias for progress callback: (lines_done, total_lines) -> None
ProgressCallback = Callable[[int, int], None]

# Characters with a short escape in Lua string literals
_LUA_ESCAPES: Final[dict[str, str]] = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


def lua_quote(text: str) -> str:
    """
    Render text as a double-quoted Lua string literal.

    Other control characters use Lua's decimal escapes (\\ddd).

    >>> lua_quote('print("hi")')
    '"print(\\\\"hi\\\\")"'
    """
    parts = []
    for ch in text:
        if ch in _LUA_ESCAPES:
            parts.append(_LUA_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            parts.append(f"\\{ord(ch):03d}")
        else:
            parts.append(ch)
    return '"' + "".join(parts) + '"'


@dataclass
class UploadJob:
    """
    Progress of one upload.

    Attributes:
        payload: Text being sent
        filename: Target file on the device, None for a plain multi-line send
        cursor: Number of payload lines confirmed by a prompt so far
        closed: True once the file.close() command has been confirmed
    """

    payload: str
    filename: Optional[str] = None
    cursor: int = 0
    closed: bool = False
    lines: list[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.lines = self.payload.split("\n")

    @property
    def total(self) -> int:
        return len(self.lines)

    @property
    def done(self) -> bool:
        if self.cursor < self.total:
            return False
        return self.filename is None or self.closed


class UploadDriver:
    """
    Sends multi-step command sequences to a connected session.

    Usage:
        with Session("/dev/ttyUSB0", console=console) as session:
            UploadDriver(session).send_as_file(source, "init.lua")
    """

    def __init__(
        self,
        session: Session,
        config: Optional[LinkConfig] = None,
        console: Optional[Console] = None,
    ):
        self.session = session
        self.config = config or session.config
        self.console = console or session.console

    def send_multiline_data(
        self,
        data: str,
        progress: Optional[ProgressCallback] = None,
    ) -> UploadJob:
        """
        Type text into the interpreter one line at a time.

        Each line is sent with a trailing newline, then the driver waits
        for the prompt before sending the next.

        Returns:
            The completed job.

        Raises:
            UploadStalledError: If a prompt does not arrive in time.
            NotConnectedError: If the session is or becomes disconnected.
            ConnectionError: If a write fails.
        """
        job = UploadJob(data)
        logger.info("Sending %d lines to %s", job.total, self.session.device)

        with self.session.pending(PendingOperation.UPLOAD):
            for line in job.lines:
                self._step(job, line + "\n")
                job.cursor += 1
                if progress:
                    progress(job.cursor, job.total)

        return job

    def send_as_file(
        self,
        data: str,
        filename: str,
        progress: Optional[ProgressCallback] = None,
    ) -> UploadJob:
        """
        Save text as a file on the device.

        Issues exactly one file.open, one file.writeline per line and one
        file.close, strictly in that order.

        Returns:
            The completed job.

        Raises:
            UploadStalledError: If a prompt does not arrive in time.
            NotConnectedError: If the session is or becomes disconnected.
            ConnectionError: If a write fails.
        """
        job = UploadJob(data, filename=filename)
        self.console.write_line(f"Writing {job.total} lines to {filename}")

        with self.session.pending(PendingOperation.UPLOAD):
            self._step(job, f'file.open({lua_quote(filename)}, "w")\n')
            for line in job.lines:
                self._step(job, f"file.writeline({lua_quote(line)})\n")
                job.cursor += 1
                if progress:
                    progress(job.cursor, job.total)
            self._step(job, "file.close()\n")
            job.closed = True

        logger.info("Wrote %s (%d lines) on %s", filename, job.total, self.session.device)
        return job

    def _step(self, job: UploadJob, command: str) -> None:
        timeout = self.config.prompt_timeout
        if not self.session.send_and_wait_prompt(command, timeout):
            step = command.rstrip("\n")
            logger.warning("Upload stalled after %r on %s", step, self.session.device)
            raise UploadStalledError(step, timeout, job)
