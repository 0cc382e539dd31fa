"""
NodeMCU Serial Session
======================

A Session is the live binding between the driver and one open serial
port. It owns:

- the pyserial port object (opened on connect, closed on disconnect)
- a ReaderThread delivering raw received chunks to the session
- a LineAssembler turning those chunks into LineEvents
- the prompt signal used to pace multi-line uploads

Receive Dispatch
----------------
Each session has exactly one receive handler for its lifetime. Every raw
chunk is:

1. echoed to the console,
2. passed to the prompt detector, which raises the prompt signal while an
   upload is pending (the prompt may span several chunks),
3. fed to the line assembler; a completed line goes to every registered
   line listener, in arrival order.

Nothing is dispatched once disconnect() has started, so a listener never
acts on a dead connection.

Usage:
    session = Session("/dev/ttyUSB0", console=ClickConsole())
    session.connect()
    remove = session.add_line_listener(lambda event: print(event.text))
    session.send_data("print(node.heap())\\n")
    ...
    remove()
    session.disconnect()
"""

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator, Optional, Union

import serial
from serial.threaded import Protocol, ReaderThread

from nodemcu_link.comms.lines import LineAssembler, LineEvent, PromptDetector
from nodemcu_link.comms.serial import (
    bytes_to_string,
    close_serial_port,
    open_serial_port,
    string_to_bytes,
)
from nodemcu_link.config import LinkConfig
from nodemcu_link.console import Console, NullConsole
from nodemcu_link.errors import (
    CommsError,
    ConnectionError,
    NotConnectedError,
)

logger = logging.getLogger(__name__)

LineListener = Callable[[LineEvent], None]


class PendingOperation(Enum):
    """What the session is currently busy with."""

    NONE = "none"
    HANDSHAKE = "handshake"
    UPLOAD = "upload"


class _SessionProtocol(Protocol):
    """Forwards ReaderThread notifications to the owning session."""

    def __init__(self, session: "Session"):
        self.session = session

    def data_received(self, data: bytes) -> None:
        self.session._handle_chunk(data)

    def connection_lost(self, exc: Optional[BaseException]) -> None:
        self.session._handle_reader_lost(exc)


class Session:
    """
    One serial connection to a NodeMCU device.

    A session may be connected and disconnected repeatedly, but holds at
    most one open port at a time.
    """

    def __init__(
        self,
        device: str,
        console: Optional[Console] = None,
        config: Optional[LinkConfig] = None,
        opener: Callable[..., "serial.Serial"] = open_serial_port,
        reader_factory: Callable[..., ReaderThread] = ReaderThread,
    ):
        """
        Args:
            device: Serial port path.
            console: Where progress text and device output is written.
            config: Link settings (baud rate, markers, line cap).
            opener: Opens the port; called as opener(device, baud_rate=...).
            reader_factory: Builds the receive thread from (port, protocol_factory).
        """
        self.device = device
        self.console = console or NullConsole()
        self.config = config or LinkConfig()
        self._opener = opener
        self._reader_factory = reader_factory

        self._port: Optional["serial.Serial"] = None
        self._reader: Optional[ReaderThread] = None
        self._connected = False
        self._assembler = LineAssembler(self.config.max_line_length)
        self._prompt_detector = PromptDetector(self.config.prompt_marker)
        self._listeners: list[LineListener] = []
        self._pending = PendingOperation.NONE
        self._prompt = threading.Event()
        self._reader_error: Optional[CommsError] = None

        # Guards state shared with the reader thread; re-entrant so a
        # listener may call back into the session.
        self._lock = threading.RLock()
        # Serialises write+flush pairs
        self._write_lock = threading.Lock()

    def __repr__(self) -> str:
        state = "connected" if self._connected else "disconnected"
        return f"Session({self.device!r}, {state})"

    def __enter__(self) -> "Session":
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        if self._connected:
            self.disconnect()

    @property
    def connected(self) -> bool:
        """Return True while the port is open."""
        return self._connected

    @property
    def pending_operation(self) -> PendingOperation:
        return self._pending

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    def connect(self) -> "Session":
        """
        Open the port and start receiving.

        Returns:
            This session, for chaining.

        Raises:
            ConnectionError: If the port cannot be opened.
        """
        if self._connected:
            logger.warning("%s already connected, reconnecting", self.device)
            self.disconnect()

        self.console.write_line(f"Connecting to device on {self.device}")
        port = self._opener(self.device, baud_rate=self.config.baud_rate)

        with self._lock:
            self._port = port
            self._assembler.reset()
            self._prompt_detector.reset()
            self._reader_error = None
            self._prompt.clear()
            self._connected = True

        self._reader = self._reader_factory(port, lambda: _SessionProtocol(self))
        self._reader.start()
        logger.info("Connected to %s", self.device)
        return self

    def disconnect(self) -> None:
        """
        Stop receiving, drop all listeners and close the port.

        Raises:
            NotConnectedError: If the session is not connected.
            ConnectionError: If closing the port fails.
        """
        with self._lock:
            if not self._connected:
                raise NotConnectedError(self.device, "disconnect")
            self.console.write_line("Disconnecting")
            self._connected = False
            self._listeners.clear()
            reader, self._reader = self._reader, None
            port, self._port = self._port, None
            # Wake any upload step so it notices the disconnect
            self._prompt.set()

        if reader is not None:
            if reader is threading.current_thread():
                # Called from a listener; the loop exits after this chunk
                reader.alive = False
            else:
                reader.stop()

        close_serial_port(port)
        logger.info("Disconnected from %s", self.device)

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def send_data(self, data: Union[str, bytes]) -> None:
        """
        Write data to the device and flush it.

        Returns only after the flush has completed, so consecutive calls
        never interleave on the wire.

        Raises:
            NotConnectedError: If the session is not connected.
            ConnectionError: If the write or flush fails.
        """
        payload = string_to_bytes(data) if isinstance(data, str) else bytes(data)

        with self._write_lock:
            port = self._port
            if not self._connected or port is None:
                raise NotConnectedError(self.device, "send data")
            try:
                port.write(payload)
                port.flush()
            except (serial.SerialException, OSError) as e:
                raise ConnectionError(f"Write to {self.device} failed: {e}") from e

        logger.debug("Sent %d bytes to %s: %r", len(payload), self.device, payload)

    @contextmanager
    def pending(self, operation: PendingOperation) -> Iterator["Session"]:
        """
        Mark the session busy with an operation for the duration of a block.

        While the operation is UPLOAD, received chunks are checked for the
        interpreter prompt.

        Raises:
            CommsError: If another operation is already pending.
        """
        with self._lock:
            if self._pending is not PendingOperation.NONE:
                raise CommsError(
                    f"{self.device} is busy with {self._pending.value}"
                )
            self._pending = operation
            self._prompt.clear()
        try:
            yield self
        finally:
            with self._lock:
                self._pending = PendingOperation.NONE

    def send_and_wait_prompt(self, data: Union[str, bytes], timeout: float) -> bool:
        """
        Send data, then wait for the next prompt chunk.

        Must be called inside pending(PendingOperation.UPLOAD).

        Returns:
            True if a prompt arrived, False on timeout.

        Raises:
            CommsError: If no upload is pending, or the reader failed.
            NotConnectedError: If the session was disconnected meanwhile.
        """
        if self._pending is not PendingOperation.UPLOAD:
            raise CommsError("Prompt pacing requires a pending upload")

        self._prompt.clear()
        self.send_data(data)
        signalled = self._prompt.wait(timeout)

        if self._reader_error is not None:
            raise self._reader_error
        if not self._connected:
            raise NotConnectedError(self.device, "wait for prompt")
        return signalled

    # -------------------------------------------------------------------------
    # Line Listeners
    # -------------------------------------------------------------------------

    def add_line_listener(self, listener: LineListener) -> Callable[[], None]:
        """
        Register a listener for completed lines.

        Returns:
            A callable that removes the listener again.
        """
        with self._lock:
            self._listeners.append(listener)
        return lambda: self.remove_line_listener(listener)

    def remove_line_listener(self, listener: LineListener) -> None:
        """Unregister a listener; unknown listeners are ignored."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # -------------------------------------------------------------------------
    # Receive Handling (reader thread)
    # -------------------------------------------------------------------------

    def _handle_chunk(self, data: bytes) -> None:
        text = bytes_to_string(data)

        with self._lock:
            if not self._connected:
                logger.debug("Dropping %d bytes after disconnect", len(data))
                return

            self.console.write(text)

            # Fed every chunk so its tail always matches the stream
            at_prompt = self._prompt_detector.feed(text)
            if at_prompt and self._pending is PendingOperation.UPLOAD:
                self._prompt.set()

            line = self._assembler.feed(text)
            if line is None:
                return

            logger.debug("Line from %s: %r", self.device, line)
            event = LineEvent(self, line)
            for listener in list(self._listeners):
                # A listener may have disconnected the session
                if not self._connected:
                    break
                listener(event)

    def _handle_reader_lost(self, exc: Optional[BaseException]) -> None:
        if exc is None:
            return

        logger.error("Receive on %s stopped: %s", self.device, exc)
        with self._lock:
            if isinstance(exc, CommsError):
                self._reader_error = exc
            else:
                self._reader_error = ConnectionError(
                    f"Receive on {self.device} failed: {exc}"
                )
            self._prompt.set()
