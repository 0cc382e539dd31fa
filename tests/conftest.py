"""
NodeMCU Link - Test Configuration
=================================

Fixtures simulating the serial layer so sessions, handshakes, scans and
uploads can be tested without hardware.

- FakePort stands in for serial.Serial and records writes and flushes.
  A responder, called after each flush, plays the device's part.
- FakeReader stands in for serial.threaded.ReaderThread; feeding it
  bytes delivers them to the session synchronously.
- FakeTimer stands in for threading.Timer and only fires when told to.
"""

from functools import partial
from typing import Callable, Optional

import pytest

from nodemcu_link.comms.handshake import HandshakeValidator
from nodemcu_link.comms.session import Session
from nodemcu_link.config import LinkConfig


CONFIRMATION_REPLY = b"node mcu confirmed\r\n"

Responder = Callable[["FakePort", bytes], None]


# ═══════════════════════════════════════════════════════════════════════════════
# FAKE SERIAL LAYER
# ═══════════════════════════════════════════════════════════════════════════════


class FakePort:
    """In-memory serial port."""

    def __init__(
        self,
        device: str,
        baud_rate: int,
        responder: Optional[Responder] = None,
        chunk_size: Optional[int] = None,
    ):
        self.device = device
        self.baudrate = baud_rate
        self.is_open = True
        self.responder = responder
        self.chunk_size = chunk_size
        self.reader: Optional["FakeReader"] = None
        self.written: list[bytes] = []
        self.events: list[str] = []

    def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        self.events.append("write")
        return len(data)

    def flush(self) -> None:
        self.events.append("flush")
        if self.responder is not None:
            self.responder(self, self.written[-1])

    def close(self) -> None:
        self.is_open = False

    def feed(self, data: bytes) -> None:
        """
        Deliver bytes as if the device had sent them.

        With chunk_size set the bytes reach the session in pieces of that
        size, the way a reader polling a slow line hands them over.
        """
        if self.chunk_size is None:
            self.reader.feed(data)
            return
        for i in range(0, len(data), self.chunk_size):
            self.reader.feed(data[i:i + self.chunk_size])


class FakeReader:
    """Synchronous stand-in for serial.threaded.ReaderThread."""

    def __init__(self, port: FakePort, protocol_factory):
        self.serial = port
        self.protocol_factory = protocol_factory
        self.protocol = None
        self.alive = False
        self.stopped = False
        port.reader = self

    def start(self) -> None:
        self.protocol = self.protocol_factory()
        self.protocol.connection_made(self)
        self.alive = True

    def stop(self) -> None:
        self.alive = False
        self.stopped = True

    def feed(self, data: bytes) -> None:
        if self.alive:
            self.protocol.data_received(data)

    def fail(self, exc: BaseException) -> None:
        """Simulate the reader loop dying with an error."""
        self.alive = False
        self.protocol.connection_lost(exc)


class FakeTimer:
    """threading.Timer replacement that fires on demand."""

    instances: list["FakeTimer"] = []

    def __init__(self, interval: float, function: Callable[[], None], fire_on_start: bool = False):
        self.interval = interval
        self.function = function
        self.fire_on_start = fire_on_start
        self.started = False
        self.cancelled = False
        self.daemon = False
        FakeTimer.instances.append(self)

    def start(self) -> None:
        self.started = True
        if self.fire_on_start:
            self.function()

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        """Run the callback, even if cancelled, to prove it is harmless."""
        self.function()


class FakeSerialWorld:
    """
    A set of fake devices addressed by path.

    responders: device path -> responder run after every flush
    failures: device path -> exception raised when opening
    chunk_size: split everything the devices send into pieces this big
    """

    def __init__(self) -> None:
        self.chunk_size: Optional[int] = None
        self.responders: dict[str, Responder] = {}
        self.failures: dict[str, Exception] = {}
        self.ports: dict[str, list[FakePort]] = {}

    def opener(self, device: str, baud_rate: int = 9600) -> FakePort:
        if device in self.failures:
            raise self.failures[device]
        port = FakePort(device, baud_rate, self.responders.get(device), self.chunk_size)
        self.ports.setdefault(device, []).append(port)
        return port

    def last_port(self, device: str) -> FakePort:
        return self.ports[device][-1]

    def session_factory(self, device: str, **kwargs) -> Session:
        return Session(device, opener=self.opener, reader_factory=FakeReader, **kwargs)

    def session(self, device: str = "/dev/ttyUSB0", **kwargs) -> Session:
        return self.session_factory(device, **kwargs)

    def validator(
        self,
        device: str,
        timer_factory: Callable = FakeTimer,
        **kwargs,
    ) -> HandshakeValidator:
        return HandshakeValidator(
            device,
            session_factory=self.session_factory,
            timer_factory=timer_factory,
            **kwargs,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# DEVICE BEHAVIOURS
# ═══════════════════════════════════════════════════════════════════════════════


def nodemcu_responder(port: FakePort, data: bytes) -> None:
    """Echo the command, answer the probe, then show the prompt."""
    port.feed(data.replace(b"\n", b"\r\n"))
    if b"print('node mcu confirmed')" in data:
        port.feed(CONFIRMATION_REPLY)
    port.feed(b"> ")


def line_prompt_responder(port: FakePort, data: bytes) -> None:
    """Echo the command without its newline, then send "\\r\\n> " in one write."""
    port.feed(data.rstrip(b"\n"))
    port.feed(b"\r\n> ")


def silent_responder(port: FakePort, data: bytes) -> None:
    """A device that never answers."""


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def world() -> FakeSerialWorld:
    FakeTimer.instances.clear()
    return FakeSerialWorld()


@pytest.fixture
def fast_config() -> LinkConfig:
    """Config with short timeouts for tests that really wait."""
    return LinkConfig(handshake_timeout=0.05, prompt_timeout=0.05)


@pytest.fixture
def firing_timer() -> Callable:
    """Timer factory whose timers expire as soon as they start."""
    return partial(FakeTimer, fire_on_start=True)


class RecordingConsole:
    """Console that keeps everything written to it."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.raw: list[str] = []

    def write_line(self, text: str) -> None:
        self.lines.append(text)

    def write(self, text: str) -> None:
        self.raw.append(text)


@pytest.fixture
def console() -> RecordingConsole:
    return RecordingConsole()
