"""
NodeMCU Link - Serial Driver for the NodeMCU Lua Interpreter
============================================================

This package talks to ESP8266/ESP32 boards running the NodeMCU Lua
firmware over a serial port. The interpreter is interactive and
line-oriented, so the driver:

- reassembles received bytes into lines,
- watches for the "> " prompt to pace multi-line transfers,
- identifies boards with a short print-and-confirm handshake,
- uploads text files as a sequence of file.* commands.

Main Components
---------------
- **comms**: sessions, handshake, scanner and upload driver
- **console**: human-readable output sinks
- **config**: link settings (baud rate, timeouts, markers)
- **cli**: the `nodelink` command-line tool

Quick Start
-----------
Find boards:
    >>> from nodemcu_link import DeviceScanner, ClickConsole
    >>> sessions = DeviceScanner(console=ClickConsole()).scan()

Upload a script:
    >>> from nodemcu_link import Session, UploadDriver
    >>> with Session("/dev/ttyUSB0") as session:
    ...     UploadDriver(session).send_as_file(source, "init.lua")

Or use the command-line tool:
    $ nodelink scan
    $ nodelink --port /dev/ttyUSB0 upload init.lua
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from nodemcu_link.config import LinkConfig
from nodemcu_link.console import ClickConsole, Console, NullConsole

from nodemcu_link.comms import (
    DeviceScanner,
    HandshakeState,
    HandshakeValidator,
    LineAssembler,
    LineEvent,
    PendingOperation,
    PortInfo,
    Session,
    UploadDriver,
    UploadJob,
    is_prompt_chunk,
    list_serial_ports,
    scan,
)

from nodemcu_link.errors import (
    NodeMCUError,
    CommsError,
    ConnectionError as NodeMCUConnectionError,  # Avoid collision with builtin
    NotConnectedError,
    HandshakeTimeout,
    UploadStalledError,
    BufferOverflowError,
)

__all__ = [
    "__version__",
    # Configuration and output
    "LinkConfig",
    "Console",
    "ClickConsole",
    "NullConsole",
    # Communication
    "DeviceScanner",
    "HandshakeState",
    "HandshakeValidator",
    "LineAssembler",
    "LineEvent",
    "PendingOperation",
    "PortInfo",
    "Session",
    "UploadDriver",
    "UploadJob",
    "is_prompt_chunk",
    "list_serial_ports",
    "scan",
    # Errors
    "NodeMCUError",
    "CommsError",
    "NodeMCUConnectionError",
    "NotConnectedError",
    "HandshakeTimeout",
    "UploadStalledError",
    "BufferOverflowError",
]
