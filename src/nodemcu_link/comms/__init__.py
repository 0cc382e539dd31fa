"""
NodeMCU Communication Module
============================

This module drives the NodeMCU Lua interpreter over a serial port.

Module Structure
----------------
- **serial**: port enumeration, open/close, byte/text conversion
- **lines**: line assembly and "> " prompt detection on raw chunks
- **session**: one live connection with its reader thread and listeners
- **handshake**: connect / probe / confirm-or-timeout identity check
- **scanner**: concurrent handshake over every available port
- **upload**: prompt-paced multi-line sends and file uploads

Quick Start
-----------
**Find a board and upload a file**:

    from nodemcu_link.comms import DeviceScanner, UploadDriver
    from nodemcu_link.console import ClickConsole

    console = ClickConsole()
    session = DeviceScanner(console=console).find_first()
    if session is not None:
        with session:
            UploadDriver(session).send_as_file(source, "init.lua")

Error Handling
--------------
All communication errors inherit from `CommsError`:

- `ConnectionError`: the port cannot be opened, written or closed
- `NotConnectedError`: a closed session was used
- `HandshakeTimeout`: the device did not confirm in time
- `UploadStalledError`: the prompt did not return during an upload
- `BufferOverflowError`: an unterminated line grew past the cap

These exceptions are defined in `nodemcu_link.errors`.

Thread Safety
-------------
A Session may be used from one caller thread while its reader thread
delivers data. Line listeners run on the reader thread and must not
block for long.
"""

from nodemcu_link.comms.serial import (
    DEFAULT_BAUD_RATE,
    VALID_BAUD_RATES,
    PortInfo,
    bytes_to_string,
    close_serial_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
    string_to_bytes,
)

from nodemcu_link.comms.lines import (
    PROMPT_MARKER,
    LineAssembler,
    LineEvent,
    PromptDetector,
    is_prompt_chunk,
)

from nodemcu_link.comms.session import (
    PendingOperation,
    Session,
)

from nodemcu_link.comms.handshake import (
    HandshakeState,
    HandshakeValidator,
)

from nodemcu_link.comms.scanner import (
    DeviceScanner,
    scan,
)

from nodemcu_link.comms.upload import (
    UploadDriver,
    UploadJob,
    lua_quote,
)

__all__ = [
    # Serial
    "DEFAULT_BAUD_RATE",
    "VALID_BAUD_RATES",
    "PortInfo",
    "bytes_to_string",
    "close_serial_port",
    "format_port_list",
    "list_serial_ports",
    "open_serial_port",
    "string_to_bytes",
    # Lines and prompts
    "PROMPT_MARKER",
    "LineAssembler",
    "LineEvent",
    "PromptDetector",
    "is_prompt_chunk",
    # Session
    "PendingOperation",
    "Session",
    # Handshake and scanning
    "HandshakeState",
    "HandshakeValidator",
    "DeviceScanner",
    "scan",
    # Upload
    "UploadDriver",
    "UploadJob",
    "lua_quote",
]
