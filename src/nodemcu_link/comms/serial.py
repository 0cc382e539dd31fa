"""
Serial Port Utilities for NodeMCU Communication
===============================================

This module provides the transport layer underneath a session:

- Port enumeration
- Opening and closing ports with NodeMCU settings
- Conversion between raw bytes and the text the driver works with

Serial Port Settings
--------------------
Stock NodeMCU Lua firmware talks at:
- Baud Rate: 9600 (later builds switch to 115200 after boot)
- Data Bits: 8
- Parity: None
- Stop Bits: 1
- Flow Control: None

Text Encoding
-------------
The interpreter speaks 8-bit text. Bytes are mapped one-to-one to
characters (latin-1), so any byte sequence survives a round trip through
bytes_to_string() and string_to_bytes() unchanged.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from nodemcu_link.errors import ConnectionError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Baud rates NodeMCU firmware builds and ESP32 boards are commonly set to
VALID_BAUD_RATES: Final[tuple[int, ...]] = (
    9600, 19200, 38400, 57600, 74880, 115200, 230400, 460800, 921600,
)

# Default baud rate (stock NodeMCU Lua firmware)
DEFAULT_BAUD_RATE: Final[int] = 9600

# Read timeout in seconds, bounds how long the reader thread blocks
DEFAULT_TIMEOUT: Final[float] = 1.0

# One byte per character, lossless for arbitrary bytes
TEXT_ENCODING: Final[str] = "latin-1"

# USB Vendor IDs of the bridges found on ESP8266/ESP32 boards
USB_VENDOR_IDS: Final[dict[int, str]] = {
    0x10C4: "Silicon Labs",  # CP210x, most NodeMCU v1.0 boards
    0x1A86: "QinHeng",       # CH340, NodeMCU v3 "LoLin" boards
    0x0403: "FTDI",
    0x303A: "Espressif",     # native USB on ESP32-S2/S3
}


# =============================================================================
# Text Conversion
# =============================================================================

def bytes_to_string(data: bytes) -> str:
    """Decode raw serial bytes to text, one character per byte."""
    return data.decode(TEXT_ENCODING)


def string_to_bytes(text: str) -> bytes:
    """
    Encode text for the wire, one byte per character.

    Raises:
        UnicodeEncodeError: If text contains characters above U+00FF.
    """
    return text.encode(TEXT_ENCODING)


# =============================================================================
# Port Information
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    Information about an available serial port.

    Attributes:
        device: System device path (e.g., '/dev/ttyUSB0', 'COM3')
        description: Human-readable description from the driver
        manufacturer: Device manufacturer (if available)
        vid: USB Vendor ID (None for non-USB ports)
        pid: USB Product ID (None for non-USB ports)
    """

    device: str
    description: str
    manufacturer: Optional[str]
    vid: Optional[int]
    pid: Optional[int]

    @classmethod
    def from_list_port_info(cls, port) -> "PortInfo":
        """Build from a pyserial ListPortInfo."""
        return cls(
            device=port.device,
            description=port.description or "",
            manufacturer=port.manufacturer,
            vid=port.vid,
            pid=port.pid,
        )

    @property
    def is_usb(self) -> bool:
        """Return True if this is a USB-serial adapter."""
        return self.vid is not None

    @property
    def vendor_name(self) -> Optional[str]:
        """Return the vendor name for known USB bridges."""
        if self.vid is not None:
            return USB_VENDOR_IDS.get(self.vid)
        return None

    @property
    def is_esp_bridge(self) -> bool:
        """Return True if the port sits behind a bridge used on ESP boards."""
        return self.vendor_name is not None

    @property
    def usb_id(self) -> Optional[str]:
        """VID:PID in hex, e.g. '10C4:EA60'."""
        if self.vid is None:
            return None
        return f"{self.vid:04X}:{self.pid or 0:04X}"

    def __str__(self) -> str:
        parts = [self.device]
        if self.description:
            parts.append(f"- {self.description}")
        if self.vendor_name:
            parts.append(f"({self.vendor_name})")
        return " ".join(parts)


# =============================================================================
# Port Enumeration
# =============================================================================

def list_serial_ports() -> list[PortInfo]:
    """
    List all available serial ports on the system.

    Ports behind a known ESP board bridge come first, so a scan or a
    user picking from the list meets the likely boards early.
    Enumeration happens once per call; nothing is polled.

    Returns:
        List of PortInfo objects describing available ports.
    """
    ports = [
        PortInfo.from_list_port_info(port)
        for port in serial.tools.list_ports.comports()
    ]
    ports.sort(key=lambda info: (not info.is_esp_bridge, info.device))

    logger.debug(
        "Found %d serial port(s), %d behind an ESP bridge",
        len(ports),
        sum(info.is_esp_bridge for info in ports),
    )
    return ports


def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """
    Format a list of ports for display to the user.

    Ports behind a known ESP board bridge are marked with '*'.

    Args:
        ports: List of PortInfo objects to format.
        verbose: If True, append the manufacturer and USB VID:PID.

    Returns:
        Formatted string with one port per line.
    """
    if not ports:
        return "No serial ports found."

    lines = []
    for port in ports:
        mark = "*" if port.is_esp_bridge else " "
        line = f" {mark} {port}"
        if verbose:
            if port.manufacturer and port.manufacturer != port.vendor_name:
                line += f", {port.manufacturer}"
            if port.usb_id:
                line += f" [{port.usb_id}]"
        lines.append(line)

    if any(port.is_esp_bridge for port in ports):
        lines.append("(* USB bridge commonly used on ESP8266/ESP32 boards)")

    return "\n".join(lines)


# =============================================================================
# Port Configuration
# =============================================================================

# (fragments of the driver message, hint); first match wins
_OPEN_ERROR_HINTS: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("permission denied",),
     "Permission denied accessing {device}. On Linux add your user to the "
     "'dialout' group: sudo usermod -a -G dialout $USER"),
    (("no such file", "not found", "filenotfounderror"),
     "Serial port not found: {device}. Use 'nodelink ports' to list available ports."),
    (("busy", "in use", "access is denied"),
     "Serial port {device} is busy. Close any serial monitor or IDE holding it."),
)


def _describe_open_error(device: str, error: Exception) -> str:
    message = str(error).lower()
    for fragments, hint in _OPEN_ERROR_HINTS:
        if any(fragment in message for fragment in fragments):
            return hint.format(device=device)
    return f"Cannot open {device}: {error}"


def open_serial_port(
    device: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> serial.Serial:
    """
    Open and configure a serial port for NodeMCU communication.

    The port is opened 8N1 with no flow control, and any stale input
    from before the open is discarded.

    Args:
        device: Serial port device path (e.g., '/dev/ttyUSB0', 'COM3').
        baud_rate: One of VALID_BAUD_RATES, default 9600.
        timeout: Read timeout in seconds.

    Returns:
        Configured and opened serial.Serial object.

    Raises:
        ConnectionError: If the baud rate is unsupported, or the port
            cannot be opened or configured.
    """
    if baud_rate not in VALID_BAUD_RATES:
        valid_str = ", ".join(str(b) for b in VALID_BAUD_RATES)
        raise ConnectionError(
            f"Cannot open {device}: unsupported baud rate {baud_rate}. "
            f"Supported rates: {valid_str}"
        )

    logger.info("Opening serial port: %s at %d baud", device, baud_rate)

    try:
        port = serial.Serial(
            port=device,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            xonxoff=False,
            rtscts=False,
            dsrdtr=False,
        )
        port.reset_input_buffer()
        return port
    except (serial.SerialException, ValueError) as e:
        # pyserial raises ValueError for settings the driver refuses
        raise ConnectionError(_describe_open_error(device, e)) from e


def close_serial_port(port: Optional[serial.Serial]) -> None:
    """
    Close a serial port.

    Raises:
        ConnectionError: If the driver reports an error while closing.
    """
    if port is None:
        return

    try:
        if port.is_open:
            port.close()
            logger.debug("Serial port closed")
    except (serial.SerialException, OSError) as e:
        raise ConnectionError(f"Error closing serial port: {e}") from e
