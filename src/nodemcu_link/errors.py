"""
NodeMCU Link Error Hierarchy
============================

This module defines the exception hierarchy for the NodeMCU link driver.
All exceptions inherit from NodeMCUError, allowing callers to catch all
driver-related errors with a single except clause if desired.

Exception Hierarchy
-------------------
NodeMCUError (base)
└── CommsError (serial communication)
    ├── ConnectionError - cannot open, write to or close the port
    ├── NotConnectedError - operation attempted on a closed session
    ├── HandshakeTimeout - device did not confirm its identity in time
    ├── UploadStalledError - no prompt seen during an upload step
    └── BufferOverflowError - unterminated line grew past the cap

Only ConnectionError and NotConnectedError are expected to reach users
of the interactive tools. HandshakeTimeout is normally reported as
diagnostic text by the scanner rather than raised.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from nodemcu_link.comms.upload import UploadJob


# =============================================================================
# Base Exception Class
# =============================================================================

class NodeMCUError(Exception):
    """
    Base exception for all NodeMCU link errors.

    All exceptions in the package inherit from this class, allowing callers
    to catch all driver errors with a single except clause:

        try:
            driver.send_as_file(code, "init.lua")
        except NodeMCUError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(NodeMCUError):
    """Base exception for serial communication errors."""
    pass


class ConnectionError(CommsError):
    """
    Cannot talk to the serial port.

    Raised when:
    - Serial port not found
    - Permission denied
    - Port busy, or a write/flush fails mid-session
    """
    pass


class NotConnectedError(CommsError):
    """
    Operation attempted on a session that is not connected.

    This is a programming error: sending or disconnecting requires a
    prior successful connect().
    """

    def __init__(self, device: str, operation: str = "operation"):
        self.device = device
        self.operation = operation
        super().__init__(f"Cannot {operation}: {device} is not connected")


class HandshakeTimeout(CommsError):
    """
    The device did not echo the confirmation string in time.

    Usually means the port is not a NodeMCU running the Lua interpreter,
    or the baud rate does not match.
    """

    def __init__(self, device: str, timeout: float):
        self.device = device
        self.timeout = timeout
        super().__init__(
            f"No confirmation from {device} within {timeout:.1f}s "
            "- not running NodeMCU?"
        )


class UploadStalledError(CommsError):
    """
    No interpreter prompt was observed after an upload step.

    Attributes:
        job: The upload job that was aborted (cursor shows progress).
        step: Human-readable description of the command that stalled.
        timeout: How long the driver waited for the prompt.
    """

    def __init__(
        self,
        step: str,
        timeout: float,
        job: Optional["UploadJob"] = None,
    ):
        self.step = step
        self.timeout = timeout
        self.job = job
        message = f"No prompt within {timeout:.1f}s after {step!r}"
        if job is not None:
            message += f" (line {job.cursor}/{job.total})"
        super().__init__(message)


class BufferOverflowError(CommsError):
    """
    Received data without a newline exceeded the configured line cap.

    The pending buffer is discarded when this is raised.
    """

    def __init__(self, limit: int, size: int):
        self.limit = limit
        self.size = size
        super().__init__(
            f"Unterminated line of {size} characters exceeds limit of {limit}"
        )
