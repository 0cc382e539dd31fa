"""
CLI Error Reporting
===================

Maps driver exceptions to a message on stderr and a process exit code.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn

import click

from nodemcu_link.errors import (
    HandshakeTimeout,
    NodeMCUError,
    UploadStalledError,
)


class ExitCode(IntEnum):
    """Exit codes for nodelink."""
    SUCCESS = 0
    COMMS_ERROR = 1      # Connection, handshake or upload failure
    INVALID_ARGS = 2     # Invalid arguments or missing files
    INTERNAL_ERROR = 3   # Unexpected internal error


def _hint(error: NodeMCUError) -> str | None:
    if isinstance(error, HandshakeTimeout):
        return "Check the baud rate (--baud) and that the board runs NodeMCU."
    if isinstance(error, UploadStalledError) and error.job is not None:
        if error.job.filename is not None:
            return f"{error.job.filename} on the device may be incomplete."
    return None


def handle_cli_exception(
    error: Exception,
    verbose: bool = False,
    error_type: str | None = None
) -> NoReturn:
    """
    Report an exception and exit with the matching exit code.

    Args:
        error: The exception that was raised
        verbose: If True, print full traceback for internal errors
        error_type: Optional prefix for the error message (e.g., "Upload")

    Raises:
        SystemExit: Always
    """
    if isinstance(error, NodeMCUError):
        prefix = f"{error_type} error: " if error_type else "Error: "
        click.echo(f"{prefix}{error}", err=True)
        hint = _hint(error)
        if hint:
            click.echo(hint, err=True)
        sys.exit(ExitCode.COMMS_ERROR)

    if isinstance(error, (click.BadParameter, ValueError, FileNotFoundError, PermissionError)):
        # ValueError covers text that cannot be encoded for the wire
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    click.echo(f"Internal error: {error}", err=True)
    if verbose:
        traceback.print_exc()
    sys.exit(ExitCode.INTERNAL_ERROR)
