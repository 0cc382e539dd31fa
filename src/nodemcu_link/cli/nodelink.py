"""
nodelink - NodeMCU Serial Command-Line Interface
================================================

This module implements the command-line interface for talking to
NodeMCU boards running the Lua firmware.

Usage Examples
--------------
List available serial ports:
    $ nodelink ports

Find NodeMCU boards (handshake on every port):
    $ nodelink scan

Check a single port:
    $ nodelink --port /dev/ttyUSB0 probe

Type a Lua script into the interpreter line by line:
    $ nodelink --port /dev/ttyUSB0 run blink.lua

Store a file on the board's flash:
    $ nodelink upload init.lua
    $ nodelink upload app.lua --name main.lua

When --port is omitted, run and upload use the first board found by a
scan.

Environment
-----------
NODEMCU_BAUD, NODEMCU_HANDSHAKE_TIMEOUT, NODEMCU_PROMPT_TIMEOUT and
NODEMCU_MAX_LINE_LENGTH set defaults; command-line options win.

Exit Codes
----------
0 - Success
1 - Connection, handshake or upload error
2 - Invalid arguments or configuration error
"""

import logging
from pathlib import Path
from typing import Optional

import click

from nodemcu_link import __version__
from nodemcu_link.cli.errors import ExitCode, handle_cli_exception
from nodemcu_link.comms import (
    VALID_BAUD_RATES,
    DeviceScanner,
    HandshakeValidator,
    Session,
    UploadDriver,
    format_port_list,
    list_serial_ports,
)
from nodemcu_link.config import LinkConfig
from nodemcu_link.console import ClickConsole
from nodemcu_link.errors import CommsError, HandshakeTimeout

# Configure logging
logger = logging.getLogger(__name__)


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Stores the port, verbosity and the link configuration.
    """

    def __init__(self) -> None:
        self.port: Optional[str] = None
        self.verbose: bool = False
        self.config: LinkConfig = LinkConfig()
        self.console = ClickConsole()

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )


pass_context = click.make_pass_decorator(Context, ensure=True)


def progress_bar(current: int, total: int) -> None:
    """Simple text progress bar for uploads."""
    if total == 0:
        return
    percent = current * 100 // total
    filled = percent // 2
    bar = "=" * filled + "-" * (50 - filled)
    click.echo(f"\r[{bar}] {percent:3d}% ({current}/{total} lines)", nl=False)
    if current >= total:
        click.echo()


def resolve_port(ctx: Context) -> str:
    """Return the --port value, or the first board a scan confirms."""
    if ctx.port:
        return ctx.port

    session = DeviceScanner(console=ctx.console, config=ctx.config).find_first()
    if session is None:
        click.echo("Error: No NodeMCU found and no --port given.", err=True)
        click.echo("Use 'nodelink ports' to list available ports.", err=True)
        raise SystemExit(ExitCode.COMMS_ERROR)
    return session.device


def read_source(file: str) -> str:
    """Read a Lua source file, normalising line endings to LF."""
    text = Path(file).read_text(encoding="latin-1")
    return text.replace("\r\n", "\n").rstrip("\n")


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port device (scan for a board if not specified)",
)
@click.option(
    "-b", "--baud",
    type=click.Choice([str(b) for b in VALID_BAUD_RATES]),
    default=None,
    help="Baud rate (default: 9600)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Handshake timeout in seconds (default: 2)",
)
@click.option(
    "--prompt-timeout",
    type=float,
    default=None,
    help="Seconds to wait for the prompt during uploads (default: 5)",
)
@click.version_option(version=__version__, prog_name="nodelink")
@pass_context
def main(
    ctx: Context,
    port: Optional[str],
    baud: Optional[str],
    verbose: bool,
    timeout: Optional[float],
    prompt_timeout: Optional[float],
) -> None:
    """
    Talk to NodeMCU boards over a serial connection.

    Use 'nodelink ports' to list available serial ports and
    'nodelink scan' to find which of them are NodeMCU boards.
    """
    ctx.port = port
    ctx.verbose = verbose
    ctx.config = LinkConfig.from_env()
    if baud is not None:
        ctx.config.baud_rate = int(baud)
    if timeout is not None:
        ctx.config.handshake_timeout = timeout
    if prompt_timeout is not None:
        ctx.config.prompt_timeout = prompt_timeout
    ctx.setup_logging()


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
def ports(detailed: bool) -> None:
    """
    List available serial ports.

    Example:
        nodelink ports
        nodelink ports --detailed
    """
    port_list = list_serial_ports()

    if not port_list:
        click.echo("No serial ports found.")
        click.echo("\nTips:")
        click.echo("  - Connect the board with a data-capable USB cable")
        click.echo("  - On Linux, ensure you have permission (dialout group)")
        return

    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))


# =============================================================================
# Scan and Probe Commands
# =============================================================================

@main.command("scan")
@click.option(
    "--first", "-1", "first_only",
    is_flag=True,
    help="Stop reporting after the first board found",
)
@pass_context
def scan_ports(ctx: Context, first_only: bool) -> None:
    """
    Find NodeMCU boards on all serial ports.

    Every port is opened and asked to print a confirmation phrase.
    Ports that do not answer within the handshake timeout are skipped.

    Example:
        nodelink scan
        nodelink --timeout 5 scan --first
    """
    scanner = DeviceScanner(console=ctx.console, config=ctx.config)

    if first_only:
        session = scanner.find_first()
        found = [session] if session is not None else []
    else:
        found = scanner.scan()

    click.echo("")
    if not found:
        click.echo("No NodeMCU boards found.")
        raise SystemExit(ExitCode.COMMS_ERROR)

    click.echo(f"NodeMCU board(s) found: {len(found)}")
    for session in found:
        click.echo(f"  {session.device}")


@main.command()
@pass_context
def probe(ctx: Context) -> None:
    """
    Check whether --port is a NodeMCU board.

    Example:
        nodelink --port /dev/ttyUSB0 probe
    """
    if not ctx.port:
        click.echo("Error: probe requires --port.", err=True)
        raise SystemExit(ExitCode.INVALID_ARGS)

    validator = HandshakeValidator(ctx.port, console=ctx.console, config=ctx.config)
    try:
        validator.validate(raise_on_timeout=True)
    except HandshakeTimeout as e:
        click.echo(f"Not a NodeMCU: {e}", err=True)
        raise SystemExit(ExitCode.COMMS_ERROR)
    except CommsError as e:
        handle_cli_exception(e, ctx.verbose, "Connection")

    click.echo(f"{ctx.port} is a NodeMCU board.")


# =============================================================================
# Run and Upload Commands
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@pass_context
def run(ctx: Context, file: str) -> None:
    """
    Type a Lua script into the interpreter, line by line.

    Each line is sent once the interpreter shows its "> " prompt.

    Example:
        nodelink --port /dev/ttyUSB0 run blink.lua
    """
    source = read_source(file)
    device = resolve_port(ctx)

    try:
        with Session(device, console=ctx.console, config=ctx.config) as session:
            UploadDriver(session).send_multiline_data(source, progress=None)
    except (CommsError, ValueError) as e:
        handle_cli_exception(e, ctx.verbose, "Run")

    click.echo("")
    click.echo("Script sent.")


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--name", "-n",
    type=str,
    default=None,
    help="Filename on the device (default: local file name)",
)
@pass_context
def upload(ctx: Context, file: str, name: Optional[str]) -> None:
    """
    Save a file on the board's flash.

    FILE is the local file to send. It is written with file.open,
    file.writeline and file.close commands, paced by the prompt.

    Example:
        nodelink upload init.lua
        nodelink --port COM3 upload app.lua --name main.lua
    """
    source = read_source(file)
    remote_name = name or Path(file).name
    device = resolve_port(ctx)

    try:
        with Session(device, console=ctx.console, config=ctx.config) as session:
            UploadDriver(session).send_as_file(
                source, remote_name, progress=progress_bar
            )
    except (CommsError, ValueError) as e:
        handle_cli_exception(e, ctx.verbose, "Upload")

    click.echo("")
    click.echo(f"Upload complete: {remote_name}")


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
