"""
NodeMCU Device Scanner
======================

Finds NodeMCU boards by running the identity handshake on every serial
port at once.

- Ports are enumerated once; there is no polling for hot-plugged devices.
- Each port gets its own HandshakeValidator on a worker thread.
- A failure on one port (timeout, busy port, permission error) is
  reported and never stops the other ports.
- Successes are reported through the callback as they happen, in
  whatever order the ports finish. An exception from the callback is
  logged and the scan carries on.

scan() reports every NodeMCU found. find_first() stops reporting after
the first success and cancels validators that have not started yet;
ones already in progress finish within their handshake window.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Optional

from nodemcu_link.comms.handshake import FoundCallback, HandshakeValidator
from nodemcu_link.comms.serial import PortInfo, list_serial_ports
from nodemcu_link.comms.session import Session
from nodemcu_link.config import LinkConfig
from nodemcu_link.console import Console, NullConsole
from nodemcu_link.errors import CommsError

logger = logging.getLogger(__name__)


class DeviceScanner:
    """
    Runs handshakes on all available ports concurrently.

    Args:
        console: Where progress text goes; shared by all validators.
        config: Link settings passed to each validator.
        validator_factory: Builds a validator from (device, console=, config=).
        port_lister: Returns the ports to try.
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        config: Optional[LinkConfig] = None,
        validator_factory: Callable[..., HandshakeValidator] = HandshakeValidator,
        port_lister: Callable[[], list[PortInfo]] = list_serial_ports,
    ):
        self.console = console or NullConsole()
        self.config = config or LinkConfig()
        self._validator_factory = validator_factory
        self._port_lister = port_lister

    def scan(self, found_callback: Optional[FoundCallback] = None) -> list[Session]:
        """
        Validate every port and report each NodeMCU found.

        Returns:
            Sessions for all confirmed devices (disconnected).
        """
        return self._run(found_callback, first_only=False)

    def find_first(self) -> Optional[Session]:
        """
        Return the first device to confirm, or None.

        Later confirmations are not reported.
        """
        found = self._run(None, first_only=True)
        return found[0] if found else None

    def _run(
        self,
        found_callback: Optional[FoundCallback],
        first_only: bool,
    ) -> list[Session]:
        self.console.write_line("Starting scan...")
        ports = self._port_lister()
        if not ports:
            self.console.write_line("No serial ports found.")
            return []

        found: list[Session] = []
        found_lock = threading.Lock()
        stop = threading.Event()

        def report(session: Session) -> None:
            with found_lock:
                if first_only and found:
                    logger.debug("Ignoring %s, already found one", session.device)
                    return
                found.append(session)
                if first_only:
                    stop.set()
            if found_callback is None:
                return
            try:
                found_callback(session)
            except Exception:
                # The board is still found; the other ports keep scanning
                logger.exception("Found callback failed for %s", session.device)

        def validate(device: str) -> bool:
            if stop.is_set():
                return False
            validator = self._validator_factory(
                device, console=self.console, config=self.config
            )
            return validator.validate(report)

        workers = self.config.scan_workers or len(ports)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures: dict[Future, str] = {}
            for port in ports:
                self.console.write_line(f"Found serial port {port.device}. Testing...")
                futures[executor.submit(validate, port.device)] = port.device

            for future in as_completed(futures):
                device = futures[future]
                if future.cancelled():
                    continue
                try:
                    future.result()
                except CommsError as e:
                    logger.info("Skipping %s: %s", device, e)
                    self.console.write_line(f"Skipping {device}: {e}")

                if stop.is_set():
                    for pending in futures:
                        pending.cancel()

        logger.info("Scan complete: %d device(s) found", len(found))
        return found


def scan(
    console: Console,
    found_callback: Optional[FoundCallback] = None,
    config: Optional[LinkConfig] = None,
) -> list[Session]:
    """Scan all serial ports for NodeMCU boards."""
    return DeviceScanner(console=console, config=config).scan(found_callback)
