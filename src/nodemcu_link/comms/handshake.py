"""
NodeMCU Identity Handshake
==========================

Confirms that a serial port has a NodeMCU Lua interpreter behind it by
asking it to print a known phrase.

State Machine
-------------
    IDLE ──validate()──> CONNECTING ──connect ok──> AWAITING_CONFIRMATION
                             │                           │          │
                     connect fails                 line contains   timer
                     (error raised)                 the marker     fires
                             │                           │          │
                             v                           v          v
                           CLOSED <──disconnect── CONFIRMED    TIMED_OUT
                                                         └──────────┴──> CLOSED

Two independent sources race to finish the handshake: the session's
reader thread (delivering the confirmation line) and the timer thread.
Both go through _resolve(), which moves out of AWAITING_CONFIRMATION at
most once under a lock. The loser does nothing, and a timer firing after
confirmation is a no-op.

All follow-up work (console messages, disconnect, callback) happens on
the thread that called validate(), never on the reader or timer thread.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from nodemcu_link.comms.lines import LineEvent
from nodemcu_link.comms.session import PendingOperation, Session
from nodemcu_link.config import LinkConfig
from nodemcu_link.console import Console, NullConsole
from nodemcu_link.errors import CommsError, HandshakeTimeout

logger = logging.getLogger(__name__)

FoundCallback = Callable[[Session], None]


class HandshakeState(Enum):
    """Handshake progress for one candidate port."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


class HandshakeValidator:
    """
    Runs the connect / probe / confirm-or-timeout sequence on one port.

    A validator is single-use: create a new one per attempt.

    Usage:
        validator = HandshakeValidator("/dev/ttyUSB0", console=console)
        if validator.validate():
            session = validator.session   # disconnected, ready to reconnect
    """

    def __init__(
        self,
        device: str,
        console: Optional[Console] = None,
        config: Optional[LinkConfig] = None,
        session_factory: Callable[..., Session] = Session,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.device = device
        self.console = console or NullConsole()
        self.config = config or LinkConfig()
        self._session_factory = session_factory
        self._timer_factory = timer_factory

        self.session: Optional[Session] = None
        self._state = HandshakeState.IDLE
        self._outcome: Optional[HandshakeState] = None
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._resolved = threading.Event()

    @property
    def state(self) -> HandshakeState:
        return self._state

    @property
    def outcome(self) -> Optional[HandshakeState]:
        """CONFIRMED or TIMED_OUT once validate() has finished, else None."""
        return self._outcome

    def validate(
        self,
        found_callback: Optional[FoundCallback] = None,
        raise_on_timeout: bool = False,
    ) -> bool:
        """
        Check whether the port is a NodeMCU device.

        Blocks until the device confirms or the handshake window expires.
        The session is always disconnected when this returns.

        Args:
            found_callback: Called with the session on confirmation.
            raise_on_timeout: Raise HandshakeTimeout instead of returning False.

        Returns:
            True if the device confirmed its identity.

        Raises:
            ConnectionError: If the port cannot be opened. No probe is sent.
            HandshakeTimeout: On timeout, when raise_on_timeout is set.
        """
        if self._state is not HandshakeState.IDLE:
            raise CommsError(f"Handshake on {self.device} already {self._state.value}")

        self.console.write_line("Attempting connection")
        self._state = HandshakeState.CONNECTING
        session = self._session_factory(
            self.device, console=self.console, config=self.config
        )

        try:
            session.connect()
        except Exception:
            # No port was opened, so nothing to disconnect
            self._state = HandshakeState.CLOSED
            raise

        self.session = session
        self.console.write_line("Connected")

        try:
            with session.pending(PendingOperation.HANDSHAKE):
                self._outcome = self._await_confirmation(session)
        finally:
            with self._lock:
                self._state = HandshakeState.CLOSED
            if session.connected:
                session.disconnect()

        if self._outcome is HandshakeState.CONFIRMED:
            if found_callback is not None:
                found_callback(session)
            return True

        if raise_on_timeout:
            raise HandshakeTimeout(self.device, self.config.handshake_timeout)
        return False

    def _await_confirmation(self, session: Session) -> HandshakeState:
        remove_listener = session.add_line_listener(self._on_line)
        try:
            # Created before any line can resolve, so _on_line can cancel it
            self._timer = self._timer_factory(
                self.config.handshake_timeout, self._on_timeout
            )
            self._timer.daemon = True

            with self._lock:
                self._state = HandshakeState.AWAITING_CONFIRMATION
            self._timer.start()

            self.console.write_line("Sending confirmation test")
            try:
                session.send_data(self.config.probe_command)
            except CommsError:
                self._timer.cancel()
                raise

            self._resolved.wait()
        finally:
            remove_listener()

        outcome = self._state
        if outcome is HandshakeState.CONFIRMED:
            self.console.write_line("Confirmed - NodeMCU found")
        else:
            self.console.write_line("Timed out - not running NodeMCU")
        return outcome

    def _resolve(self, outcome: HandshakeState) -> bool:
        with self._lock:
            if self._state is not HandshakeState.AWAITING_CONFIRMATION:
                return False
            self._state = outcome
        self._resolved.set()
        return True

    def _on_line(self, event: LineEvent) -> None:
        if self.config.confirmation_marker not in event.text:
            return
        if self._resolve(HandshakeState.CONFIRMED):
            self._timer.cancel()
            logger.info("NodeMCU confirmed on %s", self.device)

    def _on_timeout(self) -> None:
        if self._resolve(HandshakeState.TIMED_OUT):
            logger.info(
                "No confirmation from %s within %.1fs",
                self.device, self.config.handshake_timeout,
            )
