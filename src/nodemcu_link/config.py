"""
NodeMCU Link - Configuration
============================

Driver configuration: serial settings, protocol markers and timing.
Configuration can come from:
- Default values (defined here)
- Environment variables (LinkConfig.from_env)
- Command-line options (applied by the CLI on top of the above)

The defaults match the stock NodeMCU Lua firmware: 9600 baud, a "> "
interactive prompt, and a 2 second window for the identity handshake.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class LinkConfig:
    """
    Configuration for a NodeMCU serial link.

    Attributes:
        baud_rate: Serial speed used when opening a port (default: 9600)
        handshake_timeout: Seconds to wait for the confirmation line (default: 2.0)
        prompt_timeout: Seconds to wait for the prompt after each upload step
        max_line_length: Cap on unterminated received text, None disables it
        confirmation_marker: Substring the probe makes the device print
        probe_command: Command sent to make the device identify itself
        prompt_marker: Interpreter readiness marker ending a raw chunk
        scan_workers: Maximum ports validated at the same time (None = one per port)
    """

    # ═══════════════════════════════════════════════════════════════════════════
    # SERIAL SETTINGS
    # ═══════════════════════════════════════════════════════════════════════════

    baud_rate: int = 9600

    # ═══════════════════════════════════════════════════════════════════════════
    # TIMING (seconds)
    # ═══════════════════════════════════════════════════════════════════════════

    handshake_timeout: float = 2.0
    prompt_timeout: float = 5.0

    # ═══════════════════════════════════════════════════════════════════════════
    # PROTOCOL
    # ═══════════════════════════════════════════════════════════════════════════

    max_line_length: Optional[int] = 4096
    confirmation_marker: str = "node mcu confirmed"
    probe_command: str = "print('node mcu confirmed')\n"
    prompt_marker: str = "> "

    # ═══════════════════════════════════════════════════════════════════════════
    # SCANNING
    # ═══════════════════════════════════════════════════════════════════════════

    scan_workers: Optional[int] = None

    # ═══════════════════════════════════════════════════════════════════════════
    # FACTORY METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    @classmethod
    def from_env(cls) -> "LinkConfig":
        """
        Create LinkConfig from environment variables.

        Environment variables (all optional):
            NODEMCU_BAUD: Baud rate (integer)
            NODEMCU_HANDSHAKE_TIMEOUT: Handshake window in seconds
            NODEMCU_PROMPT_TIMEOUT: Per-step upload prompt wait in seconds
            NODEMCU_MAX_LINE_LENGTH: Line cap, 0 disables it

        Invalid values are logged and the default is kept.

        Returns:
            LinkConfig with values from environment variables
        """
        config = cls()

        if baud := os.environ.get("NODEMCU_BAUD"):
            try:
                config.baud_rate = int(baud)
            except ValueError:
                logger.warning("Ignoring invalid NODEMCU_BAUD=%r", baud)

        if timeout := os.environ.get("NODEMCU_HANDSHAKE_TIMEOUT"):
            try:
                config.handshake_timeout = float(timeout)
            except ValueError:
                logger.warning(
                    "Ignoring invalid NODEMCU_HANDSHAKE_TIMEOUT=%r", timeout
                )

        if timeout := os.environ.get("NODEMCU_PROMPT_TIMEOUT"):
            try:
                config.prompt_timeout = float(timeout)
            except ValueError:
                logger.warning(
                    "Ignoring invalid NODEMCU_PROMPT_TIMEOUT=%r", timeout
                )

        if limit := os.environ.get("NODEMCU_MAX_LINE_LENGTH"):
            try:
                config.max_line_length = int(limit) or None
            except ValueError:
                logger.warning(
                    "Ignoring invalid NODEMCU_MAX_LINE_LENGTH=%r", limit
                )

        return config
