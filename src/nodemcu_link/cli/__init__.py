"""
NodeMCU Link Command-Line Interface
===================================

This package provides the `nodelink` command-line tool, a Click-based
application for finding NodeMCU boards and sending Lua code to them.
"""

from nodemcu_link.cli import nodelink
from nodemcu_link.cli.nodelink import main

__all__ = ["main", "nodelink"]
