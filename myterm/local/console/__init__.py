"""
This module initializes the console package, exposing command execution for the
interactive console and for the non-interactive client mode, verbose logging
toggling and help output.
"""

from .process import execute_command, execute_remote_command
from .handler import toggle_verbose_logging, print_help

__all__ = ["execute_command", "execute_remote_command", "toggle_verbose_logging", "print_help"]
