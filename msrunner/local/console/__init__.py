"""
This module initializes the console package, exposing key functionalities for command execution,
running jobs, toggling verbose logging, and printing help information.
"""

from .process import execute_command
from .handler import abort_active_run, toggle_verbose_logging, print_help

__all__ = ["execute_command", "abort_active_run", "toggle_verbose_logging", "print_help"]
