"""
This module initializes the local database management system.
It exposes the manager for the log and tool-run history database.
"""

from .log import LogDBManager

__all__ = ["LogDBManager"]
