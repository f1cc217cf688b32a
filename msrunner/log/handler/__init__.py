"""
Logging handlers for msrunner.
This module provides handlers that ship log records (including supervised
tool output) to the SQLite log database and, optionally, Grafana Loki.
"""

from .loki import LokiHandler
from .sql import SQLiteHandler

__all__ = ["SQLiteHandler", "LokiHandler"]
