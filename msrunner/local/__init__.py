"""
Local package for msrunner.

This package provides the effective (defaults + overrides) configuration,
the log database and the management console.
"""

from .config import effective_settings

__all__ = ["effective_settings"]
