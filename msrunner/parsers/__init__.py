"""
Telemetry parsers for the supervised tools.

Each parser understands the console output or log file grammar of one tool
and reports progress, version, error and completion markers to the supervisor.
"""

from .base import GenericConsoleParser, LineTelemetryParser, TelemetryParser, parse_key_value
from .decontools import DeconToolsLogParser
from .msalign import MSAlignConsoleParser, trim_console_output
from .msconvert import MzRefinerConsoleParser
from .msgfplus import MSGFPlusConsoleParser
from .ppm_error_charter import PPMErrorCharterConsoleParser

__all__ = [
    "TelemetryParser", "LineTelemetryParser", "GenericConsoleParser", "parse_key_value",
    "DeconToolsLogParser", "MSAlignConsoleParser", "trim_console_output",
    "MzRefinerConsoleParser", "MSGFPlusConsoleParser", "PPMErrorCharterConsoleParser",
]
