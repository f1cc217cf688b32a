import abc
import logging
from datetime import datetime
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple

from msrunner.supervisor.models import PartialTelemetry

log = logging.getLogger(__name__)


def parse_key_value(data: str) -> Tuple[str, str]:
    """
    Splits 'Key= value' at the first equals sign.

    :param data: Text such as 'PercentComplete= 2.7'.
    :return: The stripped key and value, or ('', '') when there is no key.
    """
    index = data.find("=")
    if index <= 0:
        return "", ""
    return data[:index].strip(), data[index + 1:].strip()

def iter_lines(text: str, start_line: int = 1) -> Iterator[Tuple[int, str]]:
    """Yields (line number, line) for each line of text, without line endings."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    for offset, line in enumerate(lines):
        yield start_line + offset, line.rstrip("\r")


class TelemetryCollector:
    """Accumulates what a single parse call finds before it becomes a PartialTelemetry."""

    def __init__(self):
        self.progress: Optional[float] = None
        self.version: Optional[str] = None
        self.error_marker: Optional[str] = None
        self.error_line: Optional[int] = None
        self.completion_marker: Optional[str] = None
        self.completion_line: Optional[int] = None
        self.completion_time: Optional[datetime] = None
        self.facts: Dict[str, Any] = {}

    def set_progress(self, fraction: float) -> None:
        if self.progress is None or fraction > self.progress:
            self.progress = fraction

    def set_version(self, version: str) -> None:
        if not self.version:
            self.version = version.strip()

    def add_error(self, message: str, line_number: int) -> None:
        if not self.error_marker:
            self.error_marker = message.strip()
        self.error_line = line_number

    def set_completion(self, marker: str, line_number: int, when: Optional[datetime] = None) -> None:
        if not self.completion_marker:
            self.completion_marker = marker.strip()
            self.completion_line = line_number
            self.completion_time = when

    def build(self) -> PartialTelemetry:
        return PartialTelemetry(
            progress=self.progress,
            version=self.version,
            error_marker=self.error_marker,
            error_line=self.error_line,
            completion_marker=self.completion_marker,
            completion_line=self.completion_line,
            completion_time=self.completion_time,
            facts=dict(self.facts),
        )


class TelemetryParser(abc.ABC):
    """
    Turns a chunk of tool output into a PartialTelemetry.

    Parsers may keep running totals between calls (completed task numbers,
    the last scan written, ...). reset() is called at the start of every run
    and whenever the telemetry source is truncated.
    """

    tool_name = "tool"

    def reset(self) -> None:
        """Forgets everything learned from earlier chunks."""

    @abc.abstractmethod
    def parse(self, text: str, start_line: int = 1) -> PartialTelemetry:
        """
        :param text: One or more complete lines of output.
        :param start_line: Line number of the first line in text, counted from 1.
        """


class LineTelemetryParser(TelemetryParser):
    """A parser that looks at one line at a time."""

    def parse(self, text: str, start_line: int = 1) -> PartialTelemetry:
        found = TelemetryCollector()
        for line_number, line in iter_lines(text, start_line):
            if not line.strip():
                continue
            if self.parse_line(line, line_number, found) is False:
                break
        return found.build()

    @abc.abstractmethod
    def parse_line(self, line: str, line_number: int, found: TelemetryCollector) -> Optional[bool]:
        """
        Inspects one non-blank line. Returning False skips the rest of the chunk.
        """


class GenericConsoleParser(LineTelemetryParser):
    """
    A configurable parser for tools without a progress grammar.

    A line is an error if it starts with one of error_prefixes or contains one
    of error_substrings (both case-insensitive).
    """

    def __init__(self, tool_name: str = "tool", error_prefixes: Sequence[str] = ("error",),
                 error_substrings: Sequence[str] = ("exception",), completion_phrase: Optional[str] = None,
                 version_prefix: Optional[str] = None):
        self.tool_name = tool_name
        self.error_prefixes = tuple(p.lower() for p in error_prefixes)
        self.error_substrings = tuple(s.lower() for s in error_substrings)
        self.completion_phrase = completion_phrase.lower() if completion_phrase else None
        self.version_prefix = version_prefix.lower() if version_prefix else None

    def parse_line(self, line: str, line_number: int, found: TelemetryCollector) -> Optional[bool]:
        lowered = line.strip().lower()
        if self.version_prefix and lowered.startswith(self.version_prefix):
            found.set_version(line)
        if self.completion_phrase and self.completion_phrase in lowered:
            found.set_completion(line, line_number)
        if lowered.startswith(self.error_prefixes) or any(s in lowered for s in self.error_substrings):
            found.add_error(line, line_number)
        return None
