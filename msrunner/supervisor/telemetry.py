import logging
import threading
from pathlib import Path
from typing import List, Optional, Tuple

log = logging.getLogger(__name__)

# (text, line number of the first line in text)
TelemetryChunk = Tuple[str, int]


class StreamTelemetryBuffer:
    """
    Collects console lines from the pipe reader threads until the
    supervision loop drains them.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: List[str] = []
        self._next_line = 1

    def append(self, line: str) -> None:
        with self._lock:
            self._pending.append(line)

    def read_new(self) -> Optional[TelemetryChunk]:
        """
        Returns the lines appended since the previous call, or None if there are none.
        """
        with self._lock:
            if not self._pending:
                return None
            lines, self._pending = self._pending, []
            start = self._next_line
            self._next_line += len(lines)
        return "\n".join(lines) + "\n", start

    def read_remaining(self) -> Optional[TelemetryChunk]:
        return self.read_new()


class FileTelemetryReader:
    """
    Incrementally reads a log file that another process is still writing.

    Only complete lines are handed out while the writer is active. The
    byte offset of the last consumed line is remembered so that a poll
    which finds no new data changes nothing.
    """

    def __init__(self, path: Path, encoding: str = "utf-8"):
        """
        :param path: The log file written by the tool. It may not exist yet.
        :param encoding: Text encoding of the file; undecodable bytes are replaced.
        """
        self.path = Path(path)
        self.encoding = encoding
        self.offset = 0
        self.next_line = 1
        self.was_reset = False
        self.discarded_lines = 0

    def _read_bytes(self) -> Optional[bytes]:
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return None
        except OSError as e:
            log.debug(f"Could not stat telemetry file '{self.path}': {e}")
            return None

        if size < self.offset:
            log.info(f"Telemetry file '{self.path}' shrank from {self.offset} to {size} bytes; re-reading from the start.")
            self.offset = 0
            self.discarded_lines = self.next_line - 1
            self.next_line = 1
            self.was_reset = True

        if size == self.offset:
            return b""

        try:
            with self.path.open("rb") as f:
                f.seek(self.offset)
                return f.read(size - self.offset)
        except OSError as e:
            log.debug(f"Could not read telemetry file '{self.path}': {e}")
            return None

    def _consume(self, data: bytes) -> Optional[TelemetryChunk]:
        if not data:
            return None
        text = data.decode(self.encoding, errors="replace")
        start = self.next_line
        self.offset += len(data)
        self.next_line += text.count("\n")
        return text, start

    def read_new(self) -> Optional[TelemetryChunk]:
        """
        Returns the complete lines written since the previous call.

        :return: The new text and the line number it starts at, or None when
                 the file is missing or has no new complete lines.
        """
        data = self._read_bytes()
        if not data:
            return None
        end = data.rfind(b"\n")
        if end < 0:
            return None
        return self._consume(data[:end + 1])

    def read_remaining(self) -> Optional[TelemetryChunk]:
        """Returns everything left in the file, including a final line with no newline."""
        data = self._read_bytes()
        if not data:
            return None
        return self._consume(data)

    def take_reset(self) -> bool:
        """Reports (once) whether the file was truncated since the last call."""
        was_reset, self.was_reset = self.was_reset, False
        return was_reset
