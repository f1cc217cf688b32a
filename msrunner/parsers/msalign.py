import os
import re
import logging
from pathlib import Path
from typing import Optional

from msrunner.parsers.base import LineTelemetryParser, TelemetryCollector

log = logging.getLogger(__name__)

PERCENT_FINISHED_RE = re.compile(r"(\d+)% finished", re.IGNORECASE)
SCAN_RE = re.compile(r"Processing spectrum scan (\d+)", re.IGNORECASE)
PROGRESS_LINE_PREFIX = "Processing spectrum"
DECONVOLUTION_FINISHED = "Deconvolution finished"
TRIM_SCAN_STEP = 100


class MSAlignConsoleParser(LineTelemetryParser):
    """
    Parses MSAlign console output.

    The version line is one of the first three lines and contains 'ms-align'.
    Progress lines look like 'Processing spectrum scan 1234...  42% finished.'
    """

    tool_name = "MSAlign"

    def parse_line(self, line: str, line_number: int, found: TelemetryCollector) -> Optional[bool]:
        lowered = line.lower()
        if line_number <= 3:
            if "ms-align" in lowered:
                found.set_version(line)
            elif "error" in lowered:
                found.add_error(line, line_number)

        if line.startswith(PROGRESS_LINE_PREFIX):
            match = PERCENT_FINISHED_RE.search(line)
            if match:
                found.set_progress(int(match.group(1)) / 100.0)
            match = SCAN_RE.search(line)
            if match:
                found.facts["current_scan"] = int(match.group(1))
        elif line_number > 3 and lowered.startswith("error"):
            found.add_error(line, line_number)
        return None


def trim_console_output(console_output_path: Path) -> bool:
    """
    Rewrites the MSAlign console output keeping one progress line per 100 scans.

    The most recent progress line is also kept just before 'Deconvolution finished'
    if it was skipped. The trimmed text replaces the original file.

    :param console_output_path: The console output file to trim.
    :return: True if the file was replaced.
    """
    console_output_path = Path(console_output_path)
    if not console_output_path.exists():
        log.debug(f"Console output file not found: {console_output_path}")
        return False

    trimmed_path = console_output_path.with_name(console_output_path.name + ".trimmed")
    most_recent_progress_line = ""
    most_recent_progress_line_written = ""
    scan_output_threshold = 0

    with console_output_path.open("r", encoding="utf-8", errors="replace") as reader, \
            trimmed_path.open("w", encoding="utf-8") as writer:
        for raw_line in reader:
            line = raw_line.rstrip("\r\n")
            if not line.strip():
                writer.write(line + "\n")
                continue

            keep_line = True
            match = SCAN_RE.search(line)
            if match:
                if int(match.group(1)) < scan_output_threshold:
                    keep_line = False
                else:
                    scan_output_threshold += TRIM_SCAN_STEP
                    most_recent_progress_line_written = line
                most_recent_progress_line = line
            elif line.startswith(DECONVOLUTION_FINISHED):
                if most_recent_progress_line != most_recent_progress_line_written:
                    writer.write(most_recent_progress_line + "\n")

            if keep_line:
                writer.write(line + "\n")

    os.replace(trimmed_path, console_output_path)
    log.debug(f"Trimmed console output file {console_output_path}")
    return True
