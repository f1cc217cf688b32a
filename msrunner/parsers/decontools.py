import logging
from datetime import datetime
from typing import Optional

from msrunner.parsers.base import LineTelemetryParser, TelemetryCollector, parse_key_value

log = logging.getLogger(__name__)

FINISHED_MARKER = "finished file processing"
SCAN_FRAME_MARKER = "scan/frame"
ERROR_MARKER = "ERROR THROWN"

# Date prefixes seen in DeconTools logs, e.g. '11/19/2010 3:22:11 PM'
DATE_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M %p",
    "%m/%d/%Y %H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y",
)


def parse_log_timestamp(text: str) -> Optional[datetime]:
    """Parses the date prefix of a DeconTools log line, or returns None."""
    text = text.strip().rstrip(",:-\t ")
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


class DeconToolsLogParser(LineTelemetryParser):
    """
    Parses the <dataset>_log.txt file that DeconConsole writes.

    Progress comes from lines like
    'Scan/Frame= 347; PercentComplete= 2.7; AccumulatedFeatures= 614'.
    Everything after 'finished file processing' is ignored.
    """

    tool_name = "DeconTools"

    def __init__(self):
        self.finished = False

    def reset(self) -> None:
        self.finished = False

    def parse_line(self, line: str, line_number: int, found: TelemetryCollector) -> Optional[bool]:
        if self.finished:
            return False

        lowered = line.lower()
        index = lowered.find(FINISHED_MARKER)
        if index >= 0:
            finish_time = None
            if index > 1:
                finish_time = parse_log_timestamp(line[:index])
                if finish_time is None:
                    log.debug(f"Unable to parse date from '{line[:index].strip()}'")
            found.set_completion(line[index:], line_number, finish_time)
            self.finished = True
            return False

        index = lowered.find(SCAN_FRAME_MARKER)
        if index >= 0:
            self._parse_scan_frame_line(line[index:], found)

        index = line.find(ERROR_MARKER)
        if index >= 0:
            log.warning(f"DeconTools reports {line[index:]}")
            found.add_error(line[index:], line_number)
        return None

    @staticmethod
    def _parse_scan_frame_line(text: str, found: TelemetryCollector) -> None:
        for stat in text.split(";"):
            key, value = parse_key_value(stat)
            if not key:
                continue
            if key == "Scan/Frame":
                try:
                    found.facts["current_scan"] = int(value.replace(",", ""))
                except ValueError:
                    continue
            elif key == "PercentComplete":
                try:
                    found.set_progress(float(value.replace(",", "")) / 100.0)
                except ValueError:
                    continue
            elif key in ("AccumulatedFeatures", "AccumlatedFeatures"):
                try:
                    found.facts["accumulated_features"] = int(value.replace(",", ""))
                except ValueError:
                    continue
