import logging
from typing import Optional

from msrunner.parsers.base import LineTelemetryParser, TelemetryCollector

log = logging.getLogger(__name__)


class MzRefinerConsoleParser(LineTelemetryParser):
    """
    Parses the console output of MSConvert running the mzRefiner filter.

    Example warnings:
        Low number of good identifications found. Will not perform dependent shifts.
        Excluding file "C:\\Work\\Dataset_msgfplus.mzid" from data set.
    """

    tool_name = "MSConvert"

    def parse_line(self, line: str, line_number: int, found: TelemetryCollector) -> Optional[bool]:
        stripped = line.strip()
        lowered = stripped.lower()
        if lowered.startswith("error:") or "unhandled exception" in lowered:
            found.add_error(stripped, line_number)
        elif stripped.startswith("Low number of good identifications found"):
            log.info(f"MzRefinery warning: {stripped}")
            found.facts["warning"] = stripped
        elif stripped.startswith("Excluding file") and stripped.rstrip(".").endswith("from data set"):
            log.error("Fewer than 100 matches after filtering; cannot use MzRefinery on this dataset")
            found.facts["excluded"] = stripped
        elif lowered.startswith("processing file:"):
            found.facts["input_file"] = stripped.split(":", 1)[1].strip()
        elif lowered.startswith("writing output file:"):
            found.facts["output_file"] = stripped.split(":", 1)[1].strip()
        return None
