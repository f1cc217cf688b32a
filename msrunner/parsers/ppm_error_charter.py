import logging
from typing import Optional

from msrunner.parsers.base import GenericConsoleParser, TelemetryCollector

log = logging.getLogger(__name__)

MEDIAN_MASS_ERROR_PREFIX = "MedianMassErrorPPM:"


class PPMErrorCharterConsoleParser(GenericConsoleParser):
    """
    Parses the console output of PPMErrorCharter.

    Besides the usual error lines it picks the median mass error before and
    after refinement out of the statistics table:

        Statistic                   Original    Refined
        MeanMassErrorPPM:              2.430      1.361
        MedianMassErrorPPM:            1.782      0.704
    """

    def __init__(self):
        super().__init__("PPMErrorCharter")

    def parse_line(self, line: str, line_number: int, found: TelemetryCollector) -> Optional[bool]:
        stripped = line.strip()
        if not stripped.startswith(MEDIAN_MASS_ERROR_PREFIX):
            return super().parse_line(line, line_number, found)

        values = stripped[len(MEDIAN_MASS_ERROR_PREFIX):].split()
        try:
            found.facts["mass_error_ppm"] = float(values[0])
            if len(values) > 1:
                found.facts["mass_error_ppm_refined"] = float(values[-1])
        except (IndexError, ValueError):
            log.debug(f"Unable to parse mass errors from '{stripped}'")
        return None
