import re
import logging
from typing import Optional, Set

from msrunner.parsers.base import LineTelemetryParser, TelemetryCollector

log = logging.getLogger(__name__)

#* --- Progress floors (fraction of the MS-GF+ search) ---
PROGRESS_STARTING = 0.01
PROGRESS_LOADING_DATABASE = 0.02
PROGRESS_READING_SPECTRA = 0.03
PROGRESS_THREADS_SPAWNED = 0.04
PROGRESS_COMPUTING_FDRS = 0.95
PROGRESS_COMPLETE = 0.96

COMPLETION_MARKER = "MS-GF+ complete"

THREAD_COUNT_RE = re.compile(r"Using (\d+) threads", re.IGNORECASE)
TASK_COUNT_RE = re.compile(r"Splitting work into +(\d+) +tasks", re.IGNORECASE)
SPECTRA_SEARCHED_RE = re.compile(r"Spectrum.+\(total: *(\d+)\)", re.IGNORECASE)
TASK_COMPLETE_RE = re.compile(r"pool-\d+-thread-\d+: Task +(\d+) +completed", re.IGNORECASE)
SEARCH_PROGRESS_RE = re.compile(r"Search progress: (\d+) / \d+ tasks?, ([0-9.]+)%", re.IGNORECASE)
ELAPSED_TIME_RE = re.compile(r"([0-9.]+) (seconds|minutes|hours) elapsed", re.IGNORECASE)

HOURS_PER_UNIT = {"seconds": 1 / 3600.0, "minutes": 1 / 60.0, "hours": 1.0}


class MSGFPlusConsoleParser(LineTelemetryParser):
    """
    Parses MS-GF+ console output.

    Stage lines ('Loading database files', 'Reading spectra', 'Using N threads',
    'Computing q-values') set progress floors; 'Search progress' lines give the
    search percentage, scaled to 96 %. Counters are cumulative across calls.
    """

    tool_name = "MSGFPlus"

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.completed_tasks: Set[int] = set()
        self.tasks_complete_via_search_progress = 0
        self.continuum_spectra_skipped = 0
        self.elapsed_hours = 0.0
        self.started = False

    def parse_line(self, line: str, line_number: int, found: TelemetryCollector) -> Optional[bool]:
        lowered = line.lower()
        if not self.started:
            self.started = True
            found.set_progress(PROGRESS_STARTING)

        if line_number <= 3:
            if lowered.startswith("ms-gf+ release"):
                found.set_version(line)
            elif "error" in lowered:
                found.add_error(line, line_number)

        if lowered.startswith("ignoring spectrum"):
            if "spectrum is not centroided" in lowered:
                self.continuum_spectra_skipped += 1
                found.facts["continuum_spectra_skipped"] = self.continuum_spectra_skipped
        elif lowered.startswith("loading database files"):
            found.set_progress(PROGRESS_LOADING_DATABASE)
        elif lowered.startswith("reading spectra"):
            found.set_progress(PROGRESS_READING_SPECTRA)
        elif lowered.startswith("using"):
            match = THREAD_COUNT_RE.search(line)
            if match:
                found.facts["thread_count"] = int(match.group(1))
                found.set_progress(PROGRESS_THREADS_SPAWNED)
        elif lowered.startswith("splitting"):
            match = TASK_COUNT_RE.search(line)
            if match:
                found.facts["task_count"] = int(match.group(1))
        elif lowered.startswith("spectrum"):
            match = SPECTRA_SEARCHED_RE.search(line)
            if match:
                found.facts["spectra_searched"] = int(match.group(1))
        elif lowered.startswith("computing efdrs") or lowered.startswith("computing q-values"):
            found.set_progress(PROGRESS_COMPUTING_FDRS)
        elif lowered.startswith(COMPLETION_MARKER.lower()):
            found.set_progress(PROGRESS_COMPLETE)
            found.set_completion(line, line_number)
        elif line_number > 3 and "error" in lowered and "isotopeerror:" not in lowered:
            found.add_error(line, line_number)

        self._update_task_counts(line, found)
        self._update_elapsed_time(line, found)
        return None

    def _update_task_counts(self, line: str, found: TelemetryCollector) -> None:
        match = TASK_COMPLETE_RE.search(line)
        if match:
            self.completed_tasks.add(int(match.group(1)))

        match = SEARCH_PROGRESS_RE.search(line)
        if match:
            self.tasks_complete_via_search_progress = max(self.tasks_complete_via_search_progress, int(match.group(1)))
            try:
                percent = float(match.group(2))
            except ValueError:
                percent = 0.0
            if percent > 0:
                found.set_progress(min(percent * PROGRESS_COMPLETE / 100.0, PROGRESS_COMPLETE))

        if self.completed_tasks:
            found.facts["tasks_completed"] = len(self.completed_tasks)
        elif self.tasks_complete_via_search_progress:
            found.facts["tasks_completed"] = self.tasks_complete_via_search_progress

    def _update_elapsed_time(self, line: str, found: TelemetryCollector) -> None:
        match = ELAPSED_TIME_RE.search(line)
        if not match:
            return
        try:
            hours = float(match.group(1)) * HOURS_PER_UNIT[match.group(2).lower()]
        except ValueError:
            return
        if hours > self.elapsed_hours:
            self.elapsed_hours = hours
            found.facts["elapsed_hours"] = round(hours, 4)
