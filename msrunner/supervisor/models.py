import enum
from pathlib import Path
from datetime import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple


class LaunchError(Exception):
    """Raised when a process cannot be started (missing or non-executable program)."""


class RunOutcome(enum.Enum):
    COMPLETED = "COMPLETED"
    FAILED_EXIT_CODE = "FAILED_EXIT_CODE"
    FAILED_TIMEOUT = "FAILED_TIMEOUT"
    FAILED_PARSE_INDICATED_ERROR = "FAILED_PARSE_INDICATED_ERROR"
    ABORTED = "ABORTED"

    @property
    def succeeded(self) -> bool:
        return self is RunOutcome.COMPLETED


class TelemetrySource(enum.Enum):
    STDOUT = "stdout"
    FILE = "file"


@dataclass(frozen=True)
class ProcessSpec:
    """
    What to run: the program, its arguments and where to run it.

    :param executable: Path (or bare name resolved on PATH) of the program.
    :param args: Arguments passed after the executable.
    :param working_dir: Working directory for the child; None uses the current one.
    :param env: Environment variables added to (or replacing) the inherited environment.
    :param name: Short display name, used for the 'proc.<name>' logger.
    """
    executable: Path
    args: Tuple[str, ...] = ()
    working_dir: Optional[Path] = None
    env: Mapping[str, str] = field(default_factory=dict)
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or Path(self.executable).stem

    def command_line(self) -> str:
        return " ".join([str(self.executable), *self.args])


@dataclass(frozen=True)
class SupervisionPolicy:
    """
    How a process is watched. All durations are wall-clock seconds.
    """
    poll_interval: float = 30.0
    max_runtime: Optional[float] = None
    max_idle: Optional[float] = None
    console_output_path: Optional[Path] = None
    console_output_includes_command_line: bool = False
    telemetry_source: TelemetrySource = TelemetrySource.STDOUT
    telemetry_path: Optional[Path] = None
    trust_completion_marker: bool = True
    completion_grace: Optional[float] = None
    scale_grace_with_runtime: bool = False
    termination_timeout: float = 10.0

    def __post_init__(self):
        if not self.poll_interval or self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be greater than zero, got {self.poll_interval}")
        if self.telemetry_source is TelemetrySource.FILE and self.telemetry_path is None:
            raise ValueError("telemetry_path is required when telemetry_source is FILE")
        for name in ("max_runtime", "max_idle", "completion_grace"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} cannot be negative, got {value}")


@dataclass(frozen=True)
class PartialTelemetry:
    """The facts one parse call extracted from a chunk of text."""
    progress: Optional[float] = None
    version: Optional[str] = None
    error_marker: Optional[str] = None
    error_line: Optional[int] = None
    completion_marker: Optional[str] = None
    completion_line: Optional[int] = None
    completion_time: Optional[datetime] = None
    facts: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return (self.progress is None and self.version is None and self.error_marker is None
                and self.completion_marker is None and not self.facts)


@dataclass(frozen=True)
class TelemetrySnapshot:
    progress: Optional[float] = None
    version: Optional[str] = None
    error_marker: Optional[str] = None
    error_line: Optional[int] = None
    completion_marker: Optional[str] = None
    completion_line: Optional[int] = None
    completion_time: Optional[datetime] = None
    facts: Mapping[str, Any] = field(default_factory=dict)
    lines_seen: int = 0
    last_parsed_at: Optional[float] = None

    @property
    def progress_percent(self) -> Optional[float]:
        return None if self.progress is None else round(self.progress * 100, 2)


class TelemetryState:
    """
    Everything the supervisor has learned about one run so far.

    Only the supervision loop mutates it, through merge(). Progress never
    moves backwards, and the first version string and the first completion
    marker are kept.
    """

    def __init__(self):
        self.progress: Optional[float] = None
        self.version: Optional[str] = None
        self.error_marker: Optional[str] = None
        self.error_line: Optional[int] = None
        self.completion_marker: Optional[str] = None
        self.completion_line: Optional[int] = None
        self.completion_time: Optional[datetime] = None
        self.completion_seen_at: Optional[float] = None
        self.facts: Dict[str, Any] = {}
        self.lines_seen = 0
        self.last_parsed_at: Optional[float] = None
        self.last_activity_at: Optional[float] = None

    def note_lines(self, count: int, now: float) -> None:
        """Records that the telemetry source produced new lines."""
        if count > 0:
            self.lines_seen += count
            self.last_activity_at = now

    def shift_line_numbers(self, count: int) -> None:
        """
        Moves the recorded marker lines before line 1 of a log file that was rewritten.

        :param count: Number of lines the file held before it was truncated.
        """
        if self.error_line is not None:
            self.error_line -= count
        if self.completion_line is not None:
            self.completion_line -= count

    def merge(self, partial: PartialTelemetry, now: float) -> bool:
        """
        Folds one parse result into the state.

        :param partial: The parser output for the latest chunk.
        :param now: Monotonic timestamp of the parse.
        :return: True if anything in the state changed.
        """
        self.last_parsed_at = now
        changed = False

        if partial.progress is not None:
            progress = min(max(float(partial.progress), 0.0), 1.0)
            if self.progress is None or progress > self.progress:
                self.progress = progress
                changed = True

        if partial.version and not self.version:
            self.version = partial.version
            changed = True

        if partial.error_marker:
            if not self.error_marker:
                self.error_marker = partial.error_marker
                changed = True
            if partial.error_line is not None and (self.error_line is None or partial.error_line > self.error_line):
                self.error_line = partial.error_line
                changed = True

        if partial.completion_marker and not self.completion_marker:
            self.completion_marker = partial.completion_marker
            self.completion_line = partial.completion_line
            self.completion_time = partial.completion_time
            self.completion_seen_at = now
            changed = True

        for key, value in partial.facts.items():
            if self.facts.get(key) != value:
                self.facts[key] = value
                changed = True

        return changed

    def snapshot(self) -> TelemetrySnapshot:
        return TelemetrySnapshot(
            progress=self.progress,
            version=self.version,
            error_marker=self.error_marker,
            error_line=self.error_line,
            completion_marker=self.completion_marker,
            completion_line=self.completion_line,
            completion_time=self.completion_time,
            facts=dict(self.facts),
            lines_seen=self.lines_seen,
            last_parsed_at=self.last_parsed_at,
        )


@dataclass(frozen=True)
class RunResult:
    """The terminal report of one supervised run."""
    outcome: RunOutcome
    exit_code: Optional[int]
    telemetry: TelemetrySnapshot
    console_output_path: Optional[Path] = None
    console_errors: Tuple[str, ...] = ()
    elapsed_seconds: float = 0.0
    files_written: Tuple[Path, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.outcome.succeeded
