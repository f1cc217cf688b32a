import abc
import enum
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from msrunner.local import effective_settings
from msrunner.local.database import LogDBManager
from msrunner.parsers.base import TelemetryParser
from msrunner.supervisor import (
    LaunchError, ProcessSpec, ProcessSupervisor, RunResult, SupervisionPolicy, TelemetrySnapshot
)
from msrunner.tools.params import JobParams, JobParamsError
from msrunner.tools.versioning import program_files_version, write_tool_version_info

log = logging.getLogger(__name__)


class CloseoutStatus(enum.Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    NO_DATA = "NO_DATA"
    UNABLE_TO_USE_MZ_REFINERY = "UNABLE_TO_USE_MZ_REFINERY"


class ToolRunnerError(Exception):
    """Raised when a tool runner is missing configuration it needs to start."""


@dataclass
class ToolRunResult:
    status: CloseoutStatus
    message: str = ""
    stage_results: Dict[str, RunResult] = field(default_factory=dict)
    result_files: List[Path] = field(default_factory=list)
    tool_version: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)
    progress: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is CloseoutStatus.SUCCESS


class ToolRunner(abc.ABC):
    """
    Base class for the tool plugins.

    A runner builds the command line for its tool, hands it to a
    ProcessSupervisor and turns the RunResults into a closeout status.
    Subprocess failures become a FAILED result; they are never raised.
    """

    tool_name = "Tool"

    def __init__(self, job: JobParams, settings=None, supervisor: Optional[ProcessSupervisor] = None,
                 log_db: Optional[LogDBManager] = None):
        """
        :param job: The job being processed.
        :param settings: Effective settings; defaults to the application settings.
        :param supervisor: Supervisor to run stages with; a new one is created if omitted.
        :param log_db: When given, every stage's outcome is recorded in the tool_runs table.
        """
        self.job = job
        self.settings = settings or effective_settings
        self.supervisor = supervisor or ProcessSupervisor()
        self.log_db = log_db
        self.work_dir = job.work_dir
        self.dataset = job.dataset
        self.progress = 0.0
        self.message = ""
        self.tool_version: Optional[str] = None
        self.version_file: Optional[Path] = None
        self.stage_results: Dict[str, RunResult] = {}

    #* --- Public API ---
    def execute(self) -> ToolRunResult:
        """
        Runs the tool to completion and returns its closeout.

        :raises ToolRunnerError: If the runner is not configured.
        """
        log.info(f"Starting {self.tool_name} for job {self.job.job}, dataset {self.dataset}")
        if not self.work_dir.is_dir():
            return self.fail(f"Working directory not found: {self.work_dir}")
        try:
            result = self.run()
        except LaunchError as e:
            result = self.fail(f"Unable to start {self.tool_name}: {e}")
        except JobParamsError as e:
            result = self.fail(str(e))

        log_method = log.info if result.status is CloseoutStatus.SUCCESS else log.warning
        log_method(f"{self.tool_name} finished for job {self.job.job}: {result.status.value}"
                   + (f" ({result.message})" if result.message else ""))
        return result

    def abort(self) -> None:
        """Stops the stage that is currently running."""
        self.supervisor.abort()

    @abc.abstractmethod
    def run(self) -> ToolRunResult:
        """Runs the tool's stages; implemented by each plugin."""

    #* --- Helpers for subclasses ---
    def require_setting(self, key: str) -> Path:
        value = self.settings.get(key)
        if value is None or not str(value).strip():
            raise ToolRunnerError(f"Setting '{key}' is required by {self.tool_name} but is not defined")
        return Path(value)

    def build_policy(self, **overrides) -> SupervisionPolicy:
        """
        Creates a SupervisionPolicy from the effective settings.

        :param overrides: SupervisionPolicy fields that replace the configured values.
        """
        poll_interval = max(float(self.settings.POLL_INTERVAL_SECONDS), float(self.settings.MIN_POLL_INTERVAL_SECONDS))
        max_runtime = None
        if self.settings.MAX_RUNTIME_SECONDS:
            max_runtime = max(float(self.settings.MAX_RUNTIME_SECONDS), float(self.settings.MIN_MAX_RUNTIME_SECONDS))
        values = {
            "poll_interval": poll_interval,
            "max_runtime": max_runtime,
            "max_idle": float(self.settings.MAX_IDLE_SECONDS) or None,
            "termination_timeout": float(self.settings.GRACEFUL_SHUTDOWN_TIMEOUT),
        }
        values.update(overrides)
        return SupervisionPolicy(**values)

    def java_memory_mb(self, param_name: str, default_mb: int) -> int:
        """Returns the Java heap size for a stage, never below MIN_JAVA_MEMORY_MB."""
        memory = self.job.get(param_name, int(default_mb))
        minimum = int(self.settings.MIN_JAVA_MEMORY_MB)
        if memory < minimum:
            log.warning(f"{param_name} of {memory} MB is below the minimum; using {minimum} MB")
            memory = minimum
        return memory

    def record_version(self, version: str, tool_files: Tuple[Path, ...] = ()) -> None:
        """Writes the tool version file the first time a version is seen."""
        if self.tool_version:
            return
        self.tool_version = version
        log.info(f"{self.tool_name} version: {version}")
        self.version_file = write_tool_version_info(
            self.work_dir, self.tool_name, version, dataset=self.dataset, job=self.job.job, tool_files=tool_files)

    def record_program_version(self, tool_files: Tuple[Path, ...]) -> None:
        """
        Records the names and dates of the program files as the version, for tools
        that do not print one. Files that do not exist are left out.

        :raises OSError: If the version file cannot be written.
        """
        existing = tuple(Path(f) for f in tool_files if f and Path(f).exists())
        self.record_version(program_files_version(existing), existing)

    def run_stage(self, stage: str, spec: ProcessSpec, policy: SupervisionPolicy, parser: TelemetryParser,
                  progress_range: Tuple[float, float] = (0.0, 100.0),
                  version_files: Tuple[Path, ...] = ()) -> RunResult:
        """
        Supervises one external program.

        Telemetry progress (0..1) is mapped onto progress_range of the
        runner's overall percent complete.

        :raises LaunchError: If the program cannot be started.
        """
        low, high = progress_range

        def on_telemetry(snapshot: TelemetrySnapshot) -> None:
            if snapshot.progress is not None:
                self.progress = max(self.progress, low + snapshot.progress * (high - low))
            if snapshot.version:
                self.record_version(snapshot.version, version_files)

        result = self.supervisor.run(spec, policy, parser, on_telemetry)
        self.stage_results[stage] = result

        if self.log_db is not None:
            self.log_db.insert_run(
                job=self.job.job, tool=self.tool_name, stage=stage, outcome=result.outcome.value,
                exit_code=result.exit_code, progress=result.telemetry.progress,
                version=result.telemetry.version, elapsed_seconds=result.elapsed_seconds,
            )
        return result

    def closeout(self, status: CloseoutStatus, message: str = "", result_files: Optional[List[Path]] = None,
                 stats: Optional[Dict[str, Any]] = None) -> ToolRunResult:
        files = [f for f in (result_files or []) if f and Path(f).exists()]
        if self.version_file and self.version_file not in files:
            files.append(self.version_file)
        return ToolRunResult(
            status=status,
            message=message or self.message,
            stage_results=dict(self.stage_results),
            result_files=files,
            tool_version=self.tool_version,
            stats=dict(stats or {}),
            progress=round(self.progress, 2),
        )

    def fail(self, message: str, **kwargs) -> ToolRunResult:
        log.error(message)
        self.message = message
        return self.closeout(CloseoutStatus.FAILED, message, **kwargs)

    @staticmethod
    def describe_failure(tool: str, result: RunResult) -> str:
        """A one-line explanation of why a stage did not complete."""
        telemetry = result.telemetry
        if telemetry.error_marker:
            return f"Error running {tool}: {telemetry.error_marker}"
        if result.console_errors:
            return f"Error running {tool}: {'; '.join(result.console_errors[:3])}"
        return f"{tool} ended with {result.outcome.value} (exit code {result.exit_code})"
