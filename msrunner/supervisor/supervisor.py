import math
import time
import logging
import threading
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional, TextIO, Union

from msrunner.supervisor import process_utils
from msrunner.supervisor.models import (
    ProcessSpec, RunOutcome, RunResult, SupervisionPolicy, TelemetrySnapshot, TelemetrySource, TelemetryState
)
from msrunner.supervisor.telemetry import FileTelemetryReader, StreamTelemetryBuffer

if TYPE_CHECKING:
    from msrunner.parsers.base import TelemetryParser

log = logging.getLogger(__name__)

TelemetryCallback = Callable[[TelemetrySnapshot], None]
# Only the first stderr lines of a run are kept on the RunResult
MAX_CONSOLE_ERROR_LINES = 100


def decide_outcome(exit_code: Optional[int], state: Union[TelemetryState, TelemetrySnapshot], *,
                   timed_out: bool = False, aborted: bool = False, kill_failed: bool = False,
                   forced_completion: bool = False, trust_completion_marker: bool = True) -> RunOutcome:
    """
    Maps how a run ended onto its outcome.

    An error marker is cleared only by a completion marker on a later line.
    A non-zero exit code is overridden by a completion marker when
    trust_completion_marker is set.

    :param exit_code: The child's exit code, None if it was never collected.
    :param state: What the telemetry parser found.
    :param timed_out: The supervisor killed the child for exceeding a time bound.
    :param aborted: The caller requested an abort.
    :param kill_failed: The process tree survived termination.
    :param forced_completion: The child was killed after lingering past its completion grace.
    :param trust_completion_marker: Let a completion marker override a non-zero exit code.
    """
    if aborted:
        return RunOutcome.ABORTED
    if timed_out:
        return RunOutcome.ABORTED if kill_failed else RunOutcome.FAILED_TIMEOUT

    completion_wins = state.completion_line is not None and (
        state.error_line is None or state.completion_line > state.error_line)
    if state.error_marker and not completion_wins:
        return RunOutcome.FAILED_PARSE_INDICATED_ERROR

    if forced_completion:
        return RunOutcome.COMPLETED
    if exit_code == 0:
        return RunOutcome.COMPLETED
    if completion_wins and trust_completion_marker:
        return RunOutcome.COMPLETED
    return RunOutcome.FAILED_EXIT_CODE

def completion_grace_seconds(policy: SupervisionPolicy, runtime_seconds: float) -> Optional[float]:
    """
    How long a child may keep running after logging its completion marker.

    With scale_grace_with_runtime the grace grows to ceil(sqrt(runtime in minutes)) minutes.
    """
    if policy.completion_grace is None:
        return None
    grace = policy.completion_grace
    if policy.scale_grace_with_runtime:
        grace = max(grace, math.ceil(math.sqrt(max(runtime_seconds, 0) / 60.0)) * 60)
    return grace


class _ConsoleCapture:
    """Line-by-line console output file shared by both pipe reader threads."""

    def __init__(self, path: Optional[Path]):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._file: Optional[TextIO] = None

    def open(self, header: Optional[str] = None) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self.path.open("w", encoding="utf-8")
        if header:
            self.write(header)
            self.write("")

    def write(self, line: str) -> None:
        with self._lock:
            if self._file is None:
                return
            self._file.write(line + "\n")
            self._file.flush()

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None


class ProcessSupervisor:
    """
    Runs one external program at a time and watches it until it ends.

    The loop wakes every poll interval, or immediately when the child exits
    or abort() is called. On each wake it reads new telemetry, merges what
    the parser finds, and enforces the time bounds in the policy.
    """

    def __init__(self):
        self._abort_requested = threading.Event()
        self._wake = threading.Event()

    def abort(self) -> None:
        """Requests that the current run kill its process tree and return ABORTED. Thread-safe."""
        log.info("Abort requested.")
        self._abort_requested.set()
        self._wake.set()

    @property
    def abort_requested(self) -> bool:
        return self._abort_requested.is_set()

    def _wait_for_exit(self, process: subprocess.Popen, exited: threading.Event) -> None:
        process.wait()
        exited.set()
        self._wake.set()

    def _consume_telemetry(self, source: Union[FileTelemetryReader, StreamTelemetryBuffer],
                           parser: "TelemetryParser", state: TelemetryState, final: bool = False) -> bool:
        chunk = source.read_remaining() if final else source.read_new()
        if isinstance(source, FileTelemetryReader) and source.take_reset():
            parser.reset()
            state.shift_line_numbers(source.discarded_lines)
        if chunk is None:
            return False

        text, start_line = chunk
        now = time.monotonic()
        state.note_lines(max(text.count("\n"), 1), now)
        try:
            partial = parser.parse(text, start_line)
        except (ValueError, IndexError, KeyError, TypeError) as e:
            log.warning(f"Telemetry parser {type(parser).__name__} failed on lines starting at {start_line}: {e}")
            return False
        return state.merge(partial, now)

    def run(self, spec: ProcessSpec, policy: SupervisionPolicy, parser: "TelemetryParser",
            on_telemetry: Optional[TelemetryCallback] = None) -> RunResult:
        """
        Launches spec and supervises it to a terminal outcome.

        :param spec: What to run.
        :param policy: Poll interval, time bounds, capture file and telemetry source.
        :param parser: Tool-specific parser for the telemetry text.
        :param on_telemetry: Called with a snapshot whenever the telemetry changes.
        :return: The RunResult; subprocess failures are reported here, never raised.
        :raises LaunchError: If the program cannot be started.
        """
        name = spec.display_name
        state = TelemetryState()
        console_errors: List[str] = []
        capture = _ConsoleCapture(policy.console_output_path)
        parser.reset()

        if policy.telemetry_source is TelemetrySource.FILE:
            source: Union[FileTelemetryReader, StreamTelemetryBuffer] = FileTelemetryReader(policy.telemetry_path)
            stream_buffer = None
        else:
            source = stream_buffer = StreamTelemetryBuffer()

        def on_stdout(line: str) -> None:
            capture.write(line)
            if stream_buffer is not None:
                stream_buffer.append(line)

        def on_stderr(line: str) -> None:
            capture.write(line)
            if line.strip() and len(console_errors) < MAX_CONSOLE_ERROR_LINES:
                console_errors.append(line)
            if stream_buffer is not None:
                stream_buffer.append(line)

        capture.open(spec.command_line() if policy.console_output_includes_command_line else None)
        try:
            process = process_utils.launch_process(spec)
        except Exception:
            capture.close()
            raise

        start = time.monotonic()
        state.last_activity_at = start
        exited = threading.Event()
        readers = process_utils.start_pipe_readers(process, name, on_stdout, on_stderr)
        waiter = threading.Thread(target=self._wait_for_exit, args=(process, exited), daemon=True, name=f"{name}-waiter")
        waiter.start()

        timed_out = aborted = forced_completion = kill_failed = False
        try:
            while True:
                self._wake.wait(policy.poll_interval)
                self._wake.clear()

                if self._consume_telemetry(source, parser, state) and on_telemetry:
                    on_telemetry(state.snapshot())
                if exited.is_set():
                    break

                now = time.monotonic()
                runtime = now - start
                grace = completion_grace_seconds(policy, runtime)
                if self._abort_requested.is_set():
                    aborted = True
                    log.warning(f"Aborting {name} at the caller's request.")
                elif policy.max_runtime and runtime > policy.max_runtime:
                    timed_out = True
                    log.error(f"{name} exceeded the maximum runtime of {policy.max_runtime:.0f} seconds.")
                elif policy.max_idle and now - state.last_activity_at > policy.max_idle:
                    timed_out = True
                    log.error(f"{name} produced no telemetry for {now - state.last_activity_at:.0f} seconds.")
                elif grace is not None and state.completion_seen_at is not None and now - state.completion_seen_at > grace:
                    forced_completion = True
                    log.warning(f"{name} logged '{state.completion_marker}' but is still running after "
                                f"{grace:.0f} seconds; stopping it.")

                if aborted or timed_out or forced_completion:
                    kill_failed = not process_utils.terminate_process_tree(process, policy.termination_timeout)
                    break
        except BaseException:
            if process.poll() is None:
                process_utils.terminate_process_tree(process, policy.termination_timeout)
            capture.close()
            raise
        finally:
            self._abort_requested.clear()
            self._wake.clear()

        waiter.join(timeout=policy.termination_timeout)
        for reader in readers:
            reader.join(timeout=policy.termination_timeout)
        if self._consume_telemetry(source, parser, state, final=True) and on_telemetry:
            on_telemetry(state.snapshot())
        capture.close()

        elapsed = time.monotonic() - start
        outcome = decide_outcome(
            process.returncode, state,
            timed_out=timed_out, aborted=aborted, kill_failed=kill_failed,
            forced_completion=forced_completion, trust_completion_marker=policy.trust_completion_marker,
        )
        if outcome is RunOutcome.COMPLETED and process.returncode not in (0, None) and not forced_completion:
            log.warning(f"{name} exited with code {process.returncode} but logged '{state.completion_marker}'; "
                        "treating the run as completed.")
        log.info(f"{name} finished with outcome {outcome.value} (exit code {process.returncode}) in {elapsed:.1f} seconds.")

        return RunResult(
            outcome=outcome,
            exit_code=process.returncode,
            telemetry=state.snapshot(),
            console_output_path=capture.path,
            console_errors=tuple(console_errors),
            elapsed_seconds=elapsed,
            files_written=(capture.path,) if capture.path else (),
        )
