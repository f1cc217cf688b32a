import logging
import threading
from pathlib import Path
from typing import List, Optional

from msrunner.local import effective_settings as config
from msrunner.local.database import LogDBManager
from msrunner.supervisor.models import LaunchError
from msrunner.supervisor.process_utils import resolve_executable
from msrunner.tools import JobParams, JobParamsError, ToolRunnerError, ToolRunResult, get_runner_class

log = logging.getLogger(__name__)

# The runner currently executing a job; set while 'run' is in progress
_active_runner = None
_active_runner_lock = threading.Lock()


def handle_run_command(args: List[str], tool: Optional[str] = None) -> Optional[ToolRunResult]:
    """
    Runs the job described by a YAML job file.

    :param args: The arguments after the command; the first one is the job file.
    :param tool: Forces a specific tool instead of the one named in the job file.
    :return: The ToolRunResult, or None if the job could not be started.
    """
    global _active_runner
    if not args:
        print("Usage: run <job.yaml>")
        return None

    try:
        job = JobParams.from_yaml(Path(args[0]))
        runner_class = get_runner_class(tool or job.tool)
    except (JobParamsError, ToolRunnerError) as e:
        log.error(str(e))
        return None

    log_db = LogDBManager(config.LOG_DB_PATH)
    log_db.initialize_database()
    runner = runner_class(job, settings=config, log_db=log_db)
    with _active_runner_lock:
        _active_runner = runner
    try:
        result = runner.execute()
    except ToolRunnerError as e:
        log.error(str(e))
        return None
    except KeyboardInterrupt:
        log.warning(f"{runner.tool_name} interrupted; the tool's process tree was stopped.")
        return None
    finally:
        with _active_runner_lock:
            _active_runner = None

    print(f"\n{runner.tool_name} job {job.job}: {result.status.value} ({result.progress:.0f}% complete)")
    if result.message:
        print(f"  {result.message}")
    if result.tool_version:
        print(f"  Version: {result.tool_version}")
    for path in result.result_files:
        print(f"  - {path}")
    print()
    return result

def abort_active_run() -> bool:
    """Asks the runner of the job in progress to stop. Returns False if nothing is running."""
    with _active_runner_lock:
        runner = _active_runner
    if runner is None:
        return False
    runner.abort()
    return True

def handle_logs_command(args: List[str]) -> None:
    """
    Prints the most recent log entries and tool runs from the log database.

    :param args: Optional number of entries to show.
    """
    limit = config.LOG_HISTORY_COUNT
    if args:
        try:
            limit = max(int(args[0]), 1)
        except ValueError:
            print("Usage: logs [N]")
            return

    log_db = LogDBManager(config.LOG_DB_PATH)
    log_db.initialize_database()
    print(f"\n--- Displaying last {limit} log entries ---")
    for entry in log_db.fetch_last_entries(limit):
        if entry.level == "DEBUG" and not config.VERBOSE_LOGGING:
            continue
        print(entry.message)

    runs = log_db.fetch_recent_runs(limit)
    if runs:
        print(f"\n--- Last {len(runs)} tool runs ---")
        for run in runs:
            progress = "-" if run.progress is None else f"{run.progress * 100:.0f}%"
            print(f"  job {run.job:<10} {run.tool:<12} {run.stage:<16} {run.outcome:<30} "
                  f"exit={run.exit_code} progress={progress} {run.elapsed_seconds:.1f}s")
    print()

#* --- Config ---
def _config_show() -> None:
    print("\n--- Current Configuration ---")
    print(f"(Overrides file: {config.OVERRIDES_JSON_PATH})")
    for key in sorted(config.MODIFIABLE_SETTINGS):
        print(f"  {key} = {config.get(key, 'N/A')}")
    print("---")
    print("Use 'config set <KEY> <VALUE>' to change a setting.")
    print("-----------------------------\n")

def _config_set(args: List[str]) -> None:
    if len(args) < 2:
        print("Usage: config set <SETTING_NAME> <VALUE>")
        return

    key, value_str = args[0].upper(), " ".join(args[1:])
    try:
        new_value = config.update_setting(key, value_str)
    except KeyError:
        print(f"Error: '{key}' is not a modifiable setting.")
        return
    except (ValueError, TypeError) as e:
        print(f"Error: invalid value for '{key}': {e}")
        return
    print(f"{key} set to {new_value}.")

def _config_help() -> None:
    print("\nConfig Command Help:")
    print("  config show                - Display all modifiable settings.")
    print("  config set KEY VALUE       - Change a setting and save it to the overrides file.")
    print("  config help                - Show this help message.")
    print("Use 'check-config' to validate tool paths.")

def handle_config_command(args: List[str]) -> None:
    """
    Handles all sub-commands for the 'config' command-line interface.

    :param args: A list of string arguments following the 'config' command.
    """
    sub_command = args[0].lower() if args else "show"

    if sub_command == "show":
        _config_show()
    elif sub_command == "set":
        _config_set(args[1:])
    elif sub_command == "help":
        _config_help()
    else:
        print(f"Unknown config sub-command: '{sub_command}'. Type 'config help' for available commands.")

def check_configuration() -> bool:
    """
    Validates that the configured tool programs exist.

    :return: True if every tool is found, otherwise False.
    """
    log.info("Performing configuration and path validation...")
    all_ok = True
    for name, key in config.TOOL_EXECUTABLE_SETTINGS.items():
        path = Path(config.get(key))
        if key == "MSALIGN_DIR":
            found = (path / "jar").is_dir()
        elif path.suffix.lower() == ".jar":
            found = path.is_file()
        else:
            try:
                path = resolve_executable(path)
                found = True
            except LaunchError:
                found = False
        if found:
            log.info(f"Config Check OK: Found {name} at '{path}'")
        else:
            log.error(f"CONFIG CHECK FAILED: {name} not found at '{path}'")
            all_ok = False
    return all_ok

def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    config.VERBOSE_LOGGING = not config.VERBOSE_LOGGING
    new_level = logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO

    root_logger = logging.getLogger()
    found_handler = False
    for handler in root_logger.handlers:
        if isinstance(handler, logging.StreamHandler):
            handler.setLevel(new_level)
            found_handler = True
            break

    status = "ON" if config.VERBOSE_LOGGING else "OFF"
    if found_handler:
        print(f"Verbose console logging is now {status}.")
        log.debug("Debug logging test: This message should only appear when verbose is ON.")
    else:
        print("Could not find console handler to modify level.")

def print_help() -> None:
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  run <job.yaml>            - Run the tool named in a job file.")
    print("  run-decontools <job.yaml> - Run DeconTools for a job file.")
    print("  run-msalign <job.yaml>    - Run MSAlign for a job file.")
    print("  run-mzrefinery <job.yaml> - Run MS-GF+, MzRefinery and PPMErrorCharter for a job file.")
    print("  logs [N]                  - Show the last N log entries and tool runs.")
    print("  export-logs [filename]    - Export logs and tool runs to a styled Excel file.")
    print("  check-config              - Validate the configured tool paths.")
    print("  config <cmd>              - Manage configuration. Use 'config help' for more details.")
    print("  verbose                   - Toggle detailed DEBUG log output in the console.")
    print("  exit                      - Exit the console.")
    print()
