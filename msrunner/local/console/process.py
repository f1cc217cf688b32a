import logging
from typing import List
from pathlib import Path

from msrunner.local import effective_settings as config
from msrunner.log.export import export_logs_to_excel
from msrunner.local.console.handler import (
    check_configuration, handle_config_command, handle_logs_command, handle_run_command,
    print_help, toggle_verbose_logging
)

log = logging.getLogger(__name__)


def execute_command(command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'run', 'config').
    :param args: A list of arguments for the command.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "run": lambda: handle_run_command(args),
        "run-decontools": lambda: handle_run_command(args, tool="DeconTools"),
        "run-msalign": lambda: handle_run_command(args, tool="MSAlign"),
        "run-mzrefinery": lambda: handle_run_command(args, tool="MzRefinery"),
        "check-config": check_configuration,
        "config": lambda: handle_config_command(args),
        "logs": lambda: handle_logs_command(args),
        "verbose": toggle_verbose_logging,
        "help": print_help,
        "exit": lambda: True
    }

    should_exit = False
    if command in command_map:
        result = command_map[command]()
        if command == "exit" and result is True:
            should_exit = True

    elif command == "export-logs":
        output_file = Path(args[0] if args else config.LOGS_DIR / "logs_export.xlsx")
        log.info(f"Exporting logs to '{output_file}'...")
        export_logs_to_excel(config.LOG_DB_PATH, output_file)

    else:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")

    return should_exit
