import sys
import signal
import logging
import threading

# Basic console logger for messages BEFORE full setup is complete.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("console")

import setproctitle

import msrunner.local.console as console
from msrunner.log.setup import setup_logging

CONSOLE_LOCK = threading.Lock()


def _handle_sigterm(signum, frame) -> None:
    if console.abort_active_run():
        log.warning("Termination requested; stopping the running tool.")
    else:
        raise SystemExit(0)

def main() -> None:
    """The main entry point for the console application."""
    setproctitle.setproctitle("msrunner - Console")

    args = sys.argv[1:]
    verbose = "--verbose" in args
    if verbose:
        args.remove("--verbose")
    show_tool_output = "--show-output" in args
    if show_tool_output:
        args.remove("--show-output")

    setup_logging(logging.INFO, show_tool_output=show_tool_output)
    if verbose:
        console.toggle_verbose_logging()
    signal.signal(signal.SIGTERM, _handle_sigterm)

    # Non-interactive mode for one-off commands
    if args:
        command, args = args[0].lower(), args[1:]
        setproctitle.setproctitle(f"msrunner - {command}")
        console.execute_command(command, args)
        return

    # Interactive mode
    print("--- msrunner Console ---")
    print("Type 'help' for a list of commands.")
    while True:
        try:
            command_line_str = input("> ")
            with CONSOLE_LOCK:
                if not command_line_str.strip():
                    continue
                command_line = command_line_str.strip().split()
                command, command_args = command_line[0].lower(), command_line[1:]

                log.debug(f"Received command: {command}, args: {command_args}")

                if console.execute_command(command, command_args):
                    break

        except (KeyboardInterrupt, EOFError):
            log.warning("\nExiting console.")
            break
        except Exception as e:
            log.error(f"An unexpected error occurred in the console: {e}", exc_info=True)

if __name__ == "__main__":
    main()
