import sys
import logging

from msrunner.local import effective_settings as config
from msrunner.log.handler import SQLiteHandler, LokiHandler

class SubprocessLogFilter(logging.Filter):
    """
    Drops records coming from the supervised tool loggers ('proc.<tool>').
    Attached to the console handler when tool output should stay off screen.
    """
    def filter(self, record):
        return not record.name.startswith('proc.')

class MainFormatter(logging.Formatter):
    """A formatter that prints tool output raw and application logs with context."""

    def format(self, record):
        if record.name.startswith('proc.'):
            tool = record.name.split('.', 1)[-1]
            return f"[{tool}] {record.getMessage()}"

        original_format = self._style._fmt
        self._style._fmt = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'
        formatted_message = super().format(record)
        self._style._fmt = original_format
        return formatted_message

def setup_logging(console_level: int = logging.INFO, show_tool_output: bool = False) -> None:
    """
    Configures the root logger for the application.
    This sets up handlers for console, SQLite, and optionally Loki,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param show_tool_output: Echo supervised tool output on the console.
    """
    config.LOG_DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    #* --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    if not show_tool_output:
        console_handler.addFilter(SubprocessLogFilter())
    root_logger.addHandler(console_handler)

    #* --- SQLite Handler (always enabled for all levels) ---
    try:
        sqlite_handler = SQLiteHandler(db_path=config.LOG_DB_PATH)
        sqlite_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(sqlite_handler)
    except Exception as e:
        root_logger.error(f"Failed to initialize SQLite logging handler: {e}. Logging to DB will be disabled.")

    #* --- Loki Handler (conditional) ---
    if config.LOKI_ENABLED:
        try:
            loki_handler = LokiHandler(url=config.LOKI_URL, org_id=config.LOKI_ORG_ID)
            loki_handler.setLevel(logging.INFO)
            root_logger.addHandler(loki_handler)
            root_logger.info(f"Grafana Loki logging handler initialized for {config.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")
