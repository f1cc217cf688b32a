import sqlite3
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional
from msrunner.local import effective_settings as config
from msrunner.local.database import LogDBManager


class SQLiteHandler(logging.Handler):
    """
    A logging handler that writes records to the SQLite log database
    in batches using a background thread.
    """

    def __init__(self, db_path: Path):
        """
        Initializes the SQLite handler.

        :param db_path: The path to the SQLite database file.
        """
        super().__init__()
        self.db_path = Path(db_path)
        self.log_buffer: List[Dict[str, Any]] = []
        self.buffer_lock = threading.Lock()
        self.flush_interval = config.LOG_BUFFER_FLUSH_INTERVAL
        self.buffer_size = config.LOG_BUFFER_SIZE
        self.db_size_check_interval = config.LOG_DB_SIZE_CHECK_INTERVAL_SECONDS
        self.max_db_size_mb = config.MAX_LOG_DB_SIZE_MB
        self.stop_event = threading.Event()
        self.logDB = LogDBManager(self.db_path)
        self.logDB.initialize_database()

        self.flush_thread: Optional[threading.Thread] = threading.Thread(
            target=self._periodic_flush, daemon=True, name="SQLiteFlushThread")
        self.flush_thread.start()
        self.db_size_check_thread: Optional[threading.Thread] = threading.Thread(
            target=self._periodic_db_size_check, daemon=True, name="LogDbSizeCheckThread")
        self.db_size_check_thread.start()

    def _periodic_flush(self) -> None:
        """Periodically flushes the log buffer; runs in a background thread."""
        while not self.stop_event.wait(self.flush_interval):
            self.flush()
        self.flush()

    def emit(self, record: logging.LogRecord) -> None:
        """
        Adds a log record to the internal buffer for batch writing.

        :param record: The log record to be processed.
        """
        # Child process output carries the tool name in the logger name
        # and has no meaningful function or line number.
        if record.name.startswith('proc.'):
            module = record.name.split('.', 1)[-1]
            func_name = 'stderr' if record.levelno >= logging.WARNING else 'stdout'
            lineno = 0
        else:
            module = record.module
            func_name = record.funcName
            lineno = record.lineno

        log_entry = {
            "timestamp": record.created,
            "level": record.levelname,
            "module": module,
            "funcName": func_name,
            "lineno": lineno,
            "message": record.getMessage()
        }
        with self.buffer_lock:
            self.log_buffer.append(log_entry)
            should_flush = len(self.log_buffer) >= self.buffer_size
        if should_flush:
            self.flush()

    def flush(self) -> None:
        """Writes the buffered records to the database."""
        with self.buffer_lock:
            entries_to_write = list(self.log_buffer)
            self.log_buffer.clear()
        if not entries_to_write:
            return
        try:
            self.logDB.insert_log_batch(entries_to_write)
        except sqlite3.Error as e:
            print(f"Error writing logs to DB: {e}. Log entries: {len(entries_to_write)}")

    def _check_db_file_size(self) -> None:
        """Logs a warning if the log database file exceeds the configured size."""
        logger = logging.getLogger(__name__)
        try:
            file_size_mb = self.db_path.stat().st_size / (1024 * 1024)
        except FileNotFoundError:
            logger.debug(f"Log database file '{self.db_path}' not found during size check.")
            return

        if file_size_mb > self.max_db_size_mb:
            logger.warning(
                f"Log database file '{self.db_path}' size ({file_size_mb:.2f} MB) "
                f"exceeds configured limit ({self.max_db_size_mb} MB)."
            )

    def _periodic_db_size_check(self) -> None:
        while not self.stop_event.wait(self.db_size_check_interval):
            self._check_db_file_size()

    def close(self) -> None:
        """
        Shuts down the handler, joining the threads and flushing the buffer.
        """
        self.stop_event.set()
        if self.flush_thread and self.flush_thread.is_alive():
            self.flush_thread.join()
        if self.db_size_check_thread and self.db_size_check_thread.is_alive():
            self.db_size_check_thread.join()
        self.flush()
        super().close()
