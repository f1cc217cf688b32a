import time
import sqlite3
import logging
from pathlib import Path
from collections import namedtuple
from typing import Any, Dict, List, Optional
from msrunner.local.database.base import BaseDBManager

LogEntry = namedtuple('LogEntry', ['timestamp', 'level', 'module', 'message'])
RunEntry = namedtuple('RunEntry', ['timestamp', 'job', 'tool', 'stage', 'outcome', 'exit_code', 'progress', 'version', 'elapsed_seconds'])
log = logging.getLogger(__name__)


def _format_timestamp(timestamp: float) -> str:
    return time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(timestamp))


class LogDBManager(BaseDBManager):
    """
    Manages all interactions with the logging SQLite database: the application
    log written by SQLiteHandler and the history of supervised tool runs.
    """

    def __init__(self, db_path: Path):
        """
        Initializes the LogDBManager.

        :param db_path: The path to the logging SQLite database file.
        """
        super().__init__(db_path, enable_wal=False)

    def initialize_database(self) -> None:
        """
        Ensures all necessary tables exist in the database.
        """
        try:
            self.execute('''
                CREATE TABLE IF NOT EXISTS logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL,
                    level TEXT,
                    module TEXT,
                    funcName TEXT,
                    lineno INTEGER,
                    message TEXT
                )
            ''')
            self.execute('''
                CREATE TABLE IF NOT EXISTS tool_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL,
                    job TEXT,
                    tool TEXT,
                    stage TEXT,
                    outcome TEXT,
                    exit_code INTEGER,
                    progress REAL,
                    version TEXT,
                    elapsed_seconds REAL
                )
            ''')
            log.debug("Log database tables created/verified.")
        except sqlite3.Error as e:
            log.critical(f"Could not create log database tables: {e}", exc_info=True)
            raise

    def insert_log_batch(self, log_entries: List[Dict[str, Any]]) -> None:
        """
        Inserts multiple log entries in a single transaction.

        :param log_entries: Dictionaries with keys timestamp, level, module, funcName, lineno, message.
        """
        if not log_entries:
            return

        params = [(
            entry['timestamp'],
            entry['level'],
            entry['module'],
            entry['funcName'],
            entry['lineno'],
            entry['message']
        ) for entry in log_entries]

        try:
            self.execute_many(
                '''INSERT INTO logs (timestamp, level, module, funcName, lineno, message)
                   VALUES (?, ?, ?, ?, ?, ?)''',
                params
            )
        except sqlite3.Error as e:
            log.error(f"Failed to insert log batch of {len(log_entries)} entries: {e}", exc_info=True)
            raise

    def fetch_last_entries(self, limit: int) -> List[LogEntry]:
        """
        Fetches the most recent N log entries from the database, oldest first.

        :param limit: The maximum number of log entries to retrieve.
        :return list: A list of LogEntry namedtuples.
        """
        entries = []
        try:
            rows = self.fetch_all(
                "SELECT timestamp, level, module, message FROM logs ORDER BY id DESC LIMIT ?",
                (limit,)
            )
        except sqlite3.Error as e:
            log.error(f"Failed to fetch log entries from database: {e}")
            return entries

        for row in reversed(rows):
            entries.append(LogEntry(
                timestamp=row['timestamp'], level=row['level'], module=row['module'],
                message=f"{_format_timestamp(row['timestamp'])} - {row['level']:<8} - [{row['module']}] - {row['message']}"
            ))
        return entries

    def insert_run(self, job: str, tool: str, stage: str, outcome: str, exit_code: Optional[int],
                   progress: Optional[float], version: Optional[str], elapsed_seconds: float) -> None:
        """
        Records the terminal result of one supervised process run.

        :param job: The job identifier.
        :param tool: The tool runner name (e.g. 'MzRefinery').
        :param stage: The supervised stage within the tool (e.g. 'MSGFPlus').
        :param outcome: The run outcome value.
        :param exit_code: The captured exit code, if any.
        :param progress: The final progress fraction, if any.
        :param version: The parsed tool version, if any.
        :param elapsed_seconds: Wall-clock duration of the run.
        """
        self.execute(
            '''INSERT INTO tool_runs (timestamp, job, tool, stage, outcome, exit_code, progress, version, elapsed_seconds)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)''',
            (time.time(), job, tool, stage, outcome, exit_code, progress, version, elapsed_seconds)
        )

    def fetch_recent_runs(self, limit: int) -> List[RunEntry]:
        """
        Fetches the most recent tool runs, oldest first.

        :param limit: The maximum number of runs to retrieve.
        :return list: A list of RunEntry namedtuples.
        """
        rows = self.fetch_all(
            '''SELECT timestamp, job, tool, stage, outcome, exit_code, progress, version, elapsed_seconds
               FROM tool_runs ORDER BY id DESC LIMIT ?''',
            (limit,)
        )
        return [RunEntry(*tuple(row)) for row in reversed(rows)]
