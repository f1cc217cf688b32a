import sqlite3
import logging
import threading
from pathlib import Path
from contextlib import contextmanager
from typing import Any, Generator, List, Optional, Sequence, Tuple

log = logging.getLogger(__name__)


class BaseDBManager:
    """
    Base class for SQLite database managers, providing common functionality.

    Each operation opens its own short-lived connection, so a manager can be
    shared between the supervising thread and the logging flush thread.
    """

    def __init__(self, db_path: Path, enable_wal: bool = False):
        """
        Initializes the base database manager.

        :param db_path: The path to the SQLite database file.
        :param enable_wal: Whether to enable WAL (Write-Ahead Logging) mode.
        """
        self.db_path = Path(db_path)
        self.enable_wal = enable_wal
        self.lock = threading.Lock()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager that creates and returns a new database connection,
        holding the write lock for the lifetime of the connection.

        :return Generator[sqlite3.Connection, None, None]: A generator yielding a database connection.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.lock:
            conn = sqlite3.connect(self.db_path, timeout=10)
            conn.row_factory = sqlite3.Row
            if self.enable_wal:
                conn.execute("PRAGMA journal_mode=WAL;")
            try:
                yield conn
            finally:
                conn.close()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[sqlite3.Row]:
        """
        Executes a single SQL statement and commits.

        :param sql: The SQL command to execute.
        :param params: Optional parameters for the SQL command.
        :return: Any rows produced by the statement.
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(sql, tuple(params or ()))
                conn.commit()
                return cursor.fetchall()
        except sqlite3.Error as e:
            log.error(f"Database operation failed: {e}")
            raise

    def execute_many(self, sql: str, params: List[Tuple[Any, ...]]) -> None:
        """
        Executes a batch of SQL statements in one transaction.

        :param sql: The SQL command to execute.
        :param params: A list of tuples containing parameters for each command.
        """
        try:
            with self._get_connection() as conn:
                conn.executemany(sql, params)
                conn.commit()
        except sqlite3.Error as e:
            log.error(f"Batch database operation failed: {e}")
            raise

    def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[sqlite3.Row]:
        """
        Fetches all rows from a query.

        :param sql: The SQL query.
        :param params: Optional parameters for the query.
        :return: A list of sqlite3.Row objects.
        """
        try:
            with self._get_connection() as conn:
                return conn.execute(sql, tuple(params or ())).fetchall()
        except sqlite3.Error as e:
            log.error(f"Failed to fetch data: {e}")
            raise
