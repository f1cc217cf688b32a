import sys
import socket
import logging
import requests
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional
from msrunner.local import effective_settings as config


class LokiHandler(logging.Handler):
    """
    A logging handler that pushes log records to a Grafana Loki instance
    in batches using a background thread.

    Child process output (loggers named ``proc.<tool>``) is labelled with the
    tool name so that a run's console output can be queried on its own.
    """

    def __init__(self, url: str, org_id: Optional[str] = None, batch_size: int = 200):
        """
        Initializes the Loki handler.

        :param url: The base URL of the Loki instance.
        :param org_id: The tenant ID for Loki (sent as 'X-Scope-OrgID').
        :param batch_size: Number of buffered records that triggers an immediate push.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.org_id = org_id
        self.batch_size = batch_size
        self.flush_interval = config.LOG_BUFFER_FLUSH_INTERVAL
        self.hostname = socket.gethostname()
        self.log_buffer: Deque[Dict[str, Any]] = deque()
        self.buffer_lock = threading.Lock()

        self.stop_event = threading.Event()
        self.flush_thread = threading.Thread(target=self._periodic_flush, daemon=True, name="LokiFlushThread")
        self.flush_thread.start()

    def _periodic_flush(self) -> None:
        """Periodically pushes the buffer; runs in a background thread."""
        while not self.stop_event.wait(self.flush_interval):
            self.flush()
        self.flush()

    def emit(self, record: logging.LogRecord) -> None:
        """
        Converts a log record into a Loki stream entry and buffers it.

        :param record: The log record to be processed.
        """
        try:
            if record.name.startswith('proc.'):
                msg = record.getMessage()
                labels = {"logger": "proc", "tool": record.name.split('.', 1)[-1]}
            else:
                msg = self.format(record)
                labels = {"logger": record.name}

            log_entry = {
                "stream": {
                    "job": "msrunner",
                    "level": record.levelname.lower(),
                    "hostname": self.hostname,
                    **labels,
                },
                "values": [
                    [str(int(record.created * 1e9)), msg]
                ]
            }
            with self.buffer_lock:
                self.log_buffer.append(log_entry)
                should_flush = len(self.log_buffer) >= self.batch_size
            if should_flush:
                self.flush()
        except Exception:
            self.handleError(record)

    def _take_batch(self) -> List[Dict[str, Any]]:
        with self.buffer_lock:
            batch = list(self.log_buffer)
            self.log_buffer.clear()
        return batch

    def flush(self) -> None:
        """Pushes all buffered records to Loki."""
        batch = self._take_batch()
        if not batch:
            return

        headers = {'Content-Type': 'application/json'}
        if self.org_id:
            headers['X-Scope-OrgID'] = self.org_id

        try:
            response = requests.post(self.url, json={"streams": batch}, headers=headers, timeout=5)
        except requests.RequestException as e:
            print(f"CRITICAL: Failed to send {len(batch)} logs to Loki: {e}", file=sys.stderr)
            return

        # 204 No Content is the success status for a Loki push
        if response.status_code != 204:
            print(f"ERROR: Loki returned non-204 status: {response.status_code} - {response.text}", file=sys.stderr)

    def close(self) -> None:
        """
        Stops the flush thread after a final push.
        """
        self.stop_event.set()
        if self.flush_thread.is_alive():
            self.flush_thread.join(timeout=self.flush_interval + 2)
        super().close()
