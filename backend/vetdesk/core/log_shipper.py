"""
Batched log shipping to an HTTP ingest endpoint.

A single in-memory buffer is flushed either when it reaches batch_size or
when the periodic timer fires. A batch that fails to send is put back at
the front of the buffer once; entries that fail a second time are dropped.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx


logger = logging.getLogger(__name__)


@dataclass
class _Pending:
    entry: dict[str, Any]
    attempts: int = 0


class LogShipper:
    """
    Buffer log entries and POST them in batches.

    Example:
        shipper = LogShipper("https://logs.example.com/ingest", token="...")
        shipper.start()
        shipper.enqueue({"level": "INFO", "message": "hello"})
        shipper.close()
    """

    MAX_ATTEMPTS = 2

    def __init__(
        self,
        url: str,
        token: str = "",
        batch_size: int = 50,
        flush_interval: float = 5.0,
        max_buffer: Optional[int] = None,
        client: Optional[httpx.Client] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.url = url
        self.token = token
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_buffer = max_buffer or batch_size * 20
        self._client = client or httpx.Client(timeout=5.0)
        self._buffer: list[_Pending] = []
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._closed = False
        self.dropped = 0

    # ------------------------------------------------------------------
    # Buffering
    # ------------------------------------------------------------------

    def enqueue(self, entry: dict[str, Any]) -> None:
        """Add an entry; flush immediately once the batch is full."""
        with self._lock:
            if self._closed:
                return
            self._buffer.append(_Pending(entry))
            overflow = len(self._buffer) - self.max_buffer
            if overflow > 0:
                del self._buffer[:overflow]
                self.dropped += overflow
            full = len(self._buffer) >= self.batch_size

        if full:
            self.flush()

    def pending_count(self) -> int:
        with self._lock:
            return len(self._buffer)

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def flush(self) -> int:
        """
        Send everything currently buffered.

        Returns:
            Number of entries delivered (0 on failure or empty buffer)
        """
        with self._lock:
            batch, self._buffer = self._buffer, []
        if not batch:
            return 0

        if self._send([p.entry for p in batch]):
            return len(batch)

        retry = [_Pending(p.entry, p.attempts + 1) for p in batch if p.attempts + 1 < self.MAX_ATTEMPTS]
        dropped = len(batch) - len(retry)
        with self._lock:
            self._buffer[:0] = retry
            self.dropped += dropped
        if dropped:
            logger.warning(f"Dropped {dropped} log entries after repeated ship failures")
        return 0

    def _send(self, entries: list[dict[str, Any]]) -> bool:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = self._client.post(self.url, json={"logs": entries}, headers=headers)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Log shipping failed ({len(entries)} entries): {e}")
            return False

    # ------------------------------------------------------------------
    # Timer lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic flush timer."""
        with self._lock:
            if self._closed or self._timer is not None:
                return
            self._schedule_locked()

    def _schedule_locked(self) -> None:
        self._timer = threading.Timer(self.flush_interval, self._on_timer)
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self) -> None:
        self.flush()
        with self._lock:
            if not self._closed:
                self._schedule_locked()

    def close(self) -> None:
        """Stop the timer and flush what is left."""
        with self._lock:
            self._closed = True
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        self.flush()


class _ShipperNoiseFilter(logging.Filter):
    """Drops records produced while shipping: our own and the HTTP client's."""

    EXCLUDED = (logger.name, "httpx", "httpcore")

    def filter(self, record: logging.LogRecord) -> bool:
        return not any(
            record.name == name or record.name.startswith(name + ".") for name in self.EXCLUDED
        )


class LogShippingHandler(logging.Handler):
    """logging.Handler that turns records into shipper entries."""

    def __init__(self, shipper: LogShipper, service: str, environment: str, level: int = logging.INFO):
        super().__init__(level=level)
        self.shipper = shipper
        self.service = service
        self.environment = environment
        self.addFilter(_ShipperNoiseFilter())
        self._local = threading.local()

    def emit(self, record: logging.LogRecord) -> None:
        # a record logged while this thread is enqueueing (and so maybe sending) is dropped
        if getattr(self._local, "active", False):
            return
        self._local.active = True
        try:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
                "module": record.module,
                "function": record.funcName,
                "line": record.lineno,
                "service": self.service,
                "environment": self.environment,
            }
            if record.exc_info:
                entry["exception"] = logging.Formatter().formatException(record.exc_info)
            self.shipper.enqueue(entry)
        except Exception:
            self.handleError(record)
        finally:
            self._local.active = False

    def close(self) -> None:
        self.shipper.close()
        super().close()
