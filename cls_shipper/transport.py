"""CLS transport — buffers log entries and ships them to CLS in batches."""

import logging
import threading
import time
from typing import Callable, Optional

from cls_shipper.client import CLSClient, build_log_group
from cls_shipper.config import CLSConfig
from cls_shipper.metrics import TransportMetrics
from cls_shipper.models import LogEntry, serialized_size

logger = logging.getLogger(__name__)


class CLSTransport:
    """Thread-safe forwarder that batches log entries for CLS.

    ``write`` only appends under the lock and never performs I/O. A batch is
    shipped when the buffer reaches ``max_count`` entries or ``max_size`` MB
    of JSON text (threshold flush, run on a background thread), and in any
    case every ``flush_interval`` milliseconds (timer flush).

    A flush takes the whole buffer in one locked swap, so entries written
    while a batch is in flight land in the fresh buffer. Uploads are
    serialized, so batches reach CLS in the order they were taken. A batch
    that fails to upload is put back at the front of the buffer in its
    original order.
    The buffer is not bounded: a permanently failing endpoint makes it grow.
    """

    def __init__(
        self,
        config: CLSConfig,
        client=None,
        append_fields_fn: Optional[Callable[[], dict]] = None,
    ):
        self._config = config
        self._owns_client = client is None
        self._client = client if client is not None else CLSClient(
            config.endpoint, retry_count=config.retry_count, timeout=config.timeout
        )
        self._append_fields_fn = append_fields_fn
        self._metrics = TransportMetrics()

        self._buffer: list[LogEntry] = []
        self._buffer_bytes = 0
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._flush_scheduled = False
        self._workers: list[threading.Thread] = []
        self._closed = False

        self._stop_event = threading.Event()
        self._timer_thread = threading.Thread(
            target=self._flush_timer, name="cls-flush-timer", daemon=True
        )
        self._timer_thread.start()

    # Public API

    def write(self, entry: LogEntry) -> None:
        """Append an entry to the buffer; start a flush if a threshold is reached."""
        size = serialized_size(entry)
        trigger = None

        with self._lock:
            self._buffer.append(entry)
            self._buffer_bytes += size
            if not self._flush_scheduled and not self._closed:
                trigger = self._threshold_reached()
                if trigger is not None:
                    self._flush_scheduled = True

        self._metrics.record_write()
        if trigger is not None:
            self._schedule_flush(trigger)

    def flush(self) -> bool:
        """Ship everything currently buffered and wait for the result.

        Returns True when the batch was accepted (or there was nothing to
        send), False when it failed and was put back in the buffer.
        """
        return self._flush("manual")

    def close(self, timeout: float = 5.0) -> bool:
        """Stop the timer, wait for in-flight flushes, then flush what remains."""
        with self._lock:
            if self._closed:
                return True
            self._closed = True

        self._stop_event.set()
        self._timer_thread.join(timeout=timeout)
        for worker in self._live_workers():
            worker.join(timeout=timeout)

        delivered = self._flush("close")
        if self._owns_client:
            self._client.close()

        logger.info(
            "CLS transport closed (%d entries left in buffer)", self.pending_count
        )
        return delivered

    @property
    def pending_count(self) -> int:
        """Number of entries currently waiting in the buffer."""
        with self._lock:
            return len(self._buffer)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def config(self) -> CLSConfig:
        return self._config

    def pending_entries(self) -> list[LogEntry]:
        """Copy of the buffer, oldest entry first."""
        with self._lock:
            return list(self._buffer)

    def stats(self) -> dict:
        snapshot = self._metrics.snapshot()
        with self._lock:
            snapshot["pending_count"] = len(self._buffer)
            snapshot["pending_bytes"] = self._buffer_bytes
        return snapshot

    # Internal helpers

    def _threshold_reached(self) -> Optional[str]:
        """Name of the threshold the buffer has reached, if any. Lock must be held."""
        if len(self._buffer) >= self._config.max_count:
            return "count"
        if self._buffer_bytes >= self._config.max_size_bytes:
            return "size"
        return None

    def _schedule_flush(self, trigger: str) -> None:
        worker = threading.Thread(
            target=self._flush, args=(trigger,), name="cls-flush", daemon=True
        )
        with self._lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
        worker.start()

    def _live_workers(self) -> list[threading.Thread]:
        with self._lock:
            return [w for w in self._workers if w.is_alive()]

    def _flush(self, trigger: str) -> bool:
        # One upload at a time keeps batches arriving in the order they were taken.
        with self._send_lock:
            return self._take_and_send(trigger)

    def _take_and_send(self, trigger: str) -> bool:
        with self._lock:
            self._flush_scheduled = False
            if not self._buffer:
                return True
            batch, self._buffer = self._buffer, []
            batch_bytes, self._buffer_bytes = self._buffer_bytes, 0

        self._metrics.record_trigger(trigger)
        start = time.monotonic()

        try:
            group = build_log_group(
                batch,
                source=self._config.source,
                append_fields_fn=self._append_fields_fn,
                log_tags={"region": self._config.region},
            )
            self._client.put_logs(self._config.topic_id, group)
        except Exception as exc:
            with self._lock:
                self._buffer[:0] = batch
                self._buffer_bytes += batch_bytes
                pending = len(self._buffer)
            self._metrics.record_failed(len(batch), str(exc))
            logger.error(
                "CLS upload failed (%s flush), re-buffered %d entries, %d pending: %s",
                trigger,
                len(batch),
                pending,
                exc,
            )
            return False

        elapsed_ms = (time.monotonic() - start) * 1000
        self._metrics.record_sent(len(batch), batch_bytes, elapsed_ms)
        logger.debug(
            "Shipped %d entries to CLS (%s flush, %.1f ms)", len(batch), trigger, elapsed_ms
        )
        return True

    def _flush_timer(self):
        """Background thread that flushes every flush_interval until closed."""
        interval = self._config.flush_interval_seconds
        while not self._stop_event.wait(timeout=interval):
            self._flush("timer")
