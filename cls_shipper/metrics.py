"""Metrics collector — thread-safe counters for the CLS forwarder."""

import threading
import time
from collections import deque

FLUSH_TRIGGERS = ("count", "size", "timer", "manual", "close")

# Send-time statistics cover the most recent batches only.
SEND_TIME_WINDOW = 1000


class TransportMetrics:
    """Collects delivery statistics for batches submitted to CLS."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._batches_sent: int = 0
        self._batches_failed: int = 0
        self._entries_sent: int = 0
        self._entries_requeued: int = 0
        self._entries_written: int = 0
        self._bytes_sent: int = 0
        self._send_times: deque[float] = deque(maxlen=SEND_TIME_WINDOW)
        self._flush_triggers: dict = {trigger: 0 for trigger in FLUSH_TRIGGERS}
        self._last_error: str | None = None
        self._start_time = time.monotonic()

    def record_write(self) -> None:
        with self._lock:
            self._entries_written += 1

    def record_trigger(self, trigger: str) -> None:
        with self._lock:
            self._flush_triggers[trigger] = self._flush_triggers.get(trigger, 0) + 1

    def record_sent(self, batch_size: int, bytes_sent: int, send_time_ms: float) -> None:
        """Record a batch accepted by the remote endpoint.

        Args:
            batch_size: Number of log entries in the batch.
            bytes_sent: Approximate serialized size of the batch.
            send_time_ms: Time spent in the submission, in milliseconds.
        """
        with self._lock:
            self._batches_sent += 1
            self._entries_sent += batch_size
            self._bytes_sent += bytes_sent
            self._send_times.append(send_time_ms)

    def record_failed(self, batch_size: int, error: str) -> None:
        """Record a batch that was put back in the buffer after a failed submission."""
        with self._lock:
            self._batches_failed += 1
            self._entries_requeued += batch_size
            self._last_error = error

    def snapshot(self) -> dict:
        """Return a point-in-time snapshot of all collected metrics."""
        with self._lock:
            send_times = list(self._send_times)
            avg_send = sum(send_times) / len(send_times) if send_times else 0.0

            return {
                "entries_written": self._entries_written,
                "batches_sent": self._batches_sent,
                "batches_failed": self._batches_failed,
                "entries_sent": self._entries_sent,
                "entries_requeued": self._entries_requeued,
                "bytes_sent": self._bytes_sent,
                "avg_send_time_ms": avg_send,
                "p95_send_time_ms": self._percentile(send_times, 95),
                "flush_triggers": dict(self._flush_triggers),
                "last_error": self._last_error,
                "uptime_seconds": time.monotonic() - self._start_time,
            }

    @staticmethod
    def _percentile(data: list, pct: float) -> float:
        """Compute an interpolated percentile from a list of numeric values.

        Args:
            data: List of numeric values (will be sorted internally).
            pct: Desired percentile (0-100).

        Returns:
            Interpolated value at the given percentile, or 0.0 if data is empty.
        """
        if not data:
            return 0.0

        sorted_data = sorted(data)
        n = len(sorted_data)

        if n == 1:
            return float(sorted_data[0])

        idx = (pct / 100) * (n - 1)
        lower = int(idx)
        upper = lower + 1
        fraction = idx - lower

        if upper >= n:
            return float(sorted_data[-1])

        return float(sorted_data[lower] + fraction * (sorted_data[upper] - sorted_data[lower]))
