from __future__ import annotations

from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any


@dataclass
class _LatencyAgg:
    count: int = 0
    sum_ms: float = 0.0
    max_ms: float = 0.0

    def observe(self, elapsed_ms: float) -> None:
        self.count += 1
        self.sum_ms += float(elapsed_ms)
        if elapsed_ms > self.max_ms:
            self.max_ms = float(elapsed_ms)


class InMemoryMetrics:
    """Thread-safe, process-local counters for the memory log (resets on restart)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.http_requests_total: int = 0
        self.captures_total: int = 0
        self.records_appended_total: int = 0
        self.write_failures_total: int = 0
        self.lines_skipped_total: int = 0
        self.http_request_ms = _LatencyAgg()

    def observe_http_request(self, elapsed_ms: float) -> None:
        with self._lock:
            self.http_requests_total += 1
            self.http_request_ms.observe(elapsed_ms)

    def observe_capture(self) -> None:
        with self._lock:
            self.captures_total += 1

    def observe_append(self) -> None:
        with self._lock:
            self.records_appended_total += 1

    def observe_write_failure(self) -> None:
        with self._lock:
            self.write_failures_total += 1

    def observe_skipped_lines(self, count: int = 1) -> None:
        with self._lock:
            self.lines_skipped_total += count

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": {
                    "http_requests_total": self.http_requests_total,
                    "captures_total": self.captures_total,
                    "records_appended_total": self.records_appended_total,
                    "write_failures_total": self.write_failures_total,
                    "lines_skipped_total": self.lines_skipped_total,
                },
                "latency_ms": {
                    "http_request_ms": asdict(self.http_request_ms),
                },
            }

    def reset(self) -> None:
        with self._lock:
            self.http_requests_total = 0
            self.captures_total = 0
            self.records_appended_total = 0
            self.write_failures_total = 0
            self.lines_skipped_total = 0
            self.http_request_ms = _LatencyAgg()


_METRICS: InMemoryMetrics | None = None


def get_metrics() -> InMemoryMetrics:
    global _METRICS
    if _METRICS is None:
        _METRICS = InMemoryMetrics()
    return _METRICS


def reset_metrics() -> None:
    """Reset metrics counters/aggregates (used by tests)."""

    get_metrics().reset()
