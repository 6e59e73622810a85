from __future__ import annotations

import os
from typing import Callable, Protocol

import psutil


class MemoryWindow(Protocol):
    """Memory readings scoped to one request."""

    def usage_bytes(self) -> int: ...

    def peak_bytes(self) -> int: ...


class MemorySource(Protocol):
    def window(self) -> MemoryWindow:
        """Start measuring a request; called before the request is handled."""
        ...


class RssWindow:
    """Peak is the larger of the RSS samples taken at start and at read time.

    RSS is a process-wide figure, so requests running concurrently in the same
    worker see each other's allocations.
    """

    def __init__(self, read_rss: Callable[[], int]) -> None:
        self._read_rss = read_rss
        self.start_bytes = int(read_rss())

    def usage_bytes(self) -> int:
        return int(self._read_rss())

    def peak_bytes(self) -> int:
        return max(self.start_bytes, self.usage_bytes())


class ProcessMemorySource:
    """Resident memory of the current process."""

    def __init__(self) -> None:
        self._process = psutil.Process(os.getpid())

    def rss_bytes(self) -> int:
        return int(self._process.memory_info().rss)

    def window(self) -> RssWindow:
        return RssWindow(self.rss_bytes)


_source: MemorySource | None = None


def set_memory_source(source: MemorySource | None) -> None:
    global _source
    _source = source


def get_memory_source() -> MemorySource:
    global _source
    if _source is None:
        _source = ProcessMemorySource()
    return _source
