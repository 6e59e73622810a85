"""Append-only JSON-lines store for request memory records.

One record per line, UTF-8, ``\\n`` terminated. Writers (append and clear)
serialize on an exclusive advisory lock held on a sibling ``.<name>.lock``
file, so concurrent requests in any thread or worker process never interleave
bytes of a line. Readers take no lock and drop lines they cannot parse, which
covers a line that is still being written.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

import structlog
from pydantic import ValidationError

from memlog.config import get_settings
from memlog.errors import ParseSkipped
from memlog.models.schemas import LogRecord
from memlog.observability.metrics import get_metrics

try:
    import fcntl  # POSIX

    HAVE_FCNTL = True
except ImportError:
    HAVE_FCNTL = False

try:
    import msvcrt  # Windows

    HAVE_MSVCRT = True
except ImportError:
    HAVE_MSVCRT = False


logger = structlog.get_logger("event_log")


class _FileLock:
    def __init__(self, target: Path) -> None:
        self.lock_path = target.parent / f".{target.name}.lock"
        self._fh = None

    def __enter__(self) -> "_FileLock":
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.lock_path, "a+b")
        try:
            if HAVE_FCNTL:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            elif HAVE_MSVCRT:
                fh.seek(0)
                msvcrt.locking(fh.fileno(), msvcrt.LK_LOCK, 1)
        except BaseException:
            fh.close()
            raise
        self._fh = fh
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb) -> None:
        if self._fh is None:
            return
        try:
            if HAVE_FCNTL:
                fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
            elif HAVE_MSVCRT:
                self._fh.seek(0)
                msvcrt.locking(self._fh.fileno(), msvcrt.LK_UNLCK, 1)
        finally:
            self._fh.close()
            self._fh = None


class EventLogStore:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def append(self, record: LogRecord) -> bool:
        """Append one record. Returns False (and logs) instead of raising on I/O errors."""

        line = record.model_dump_json() + "\n"
        try:
            with _FileLock(self._path):
                with open(self._path, "a", encoding="utf-8", newline="\n") as fh:
                    fh.write(line)
                    fh.flush()
                    os.fsync(fh.fileno())
        except OSError as exc:
            get_metrics().observe_write_failure()
            logger.error("event_log.write_failed", op="append", path=str(self._path), error=str(exc))
            return False

        get_metrics().observe_append()
        return True

    def clear(self) -> bool:
        """Truncate the log. A missing file is left missing."""

        try:
            with _FileLock(self._path):
                try:
                    with open(self._path, "r+b") as fh:
                        fh.truncate(0)
                except FileNotFoundError:
                    return True
        except OSError as exc:
            get_metrics().observe_write_failure()
            logger.error("event_log.write_failed", op="clear", path=str(self._path), error=str(exc))
            return False

        logger.info("event_log.cleared", path=str(self._path))
        return True

    def read_all(self) -> list[LogRecord]:
        if not self.exists():
            return []

        records: list[LogRecord] = []
        skipped = 0
        with open(self._path, "r", encoding="utf-8", errors="replace") as fh:
            for line_number, line in enumerate(fh, start=1):
                if not line.strip():
                    continue
                try:
                    records.append(_parse_line(line, line_number))
                except ParseSkipped as exc:
                    skipped += 1
                    logger.debug("event_log.line_skipped", line=exc.line_number, reason=exc.reason)

        if skipped:
            get_metrics().observe_skipped_lines(skipped)
        return records

    def read_bytes(self) -> bytes:
        return self._path.read_bytes()

    def open_stream(self, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        """Raw file content in chunks. Opens eagerly so a missing file raises here."""

        fh = open(self._path, "rb")
        return _iter_chunks(fh, chunk_size)


def _iter_chunks(fh: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    with fh:
        while True:
            chunk = fh.read(chunk_size)
            if not chunk:
                return
            yield chunk


def _parse_line(line: str, line_number: int) -> LogRecord:
    try:
        return LogRecord.model_validate_json(line)
    except ValidationError as exc:
        raise ParseSkipped(line_number, f"{exc.error_count()} validation error(s)") from exc


def get_event_log() -> EventLogStore:
    """FastAPI dependency: the store at the configured location."""

    return EventLogStore(get_settings().log_path)
