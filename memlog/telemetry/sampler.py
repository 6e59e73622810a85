from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime

from memlog.models.schemas import LogRecord, warning_for

_MB = 1024 * 1024
_UNIT_BYTES = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3}
_LIMIT_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*([KMG]?)B?\s*$", re.IGNORECASE)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class CaptureContext:
    uri: str | None
    user: str | None
    memory_limit: str
    usage_bytes: int
    peak_bytes: int
    method: str | None = None
    is_async: bool = False
    referrer: str | None = None
    active_plugins: list[str] = field(default_factory=list)


def parse_memory_limit(raw: str | None) -> float | None:
    """Convert a shorthand limit such as ``256M`` or ``1G`` to megabytes.

    Returns None for an unlimited limit (``-1``, ``0``) and for anything that
    does not parse, so callers can treat both the same way.
    """
    if raw is None:
        return None

    match = _LIMIT_RE.match(str(raw))
    if not match:
        return None

    number, unit = match.groups()
    value = float(number) * _UNIT_BYTES[unit.upper()]
    if value <= 0:
        return None
    return value / _MB


def memory_percent(peak_mb: float, limit_mb: float | None) -> float:
    if not limit_mb:
        return 0.0
    return max(0.0, round(peak_mb / limit_mb * 100, 2))


def _to_mb(num_bytes: int) -> float:
    return round(max(int(num_bytes), 0) / _MB, 2)


def capture(context: CaptureContext, *, now: datetime | None = None) -> LogRecord:
    """Build the record for one finished request. Pure; the caller stores it."""

    peak_mb = _to_mb(context.peak_bytes)
    percent = memory_percent(peak_mb, parse_memory_limit(context.memory_limit))

    return LogRecord(
        timestamp=(now or datetime.now()).strftime(TIMESTAMP_FORMAT),
        uri=context.uri or "unknown",
        user=context.user or "guest",
        memory_usage_mb=_to_mb(context.usage_bytes),
        peak_memory_mb=peak_mb,
        memory_limit=str(context.memory_limit or ""),
        memory_percent=percent,
        active_plugins=[str(p) for p in context.active_plugins],
        method=context.method or "CLI",
        is_async=bool(context.is_async),
        referrer=context.referrer or "",
        warning=warning_for(percent),
    )
