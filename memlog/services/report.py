from __future__ import annotations

from collections.abc import Sequence

from markupsafe import escape

from memlog.models.schemas import LogRecord, LogReport, LogRow, Severity

HIGH_SEVERITY_PERCENT = 90.0
MEDIUM_SEVERITY_PERCENT = 75.0

_CSS_CLASSES: dict[Severity, str] = {
    "high": "memlog-warning-high",
    "medium": "memlog-warning-medium",
    "none": "",
}


def classify(percent: float) -> Severity:
    if percent >= HIGH_SEVERITY_PERCENT:
        return "high"
    if percent >= MEDIUM_SEVERITY_PERCENT:
        return "medium"
    return "none"


def _fmt(value: float) -> str:
    # 230.0 -> "230", 89.84 -> "89.84"
    return f"{value:.2f}".rstrip("0").rstrip(".")


def _row(index: int, record: LogRecord) -> LogRow:
    severity = classify(record.memory_percent)
    return LogRow(
        index=index,
        severity=severity,
        css_class=_CSS_CLASSES[severity],
        timestamp=escape(record.timestamp),
        uri=escape(record.uri),
        user=escape(record.user),
        memory=escape(f"{_fmt(record.memory_usage_mb)} MB"),
        peak=escape(f"{_fmt(record.peak_memory_mb)} MB"),
        percent=escape(f"{_fmt(record.memory_percent)}%"),
        warning=escape(record.warning),
        plugin_count=len(record.active_plugins),
    )


def render(records: Sequence[LogRecord]) -> LogReport:
    """Build the table rows and detail payload for the log page.

    Severity is recomputed on every call; only the raw percentage is stored.
    """
    return LogReport(
        rows=[_row(i, r) for i, r in enumerate(records)],
        details=[r.model_dump(mode="json") for r in records],
    )
