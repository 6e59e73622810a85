from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Literal

from markupsafe import Markup
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator

HIGH_MEMORY_WARNING = "High memory usage"
WARNING_THRESHOLD_PERCENT = 90.0

Severity = Literal["none", "medium", "high"]


class LogRecord(BaseModel):
    """One request's memory snapshot as stored on a single log line.

    Older logs written by the WordPress plugin used ``memory_usage``,
    ``peak_memory``, ``plugins`` and ``is_ajax``; those keys are accepted on read.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    timestamp: str
    uri: str = "unknown"
    user: str = "guest"
    memory_usage_mb: float = Field(validation_alias=AliasChoices("memory_usage_mb", "memory_usage"))
    peak_memory_mb: float = Field(validation_alias=AliasChoices("peak_memory_mb", "peak_memory"))
    memory_limit: str = ""
    memory_percent: float = Field(ge=0)
    active_plugins: list[str] = Field(default_factory=list, validation_alias=AliasChoices("active_plugins", "plugins"))
    method: str = "CLI"
    is_async: bool = Field(default=False, validation_alias=AliasChoices("is_async", "is_ajax"))
    referrer: str = ""
    warning: str = Field(default="", validate_default=True)

    @field_validator("warning", mode="after")
    @classmethod
    def _warning_follows_percent(cls, value: str, info: ValidationInfo) -> str:
        percent = info.data.get("memory_percent")
        if percent is None:
            return value
        return warning_for(percent)


def warning_for(percent: float) -> str:
    return HIGH_MEMORY_WARNING if percent > WARNING_THRESHOLD_PERCENT else ""


@dataclass(frozen=True)
class LogRow:
    index: int
    severity: Severity
    css_class: str
    timestamp: Markup
    uri: Markup
    user: Markup
    memory: Markup
    peak: Markup
    percent: Markup
    warning: Markup
    plugin_count: int


@dataclass(frozen=True)
class LogReport:
    """Everything the log page needs for one render.

    ``details`` is index-aligned with ``rows``; indices are only meaningful
    within this report and must not be stored or reused after a clear.
    """

    rows: list[LogRow] = field(default_factory=list)
    details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class ExportPayload:
    filename: str
    chunks: Iterator[bytes]
    media_type: str = "application/json"
