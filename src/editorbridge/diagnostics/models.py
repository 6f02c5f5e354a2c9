"""Normalized compiler diagnostic records."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

DEFAULT_CODE = "CS0000"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        normalized = str(value or "").strip().lower()
        if normalized in {"error", "fatal", "exception"}:
            return cls.ERROR
        if normalized == "warning":
            return cls.WARNING
        if normalized in {"info", "information", "message", "hidden"}:
            return cls.INFO
        return cls.ERROR


@dataclass(slots=True, frozen=True)
class DiagnosticRecord:
    """A compiler error or warning in the shape shared by every source.

    Two records are the same diagnostic when ``(file, line, code, message)``
    agree; the column and severity may legitimately differ between sources.
    """

    file: str
    line: int
    message: str
    column: int = 0
    code: str = DEFAULT_CODE
    severity: Severity = Severity.ERROR
    source: str = ""
    context: tuple[str, ...] = field(default=(), compare=False)

    @property
    def key(self) -> tuple[str, int, str, str]:
        return (self.file, self.line, self.code, self.message)

    def with_context(self, context: tuple[str, ...]) -> "DiagnosticRecord":
        return replace(self, context=context)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "source": self.source,
        }
        if self.context:
            payload["context"] = list(self.context)
        return payload


@dataclass(slots=True)
class CompilationStatus:
    """Coarse compile state inferred from files the host leaves behind."""

    host_running: bool = False
    is_compiling: bool = False
    last_compile_time: float | None = None
    error_count: int = 0
    warning_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostRunning": self.host_running,
            "isCompiling": self.is_compiling,
            "lastCompileTime": self.last_compile_time,
            "errorCount": self.error_count,
            "warningCount": self.warning_count,
        }


__all__ = ["DEFAULT_CODE", "Severity", "DiagnosticRecord", "CompilationStatus"]
