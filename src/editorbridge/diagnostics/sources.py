"""Pluggable readers for the places compiler output ends up.

None of these is authoritative: each may be missing, stale or half-written
at any moment. A source either yields what it can read or raises; the
aggregator decides what to do with failures.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, Sequence, runtime_checkable

from ..core.errors import ParseError
from ..utils.file_io import read_tail_lines
from .models import DEFAULT_CODE, DiagnosticRecord, Severity
from .parsing import normalize_file, parse_compiler_lines, scan_log_brackets

__all__ = [
    "DiagnosticSource",
    "StructuredResultSource",
    "CompilerOutputSource",
    "SessionLogSource",
    "BuildPipelineSource",
    "default_sources",
    "default_editor_log_path",
]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class DiagnosticSource(Protocol):
    name: str

    def collect(self, project_root: Path) -> list[DiagnosticRecord]:
        ...


class StructuredResultSource:
    """Result file the host's own instrumentation writes after each compile.

    Shape: ``{"messages": [{"file", "line", "column", "code", "message", "type"}], ...}``.
    """

    name = "structured"

    def __init__(
        self,
        relative_paths: Sequence[str] = (
            "Temp/CompilationResults.json",
            "Temp/UnityTempFile-CompilationResults.json",
        ),
    ) -> None:
        self._relative_paths = tuple(relative_paths)

    def collect(self, project_root: Path) -> list[DiagnosticRecord]:
        records: list[DiagnosticRecord] = []
        for relative in self._relative_paths:
            path = project_root / relative
            if not path.is_file():
                continue
            payload = _load_json(path)
            messages = payload.get("messages") if isinstance(payload, Mapping) else None
            if not isinstance(messages, list):
                raise ParseError(
                    message=f"{path.name} has no 'messages' list",
                    details={"path": str(path), "source": self.name},
                )
            for entry in messages:
                record = _record_from_mapping(entry, source=self.name, severity_key="type", code_key="code")
                if record is not None:
                    records.append(record)
        return records


class CompilerOutputSource:
    """Raw compiler text left in the host's transient working files."""

    name = "compiler-output"

    def __init__(
        self,
        *,
        directory: str = "Temp",
        pattern: str = "UnityTempFile-*",
        keywords: Sequence[str] = ("Compiler", "Assembly"),
    ) -> None:
        self._directory = directory
        self._pattern = pattern
        self._keywords = tuple(keywords)

    def collect(self, project_root: Path) -> list[DiagnosticRecord]:
        folder = project_root / self._directory
        if not folder.is_dir():
            return []
        records: list[DiagnosticRecord] = []
        for path in sorted(folder.glob(self._pattern)):
            if not path.is_file() or not any(keyword in path.name for keyword in self._keywords):
                continue
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                # The compiler deletes these files when it is done.
                LOGGER.debug("Skipping unreadable compiler output %s: %s", path, exc)
                continue
            records.extend(parse_compiler_lines(text.splitlines(), source=self.name))
        return records


class SessionLogSource:
    """Tail window of the host's persistent session log."""

    name = "session-log"

    def __init__(self, log_path: Path | str | None = None, *, tail_lines: int = 1_000) -> None:
        self._log_path = Path(log_path).expanduser() if log_path else None
        self._tail_lines = tail_lines

    @property
    def log_path(self) -> Path | None:
        return self._log_path or default_editor_log_path()

    def collect(self, project_root: Path) -> list[DiagnosticRecord]:
        path = self.log_path
        if path is None or not path.is_file():
            return []
        lines = read_tail_lines(path, self._tail_lines)
        return scan_log_brackets(lines, source=self.name)


class BuildPipelineSource:
    """Diagnostics and trace artifacts written by the incremental build pipeline."""

    name = "build-pipeline"

    def __init__(
        self,
        *,
        diagnostics_path: str = "Library/Bee/diagnostics.json",
        profile_path: str = "Library/Bee/fullprofile.json",
    ) -> None:
        self._diagnostics_path = diagnostics_path
        self._profile_path = profile_path

    def collect(self, project_root: Path) -> list[DiagnosticRecord]:
        records: list[DiagnosticRecord] = []
        diagnostics = project_root / self._diagnostics_path
        if diagnostics.is_file():
            payload = _load_json(diagnostics)
            entries = payload.get("diagnostics") if isinstance(payload, Mapping) else None
            for entry in entries or ():
                record = _record_from_mapping(entry, source=self.name, severity_key="severity", code_key="id")
                if record is not None:
                    records.append(record)
        profile = project_root / self._profile_path
        if profile.is_file():
            payload = _load_json(profile)
            events = payload.get("traceEvents") if isinstance(payload, Mapping) else None
            records.extend(parse_compiler_lines(_trace_details(events or ()), source=self.name))
        return records


def default_sources(*, log_path: Path | str | None = None, tail_lines: int = 1_000) -> list[DiagnosticSource]:
    """Return one instance of every built-in source, in merge order."""

    return [
        StructuredResultSource(),
        CompilerOutputSource(),
        SessionLogSource(log_path, tail_lines=tail_lines),
        BuildPipelineSource(),
    ]


def default_editor_log_path() -> Path | None:
    """Where the host writes its session log on this platform."""

    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Logs" / "Unity" / "Editor.log"
    if sys.platform.startswith("win"):
        local_app_data = os.environ.get("LOCALAPPDATA")
        if not local_app_data:
            return None
        return Path(local_app_data) / "Unity" / "Editor" / "Editor.log"
    return home / ".config" / "unity3d" / "Editor.log"


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as exc:
        raise ParseError(
            message=f"{path.name} is not valid JSON: {exc}",
            details={"path": str(path)},
        ) from exc


def _record_from_mapping(
    entry: Any,
    *,
    source: str,
    severity_key: str,
    code_key: str,
) -> DiagnosticRecord | None:
    if not isinstance(entry, Mapping):
        return None
    message = str(entry.get("message") or "").strip()
    if not message:
        return None
    return DiagnosticRecord(
        file=normalize_file(str(entry.get("file") or "")),
        line=_as_int(entry.get("line")),
        column=_as_int(entry.get("column")),
        code=str(entry.get(code_key) or DEFAULT_CODE),
        message=message,
        severity=Severity.parse(entry.get(severity_key)),
        source=source,
    )


def _trace_details(events: Iterable[Any]) -> Iterable[str]:
    for event in events:
        if not isinstance(event, Mapping):
            continue
        args = event.get("args")
        detail = args.get("detail") if isinstance(args, Mapping) else None
        if isinstance(detail, str):
            yield from detail.splitlines()


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
