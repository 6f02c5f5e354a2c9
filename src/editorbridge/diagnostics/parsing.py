"""Line-oriented parsers for the compiler message shapes seen in host artifacts."""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable, Pattern

from .models import DEFAULT_CODE, DiagnosticRecord, Severity

__all__ = [
    "COMPILER_PATTERNS",
    "LOG_BEGIN_MARKERS",
    "LOG_END_MARKERS",
    "normalize_file",
    "parse_compiler_line",
    "parse_compiler_lines",
    "scan_log_brackets",
]

# Most specific first: a line matching the column form also matches the others.
COMPILER_PATTERNS: tuple[Pattern[str], ...] = (
    # Assets/A.cs(10,5): error CS1002: ; expected
    re.compile(
        r"^(?P<file>.+?)\((?P<line>\d+),(?P<column>\d+)\):\s*"
        r"(?P<severity>error|warning)\s+(?P<code>\w+):\s*(?P<message>.+)$"
    ),
    # Assets/A.cs(10): error CS1002: ; expected
    re.compile(
        r"^(?P<file>.+?)\((?P<line>\d+)\):\s*"
        r"(?P<severity>error|warning)\s+(?P<code>\w+):\s*(?P<message>.+)$"
    ),
    # Assets/A.cs:10: error: ; expected
    re.compile(r"^(?P<file>.+?):(?P<line>\d+):\s*(?P<severity>error|warning):\s*(?P<message>.+)$"),
)

LOG_BEGIN_MARKERS: tuple[str, ...] = ("-----CompilerOutput:-stdout", "Compilation failed:")
LOG_END_MARKERS: tuple[str, ...] = ("-----EndCompilerOutput", "Compilation succeeded")


def normalize_file(path: str) -> str:
    return path.strip().replace("\\", "/")


def parse_compiler_line(line: str, *, source: str = "") -> DiagnosticRecord | None:
    """Return the record described by ``line``, or ``None`` when no pattern fits."""

    candidate = line.strip()
    if not candidate:
        return None
    for pattern in COMPILER_PATTERNS:
        match = pattern.match(candidate)
        if match is None:
            continue
        groups = match.groupdict()
        return DiagnosticRecord(
            file=normalize_file(groups["file"]),
            line=int(groups["line"]),
            column=int(groups.get("column") or 0),
            code=groups.get("code") or DEFAULT_CODE,
            message=groups["message"].strip(),
            severity=Severity.parse(groups["severity"]),
            source=source,
        )
    return None


def parse_compiler_lines(lines: Iterable[str], *, source: str = "") -> list[DiagnosticRecord]:
    records: list[DiagnosticRecord] = []
    for line in lines:
        record = parse_compiler_line(line, source=source)
        if record is not None:
            records.append(record)
    return records


def scan_log_brackets(lines: Iterable[str], *, source: str = "") -> list[DiagnosticRecord]:
    """Collect records found between compiler-output begin/end markers.

    Inside a bracket, a line that matches no pattern continues the message of
    the record right above it (the compiler wraps long messages).
    """

    records: list[DiagnosticRecord] = []
    inside = False
    extendable = False
    for line in lines:
        if any(marker in line for marker in LOG_BEGIN_MARKERS):
            inside = True
            extendable = False
            continue
        if any(marker in line for marker in LOG_END_MARKERS):
            inside = False
            extendable = False
            continue
        if not inside:
            continue
        record = parse_compiler_line(line, source=source)
        if record is not None:
            records.append(record)
            extendable = True
            continue
        stripped = line.strip()
        if extendable and stripped:
            previous = records[-1]
            records[-1] = replace(previous, message=f"{previous.message} {stripped}")
        elif not stripped:
            extendable = False
    return records
