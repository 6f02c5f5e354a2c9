"""Locator resolution and context validation for patches."""

from __future__ import annotations

import re
from typing import Callable, Sequence

from ..core.errors import ContextMismatchError, LocatorError
from .models import ContextStrictness, MatchMode, Patch, ResolvedPatch

__all__ = ["resolve_patch", "validate_context", "find_block"]


def resolve_patch(lines: Sequence[str], patch: Patch, index: int) -> ResolvedPatch:
    """Bind ``patch`` to exactly one contiguous span of ``lines``.

    ``lines`` holds line bodies without terminators. Raises :class:`LocatorError`
    when the locator is missing, out of bounds, or matches fewer than
    ``patch.occurrence`` times.
    """

    kind = patch.locator_kind
    if kind == "range":
        return _resolve_range(lines, patch, index)
    if kind == "pattern":
        return _resolve_pattern(lines, patch, index)
    if kind == "content":
        return _resolve_content(lines, patch, index)
    raise LocatorError(
        message=f"Patch {index + 1} has no locator; provide startLine, searchPattern or oldContent",
        details={"reason": "missing_locator", "patch": index},
    )


def validate_context(
    lines: Sequence[str],
    resolved: ResolvedPatch,
    strictness: ContextStrictness = ContextStrictness.TRIMMED,
) -> None:
    """Check the lines just before and after ``resolved`` against the expected context."""

    patch = resolved.patch
    before = patch.context_before
    for offset, expected in enumerate(before):
        line_index = resolved.start - len(before) + offset
        _check_context_line(lines, line_index, expected, resolved.index, "before", strictness)
    for offset, expected in enumerate(patch.context_after):
        line_index = resolved.end + offset
        _check_context_line(lines, line_index, expected, resolved.index, "after", strictness)


def find_block(lines: Sequence[str], block: Sequence[str]) -> list[int]:
    """Return every start index where ``block`` matches ``lines`` line by line, trimmed."""

    needle = [line.strip() for line in block]
    if not needle:
        return []
    stripped = [line.strip() for line in lines]
    width = len(needle)
    return [
        start
        for start in range(0, len(stripped) - width + 1)
        if stripped[start : start + width] == needle
    ]


def _resolve_range(lines: Sequence[str], patch: Patch, index: int) -> ResolvedPatch:
    start_line = int(patch.start_line or 0)
    end_line = int(patch.end_line if patch.end_line is not None else start_line)
    if start_line < 1 or end_line < start_line or end_line > len(lines):
        raise LocatorError(
            message=(
                f"Patch {index + 1}: line range {start_line}-{end_line} is outside "
                f"the file (1-{len(lines)})"
            ),
            details={
                "reason": "out_of_bounds",
                "patch": index,
                "startLine": start_line,
                "endLine": end_line,
                "lineCount": len(lines),
            },
        )
    return ResolvedPatch(index=index, patch=patch, start=start_line - 1, end=end_line)


def _resolve_pattern(lines: Sequence[str], patch: Patch, index: int) -> ResolvedPatch:
    pattern = patch.search_pattern or ""
    matcher = _line_matcher(pattern, patch.match_mode, index)
    matches = [line_index for line_index, line in enumerate(lines) if matcher(line)]
    line_index = _pick_occurrence(matches, patch, index, needle=pattern)
    return ResolvedPatch(index=index, patch=patch, start=line_index, end=line_index + 1)


def _resolve_content(lines: Sequence[str], patch: Patch, index: int) -> ResolvedPatch:
    block = (patch.old_content or "").strip().split("\n")
    matches = find_block(lines, block)
    start = _pick_occurrence(matches, patch, index, needle=block[0].strip())
    return ResolvedPatch(index=index, patch=patch, start=start, end=start + len(block))


def _line_matcher(pattern: str, mode: MatchMode, index: int) -> Callable[[str], bool]:
    if mode is MatchMode.REGEX:
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            raise LocatorError(
                message=f"Patch {index + 1}: invalid regular expression: {exc}",
                details={"reason": "invalid_pattern", "patch": index, "pattern": pattern},
            ) from exc
        return lambda line: compiled.search(line) is not None
    if mode is MatchMode.CASE_INSENSITIVE:
        folded = pattern.casefold()
        return lambda line: folded in line.casefold()
    return lambda line: pattern in line


def _pick_occurrence(matches: Sequence[int], patch: Patch, index: int, *, needle: str) -> int:
    occurrence = patch.occurrence
    if occurrence < 1:
        raise LocatorError(
            message=f"Patch {index + 1}: occurrence must be 1 or greater",
            details={"reason": "invalid_occurrence", "patch": index, "occurrence": occurrence},
        )
    if len(matches) < occurrence:
        if matches:
            message = (
                f"Patch {index + 1}: occurrence {occurrence} of \"{needle}\" requested "
                f"but only {len(matches)} found"
            )
        else:
            message = f"Patch {index + 1}: \"{needle}\" not found"
        raise LocatorError(
            message=message,
            details={
                "reason": "not_found",
                "patch": index,
                "expected": needle,
                "occurrence": occurrence,
                "matches": len(matches),
            },
        )
    return matches[occurrence - 1]


def _check_context_line(
    lines: Sequence[str],
    line_index: int,
    expected: str,
    patch_index: int,
    side: str,
    strictness: ContextStrictness,
) -> None:
    actual = lines[line_index] if 0 <= line_index < len(lines) else None
    if actual is not None and strictness.normalize(actual) == strictness.normalize(expected):
        return
    shown = expected.strip() if strictness is not ContextStrictness.EXACT else expected
    raise ContextMismatchError(
        message=(
            f"Patch {patch_index + 1}: context {side} mismatch, "
            f"expected \"{shown}\" at line {line_index + 1}"
        ),
        details={
            "reason": f"context_{side}",
            "patch": patch_index,
            "line": line_index + 1,
            "expected": expected,
            "actual": actual,
            "strictness": strictness.value,
        },
    )
