"""Line-oriented patch application with all-or-nothing semantics."""

from __future__ import annotations

import logging
import re
from difflib import SequenceMatcher
from typing import List, Sequence, Tuple

from ..core.errors import LocatorError
from .locator import resolve_patch, validate_context
from .models import ContextStrictness, Patch, PatchOutcome, PatchResult, ResolvedPatch

LOGGER = logging.getLogger(__name__)

_NEWLINE_SPLIT_RE = re.compile(r"(\r\n|\n|\r)")
_PREVIEW_CONTEXT = 2


def apply_patches(
    text: str,
    patches: Sequence[Patch],
    *,
    validate_context_lines: bool = True,
    strictness: ContextStrictness = ContextStrictness.TRIMMED,
    dry_run: bool = False,
) -> PatchResult:
    """Apply ``patches`` to ``text`` and return the patched document.

    Every patch is resolved against the original line numbers before any edit
    happens, then edits are applied from the bottom of the document upwards so
    earlier spans keep their offsets. Any locator failure, overlap or context
    mismatch raises before a single line changes.
    """

    if not patches:
        raise LocatorError(
            message="Patch list is empty",
            details={"reason": "empty_patch_list"},
        )

    lines, endings, newline = _split_document(text)
    resolved = [resolve_patch(lines, patch, index) for index, patch in enumerate(patches)]
    _ensure_non_overlapping(resolved)
    if validate_context_lines:
        for entry in resolved:
            validate_context(lines, entry, strictness)

    outcomes: dict[int, PatchOutcome] = {}
    result_lines = list(lines)
    result_endings = list(endings)
    for entry in sorted(resolved, key=lambda item: item.start, reverse=True):
        replacement = _replacement_lines(entry.patch.new_content)
        outcomes[entry.index] = _build_outcome(lines, entry, replacement)
        tail_ending = result_endings[entry.end - 1]
        new_endings = [newline] * len(replacement)
        if new_endings:
            new_endings[-1] = tail_ending
        elif entry.end == len(lines) and entry.start > 0:
            # Deleting the final lines keeps the file's trailing-newline state.
            result_endings[entry.start - 1] = tail_ending
        result_lines[entry.start : entry.end] = replacement
        result_endings[entry.start : entry.end] = new_endings

    patched = _join_document(result_lines, result_endings)
    LOGGER.debug(
        "Resolved %d patch(es); dry_run=%s changed=%s",
        len(resolved),
        dry_run,
        patched != text,
    )
    return PatchResult(
        text=patched,
        outcomes=tuple(outcomes[index] for index in sorted(outcomes)),
        dry_run=dry_run,
        changed=patched != text,
    )


def derive_patches(original: str, updated: str) -> list[Patch]:
    """Return range patches that turn ``original`` into ``updated``.

    Differences are computed per line, so a change that only adds or removes
    the final line terminator produces no patch. Removed spans carry
    ``new_content=None``, while a span rewritten to one blank line carries
    ``""``. Pure insertions are anchored on a neighbouring unchanged line
    because a locator always spans at least one existing line.
    """

    old_lines, _, _ = _split_document(original)
    new_lines, _, _ = _split_document(updated)
    matcher = SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)

    spans: list[list[int]] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        if i1 == i2:
            if i1 > 0:
                i1, j1 = i1 - 1, j1 - 1
            else:
                i2, j2 = i2 + 1, j2 + 1
        if spans and i1 <= spans[-1][1] - 1:
            last = spans[-1]
            last[1] = max(last[1], i2)
            last[3] = max(last[3], j2)
            continue
        spans.append([i1, i2, j1, j2])

    return [
        Patch(
            start_line=i1 + 1,
            end_line=i2,
            new_content="\n".join(new_lines[j1:j2]) if j2 > j1 else None,
        )
        for i1, i2, j1, j2 in spans
    ]


def render_preview(lines: Sequence[str], start: int, end: int, replacement: Sequence[str]) -> str:
    """Render a before/after snippet around ``lines[start:end]``."""

    preview: list[str] = []
    for line_index in range(max(0, start - _PREVIEW_CONTEXT), start):
        preview.append(f"  {line_index + 1}: {lines[line_index]}")
    for line_index in range(start, end):
        preview.append(f"- {line_index + 1}: {lines[line_index]}")
    for offset, line in enumerate(replacement):
        preview.append(f"+ {start + offset + 1}: {line}")
    for line_index in range(end, min(len(lines), end + _PREVIEW_CONTEXT)):
        preview.append(f"  {line_index + 1}: {lines[line_index]}")
    return "\n".join(preview)


def _build_outcome(lines: Sequence[str], entry: ResolvedPatch, replacement: Sequence[str]) -> PatchOutcome:
    return PatchOutcome(
        index=entry.index,
        start_line=entry.start_line,
        end_line=entry.end_line,
        locator=entry.patch.locator_kind or "range",
        preview=render_preview(lines, entry.start, entry.end, replacement),
        lines_removed=entry.end - entry.start,
        lines_added=len(replacement),
    )


def _ensure_non_overlapping(resolved: Sequence[ResolvedPatch]) -> None:
    ordered = sorted(resolved, key=lambda item: (item.start, item.end))
    for previous, current in zip(ordered, ordered[1:]):
        if current.start < previous.end:
            raise LocatorError(
                message=(
                    f"Patches {previous.index + 1} and {current.index + 1} overlap "
                    f"(lines {previous.start_line}-{previous.end_line} and "
                    f"{current.start_line}-{current.end_line})"
                ),
                details={
                    "reason": "overlap",
                    "patches": [previous.index, current.index],
                },
            )


def _replacement_lines(new_content: str | None) -> List[str]:
    if new_content is None:
        return []
    return new_content.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def _split_document(text: str) -> Tuple[List[str], List[str], str]:
    """Split ``text`` into line bodies and their exact terminators.

    An empty document is a single empty line so that it can still be targeted
    by ``startLine: 1``.
    """

    if not text:
        return [""], [""], "\n"
    parts = _NEWLINE_SPLIT_RE.split(text)
    lines = parts[0::2]
    endings = parts[1::2] + [""]
    if lines[-1] == "" and len(lines) > 1:
        lines.pop()
        endings.pop()
    return lines, endings, _detect_newline(text)


def _join_document(lines: Sequence[str], endings: Sequence[str]) -> str:
    return "".join(line + ending for line, ending in zip(lines, endings))


def _detect_newline(text: str) -> str:
    if "\r\n" in text:
        return "\r\n"
    if "\n" in text:
        return "\n"
    if "\r" in text:
        return "\r"
    return "\n"


__all__ = [
    "apply_patches",
    "derive_patches",
    "render_preview",
]
